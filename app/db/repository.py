from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidIdentifierError
from app.db.models import Screenshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreStats:
    total_count: int
    total_text_length: int
    average_confidence: float
    total_tokens: int


def parse_identifier(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, AttributeError, TypeError) as exc:
        raise InvalidIdentifierError(f"Invalid ID format: {value!r}") from exc


class ScreenshotRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, **fields) -> Screenshot:
        screenshot = Screenshot(**fields)
        self._session.add(screenshot)
        await self._session.commit()
        await self._session.refresh(screenshot)
        logger.info("screenshot_created", extra={"screenshot_id": str(screenshot.id)})
        return screenshot

    async def find_all(self, limit: int = 50, skip: int = 0) -> list[Screenshot]:
        """Most recent first."""
        stmt = (
            select(Screenshot)
            .order_by(Screenshot.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_id(self, screenshot_id: str | uuid.UUID) -> Screenshot | None:
        try:
            key = parse_identifier(screenshot_id)
        except InvalidIdentifierError:
            return None
        return await self._session.get(Screenshot, key)

    async def delete_by_id(self, screenshot_id: str | uuid.UUID) -> bool:
        try:
            key = parse_identifier(screenshot_id)
        except InvalidIdentifierError:
            return False
        result = await self._session.execute(delete(Screenshot).where(Screenshot.id == key))
        await self._session.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info("screenshot_deleted", extra={"screenshot_id": str(key)})
        return deleted

    async def get_stats(self) -> StoreStats:
        stmt = select(
            func.count(Screenshot.id),
            func.coalesce(func.sum(func.length(Screenshot.extracted_text)), 0),
            func.coalesce(func.avg(Screenshot.confidence), 0.0),
            func.coalesce(func.sum(Screenshot.prompt_tokens + Screenshot.completion_tokens), 0),
        )
        count, text_length, avg_confidence, tokens = (await self._session.execute(stmt)).one()
        return StoreStats(
            total_count=int(count or 0),
            total_text_length=int(text_length or 0),
            average_confidence=round(float(avg_confidence or 0.0), 2),
            total_tokens=int(tokens or 0),
        )
