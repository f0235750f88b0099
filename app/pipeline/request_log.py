from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


@dataclass
class RequestLogEntry:
    ip: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    image_size: int = 0
    image_format: str = ""
    model: str = ""
    estimated_tokens: int | None = None
    upstream_ms: int | None = None
    tokens_used: int | None = None
    success: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class RequestLog:
    """Bounded in-memory history of OCR requests, for debugging."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: deque[RequestLogEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: RequestLogEntry) -> None:
        self._entries.append(entry)
        level = logging.INFO if entry.success else logging.WARNING
        logger.log(
            level,
            "ocr_request",
            extra={
                "ip": entry.ip,
                "image_size": entry.image_size,
                "image_format": entry.image_format,
                "model": entry.model,
                "success": entry.success,
                "upstream_ms": entry.upstream_ms,
                "tokens_used": entry.tokens_used,
                "error": entry.error,
            },
        )

    def recent(self, limit: int = 100) -> list[RequestLogEntry]:
        """Most recent first."""
        if limit <= 0:
            return []
        return list(reversed(self._entries))[:limit]
