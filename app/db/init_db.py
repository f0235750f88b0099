from __future__ import annotations

import logging

from app.db.models import Base
from app.db.session import Database

logger = logging.getLogger(__name__)


async def init_db(database: Database) -> None:
    engine = await database.get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized")
