"""
Create all credentialing tables on the configured database.

Usage::

    python scripts/init_db.py
"""

from __future__ import annotations

import asyncio
import logging

from therapyconnect.api.deps import engine
from therapyconnect.models import Base

logger = logging.getLogger(__name__)


async def main() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    logger.info("Created %d tables", len(Base.metadata.tables))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
