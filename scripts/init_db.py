#!/usr/bin/env python3
"""
Create the pgvector extension and all tables.

Safe to re-run: existing tables are left untouched.

Usage:
    python scripts/init_db.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from rewards_ai.db.database import Base, engine, init_db
import rewards_ai.db.models  # noqa: F401  registers tables on Base.metadata

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def main_async() -> None:
    try:
        await init_db()
        logger.info(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")
    finally:
        await engine.dispose()


def main():
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
