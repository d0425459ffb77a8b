#!/usr/bin/env python3
"""
Prune the response cache.

Entries past their expiry are never served but still occupy the table
and the vector index. Run this periodically (e.g., hourly cron job).

Usage:
    python scripts/cleanup_cache.py
    python scripts/cleanup_cache.py --stats
    python scripts/cleanup_cache.py --max-age-days 3
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_ai.db.database import async_session_maker, engine
from rewards_ai.db.models import QueryCacheModel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def get_cache_stats(session: AsyncSession) -> dict:
    """Get cache statistics."""
    now = datetime.now(timezone.utc)
    result = await session.execute(
        select(
            func.count(QueryCacheModel.id).label("total_entries"),
            func.count(QueryCacheModel.id)
            .filter(QueryCacheModel.expires_at > now)
            .label("active_entries"),
            func.count(QueryCacheModel.id)
            .filter(QueryCacheModel.expires_at <= now)
            .label("expired_entries"),
            func.count(QueryCacheModel.id)
            .filter(QueryCacheModel.query_embedding.is_(None))
            .label("exact_only_entries"),
            func.count(QueryCacheModel.id)
            .filter(QueryCacheModel.user_id.is_not(None))
            .label("user_scoped_entries"),
            func.coalesce(func.sum(QueryCacheModel.hit_count), 0).label("total_hits"),
            func.coalesce(func.avg(QueryCacheModel.hit_count), 0).label("avg_hits_per_entry"),
        )
    )
    row = result.one()

    return {
        "total_entries": row.total_entries,
        "active_entries": row.active_entries,
        "expired_entries": row.expired_entries,
        "exact_only_entries": row.exact_only_entries,
        "user_scoped_entries": row.user_scoped_entries,
        "total_hits": int(row.total_hits),
        "avg_hits_per_entry": float(row.avg_hits_per_entry),
    }


async def cleanup_expired(session: AsyncSession, max_age_days: Optional[int] = None) -> int:
    """Delete expired entries, and entries older than max_age_days if given."""
    now = datetime.now(timezone.utc)
    condition = QueryCacheModel.expires_at <= now
    if max_age_days is not None:
        condition = or_(
            condition,
            QueryCacheModel.created_at <= now - timedelta(days=max_age_days),
        )

    result = await session.execute(delete(QueryCacheModel).where(condition))
    return result.rowcount


async def main_async(stats_only: bool = False, max_age_days: Optional[int] = None) -> None:
    """Main async function."""
    try:
        async with async_session_maker() as session:
            # Get stats before cleanup
            stats = await get_cache_stats(session)

            logger.info("Response Cache Statistics:")
            logger.info(f"  Total entries: {stats['total_entries']:,}")
            logger.info(f"  Active entries: {stats['active_entries']:,}")
            logger.info(f"  Expired entries: {stats['expired_entries']:,}")
            logger.info(f"  Exact-match only (no embedding): {stats['exact_only_entries']:,}")
            logger.info(f"  User-scoped entries: {stats['user_scoped_entries']:,}")
            logger.info(f"  Total hits: {stats['total_hits']:,}")
            logger.info(f"  Avg hits per entry: {stats['avg_hits_per_entry']:.2f}")

            if stats_only:
                return

            if stats["expired_entries"] == 0 and max_age_days is None:
                logger.info("No expired entries to clean up.")
                return

            deleted = await cleanup_expired(session, max_age_days)
            await session.commit()

            logger.info(f"Cleaned up {deleted:,} cache entries.")

            # Get stats after cleanup
            stats_after = await get_cache_stats(session)
            logger.info(f"Active entries remaining: {stats_after['active_entries']:,}")
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(
        description="Clean up expired response cache entries"
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Only show statistics, don't clean up",
    )
    parser.add_argument(
        "--max-age-days",
        type=int,
        default=None,
        help="Also delete entries created more than this many days ago",
    )

    args = parser.parse_args()
    asyncio.run(main_async(stats_only=args.stats, max_age_days=args.max_age_days))


if __name__ == "__main__":
    main()
