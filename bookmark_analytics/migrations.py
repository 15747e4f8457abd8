"""
Database Migrations — adds newer columns to an existing analytics table.

``create_all()`` only creates NEW tables, so deployments created before a
column was introduced keep running without it until this module runs
ALTER TABLE statements to add the missing columns idempotently.

Called when the hosted backend is prepared, AFTER init_db().
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger("analytics.migrations")

# Each migration: (column_name, table, sql)
# Using ADD COLUMN IF NOT EXISTS (PostgreSQL 9.6+)
_MIGRATIONS = [
    # ── Category tracking ──
    ("categories_used", "bookmark_analytics",
     "ALTER TABLE bookmark_analytics ADD COLUMN IF NOT EXISTS categories_used JSON DEFAULT '[]'"),

    # ── Event timestamps ──
    ("last_event_at",   "bookmark_analytics",
     "ALTER TABLE bookmark_analytics ADD COLUMN IF NOT EXISTS last_event_at TIMESTAMPTZ"),
    ("created_at",      "bookmark_analytics",
     "ALTER TABLE bookmark_analytics ADD COLUMN IF NOT EXISTS created_at TIMESTAMPTZ DEFAULT now()"),
    ("updated_at",      "bookmark_analytics",
     "ALTER TABLE bookmark_analytics ADD COLUMN IF NOT EXISTS updated_at TIMESTAMPTZ DEFAULT now()"),

    # ── Indexes ──
    ("ix_period",       "bookmark_analytics",
     "CREATE UNIQUE INDEX IF NOT EXISTS ix_bookmark_analytics_period "
     "ON bookmark_analytics (subject_id, period_type, period_key)"),
]


async def run_migrations(engine: AsyncEngine) -> int:
    """Run all pending migrations. Returns count of statements executed."""
    if engine.dialect.name != "postgresql":
        logger.debug("Skipping migrations for dialect %s", engine.dialect.name)
        return 0

    count = 0
    for name, table, sql in _MIGRATIONS:
        try:
            async with engine.begin() as conn:
                await conn.execute(text(sql))
            count += 1
        except Exception as e:
            # IF NOT EXISTS means most errors are truly unexpected
            logger.warning("Migration '%s' on %s failed: %s", name, table, e)
    logger.info("Migrations complete: %d statements executed", count)
    return count
