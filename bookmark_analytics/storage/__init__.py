"""
Storage backend selection.

Checked in order, first match wins:

1. hosted Postgres, when both hosted credentials are set and not placeholders;
2. local JSON file, unless running in production;
3. in-process memory.

The lifespan calls ``select_backend`` once and hands the instance to the
routes; nothing else picks a backend.
"""

import logging

from bookmark_analytics.config import Settings
from bookmark_analytics.storage.base import Backend
from bookmark_analytics.storage.file import FileBackend
from bookmark_analytics.storage.hosted import HostedBackend
from bookmark_analytics.storage.memory import MemoryBackend

logger = logging.getLogger(__name__)

__all__ = ["Backend", "FileBackend", "HostedBackend", "MemoryBackend", "select_backend"]


def select_backend(config: Settings) -> Backend:
    if config.hosted_database_configured:
        from bookmark_analytics.database import build_engine

        engine = build_engine(config.hosted_database_url, config.hosted_database_key)
        logger.info("📊 Analytics storage: hosted database (%s)", engine.url.render_as_string(hide_password=True))
        return HostedBackend(engine)

    if not config.is_production:
        logger.info("📁 Analytics storage: local file %s", config.analytics_file_path)
        return FileBackend(config.analytics_file_path)

    logger.warning("⚠️  Analytics storage: in-memory only — data will not survive a restart")
    return MemoryBackend()
