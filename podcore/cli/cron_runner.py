"""Standalone cron runner for the scheduled-publish sweep.

Runs as a scheduled machine every few minutes: episodes in ``scheduled``
whose publish_at has elapsed (and whose transcription is resolved) move to
``published``, and the site is rebuilt once if anything changed.

Usage:
    python -m podcore.cli.cron_runner

Exit codes:
    0 - Success
    1 - Failure (check logs for details)
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone

from podcore.config import settings
from podcore.logging_config import setup_logging
from podcore.services.episode_state_service import publish_due_episodes
from podcore.utils.db_async import SessionLocal, dispose_engine

setup_logging(level=settings.log_level, access_log=False, datefmt="%Y-%m-%d %H:%M:%S")
logger = logging.getLogger("cron_runner")


async def main() -> int:
    start_time = datetime.now(timezone.utc)
    logger.info("Starting scheduled publish sweep")

    try:
        async with SessionLocal() as db:
            published = await publish_due_episodes(db)

        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"Sweep complete in {elapsed:.1f}s: {published} episodes published")
        return 0

    except Exception as e:
        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.error(f"Sweep failed after {elapsed:.1f}s: {e}", exc_info=True)
        return 1

    finally:
        await dispose_engine()


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
