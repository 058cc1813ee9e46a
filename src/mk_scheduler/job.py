"""Cron entry point for the settlement jobs.

Run with: python -m src.mk_scheduler.job expire-commits
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from src.mk_common.database import engine, session_scope
from src.mk_common.datetime_utils import utc_now
from src.mk_common.redis_client import close_redis
from src.mk_notification.application.service import cleanup_notifications
from src.mk_scheduler.application.service import CommitmentClock

logger = logging.getLogger(__name__)

JobFn = Callable[[AsyncSession, datetime], Awaitable[BaseModel]]


def _jobs(clock: CommitmentClock) -> dict[str, JobFn]:
    return {
        "expire-commits": clock.run_expiry_sweep,
        "commit-reminders": clock.send_commit_reminders,
        "collection-reminders": clock.send_collection_reminders,
        "retry-refunds": clock.retry_stalled_refunds,
        "cleanup-notifications": cleanup_notifications,
    }


JOB_NAMES = (
    "expire-commits",
    "commit-reminders",
    "collection-reminders",
    "retry-refunds",
    "cleanup-notifications",
)


async def run_job(name: str, clock: CommitmentClock | None = None) -> BaseModel:
    job = _jobs(clock or CommitmentClock())[name]
    async with session_scope() as db:
        return await job(db, utc_now())


async def _main(name: str) -> int:
    try:
        result = await run_job(name)
    finally:
        await engine.dispose()
        await close_redis()
    print(json.dumps(result.model_dump()))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one settlement job and exit.")
    parser.add_argument("job", choices=JOB_NAMES)
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s"
    )
    logger.info("Running job %s", args.job)
    return asyncio.run(_main(args.job))


if __name__ == "__main__":
    sys.exit(main())
