"""
Worker entry point.
Run with: python -m allocator.worker.runner [--burst]

--burst drains the allocation queue and exits, for cron-driven month-end runs.
"""

import os
import sys

import structlog
from redis import Redis
from rq import Worker

from allocator.config import settings
from allocator.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def main(argv: list[str] = None):
    """Start the RQ worker on the allocation queue."""
    argv = sys.argv[1:] if argv is None else argv
    burst = "--burst" in argv

    setup_logging()

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"allocation-worker-{settings.ENGINE_VERSION}-{os.getpid()}",
    )

    logger.info(
        "worker_starting",
        queue=settings.QUEUE_NAME,
        engine_version=settings.ENGINE_VERSION,
        burst=burst,
    )
    worker.work(burst=burst, with_scheduler=False)


if __name__ == "__main__":
    main()
