"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and runs that stage's poll loop until the process is stopped.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from trackme.config import PipelineConfig, settings
from trackme.db.pool import db_pool
from trackme.features.subscription_discovery.dependencies import (
    build_ingest_worker,
    build_parse_worker,
    build_queues,
    build_scan_worker,
)
from trackme.infrastructure.observability.logging import get_logger, setup_logging
from trackme.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 30.0
REAPER_INTERVAL_SECONDS = 60.0

JobCoroutine = Callable[[], Awaitable[None]]


async def poll_loop(
    worker, interval_seconds: float, max_runs: int | None = None, sleep=asyncio.sleep
) -> None:
    """
    Run worker.run_once() forever (or max_runs times).

    Sleeps only when a run found nothing to do; an unexpected error backs off
    and the loop keeps going.
    """
    runs = 0
    while max_runs is None or runs < max_runs:
        runs += 1
        try:
            result = await worker.run_once()
            if result.idle:
                await sleep(interval_seconds)
        except Exception as e:
            logger.error(
                "Error in worker loop",
                worker_id=worker.worker_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await sleep(ERROR_BACKOFF_SECONDS)


async def reap_stale_jobs(config: PipelineConfig, queues=None) -> dict[str, dict[str, int]]:
    """One reaper pass over every queue table."""
    summary = {}
    for queue in queues or build_queues(config):
        summary[queue.stage] = await queue.reclaim_stale(
            config.stale_job_timeout_seconds, config.max_job_attempts
        )
    return summary


async def start_scan_worker() -> None:
    config = settings.pipeline_config()
    await poll_loop(build_scan_worker(config), config.poll_interval_seconds)


async def start_parse_worker() -> None:
    config = settings.pipeline_config()
    await poll_loop(build_parse_worker(config), config.poll_interval_seconds)


async def start_ingest_worker() -> None:
    config = settings.pipeline_config()
    await poll_loop(build_ingest_worker(config), config.poll_interval_seconds)


async def start_reaper() -> None:
    config = settings.pipeline_config()
    logger.info(
        "Starting stale job reaper",
        timeout_seconds=config.stale_job_timeout_seconds,
        max_attempts=config.max_job_attempts,
    )
    while True:
        try:
            summary = await reap_stale_jobs(config)
            logger.debug("Reaper pass finished", **summary)
        except Exception as e:
            logger.error("Error in reaper", error=str(e), error_type=type(e).__name__)
        await asyncio.sleep(REAPER_INTERVAL_SECONDS)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "scan": start_scan_worker,
    "parse": start_parse_worker,
    "ingest": start_ingest_worker,
    "reaper": start_reaper,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "scan").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job with the database pool (and Redis) open."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await db_pool.initialize()
    try:
        if settings.redis_configured():
            try:
                await fast_redis.initialize()
            except RuntimeError as e:
                logger.warning("Redis unavailable, continuing without locks", error=str(e))
        await JOB_REGISTRY[name]()
    finally:
        await fast_redis.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.log_level)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
