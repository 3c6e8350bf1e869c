"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and runs it without the HTTP server:

    python -m app.jobs.worker lifecycle_scheduler
    WORKER_JOB=discovery_once python -m app.jobs.worker
"""

import asyncio
import os
import signal
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.features.event_lifecycle.container import ServiceContainer, build_container
from app.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[ServiceContainer], Awaitable[None]]


async def run_lifecycle_scheduler(container: ServiceContainer) -> None:
    """Run every periodic task until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    container.scheduler.start()
    await stop.wait()
    logger.info("Worker received stop signal")


async def run_discovery_once(container: ServiceContainer) -> None:
    metrics = await container.pipeline.run_discovery_cycle()
    logger.info("Discovery run finished", **metrics)


async def run_registration_once(container: ServiceContainer) -> None:
    metrics = await container.pipeline.run_registration_processing()
    logger.info("Registration run finished", **metrics)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "lifecycle_scheduler": run_lifecycle_scheduler,
    "discovery_once": run_discovery_once,
    "registration_once": run_registration_once,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "lifecycle_scheduler").strip().lower()


async def run_worker(
    job_name: str | None = None,
    container_factory: Callable[[], ServiceContainer] = build_container,
) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    settings.validate_for_startup()
    logger.info("Starting background worker", job=name)

    await db_pool.initialize()
    container = container_factory()
    try:
        await JOB_REGISTRY[name](container)
    finally:
        await container.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
