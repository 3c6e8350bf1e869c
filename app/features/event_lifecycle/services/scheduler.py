"""
In-process scheduler for the lifecycle tasks.

Every task kind runs in its own asyncio loop with its own interval. A task
never overlaps itself: a firing that finds the previous run still in progress
is skipped. A failing run is logged and the loop carries on.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.infrastructure.observability.logging import get_logger

from .pipeline_service import LifecyclePipeline

logger = get_logger(__name__)

TaskBody = Callable[[], Awaitable[dict[str, Any] | None]]


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        body: TaskBody,
        run_on_start: bool = False,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.body = body
        self.run_on_start = run_on_start
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.last_result: dict[str, Any] | None = None
        self.last_error: str | None = None
        self.run_count = 0
        self.failure_count = 0

    async def run_once(self) -> dict[str, Any] | None:
        if self.is_running:
            logger.warning("Task already running, skipping this firing", task=self.name)
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        started = datetime.now(UTC)
        try:
            result = await self.body()
            self.last_result = result
            self.last_error = None
            logger.info(
                "Scheduled task completed",
                task=self.name,
                duration_seconds=round((datetime.now(UTC) - started).total_seconds(), 2),
                result=result,
            )
            return result
        except Exception as e:
            self.failure_count += 1
            self.last_error = f"{type(e).__name__}: {e}"
            logger.error(
                "Scheduled task failed", task=self.name, error=str(e), error_type=type(e).__name__
            )
            return None
        finally:
            self.run_count += 1
            self.last_run_time = started
            self.is_running = False

    async def loop(self, stop_event: asyncio.Event) -> None:
        if not self.run_on_start and await _wait(stop_event, self.interval_seconds):
            return
        while not stop_event.is_set():
            await self.run_once()
            if await _wait(stop_event, self.interval_seconds):
                return

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
        }


async def _wait(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; True if stop was requested meanwhile."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        return True
    except TimeoutError:
        return False


class LifecycleScheduler:
    def __init__(self, tasks: list[PeriodicTask], grace_seconds: float | None = None):
        self.tasks = {task.name: task for task in tasks}
        self.grace_seconds = (
            settings.SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        )
        self._stop_event = asyncio.Event()
        self._handles: list[asyncio.Task] = []

    @classmethod
    def for_pipeline(cls, pipeline: LifecyclePipeline) -> "LifecycleScheduler":
        hour, minute = 3600, 60
        return cls(
            [
                PeriodicTask(
                    "discovery_scan",
                    settings.DISCOVERY_INTERVAL_HOURS * hour,
                    pipeline.run_discovery_cycle,
                    run_on_start=True,
                ),
                PeriodicTask(
                    "batch_processing",
                    settings.BATCH_PROCESSING_INTERVAL_HOURS * hour,
                    pipeline.run_batch_processing,
                ),
                PeriodicTask(
                    "approval_sweep",
                    settings.APPROVAL_SWEEP_INTERVAL_HOURS * hour,
                    pipeline.run_approval_sweep,
                ),
                PeriodicTask(
                    "registration_processing",
                    settings.REGISTRATION_INTERVAL_MINUTES * minute,
                    pipeline.run_registration_processing,
                ),
                PeriodicTask(
                    "calendar_sync",
                    settings.CALENDAR_SYNC_INTERVAL_HOURS * hour,
                    pipeline.run_calendar_sync,
                ),
                PeriodicTask(
                    "daily_report",
                    settings.DAILY_REPORT_INTERVAL_HOURS * hour,
                    pipeline.run_daily_report,
                ),
                PeriodicTask(
                    "health_check",
                    settings.HEALTH_CHECK_INTERVAL_MINUTES * minute,
                    pipeline.run_health_check,
                ),
            ]
        )

    @property
    def running(self) -> bool:
        return any(not handle.done() for handle in self._handles)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._handles = [
            asyncio.create_task(task.loop(self._stop_event), name=f"lifecycle:{name}")
            for name, task in self.tasks.items()
        ]
        logger.info("Lifecycle scheduler started", tasks=sorted(self.tasks))

    async def stop(self) -> None:
        """Let in-flight runs finish within the grace period, then cancel the rest."""
        if not self._handles:
            return
        self._stop_event.set()
        done, pending = await asyncio.wait(self._handles, timeout=self.grace_seconds)
        for handle in pending:
            handle.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._handles = []
        logger.info("Lifecycle scheduler stopped", finished=len(done), cancelled=len(pending))

    async def run_task(self, name: str) -> dict[str, Any] | None:
        if name not in self.tasks:
            raise KeyError(name)
        return await self.tasks[name].run_once()

    async def run_forever(self) -> None:
        self.start()
        await self._stop_event.wait()
        await self.stop()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "tasks": [task.status() for task in self.tasks.values()],
        }
