"""
Service wiring for the lifecycle.

Everything is constructed once at process start and handed to the API and
the scheduler through this container; nothing in the lifecycle reaches for a
module-level service instance.
"""

import os
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from app.config import settings
from app.infrastructure.audit.audit_logger import AuditLogger
from app.infrastructure.observability.logging import get_logger
from app.services.calendar.google_client import GoogleCalendarService
from app.services.calendar.operations_service import CalendarConflictChecker
from app.services.calendar.sync_service import CalendarSyncService
from app.services.discovery_service import FeedScraperAggregator

from .approval import ApprovalService
from .approval.channels import EmailChannel, build_default_channels
from .pipeline.dedup import DeduplicationService
from .pipeline.filtering import EventFilter
from .pipeline.scoring import ScoringService
from .registration import BrowserPool, PaymentGuard, RegistrationService
from .repository.event_repository import EventRepository, EventStore
from .services import LifecyclePipeline, LifecycleScheduler, ReportingService

logger = get_logger(__name__)


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


@dataclass
class ServiceContainer:
    store: EventStore
    guard: PaymentGuard
    approval: ApprovalService
    registration: RegistrationService
    calendar_sync: CalendarSyncService
    pipeline: LifecyclePipeline
    scheduler: LifecycleScheduler
    reporting: ReportingService
    browser_pool: Any = None
    closeables: list[Any] = field(default_factory=list)
    terminate: Callable[[], None] = _terminate_process
    shutdown_requested: bool = False

    async def close(self) -> None:
        await self.scheduler.stop()
        for resource in self.closeables:
            try:
                await resource.close()
            except Exception as e:
                logger.warning(
                    "Error closing resource", resource=type(resource).__name__, error=str(e)
                )

    async def emergency_shutdown(self, reason: str = "operator_request") -> None:
        """Stop scheduling, release the browser and end the process."""
        if self.shutdown_requested:
            return
        self.shutdown_requested = True
        logger.warning("Emergency shutdown requested", reason=reason)
        await self.close()
        self.terminate()


def build_container() -> ServiceContainer:
    store = EventRepository()
    audit = AuditLogger()
    guard = PaymentGuard()
    browser_pool = BrowserPool()

    channels = build_default_channels()
    calendar_service = GoogleCalendarService(settings.GOOGLE_CALENDAR_ACCESS_TOKEN)
    aggregator = FeedScraperAggregator()

    report_channel = None
    if settings.RESEND_API_KEY and settings.REPORT_EMAIL_TO:
        report_channel = EmailChannel(
            settings.RESEND_API_KEY, settings.APPROVAL_EMAIL_FROM, settings.REPORT_EMAIL_TO
        )

    approval = ApprovalService(store, channels, audit=audit)
    registration = RegistrationService(store, guard, browser_pool, audit=audit)
    calendar_sync = CalendarSyncService(store, calendar_service)
    reporting = ReportingService(store, guard, browser_pool, report_channel)
    event_filter = EventFilter(DeduplicationService(), CalendarConflictChecker(calendar_service))

    pipeline = LifecyclePipeline(
        store=store,
        aggregator=aggregator,
        event_filter=event_filter,
        scorer=ScoringService(venue_history=store),
        approval=approval,
        registration=registration,
        calendar_sync=calendar_sync,
        reporting=reporting,
    )

    logger.info(
        "Lifecycle services built",
        channels=[channel.name for channel in channels],
        calendar_configured=calendar_service.configured,
        feeds=len(aggregator.feed_urls),
    )
    return ServiceContainer(
        store=store,
        guard=guard,
        approval=approval,
        registration=registration,
        calendar_sync=calendar_sync,
        pipeline=pipeline,
        scheduler=LifecycleScheduler.for_pipeline(pipeline),
        reporting=reporting,
        browser_pool=browser_pool,
        closeables=[browser_pool, calendar_service, aggregator, *channels],
    )
