"""
Lifecycle pipeline: the task bodies the scheduler runs.

Each `run_*` method is one self-contained unit of work that returns a metrics
dict. They share nothing but the store, so any of them can fail without
affecting the others.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.event_lifecycle.approval import ApprovalService
from app.features.event_lifecycle.domain.models import Event, EventStatus
from app.features.event_lifecycle.errors import InvalidTransitionError, NotificationError
from app.features.event_lifecycle.pipeline.filtering import IN_PAST, EventFilter, FilterResult
from app.features.event_lifecycle.pipeline.scoring import ScoringService
from app.features.event_lifecycle.registration import RegistrationService
from app.features.event_lifecycle.repository.event_repository import EventStore
from app.infrastructure.observability.logging import get_logger
from app.services.calendar.sync_service import CalendarSyncService
from app.services.discovery_service import ScraperAggregator

from .reporting_service import ReportingService

logger = get_logger(__name__)


class LifecyclePipeline:
    def __init__(
        self,
        store: EventStore,
        aggregator: ScraperAggregator,
        event_filter: EventFilter,
        scorer: ScoringService,
        approval: ApprovalService,
        registration: RegistrationService,
        calendar_sync: CalendarSyncService,
        reporting: ReportingService,
        dispatch_top_n: int | None = None,
        max_approvals_per_cycle: int | None = None,
        dispatch_pacing_seconds: float | None = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.event_filter = event_filter
        self.scorer = scorer
        self.approval = approval
        self.registration = registration
        self.calendar_sync = calendar_sync
        self.reporting = reporting
        self.dispatch_top_n = dispatch_top_n or settings.DISPATCH_TOP_N
        self.max_approvals_per_cycle = (
            settings.MAX_APPROVALS_PER_CYCLE
            if max_approvals_per_cycle is None
            else max_approvals_per_cycle
        )
        self.dispatch_pacing_seconds = (
            settings.DISPATCH_PACING_SECONDS
            if dispatch_pacing_seconds is None
            else dispatch_pacing_seconds
        )

    async def run_discovery_cycle(self, now: datetime | None = None) -> dict[str, Any]:
        """discover -> filter (dedup, viability, conflicts) -> persist -> score -> dispatch"""
        now = now or datetime.now(UTC)
        raw_events = await self.aggregator.discover_all()
        events = self._parse_raw(raw_events)

        filtered = await self.event_filter.filter_events(events, now)
        actionable = await self.store.upsert_events(filtered.deduplicated)
        to_score = [event for event in filtered.viable if event.id in actionable]

        metrics = {
            "discovered": len(raw_events),
            "parsed": len(events),
            **filtered.to_dict(),
            "new_viable": len(to_score),
        }
        metrics["expired_past"] = await self._expire_past(filtered)
        metrics.update(await self._score_and_dispatch(to_score, now))
        logger.info("Discovery cycle complete", **metrics)
        return metrics

    async def run_batch_processing(self, now: datetime | None = None) -> dict[str, Any]:
        """Re-evaluate events left in `deduplicated` by earlier cycles."""
        now = now or datetime.now(UTC)
        pending = await self.store.get_events_by_status(EventStatus.DEDUPLICATED)
        if not pending:
            return {"pending": 0}

        filtered = await self.event_filter.filter_events(pending, now)
        metrics = {"pending": len(pending), **filtered.to_dict()}
        metrics["expired_past"] = await self._expire_past(filtered)
        metrics.update(await self._score_and_dispatch(filtered.viable, now))
        logger.info("Batch processing complete", **metrics)
        return metrics

    async def run_approval_sweep(self) -> dict[str, Any]:
        return await self.approval.run_sweep()

    async def run_registration_processing(self) -> dict[str, Any]:
        return await self.registration.process_approved_events()

    async def run_calendar_sync(self) -> dict[str, Any]:
        return await self.calendar_sync.sync_booked_events()

    async def run_daily_report(self) -> dict[str, Any]:
        return await self.reporting.daily_report()

    async def run_health_check(self) -> dict[str, Any]:
        return await self.reporting.health_report()

    async def _expire_past(self, filtered: FilterResult) -> int:
        """Retire events that passed while still unscored; batch runs stop reloading them."""
        expired = 0
        for event_id, reason in filtered.excluded.items():
            if reason != IN_PAST:
                continue
            if await self.store.update_event_status(
                event_id, EventStatus.EXPIRED, from_statuses={EventStatus.DEDUPLICATED}
            ):
                expired += 1
        return expired

    async def _score_and_dispatch(self, events: list[Event], now: datetime) -> dict[str, int]:
        scored = await self.scorer.score_events(events, now)
        for event in scored:
            await self.store.save_event_score(event.id, event.score_factors, event.score_error)

        dispatched = await self.dispatch_top(scored, now)
        return {
            "scored": len(scored),
            "score_errors": sum(1 for event in scored if event.score_error),
            "dispatched": dispatched,
        }

    async def dispatch_top(self, scored: list[Event], now: datetime | None = None) -> int:
        """
        Send the best-ranked events for approval.

        Looks at the top N only and stops at the per-cycle cap, pacing sends
        so notifications do not arrive in a burst.
        """
        sent = 0
        for event in scored[: self.dispatch_top_n]:
            if sent >= self.max_approvals_per_cycle:
                break
            if event.score_error:
                continue

            if sent and self.dispatch_pacing_seconds:
                await asyncio.sleep(self.dispatch_pacing_seconds)
            try:
                await self.approval.send_for_approval(event, now)
            except (NotificationError, InvalidTransitionError) as e:
                logger.warning("Approval dispatch failed", event_id=event.id, error=e.message)
                continue
            sent += 1

        if sent:
            logger.info("Dispatched approval requests", count=sent)
        return sent

    @staticmethod
    def _parse_raw(raw_events: list[dict[str, Any]]) -> list[Event]:
        local_tz = ZoneInfo(settings.CALENDAR_TIMEZONE)
        events = []
        for index, raw in enumerate(raw_events):
            try:
                events.append(Event.from_raw(raw, index=index, default_tz=local_tz))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping unreadable event payload", index=index, error=str(e))
        return events
