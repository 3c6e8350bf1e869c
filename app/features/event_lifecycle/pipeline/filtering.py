"""
Viability filter: dedup, then drop what the family cannot attend.

Filtered-out events are still returned (as `deduplicated`) so they are
persisted for the record; only viable events move on to scoring.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Protocol

from app.config import settings
from app.features.event_lifecycle.domain.models import Event
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import ConflictReport

from .dedup import DeduplicationService

logger = get_logger(__name__)

IN_PAST = "in_past"


class ConflictChecker(Protocol):
    async def conflicts(
        self, start: datetime, duration_minutes: int | None = None
    ) -> ConflictReport: ...


@dataclass(slots=True)
class FilterResult:
    deduplicated: list[Event] = field(default_factory=list)
    viable: list[Event] = field(default_factory=list)
    excluded: dict[str, str] = field(default_factory=dict)  # event id -> reason

    def to_dict(self) -> dict[str, int]:
        return {
            "deduplicated": len(self.deduplicated),
            "viable": len(self.viable),
            "excluded": len(self.excluded),
        }


class EventFilter:
    def __init__(
        self,
        dedup: DeduplicationService,
        conflict_checker: ConflictChecker | None = None,
        max_advance_days: int | None = None,
        max_distance_miles: float | None = None,
    ):
        self.dedup = dedup
        self.conflict_checker = conflict_checker
        self.max_advance = timedelta(days=max_advance_days or settings.MAX_ADVANCE_DAYS)
        self.max_distance_miles = max_distance_miles or settings.MAX_DISTANCE_MILES

    async def filter_events(self, events: list[Event], now: datetime | None = None) -> FilterResult:
        now = now or datetime.now(UTC)
        result = FilterResult(deduplicated=self.dedup.deduplicate(events))

        for index, event in enumerate(result.deduplicated):
            reason = self._static_reason(event, now)
            if reason is None and self.conflict_checker is not None and event.date is not None:
                report = await self.conflict_checker.conflicts(event.date)
                if report.has_conflict:
                    reason = "calendar_conflict"
                elif report.warnings:
                    event = replace(event, calendar_warnings=list(report.warnings))
                    result.deduplicated[index] = event

            if reason:
                result.excluded[event.id] = reason
                continue
            result.viable.append(event)

        logger.info("Filtered discovered events", now=now.isoformat(), **result.to_dict())
        return result

    def _static_reason(self, event: Event, now: datetime) -> str | None:
        if event.date is not None:
            if event.date < now:
                return IN_PAST
            if event.date - now > self.max_advance:
                return "too_far_ahead"
        distance = event.location.distance_miles
        if distance is not None and distance > self.max_distance_miles:
            return "too_far_away"
        return None
