from datetime import timedelta

import pytest

from app.features.event_lifecycle.domain.models import Location
from app.features.event_lifecycle.pipeline.dedup import DeduplicationService
from app.features.event_lifecycle.pipeline.filtering import EventFilter
from app.models.domain.calendar_domain import ConflictReport
from tests.conftest import NOW, make_event


class StubConflictChecker:
    def __init__(self, conflicts=(), warnings=()):
        self.conflict_starts = set(conflicts)
        self.warning_starts = set(warnings)
        self.checked = []

    async def conflicts(self, start, duration_minutes=None):
        self.checked.append(start)
        report = ConflictReport(has_conflict=start in self.conflict_starts)
        if start in self.warning_starts:
            report.add_warning("Overlaps 1 entries on calendar kids-school")
        return report


def _event(event_id, days, **overrides):
    overrides.setdefault("location", Location(name=f"Venue {event_id}"))
    return make_event(
        event_id, title=f"Event {event_id}", date=NOW + timedelta(days=days), **overrides
    )


@pytest.mark.asyncio
async def test_exclusion_reasons():
    busy_day = NOW + timedelta(days=4)
    checker = StubConflictChecker(conflicts=[busy_day])
    events = [
        _event("past", -1),
        _event("far", 90),
        _event("distant", 3, location=Location(name="Tahoe", distance_miles=180)),
        _event("busy", 4),
        _event("ok", 5),
    ]

    result = await EventFilter(DeduplicationService(), checker, 60, 30).filter_events(
        events, NOW
    )

    assert result.excluded == {
        "past": "in_past",
        "far": "too_far_ahead",
        "distant": "too_far_away",
        "busy": "calendar_conflict",
    }
    assert [event.id for event in result.viable] == ["ok"]
    assert len(result.deduplicated) == 5
    assert checker.checked == [busy_day, NOW + timedelta(days=5)]


@pytest.mark.asyncio
async def test_calendar_warnings_are_attached():
    warn_day = NOW + timedelta(days=2)
    checker = StubConflictChecker(warnings=[warn_day])

    result = await EventFilter(DeduplicationService(), checker).filter_events(
        [_event("warned", 2)], NOW
    )

    assert result.viable[0].calendar_warnings == ["Overlaps 1 entries on calendar kids-school"]
    assert result.deduplicated[0].calendar_warnings == result.viable[0].calendar_warnings


@pytest.mark.asyncio
async def test_undated_events_skip_calendar_check():
    checker = StubConflictChecker()

    result = await EventFilter(DeduplicationService(), checker).filter_events(
        [make_event("undated", date=None)], NOW
    )

    assert [event.id for event in result.viable] == ["undated"]
    assert checker.checked == []
