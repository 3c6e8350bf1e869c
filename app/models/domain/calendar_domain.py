# app/models/domain/calendar_domain.py
"""
Calendar Domain Models
Busy blocks returned by free/busy queries, created calendar entries, and the
conflict report handed to the event filter.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class BusyPeriod:
    """One busy block from a free/busy response."""

    def __init__(self, calendar_id: str, data: dict):
        self.calendar_id = calendar_id
        self.start_time = _parse_iso(data.get("start"))
        self.end_time = _parse_iso(data.get("end"))

    def overlaps(self, start: datetime, end: datetime) -> bool:
        if not self.start_time or not self.end_time:
            return False
        return self.start_time < end and start < self.end_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "calendar_id": self.calendar_id,
            "start": self.start_time.isoformat() if self.start_time else None,
            "end": self.end_time.isoformat() if self.end_time else None,
        }


class CalendarEntry:
    """A calendar event created for a booked family event."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.summary = data.get("summary", "")
        self.html_link = data.get("htmlLink")
        self.start_time = _parse_iso(data.get("start", {}).get("dateTime"))
        self.end_time = _parse_iso(data.get("end", {}).get("dateTime"))
        self.raw_data = data


@dataclass
class ConflictReport:
    """
    Result of checking an event slot against the family calendars.

    Blocking conflicts come from primary calendars and remove the event from
    consideration; warning conflicts are informational. An inaccessible
    calendar is reported as a warning, never as a conflict.
    """

    has_conflict: bool = False
    has_warning: bool = False
    blocking_conflicts: list[BusyPeriod] = field(default_factory=list)
    warning_conflicts: list[BusyPeriod] = field(default_factory=list)
    calendar_accessible: dict[str, bool] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    checked_start: datetime | None = None
    checked_end: datetime | None = None

    def add_warning(self, message: str) -> None:
        self.has_warning = True
        self.warnings.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflict": self.has_conflict,
            "has_warning": self.has_warning,
            "blocking_conflicts": [block.to_dict() for block in self.blocking_conflicts],
            "warning_conflicts": [block.to_dict() for block in self.warning_conflicts],
            "calendar_accessible": dict(self.calendar_accessible),
            "warnings": list(self.warnings),
            "checked_time_range": {
                "start": self.checked_start.isoformat() if self.checked_start else None,
                "end": self.checked_end.isoformat() if self.checked_end else None,
            },
        }
