"""
Calendar conflict checking for candidate family events.
Wraps free/busy queries and turns them into a ConflictReport that the
event filter can act on.
"""

from datetime import datetime, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import ConflictReport
from app.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService

logger = get_logger(__name__)


class CalendarConflictChecker:
    """
    Checks an event slot against blocking and warning calendars.

    Never raises for backend trouble: an unreachable or forbidden calendar
    degrades to a warning with has_conflict=False.
    """

    def __init__(
        self,
        calendar_service: GoogleCalendarService,
        blocking_calendar_ids: list[str] | None = None,
        warning_calendar_ids: list[str] | None = None,
    ):
        self.calendar_service = calendar_service
        self.blocking_calendar_ids = list(
            blocking_calendar_ids
            if blocking_calendar_ids is not None
            else settings.CALENDAR_BLOCKING_IDS
        )
        self.warning_calendar_ids = [
            cal_id
            for cal_id in (
                warning_calendar_ids
                if warning_calendar_ids is not None
                else settings.CALENDAR_WARNING_IDS
            )
            if cal_id not in self.blocking_calendar_ids
        ]

    async def conflicts(self, start: datetime, duration_minutes: int | None = None) -> ConflictReport:
        duration = duration_minutes or settings.DEFAULT_EVENT_DURATION_MINUTES
        end = start + timedelta(minutes=duration)
        calendar_ids = self.blocking_calendar_ids + self.warning_calendar_ids
        report = ConflictReport(checked_start=start, checked_end=end)

        if not calendar_ids:
            return report

        if not self.calendar_service.configured:
            report.calendar_accessible = {cal_id: False for cal_id in calendar_ids}
            report.add_warning("Calendar access not configured; conflicts not checked")
            return report

        try:
            calendars = await self.calendar_service.free_busy(start, end, calendar_ids)
        except GoogleCalendarError as e:
            logger.warning(
                "Calendar conflict check failed, proceeding without it",
                error=str(e),
                status_code=e.status_code,
                access_denied=e.access_denied,
            )
            report.calendar_accessible = {cal_id: False for cal_id in calendar_ids}
            report.add_warning(f"Calendar check failed: {e}")
            return report

        for cal_id in calendar_ids:
            data = calendars.get(cal_id, {"busy": [], "errors": []})
            if data["errors"]:
                report.calendar_accessible[cal_id] = False
                report.add_warning(f"Calendar {cal_id} not accessible")
                continue

            report.calendar_accessible[cal_id] = True
            overlapping = [block for block in data["busy"] if block.overlaps(start, end)]
            if not overlapping:
                continue

            if cal_id in self.blocking_calendar_ids:
                report.blocking_conflicts.extend(overlapping)
            else:
                report.warning_conflicts.extend(overlapping)
                report.add_warning(f"Overlaps {len(overlapping)} entries on calendar {cal_id}")

        report.has_conflict = bool(report.blocking_conflicts)

        logger.debug(
            "Calendar conflict check complete",
            start=start.isoformat(),
            has_conflict=report.has_conflict,
            has_warning=report.has_warning,
        )
        return report
