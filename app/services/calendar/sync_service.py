"""
Calendar sync: booked family events are written to the primary calendar and
moved to `scheduled`.
"""

from datetime import timedelta
from typing import Any

from app.config import settings
from app.features.event_lifecycle.domain.models import Event, EventStatus
from app.features.event_lifecycle.errors import (
    BackendAccessError,
    EventNotFoundError,
    EventValidationError,
    InvalidTransitionError,
)
from app.features.event_lifecycle.repository.event_repository import EventStore
from app.infrastructure.observability.logging import get_logger
from app.services.calendar.google_client import (
    CALENDAR_PRIMARY,
    GoogleCalendarError,
    GoogleCalendarService,
)

logger = get_logger(__name__)


class CalendarSyncService:
    def __init__(
        self,
        store: EventStore,
        calendar_service: GoogleCalendarService,
        calendar_id: str = CALENDAR_PRIMARY,
        duration_minutes: int | None = None,
    ):
        self.store = store
        self.calendar_service = calendar_service
        self.calendar_id = calendar_id
        self.duration = timedelta(
            minutes=duration_minutes or settings.DEFAULT_EVENT_DURATION_MINUTES
        )

    async def sync_event(self, event_id: str) -> Event:
        """
        Put one booked event on the calendar.

        Already-scheduled events are returned unchanged.

        Raises:
            EventNotFoundError: unknown event
            InvalidTransitionError: event is not booked
            EventValidationError: event has no date
            BackendAccessError: calendar rejected our credentials
            GoogleCalendarError: any other calendar failure
        """
        event = await self.store.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id, operation="calendar_sync")
        if event.status == EventStatus.SCHEDULED and event.calendar_event_id:
            return event
        if event.status != EventStatus.BOOKED:
            raise InvalidTransitionError(
                event_id, event.status.value, EventStatus.SCHEDULED.value, "calendar_sync"
            )
        if event.date is None:
            raise EventValidationError(
                "Event has no date to schedule", event_id=event_id, operation="calendar_sync"
            )

        try:
            entry = await self.calendar_service.create_event(
                summary=event.title,
                start_time=event.date,
                end_time=event.date + self.duration,
                calendar_id=self.calendar_id,
                description=self._description(event),
                location=event.location.address or event.location.name,
                timezone_str=settings.CALENDAR_TIMEZONE,
            )
        except GoogleCalendarError as e:
            if e.access_denied:
                raise BackendAccessError(
                    f"Calendar access denied: {e}",
                    backend="google_calendar",
                    operation="calendar_sync",
                ) from e
            raise

        await self.store.set_calendar_event(event_id, entry.id)
        await self.store.update_event_status(
            event_id, EventStatus.SCHEDULED, from_statuses={EventStatus.BOOKED}
        )
        logger.info("Event added to calendar", event_id=event_id, calendar_event_id=entry.id)
        return await self.store.get_event(event_id) or event

    async def sync_booked_events(self) -> dict[str, Any]:
        if not self.calendar_service.configured:
            logger.info("Calendar not configured, skipping sync")
            return {"skipped": True, "reason": "calendar_not_configured"}

        metrics = {"synced": 0, "failed": 0, "skipped": 0}

        for event in await self.store.get_events_by_status(EventStatus.BOOKED):
            try:
                await self.sync_event(event.id)
                metrics["synced"] += 1
            except EventValidationError as e:
                metrics["skipped"] += 1
                logger.info("Event not synced", event_id=event.id, reason=e.message)
            except (BackendAccessError, GoogleCalendarError) as e:
                metrics["failed"] += 1
                logger.warning("Calendar sync failed", event_id=event.id, error=e.message)
        return metrics

    @staticmethod
    def _description(event: Event) -> str:
        lines = [event.description] if event.description else []
        if event.registration_url:
            lines.append(f"Registration: {event.registration_url}")
        if event.sources:
            lines.append(f"Sources: {', '.join(event.sources)}")
        return "\n\n".join(lines)
