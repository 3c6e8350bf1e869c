"""
Google Calendar API client.

Only the two calls the lifecycle needs: free/busy for conflict checks and
event insertion for booked events. Token management is out of scope; the
client is handed a ready access token.
"""

import asyncio
from datetime import datetime
from typing import Any

import httpx

from app.features.event_lifecycle.errors import TransientIOError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import BusyPeriod, CalendarEntry

logger = get_logger(__name__)

CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"

REQUEST_TIMEOUT = 30  # seconds
MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
ACCESS_DENIED_STATUS_CODES = {401, 403}


class GoogleCalendarError(TransientIOError):
    """Calendar API failure. 401/403 are not recoverable; everything else is."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(
            message,
            operation="google_calendar",
            recoverable=status_code not in ACCESS_DENIED_STATUS_CODES,
        )
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}

    @property
    def access_denied(self) -> bool:
        return self.status_code in ACCESS_DENIED_STATUS_CODES


def _error_details(response: httpx.Response) -> tuple[str, str, dict]:
    try:
        payload = response.json() if response.text else {}
    except ValueError:
        payload = {}
    info = payload.get("error", {}) if isinstance(payload, dict) else {}
    if not isinstance(info, dict):
        info = {"message": str(info)}
    return (
        str(info.get("code", response.status_code)),
        info.get("message", f"HTTP {response.status_code}"),
        payload,
    )


class GoogleCalendarService:
    def __init__(self, access_token: str | None, client: httpx.AsyncClient | None = None):
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(REQUEST_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=2, max_connections=4),
        )

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, operation: str, method: str, path: str, payload: dict) -> dict:
        """
        Send one authorised JSON request and return the decoded body.

        Throttling and 5xx responses are retried with backoff; anything else
        that is not a success raises GoogleCalendarError.
        """
        if not self.access_token:
            raise GoogleCalendarError(
                "Calendar access token not configured", error_code="no_token", status_code=401
            )
        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}

        response: httpx.Response | None = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await self._client.request(
                    method, f"{CALENDAR_API_BASE_URL}{path}", headers=headers, json=payload
                )
            except httpx.RequestError as e:
                if attempt == MAX_ATTEMPTS:
                    raise GoogleCalendarError(f"Calendar API unreachable: {e}") from e
                logger.debug("Calendar request error, retrying", operation=operation, error=str(e))
            else:
                if response.status_code not in RETRY_STATUS_CODES or attempt == MAX_ATTEMPTS:
                    break
                logger.debug(
                    "Calendar API throttled, retrying",
                    operation=operation,
                    status_code=response.status_code,
                )
            await asyncio.sleep(BACKOFF_SECONDS * 2 ** (attempt - 1))

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        error_code, error_message, error_data = _error_details(response)
        logger.error(
            "Calendar API call failed",
            operation=operation,
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )
        raise GoogleCalendarError(
            f"Calendar {operation} failed: {error_message}",
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    async def free_busy(
        self, start_time: datetime, end_time: datetime, calendar_ids: list[str]
    ) -> dict[str, dict[str, Any]]:
        """
        Busy blocks for several calendars in one query.

        Returns:
            calendar id -> {"busy": [BusyPeriod], "errors": [...]}
        """
        data = await self._call(
            "free_busy",
            "POST",
            "/freeBusy",
            {
                "timeMin": start_time.isoformat(),
                "timeMax": end_time.isoformat(),
                "items": [{"id": cal_id} for cal_id in calendar_ids],
            },
        )
        result = {}
        for cal_id in calendar_ids:
            calendar = data.get("calendars", {}).get(cal_id, {})
            result[cal_id] = {
                "busy": [BusyPeriod(cal_id, block) for block in calendar.get("busy", [])],
                "errors": calendar.get("errors", []),
            }
        return result

    async def create_event(
        self,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        description: str = "",
        location: str = "",
        timezone_str: str = "UTC",
    ) -> CalendarEntry:
        entry = CalendarEntry(
            await self._call(
                "create_event",
                "POST",
                f"/calendars/{calendar_id}/events",
                {
                    "summary": summary,
                    "description": description,
                    "location": location,
                    "start": {"dateTime": start_time.isoformat(), "timeZone": timezone_str},
                    "end": {"dateTime": end_time.isoformat(), "timeZone": timezone_str},
                },
            )
        )
        logger.info(
            "Calendar event created",
            calendar_event_id=entry.id,
            calendar_id=calendar_id,
            start_time=start_time.isoformat(),
        )
        return entry
