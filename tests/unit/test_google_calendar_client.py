import json
from datetime import timedelta

import httpx
import pytest

from app.services.calendar import google_client
from app.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService
from tests.conftest import NOW


def _service(handler, token="token-123") -> GoogleCalendarService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleCalendarService(token, client=client)


@pytest.mark.asyncio
async def test_free_busy_parses_blocks_per_calendar():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "calendars": {
                    "primary": {
                        "busy": [
                            {
                                "start": (NOW + timedelta(hours=1)).isoformat(),
                                "end": (NOW + timedelta(hours=2)).isoformat(),
                            }
                        ]
                    },
                    "kids-school": {"errors": [{"reason": "notFound"}]},
                }
            },
        )

    service = _service(handler)
    result = await service.free_busy(NOW, NOW + timedelta(hours=3), ["primary", "kids-school"])
    await service.close()

    assert seen["auth"] == "Bearer token-123"
    assert [item["id"] for item in seen["body"]["items"]] == ["primary", "kids-school"]
    assert len(result["primary"]["busy"]) == 1
    assert result["kids-school"] == {"busy": [], "errors": [{"reason": "notFound"}]}


@pytest.mark.asyncio
async def test_create_event_returns_entry():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/calendars/primary/events")
        return httpx.Response(200, json={"id": "gcal-42", "summary": "Storytime"})

    service = _service(handler)
    entry = await service.create_event("Storytime", NOW, NOW + timedelta(hours=2))
    await service.close()

    assert entry.id == "gcal-42"


@pytest.mark.asyncio
async def test_access_denied_is_not_recoverable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": {"code": 403, "message": "Forbidden"}})

    service = _service(handler)
    with pytest.raises(GoogleCalendarError) as exc_info:
        await service.free_busy(NOW, NOW + timedelta(hours=1), ["primary"])
    await service.close()

    assert exc_info.value.access_denied is True
    assert exc_info.value.recoverable is False
    assert "Forbidden" in exc_info.value.message


@pytest.mark.asyncio
async def test_throttled_request_is_retried(monkeypatch):
    monkeypatch.setattr(google_client, "BACKOFF_SECONDS", 0)
    responses = iter([httpx.Response(429), httpx.Response(200, json={"calendars": {}})])

    service = _service(lambda request: next(responses))
    result = await service.free_busy(NOW, NOW + timedelta(hours=1), ["primary"])
    await service.close()

    assert result == {"primary": {"busy": [], "errors": []}}


@pytest.mark.asyncio
async def test_missing_token_fails_without_a_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    service = _service(handler, token=None)

    assert service.configured is False
    with pytest.raises(GoogleCalendarError) as exc_info:
        await service.free_busy(NOW, NOW + timedelta(hours=1), ["primary"])
    await service.close()
    assert exc_info.value.access_denied is True
