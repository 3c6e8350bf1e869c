"""
End-to-end tests of the operator API against in-memory services.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from app.features.event_lifecycle.domain.models import EventStatus
from app.main import create_app
from tests.conftest import RECIPIENT, make_event


@pytest.fixture
def client(service_container, api_key):
    return TestClient(create_app(container=service_container))


@pytest.fixture
def headers(api_key):
    return {"X-API-Key": api_key}


def test_missing_api_key_is_unauthorized(client):
    response = client.get("/events")

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "API key required"}


def test_wrong_api_key_is_forbidden(client):
    response = client.get("/events", headers={"X-API-Key": "nope"})

    assert response.status_code == 403


def test_bearer_token_is_accepted(client, api_key):
    response = client.get("/events", headers={"Authorization": f"Bearer {api_key}"})

    assert response.status_code == 200


def test_list_events_paginates(client, headers, store):
    for i in range(3):
        store.add(make_event(f"evt_{i}"))

    response = client.get("/events", params={"limit": 2, "page": 1}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert len(body["data"]) == 2
    assert body["pagination"] == {
        "currentPage": 1,
        "totalPages": 2,
        "totalEvents": 3,
        "limit": 2,
        "hasNextPage": True,
        "hasPrevPage": False,
    }


def test_list_events_filters_by_status(client, headers, store):
    store.add(make_event("scored"))
    store.add(make_event("booked", status=EventStatus.BOOKED))

    response = client.get("/events", params={"status": "booked"}, headers=headers)

    assert [event["id"] for event in response.json()["data"]] == ["booked"]


def test_list_events_rejects_unknown_status(client, headers):
    response = client.get("/events", params={"status": "teleported"}, headers=headers)

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_invalid_query_parameter_is_bad_request(client, headers):
    response = client.get("/events", params={"limit": 500}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid request:")


def test_get_unknown_event_is_not_found(client, headers):
    response = client.get("/events/missing", headers=headers)

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_get_event(client, headers, store):
    store.add(make_event())

    response = client.get("/events/evt_1", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["title"] == "Storytime Science for Kids"


def test_bulk_action_reports_each_event(client, headers, store):
    store.add(make_event("scored"))
    store.add(make_event("booked", status=EventStatus.BOOKED))

    response = client.post(
        "/events/bulk-action",
        json={"action": "approve", "eventIds": ["scored", "booked", "missing"]},
        headers=headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["processed"], data["succeeded"], data["failed"]) == (3, 1, 2)
    results = {item["eventId"]: item for item in data["results"]}
    assert results["scored"]["status"] == "approved"
    assert results["booked"]["success"] is False
    assert results["missing"]["success"] is False
    assert store.status_of("booked") == EventStatus.BOOKED


@pytest.mark.parametrize(
    "body",
    [
        {"action": "approve", "eventIds": []},
        {"action": "delete", "eventIds": ["evt_1"]},
        {"eventIds": ["evt_1"]},
    ],
)
def test_bulk_action_validation(client, headers, body):
    response = client.post("/events/bulk-action", json=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_approve_and_reject(client, headers, store):
    store.add(make_event("yes"))
    store.add(make_event("no"))

    approved = client.post("/events/yes/approve", headers=headers)
    rejected = client.post("/events/no/reject", headers=headers)

    assert approved.json()["data"]["status"] == "approved"
    assert rejected.json()["data"]["status"] == "rejected"


def test_rejecting_booked_event_is_bad_request(client, headers, store):
    store.add(make_event(status=EventStatus.BOOKED))

    response = client.post("/events/evt_1/reject", headers=headers)

    assert response.status_code == 400
    assert store.status_of("evt_1") == EventStatus.BOOKED


def test_register_free_event(client, headers, store):
    store.add(make_event(status=EventStatus.APPROVED))

    response = client.post("/events/evt_1/register", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["confirmation_number"] == "ABC12345"
    assert store.status_of("evt_1") == EventStatus.BOOKED


def test_register_paid_event_is_refused(client, headers, store, browser_pool):
    store.add(make_event(status=EventStatus.APPROVED, cost=25.0))

    response = client.post("/events/evt_1/register", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["data"]["outcome"] == "safety_violation"
    assert body["data"]["payment_required"] is True
    assert browser_pool.acquired == 0


def test_add_to_calendar(client, headers, store):
    store.add(make_event(status=EventStatus.BOOKED))

    response = client.post("/events/evt_1/calendar", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "scheduled"
    assert data["calendar_event_id"] == "cal-1"


def test_approval_reply(client, headers, store, service_container, channel):
    event = store.add(make_event())
    asyncio.run(service_container.approval.send_for_approval(event))

    response = client.post(
        "/approvals/reply",
        json={"channel": "sms", "sender": RECIPIENT, "text": "YES"},
        headers=headers,
    )

    assert response.status_code == 200
    outcome = response.json()["data"]
    assert outcome["applied"] is True
    assert outcome["event_id"] == event.id
    assert store.status_of(event.id) == EventStatus.APPROVED
    assert len(channel.sent) == 2


def test_emergency_shutdown(client, headers, service_container, terminations):
    response = client.post(
        "/emergency-shutdown", json={"reason": "wrong venue booked"}, headers=headers
    )

    assert response.status_code == 202
    assert response.json()["data"] == {
        "message": "Shutdown initiated",
        "reason": "wrong venue booked",
    }
    assert service_container.shutdown_requested is True
    assert terminations == [True]
