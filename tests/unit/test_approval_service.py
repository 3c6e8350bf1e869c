import asyncio
from datetime import timedelta

import pytest

from app.features.event_lifecycle.approval import ApprovalService
from app.features.event_lifecycle.domain.models import ApprovalStatus, EventStatus
from app.features.event_lifecycle.errors import (
    EventNotFoundError,
    InvalidTransitionError,
    NotificationError,
)
from tests.conftest import NOW, RECIPIENT, FakeChannel, make_event


@pytest.mark.asyncio
async def test_send_for_approval_creates_pending_request(store, channel, approval_service, audit):
    event = store.add(make_event())

    request_id = await approval_service.send_for_approval(event, now=NOW)

    request = store.requests[request_id]
    assert request.status == ApprovalStatus.PENDING
    assert request.recipient == RECIPIENT
    assert request.expires_at == NOW + timedelta(hours=24)
    assert request.remind_after == NOW + timedelta(hours=12)
    assert store.status_of(event.id) == EventStatus.PENDING_APPROVAL
    assert len(channel.sent) == 1
    assert "Reply YES to book" in channel.sent[0]["body"]
    assert "event_sent_for_approval" in audit.actions()


@pytest.mark.asyncio
async def test_send_for_approval_is_idempotent(store, channel, approval_service):
    event = store.add(make_event())

    first = await approval_service.send_for_approval(event, now=NOW)
    second = await approval_service.send_for_approval(event, now=NOW)

    assert first == second
    assert len(store.requests) == 1
    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_concurrent_dispatch_sends_one_message(store, audit):
    class SlowChannel(FakeChannel):
        async def send(self, body, subject=None):
            await asyncio.sleep(0)
            return await super().send(body, subject=subject)

    channel = SlowChannel()
    service = ApprovalService(store, [channel], audit=audit)
    event = store.add(make_event())

    ids = await asyncio.gather(
        service.send_for_approval(event, now=NOW), service.send_for_approval(event, now=NOW)
    )

    assert ids[0] == ids[1]
    assert len(channel.sent) == 1
    assert len(store.requests) == 1
    assert store.requests[ids[0]].message_id == "msg-1"


@pytest.mark.asyncio
async def test_send_requires_scored_event(store, approval_service):
    event = store.add(make_event(status=EventStatus.DEDUPLICATED))

    with pytest.raises(InvalidTransitionError):
        await approval_service.send_for_approval(event, now=NOW)


@pytest.mark.asyncio
async def test_failed_send_leaves_event_scored(store, audit):
    service = ApprovalService(store, [FakeChannel(fail=True)], audit=audit)
    event = store.add(make_event())

    with pytest.raises(NotificationError):
        await service.send_for_approval(event, now=NOW)

    assert store.status_of(event.id) == EventStatus.SCORED
    assert store.requests == {}


@pytest.mark.asyncio
async def test_paid_event_message_flags_payment(store, channel, approval_service):
    event = store.add(make_event(cost=25.0))

    await approval_service.send_for_approval(event, now=NOW)

    assert "REQUIRES PAYMENT" in channel.sent[0]["body"]


@pytest.mark.asyncio
async def test_timeout_expires_exactly_once_without_reminders(store, channel, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    first = await approval_service.run_sweep(now=NOW + timedelta(hours=25))
    second = await approval_service.run_sweep(now=NOW + timedelta(hours=26))

    assert first == {"expired": 1, "reminders": 0}
    assert second == {"expired": 0, "reminders": 0}
    assert store.status_of(event.id) == EventStatus.EXPIRED
    assert store.transitions.count((event.id, "pending_approval", "expired")) == 1
    assert len(channel.sent) == 1


@pytest.mark.asyncio
async def test_single_reminder_after_threshold(store, channel, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    early = await approval_service.send_reminders(now=NOW + timedelta(hours=6))
    due = await approval_service.send_reminders(now=NOW + timedelta(hours=13))
    again = await approval_service.send_reminders(now=NOW + timedelta(hours=20))

    assert (early, due, again) == (0, 1, 0)
    assert len(channel.sent) == 2
    assert channel.sent[1]["body"].startswith("Reminder:")


@pytest.mark.asyncio
async def test_yes_reply_approves_free_event(store, channel, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    outcome = await approval_service.handle_reply(
        "sms", RECIPIENT, "YES", now=NOW + timedelta(hours=1)
    )

    assert outcome == {
        "status": "approved",
        "confidence": "high",
        "event_id": event.id,
        "applied": True,
    }
    assert store.status_of(event.id) == EventStatus.APPROVED
    assert len(channel.sent) == 2
    assert "approved and will be booked automatically" in channel.sent[1]["body"]


@pytest.mark.asyncio
async def test_no_reply_rejects_event(store, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    outcome = await approval_service.handle_reply("sms", RECIPIENT, "no thanks", now=NOW)

    assert outcome["status"] == "rejected"
    assert store.status_of(event.id) == EventStatus.REJECTED


@pytest.mark.asyncio
async def test_unclear_reply_changes_nothing(store, channel, approval_service):
    event = store.add(make_event())
    request_id = await approval_service.send_for_approval(event, now=NOW)

    outcome = await approval_service.handle_reply("sms", RECIPIENT, "maybe", now=NOW)

    assert outcome["status"] == "unclear"
    assert outcome["applied"] is False
    assert store.status_of(event.id) == EventStatus.PENDING_APPROVAL
    request = store.requests[request_id]
    assert request.status == ApprovalStatus.PENDING
    assert request.response_text == "maybe"
    assert "didn't understand" in channel.sent[-1]["body"]


@pytest.mark.asyncio
async def test_duplicate_reply_is_not_applied_twice(store, audit, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    await approval_service.handle_reply("sms", RECIPIENT, "yes", now=NOW)
    second = await approval_service.handle_reply("sms", RECIPIENT, "yes", now=NOW)

    assert second["applied"] is False
    assert audit.actions().count("event_approved") == 1


@pytest.mark.asyncio
async def test_reply_after_deadline_expires_request(store, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    outcome = await approval_service.handle_reply(
        "sms", RECIPIENT, "yes", now=NOW + timedelta(hours=30)
    )

    assert outcome["applied"] is False
    assert store.status_of(event.id) == EventStatus.EXPIRED


@pytest.mark.asyncio
async def test_paid_event_flow_ends_booked_after_payment(store, channel, approval_service):
    event = store.add(make_event(cost=25.0))
    request_id = await approval_service.send_for_approval(event, now=NOW)

    await approval_service.handle_reply("sms", RECIPIENT, "yes", now=NOW)
    assert store.status_of(event.id) == EventStatus.APPROVED
    assert "pay $25.00" in channel.sent[-1]["body"]

    outcome = await approval_service.handle_reply("sms", RECIPIENT, "PAID", now=NOW)

    assert outcome["status"] == "payment_confirmed"
    assert outcome["applied"] is True
    assert store.status_of(event.id) == EventStatus.BOOKED
    assert store.requests[request_id].status == ApprovalStatus.PAYMENT_CONFIRMED


@pytest.mark.asyncio
async def test_payment_confirmation_ignored_for_free_event(store, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)
    await approval_service.handle_reply("sms", RECIPIENT, "yes", now=NOW)

    outcome = await approval_service.handle_reply("sms", RECIPIENT, "paid", now=NOW)

    assert outcome["applied"] is False
    assert store.status_of(event.id) == EventStatus.APPROVED


@pytest.mark.asyncio
async def test_reply_from_unknown_sender_is_ignored(store, approval_service):
    event = store.add(make_event())
    await approval_service.send_for_approval(event, now=NOW)

    outcome = await approval_service.handle_reply("sms", "+19999999999", "yes", now=NOW)

    assert outcome["event_id"] is None
    assert store.status_of(event.id) == EventStatus.PENDING_APPROVAL


@pytest.mark.asyncio
async def test_operator_approval_resolves_pending_request(store, approval_service):
    event = store.add(make_event())
    request_id = await approval_service.send_for_approval(event, now=NOW)

    approved = await approval_service.approve(event.id, actor="api")

    assert approved.status == EventStatus.APPROVED
    assert store.requests[request_id].status == ApprovalStatus.APPROVED
    assert store.requests[request_id].confidence == "operator"


@pytest.mark.asyncio
async def test_operator_cannot_reject_booked_event(store, approval_service):
    event = store.add(make_event(status=EventStatus.BOOKED))

    with pytest.raises(InvalidTransitionError):
        await approval_service.reject(event.id)


@pytest.mark.asyncio
async def test_operator_decision_on_unknown_event(approval_service):
    with pytest.raises(EventNotFoundError):
        await approval_service.approve("missing")
