"""
Human approval loop: dispatch, reply handling, reminders and timeouts.

State lives in the store (ApprovalRequest rows + event status), never in
memory, so a restart resumes the same pending requests. Every change goes
through a conditional update; a second sweep or a duplicate reply cannot
apply the same transition twice.
"""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import settings
from app.features.event_lifecycle.domain.models import (
    ApprovalRequest,
    ApprovalStatus,
    Event,
    EventStatus,
    ParsedResponse,
)
from app.features.event_lifecycle.errors import (
    EventNotFoundError,
    InvalidTransitionError,
    NotificationError,
)
from app.features.event_lifecycle.repository.event_repository import EventStore
from app.infrastructure.audit.audit_logger import AuditLogger
from app.infrastructure.observability.logging import get_logger

from .channels import ApprovalChannel
from .messages import (
    build_approval_message,
    build_decision_ack,
    build_payment_message,
    build_reminder_message,
)
from .response_parser import APPROVED, PAYMENT_CONFIRMED, REJECTED, UNCLEAR, parse_response

logger = get_logger(__name__)


class ApprovalService:
    def __init__(
        self,
        store: EventStore,
        channels: list[ApprovalChannel],
        audit: AuditLogger | None = None,
        timeout_hours: float | None = None,
        reminder_after_hours: float | None = None,
    ):
        self.store = store
        self.channels = list(channels)
        self.audit = audit or AuditLogger()
        self.timeout = timedelta(
            hours=settings.APPROVAL_TIMEOUT_HOURS if timeout_hours is None else timeout_hours
        )
        self.reminder_after = timedelta(
            hours=(
                settings.APPROVAL_REMINDER_AFTER_HOURS
                if reminder_after_hours is None
                else reminder_after_hours
            )
        )
        self._sweep_lock = asyncio.Lock()

    def select_channel(self) -> ApprovalChannel:
        """SMS when configured, email otherwise."""
        if not self.channels:
            raise NotificationError("No approval channel configured", channel="none")
        return self.channels[0]

    def _channel_named(self, name: str) -> ApprovalChannel | None:
        return next((channel for channel in self.channels if channel.name == name), None)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send_for_approval(self, event: Event, now: datetime | None = None) -> str:
        """
        Ask the family to approve a scored event.

        Returns the approval request id. Calling again while a request is
        pending returns the same id without sending anything.

        Raises:
            InvalidTransitionError: event is not in `scored`
            NotificationError: the channel could not deliver the message
        """
        now = now or datetime.now(UTC)

        existing = await self.store.get_pending_request(event.id)
        if existing:
            logger.debug("Approval already pending", event_id=event.id, request_id=existing.id)
            return existing.id

        if event.status != EventStatus.SCORED:
            raise InvalidTransitionError(
                event.id, event.status.value, EventStatus.PENDING_APPROVAL.value, "send_for_approval"
            )

        channel = self.select_channel()
        claim = ApprovalRequest(
            id=str(uuid.uuid4()),
            event_id=event.id,
            channel=channel.name,
            recipient=channel.recipient,
            sent_at=now,
            expires_at=now + self.timeout,
            remind_after=now + self.reminder_after,
        )
        # The pending row is claimed before sending; only the claimant sends
        request = await self.store.create_approval_request(claim)
        if request.id != claim.id:
            logger.debug("Approval already claimed", event_id=event.id, request_id=request.id)
            return request.id

        try:
            message_id = await channel.send(
                build_approval_message(event, now), subject=f"Approve family event: {event.title}"
            )
        except NotificationError:
            await self.store.release_request(request.id)
            raise
        await self.store.set_request_message_id(request.id, message_id)
        request.message_id = message_id

        if not await self.store.update_event_status(event.id, EventStatus.PENDING_APPROVAL):
            logger.warning("Event left scored before dispatch completed", event_id=event.id)

        logger.info(
            "Approval request sent",
            event_id=event.id,
            request_id=request.id,
            channel=channel.name,
            cost=event.cost,
        )
        await self.audit.log_decision(
            event.id,
            "sent_for_approval",
            actor="approval_service",
            metadata={"request_id": request.id, "channel": channel.name},
        )
        return request.id

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def check_timeouts(self, now: datetime | None = None) -> int:
        """Expire pending requests past their deadline. Returns how many expired."""
        now = now or datetime.now(UTC)
        expired = 0

        for request in await self.store.get_pending_requests():
            if request.expires_at > now:
                continue
            if not await self.store.expire_request(request.id, now):
                continue

            expired += 1
            await self.store.update_event_status(
                request.event_id,
                EventStatus.EXPIRED,
                from_statuses={EventStatus.PENDING_APPROVAL},
            )
            await self.audit.log_decision(
                request.event_id,
                "expired",
                actor="approval_sweep",
                metadata={"request_id": request.id},
            )

        if expired:
            logger.info("Expired approval requests", count=expired)
        return expired

    async def send_reminders(self, now: datetime | None = None) -> int:
        """Send the single reminder for requests past the reminder threshold."""
        now = now or datetime.now(UTC)
        sent = 0

        for request in await self.store.get_pending_requests():
            if request.reminders_sent > 0:
                continue
            if now < request.remind_after or now >= request.expires_at:
                continue

            channel = self._channel_named(request.channel)
            event = await self.store.get_event(request.event_id)
            if channel is None or event is None:
                continue

            # Claim before sending so a crash mid-send cannot produce a second reminder
            if not await self.store.record_reminder(request.id):
                continue

            try:
                await channel.send(
                    build_reminder_message(event), subject=f"Reminder: {event.title}"
                )
                sent += 1
            except NotificationError as e:
                logger.warning(
                    "Reminder send failed", event_id=event.id, request_id=request.id, error=str(e)
                )

        if sent:
            logger.info("Sent approval reminders", count=sent)
        return sent

    async def run_sweep(self, now: datetime | None = None) -> dict[str, Any]:
        if self._sweep_lock.locked():
            logger.info("Approval sweep already running, skipping")
            return {"skipped": True, "reason": "already_running"}

        async with self._sweep_lock:
            now = now or datetime.now(UTC)
            expired = await self.check_timeouts(now)
            reminders = await self.send_reminders(now)
            return {"expired": expired, "reminders": reminders}

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    async def handle_reply(
        self, channel_name: str, sender: str, text: str, now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Apply an inbound reply to the sender's newest open request.

        Unclear replies are stored for audit and change nothing.
        """
        now = now or datetime.now(UTC)
        parsed = parse_response(text)
        outcome: dict[str, Any] = {
            "status": parsed.status,
            "confidence": parsed.confidence,
            "event_id": None,
            "applied": False,
        }

        if parsed.status == PAYMENT_CONFIRMED:
            return await self._handle_payment_confirmation(sender, parsed, now, outcome)

        request = await self.store.latest_request_for_recipient(sender, {ApprovalStatus.PENDING})
        if request is None:
            logger.warning("Reply with no pending approval", channel=channel_name)
            return outcome

        outcome["event_id"] = request.event_id
        event = await self.store.get_event(request.event_id)

        if request.expires_at <= now:
            await self.check_timeouts(now)
            return outcome

        if parsed.status == UNCLEAR:
            await self.store.record_unclear_response(request.id, parsed.original_text, now)
            logger.info("Unclear approval reply", event_id=request.event_id)
            if event:
                await self._notify(request.channel, build_decision_ack(event, UNCLEAR))
            return outcome

        decision = APPROVED if parsed.approved else REJECTED
        applied = await self._apply_decision(request, decision, parsed, now, actor=channel_name)
        outcome["applied"] = applied

        if applied and event:
            await self._notify(request.channel, build_decision_ack(event, decision))
            if decision == APPROVED and not event.is_free:
                await self._notify(request.channel, build_payment_message(event))
        return outcome

    async def _handle_payment_confirmation(
        self, sender: str, parsed: ParsedResponse, now: datetime, outcome: dict[str, Any]
    ) -> dict[str, Any]:
        request = await self.store.latest_request_for_recipient(sender, {ApprovalStatus.APPROVED})
        if request is None:
            logger.warning("Payment confirmation with no approved request")
            return outcome

        outcome["event_id"] = request.event_id
        event = await self.store.get_event(request.event_id)
        if event is None or event.is_free or event.status != EventStatus.APPROVED:
            return outcome

        resolved = await self.store.resolve_request(
            request.id,
            ApprovalStatus.PAYMENT_CONFIRMED,
            response_text=parsed.original_text,
            parsed_decision=parsed.status,
            confidence=parsed.confidence,
            responded_at=now,
            from_status=ApprovalStatus.APPROVED,
        )
        if not resolved:
            return outcome

        outcome["applied"] = await self.store.update_event_status(
            event.id, EventStatus.BOOKED, from_statuses={EventStatus.APPROVED}
        )
        await self.audit.log_decision(
            event.id,
            "payment_confirmed",
            actor="family",
            metadata={"request_id": request.id, "cost": event.cost},
        )
        await self._notify(request.channel, build_decision_ack(event, PAYMENT_CONFIRMED))
        return outcome

    async def _apply_decision(
        self,
        request: ApprovalRequest,
        decision: str,
        parsed: ParsedResponse | None,
        now: datetime,
        actor: str,
    ) -> bool:
        status = ApprovalStatus.APPROVED if decision == APPROVED else ApprovalStatus.REJECTED
        resolved = await self.store.resolve_request(
            request.id,
            status,
            response_text=parsed.original_text if parsed else None,
            parsed_decision=decision,
            confidence=parsed.confidence if parsed else "operator",
            responded_at=now,
        )
        if not resolved:
            return False

        target = EventStatus.APPROVED if decision == APPROVED else EventStatus.REJECTED
        moved = await self.store.update_event_status(
            request.event_id, target, from_statuses={EventStatus.PENDING_APPROVAL}
        )
        await self.audit.log_decision(
            request.event_id, decision, actor=actor, metadata={"request_id": request.id}
        )
        return moved

    async def _notify(self, channel_name: str, body: str) -> None:
        channel = self._channel_named(channel_name)
        if channel is None:
            return
        try:
            await channel.send(body, subject="Family event update")
        except NotificationError as e:
            logger.warning("Follow-up message failed", channel=channel_name, error=str(e))

    # ------------------------------------------------------------------
    # Operator decisions
    # ------------------------------------------------------------------

    async def approve(self, event_id: str, actor: str = "operator") -> Event:
        return await self._operator_decision(event_id, APPROVED, actor)

    async def reject(self, event_id: str, actor: str = "operator") -> Event:
        return await self._operator_decision(event_id, REJECTED, actor)

    async def _operator_decision(self, event_id: str, decision: str, actor: str) -> Event:
        event = await self.store.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id, operation=decision)

        target = EventStatus.APPROVED if decision == APPROVED else EventStatus.REJECTED
        if event.status == target:
            return event

        now = datetime.now(UTC)
        pending = await self.store.get_pending_request(event_id)
        if pending:
            await self.store.resolve_request(
                pending.id,
                ApprovalStatus.APPROVED if decision == APPROVED else ApprovalStatus.REJECTED,
                response_text=None,
                parsed_decision=decision,
                confidence="operator",
                responded_at=now,
            )

        if not await self.store.update_event_status(event_id, target):
            raise InvalidTransitionError(event_id, event.status.value, target.value, decision)

        await self.audit.log_decision(event_id, decision, actor=actor)
        logger.info("Operator decision applied", event_id=event_id, decision=decision)
        return await self.store.get_event(event_id) or event
