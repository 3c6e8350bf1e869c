"""
Persistence for events, approval requests and registration results.

Every status change is a single-row conditional UPDATE so concurrent tasks
cannot double-apply a transition, and re-applying the current status is a
no-op that still reports success.
"""

import math
from datetime import datetime
from typing import Any, Protocol

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val, with_db_retry
from app.db.pool import db_pool
from app.features.event_lifecycle.domain.models import (
    ALLOWED_TRANSITIONS,
    AgeRange,
    ApprovalRequest,
    ApprovalStatus,
    Capacity,
    Event,
    EventStatus,
    Location,
    RegistrationOutcome,
    RegistrationResult,
    ScoreFactors,
    SocialProof,
)
from app.infrastructure.observability.logging import get_logger, log_transition

logger = get_logger(__name__)

COST_FILTERS = {
    "free": "cost = 0",
    "under25": "cost < 25",
    "under50": "cost < 50",
}


class EventStore(Protocol):
    """Storage capability the lifecycle services depend on."""

    async def upsert_events(self, events: list[Event]) -> set[str]: ...

    async def get_event(self, event_id: str) -> Event | None: ...

    async def get_events_by_status(
        self, status: EventStatus, limit: int | None = None
    ) -> list[Event]: ...

    async def list_events(
        self,
        *,
        status: EventStatus | None = None,
        search: str | None = None,
        venue: str | None = None,
        cost: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Event], int]: ...

    async def update_event_status(
        self,
        event_id: str,
        status: EventStatus,
        *,
        from_statuses: set[EventStatus] | None = None,
    ) -> bool: ...

    async def save_event_score(
        self, event_id: str, factors: ScoreFactors, score_error: str | None
    ) -> None: ...

    async def set_calendar_event(self, event_id: str, calendar_event_id: str) -> None: ...

    async def is_venue_visited(self, venue_name: str) -> bool: ...

    async def status_counts(self) -> dict[str, int]: ...

    async def save_registration_result(self, result: RegistrationResult) -> bool: ...

    async def get_successful_registration(self, event_id: str) -> RegistrationResult | None: ...

    async def count_registration_attempts(self, event_id: str) -> int: ...

    async def create_approval_request(self, request: ApprovalRequest) -> ApprovalRequest: ...

    async def set_request_message_id(self, request_id: str, message_id: str | None) -> None: ...

    async def release_request(self, request_id: str) -> None: ...

    async def get_pending_request(self, event_id: str) -> ApprovalRequest | None: ...

    async def get_pending_requests(self) -> list[ApprovalRequest]: ...

    async def expire_request(self, request_id: str, now: datetime) -> bool: ...

    async def record_reminder(self, request_id: str) -> bool: ...

    async def resolve_request(
        self,
        request_id: str,
        status: ApprovalStatus,
        *,
        response_text: str | None,
        parsed_decision: str | None,
        confidence: str | None,
        responded_at: datetime,
        from_status: ApprovalStatus = ApprovalStatus.PENDING,
    ) -> bool: ...

    async def record_unclear_response(
        self, request_id: str, response_text: str, responded_at: datetime
    ) -> None: ...

    async def latest_request_for_recipient(
        self, recipient: str, statuses: set[ApprovalStatus]
    ) -> ApprovalRequest | None: ...

    async def ping(self) -> bool: ...


def allowed_sources(target: EventStatus) -> set[EventStatus]:
    """Statuses from which `target` may be entered, including itself."""
    sources = {status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets}
    sources.add(target)
    return sources


class EventRepository:
    """PostgreSQL implementation of EventStore."""

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def upsert_events(self, events: list[Event]) -> set[str]:
        """
        Insert new events and refresh descriptive fields of known ones.

        The status of an existing row is never touched. Returns the ids that
        are still awaiting scoring (status deduplicated).
        """
        actionable: set[str] = set()
        query = """
            INSERT INTO events (
                id, title, description, event_date, location_name, location_address,
                distance_miles, age_min, age_max, cost, registration_url, sources,
                alternate_urls, registration_opens, capacity_available, capacity_total,
                social_proof, is_recurring, status, calendar_warnings
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            ON CONFLICT (id) DO UPDATE SET
                description = EXCLUDED.description,
                sources = EXCLUDED.sources,
                alternate_urls = EXCLUDED.alternate_urls,
                cost = GREATEST(events.cost, EXCLUDED.cost),
                calendar_warnings = EXCLUDED.calendar_warnings,
                updated_at = NOW()
            RETURNING id, status
        """
        async with db_pool.transaction() as conn:
            for event in events:
                row = await fetch_one(query, self._event_params(event), connection=conn)
                if row and row["status"] == EventStatus.DEDUPLICATED.value:
                    actionable.add(row["id"])

        logger.debug("Upserted events", count=len(events), actionable=len(actionable))
        return actionable

    @with_db_retry()
    async def get_event(self, event_id: str) -> Event | None:
        row = await fetch_one("SELECT * FROM events WHERE id = %s", (event_id,))
        return _row_to_event(row) if row else None

    @with_db_retry()
    async def get_events_by_status(
        self, status: EventStatus, limit: int | None = None
    ) -> list[Event]:
        query = """
            SELECT * FROM events
            WHERE status = %s
            ORDER BY score_total DESC NULLS LAST, event_date ASC NULLS LAST
        """
        params: tuple = (status.value,)
        if limit:
            query += " LIMIT %s"
            params = (status.value, limit)
        rows = await fetch_all(query, params)
        return [_row_to_event(row) for row in rows]

    async def list_events(
        self,
        *,
        status: EventStatus | None = None,
        search: str | None = None,
        venue: str | None = None,
        cost: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Event], int]:
        clauses = []
        params: list[Any] = []

        if status:
            clauses.append("status = %s")
            params.append(status.value)
        if search:
            clauses.append("(title ILIKE %s OR description ILIKE %s)")
            params.extend([f"%{search}%", f"%{search}%"])
        if venue:
            clauses.append("location_name ILIKE %s")
            params.append(f"%{venue}%")
        if cost in COST_FILTERS:
            clauses.append(COST_FILTERS[cost])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        total = await fetch_val(f"SELECT COUNT(*) FROM events {where}", tuple(params)) or 0

        offset = (page - 1) * limit
        rows = await fetch_all(
            f"""
            SELECT * FROM events {where}
            ORDER BY score_total DESC NULLS LAST, event_date ASC NULLS LAST
            LIMIT %s OFFSET %s
            """,
            (*params, limit, offset),
        )
        return [_row_to_event(row) for row in rows], int(total)

    async def update_event_status(
        self,
        event_id: str,
        status: EventStatus,
        *,
        from_statuses: set[EventStatus] | None = None,
    ) -> bool:
        """
        Conditionally move an event to `status`.

        Returns True when the row now holds `status` (including when it already
        did), False when the current status does not permit the move.
        """
        sources = set(from_statuses) if from_statuses else allowed_sources(status)
        sources.add(status)

        row = await fetch_one(
            """
            WITH previous AS (
                SELECT status FROM events WHERE id = %s FOR UPDATE
            )
            UPDATE events SET status = %s, updated_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            RETURNING (SELECT status FROM previous) AS previous_status
            """,
            (event_id, status.value, event_id, [s.value for s in sources]),
        )
        if not row:
            return False

        if row["previous_status"] != status.value:
            log_transition(event_id, row["previous_status"], status.value)
        return True

    async def save_event_score(
        self, event_id: str, factors: ScoreFactors, score_error: str | None
    ) -> None:
        await execute_query(
            """
            UPDATE events
            SET score_factors = %s,
                score_total = %s,
                score_error = %s,
                status = CASE WHEN status = %s THEN %s ELSE status END,
                updated_at = NOW()
            WHERE id = %s
            """,
            (
                Jsonb(factors.to_dict()),
                factors.total,
                score_error,
                EventStatus.DEDUPLICATED.value,
                EventStatus.SCORED.value,
                event_id,
            ),
        )

    async def set_calendar_event(self, event_id: str, calendar_event_id: str) -> None:
        await execute_query(
            "UPDATE events SET calendar_event_id = %s, updated_at = NOW() WHERE id = %s",
            (calendar_event_id, event_id),
        )

    async def is_venue_visited(self, venue_name: str) -> bool:
        count = await fetch_val(
            """
            SELECT COUNT(*) FROM events
            WHERE status = %s AND LOWER(location_name) = LOWER(%s)
            """,
            (EventStatus.ATTENDED.value, venue_name),
        )
        return bool(count)

    async def status_counts(self) -> dict[str, int]:
        rows = await fetch_all("SELECT status, COUNT(*) AS count FROM events GROUP BY status")
        return {row["status"]: int(row["count"]) for row in rows}

    async def ping(self) -> bool:
        return await fetch_val("SELECT 1") == 1

    # ------------------------------------------------------------------
    # Registration results
    # ------------------------------------------------------------------

    async def save_registration_result(self, result: RegistrationResult) -> bool:
        """Insert once per (event_id, attempt). Returns False if the row already existed."""
        affected = await execute_query(
            """
            INSERT INTO registration_results (
                event_id, attempt, outcome, confirmation_number, error_message,
                screenshot_ref, payment_required, payment_amount, violations
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (event_id, attempt) DO NOTHING
            """,
            (
                result.event_id,
                result.attempt,
                result.outcome.value,
                result.confirmation_number,
                result.error_message,
                result.screenshot_ref,
                result.payment_required,
                result.payment_amount,
                Jsonb(result.violations),
            ),
        )
        return affected > 0

    async def get_successful_registration(self, event_id: str) -> RegistrationResult | None:
        row = await fetch_one(
            """
            SELECT * FROM registration_results
            WHERE event_id = %s AND outcome = %s
            ORDER BY attempt DESC
            LIMIT 1
            """,
            (event_id, RegistrationOutcome.SUCCESS.value),
        )
        return _row_to_result(row) if row else None

    async def count_registration_attempts(self, event_id: str) -> int:
        count = await fetch_val(
            "SELECT COALESCE(MAX(attempt), 0) FROM registration_results WHERE event_id = %s",
            (event_id,),
        )
        return int(count or 0)

    # ------------------------------------------------------------------
    # Approval requests
    # ------------------------------------------------------------------

    async def create_approval_request(self, request: ApprovalRequest) -> ApprovalRequest:
        """Insert a pending request; returns the existing one if the event already has one."""
        row = await fetch_one(
            """
            INSERT INTO approval_requests (
                id, event_id, channel, recipient, message_id, sent_at,
                expires_at, remind_after, reminders_sent, status
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (event_id) WHERE status = 'pending' DO NOTHING
            RETURNING *
            """,
            (
                request.id,
                request.event_id,
                request.channel,
                request.recipient,
                request.message_id,
                request.sent_at,
                request.expires_at,
                request.remind_after,
                request.reminders_sent,
                request.status.value,
            ),
        )
        if row:
            return _row_to_request(row)

        existing = await self.get_pending_request(request.event_id)
        return existing or request

    async def set_request_message_id(self, request_id: str, message_id: str | None) -> None:
        await execute_query(
            "UPDATE approval_requests SET message_id = %s WHERE id = %s",
            (message_id, request_id),
        )

    async def release_request(self, request_id: str) -> None:
        """Drop a claimed request whose message never went out."""
        await execute_query(
            "DELETE FROM approval_requests WHERE id = %s AND status = %s",
            (request_id, ApprovalStatus.PENDING.value),
        )

    async def get_pending_request(self, event_id: str) -> ApprovalRequest | None:
        row = await fetch_one(
            "SELECT * FROM approval_requests WHERE event_id = %s AND status = %s",
            (event_id, ApprovalStatus.PENDING.value),
        )
        return _row_to_request(row) if row else None

    async def get_pending_requests(self) -> list[ApprovalRequest]:
        rows = await fetch_all(
            "SELECT * FROM approval_requests WHERE status = %s ORDER BY sent_at ASC",
            (ApprovalStatus.PENDING.value,),
        )
        return [_row_to_request(row) for row in rows]

    async def expire_request(self, request_id: str, now: datetime) -> bool:
        affected = await execute_query(
            """
            UPDATE approval_requests SET status = %s
            WHERE id = %s AND status = %s AND expires_at <= %s
            """,
            (ApprovalStatus.EXPIRED.value, request_id, ApprovalStatus.PENDING.value, now),
        )
        return affected > 0

    async def record_reminder(self, request_id: str) -> bool:
        affected = await execute_query(
            """
            UPDATE approval_requests SET reminders_sent = reminders_sent + 1
            WHERE id = %s AND status = %s AND reminders_sent = 0
            """,
            (request_id, ApprovalStatus.PENDING.value),
        )
        return affected > 0

    async def resolve_request(
        self,
        request_id: str,
        status: ApprovalStatus,
        *,
        response_text: str | None,
        parsed_decision: str | None,
        confidence: str | None,
        responded_at: datetime,
        from_status: ApprovalStatus = ApprovalStatus.PENDING,
    ) -> bool:
        affected = await execute_query(
            """
            UPDATE approval_requests
            SET status = %s, response_text = %s, parsed_decision = %s,
                confidence = %s, responded_at = %s
            WHERE id = %s AND status = %s
            """,
            (
                status.value,
                response_text,
                parsed_decision,
                confidence,
                responded_at,
                request_id,
                from_status.value,
            ),
        )
        return affected > 0

    async def record_unclear_response(
        self, request_id: str, response_text: str, responded_at: datetime
    ) -> None:
        await execute_query(
            """
            UPDATE approval_requests
            SET response_text = %s, parsed_decision = 'unclear', confidence = 'low',
                responded_at = %s
            WHERE id = %s
            """,
            (response_text, responded_at, request_id),
        )

    async def latest_request_for_recipient(
        self, recipient: str, statuses: set[ApprovalStatus]
    ) -> ApprovalRequest | None:
        row = await fetch_one(
            """
            SELECT * FROM approval_requests
            WHERE recipient = %s AND status = ANY(%s)
            ORDER BY sent_at DESC
            LIMIT 1
            """,
            (recipient, [s.value for s in statuses]),
        )
        return _row_to_request(row) if row else None

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _event_params(event: Event) -> tuple:
        proof = event.social_proof
        return (
            event.id,
            event.title,
            event.description or "",
            event.date,
            event.location.name,
            event.location.address,
            event.location.distance_miles,
            event.age_range.min if event.age_range else None,
            event.age_range.max if event.age_range else None,
            event.cost,
            event.registration_url,
            Jsonb(event.sources),
            Jsonb(event.alternate_urls),
            event.registration_opens,
            event.capacity.available if event.capacity else None,
            event.capacity.total if event.capacity else None,
            Jsonb(
                {
                    "yelp_rating": proof.yelp_rating,
                    "google_rating": proof.google_rating,
                    "instagram_posts": proof.instagram_posts,
                    "influencer_mentions": proof.influencer_mentions,
                }
            )
            if proof
            else None,
            event.is_recurring,
            event.status.value,
            Jsonb(event.calendar_warnings),
        )


def _row_to_event(row: dict[str, Any]) -> Event:
    factors = row.get("score_factors")
    proof = row.get("social_proof")
    cost = row.get("cost")
    return Event(
        id=row["id"],
        title=row["title"],
        description=row.get("description") or "",
        date=row.get("event_date"),
        location=Location(
            name=row.get("location_name") or "",
            address=row.get("location_address") or "",
            distance_miles=row.get("distance_miles"),
        ),
        age_range=(
            AgeRange(min=row["age_min"], max=row["age_max"])
            if row.get("age_min") is not None and row.get("age_max") is not None
            else None
        ),
        cost=float(cost) if cost is not None else math.nan,
        registration_url=row.get("registration_url"),
        sources=list(row.get("sources") or []),
        alternate_urls=list(row.get("alternate_urls") or []),
        registration_opens=row.get("registration_opens"),
        capacity=(
            Capacity(available=row["capacity_available"], total=row["capacity_total"])
            if row.get("capacity_total")
            else None
        ),
        social_proof=SocialProof(**proof) if proof else None,
        is_recurring=bool(row.get("is_recurring")),
        status=EventStatus(row["status"]),
        score_factors=ScoreFactors(**factors) if factors else None,
        score_error=row.get("score_error"),
        calendar_warnings=list(row.get("calendar_warnings") or []),
        calendar_event_id=row.get("calendar_event_id"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_request(row: dict[str, Any]) -> ApprovalRequest:
    return ApprovalRequest(
        id=row["id"],
        event_id=row["event_id"],
        channel=row["channel"],
        recipient=row["recipient"],
        message_id=row.get("message_id"),
        sent_at=row["sent_at"],
        expires_at=row["expires_at"],
        remind_after=row["remind_after"],
        reminders_sent=row.get("reminders_sent") or 0,
        status=ApprovalStatus(row["status"]),
        response_text=row.get("response_text"),
        parsed_decision=row.get("parsed_decision"),
        confidence=row.get("confidence"),
        responded_at=row.get("responded_at"),
    )


def _row_to_result(row: dict[str, Any]) -> RegistrationResult:
    return RegistrationResult(
        event_id=row["event_id"],
        attempt=row["attempt"],
        outcome=RegistrationOutcome(row["outcome"]),
        confirmation_number=row.get("confirmation_number"),
        error_message=row.get("error_message"),
        screenshot_ref=row.get("screenshot_ref"),
        payment_required=bool(row.get("payment_required")),
        payment_amount=row.get("payment_amount"),
        violations=list(row.get("violations") or []),
        created_at=row.get("created_at"),
    )
