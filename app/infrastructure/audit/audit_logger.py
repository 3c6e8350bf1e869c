"""
AuditLogger - evidence trail for lifecycle decisions.

Records who approved or rejected an event, every registration outcome and
every payment-guard refusal, so a booking (or a refusal to book) can be
explained after the fact.

Usage:
    from app.infrastructure.audit import audit_logger

    await audit_logger.log(
        event_id="evt_123",
        action="registration_safety_violation",
        resource_type="registration",
        actor="registration_service",
        metadata={"violations": ["cost:15.00"], "screenshot": "screenshots/evt_123-1.png"},
    )

Design Principles:
- Write to both database (immutable) and structured logs (searchable)
- Never fail the caller if audit logging fails
"""

from datetime import UTC, datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """
    Writes lifecycle evidence to:
    1. Database (audit_logs table) when the pool is up
    2. Structured logs (stdout) always
    """

    async def log(
        self,
        event_id: str | None,
        action: str,
        resource_type: str,
        actor: str = "system",
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log an audit entry.

        Returns:
            True if persisted, False otherwise (never raises)
        """
        logger.info(
            "Audit event",
            audit_action=action,
            event_id=event_id,
            resource_type=resource_type,
            actor=actor,
            metadata=metadata,
        )

        if not db_pool.initialized:
            return False

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO audit_logs (
                        event_id, action, resource_type, actor, metadata, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        event_id,
                        action,
                        resource_type,
                        actor,
                        Jsonb(metadata or {}),
                        datetime.now(UTC),
                    ),
                )
            return True

        except Exception as e:
            logger.error(
                "Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                audit_action=action,
                event_id=event_id,
                fallback_data={
                    "event_id": event_id,
                    "action": action,
                    "resource_type": resource_type,
                    "actor": actor,
                    "metadata": metadata,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            )
            return False

    async def log_decision(
        self, event_id: str, decision: str, actor: str, metadata: dict[str, Any] | None = None
    ) -> bool:
        """Approval, rejection, expiry or payment confirmation of an event."""
        return await self.log(
            event_id=event_id,
            action=f"event_{decision}",
            resource_type="approval",
            actor=actor,
            metadata=metadata,
        )

    async def log_registration(
        self, event_id: str, outcome: str, metadata: dict[str, Any] | None = None
    ) -> bool:
        return await self.log(
            event_id=event_id,
            action=f"registration_{outcome}",
            resource_type="registration",
            actor="registration_service",
            metadata=metadata,
        )

    async def log_operator_action(
        self, event_id: str | None, action: str, request_id: str | None = None, **extra
    ) -> bool:
        return await self.log(
            event_id=event_id,
            action=action,
            resource_type="operator",
            actor="api",
            metadata={"request_id": request_id, **extra},
        )


# Global instance
audit_logger = AuditLogger()
