"""
Daily summary and component health for the lifecycle.
"""

import math
import time
from datetime import UTC, datetime
from typing import Any

from app.features.event_lifecycle.approval.channels import ApprovalChannel
from app.features.event_lifecycle.domain.models import EventStatus
from app.features.event_lifecycle.errors import NotificationError
from app.features.event_lifecycle.registration.payment_guard import PaymentGuard
from app.features.event_lifecycle.repository.event_repository import EventStore
from app.infrastructure.observability.logging import get_logger, log_health_check

logger = get_logger(__name__)

UPCOMING_STATUSES = (EventStatus.APPROVED, EventStatus.BOOKED, EventStatus.SCHEDULED)


class ReportingService:
    def __init__(
        self,
        store: EventStore,
        guard: PaymentGuard,
        browser_pool=None,
        report_channel: ApprovalChannel | None = None,
    ):
        self.store = store
        self.guard = guard
        self.browser_pool = browser_pool
        self.report_channel = report_channel

    async def daily_report(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        counts = await self.store.status_counts()

        upcoming = []
        for status in UPCOMING_STATUSES:
            upcoming.extend(await self.store.get_events_by_status(status))

        free = [event for event in upcoming if event.is_free]
        paid = [event for event in upcoming if not event.is_free]
        awaiting_payment = [event for event in paid if event.status == EventStatus.APPROVED]
        guard_summary = self.guard.violation_summary()

        report = {
            "generated_at": now.isoformat(),
            "status_counts": counts,
            "upcoming_free": len(free),
            "upcoming_paid": len(paid),
            "pending_payment_total": round(
                sum(event.cost for event in awaiting_payment if math.isfinite(event.cost)), 2
            ),
            "guard_violations": guard_summary["total"],
        }
        logger.info("Daily report", **report)

        if self.report_channel is not None:
            try:
                await self.report_channel.send(
                    self._format(report, upcoming), subject=f"Family events report {now:%Y-%m-%d}"
                )
                report["emailed"] = True
            except NotificationError as e:
                logger.warning("Daily report email failed", error=e.message)
                report["emailed"] = False
        return report

    @staticmethod
    def _format(report: dict[str, Any], upcoming: list) -> str:
        lines = [f"Family events report ({report['generated_at'][:10]})", ""]
        for status, count in sorted(report["status_counts"].items()):
            lines.append(f"  {status}: {count}")
        lines.append("")
        lines.append(f"Upcoming: {report['upcoming_free']} free, {report['upcoming_paid']} paid")
        if report["pending_payment_total"]:
            lines.append(f"Awaiting manual payment: ${report['pending_payment_total']:.2f}")
        if report["guard_violations"]:
            lines.append(f"Payment guard refusals: {report['guard_violations']}")

        dated = sorted((e for e in upcoming if e.date), key=lambda e: e.date)
        if dated:
            lines.append("")
            for event in dated:
                cost = "FREE" if event.is_free else f"${event.cost:.2f}"
                lines.append(
                    f"- {event.date:%a %b %d %I:%M %p} {event.title} ({event.status.value}, {cost})"
                )
        return "\n".join(lines)

    async def health_report(self) -> dict[str, Any]:
        components: dict[str, Any] = {}

        start = time.time()
        try:
            db_ok = await self.store.ping()
            error = None
        except Exception as e:
            db_ok, error = False, str(e)
        latency_ms = round((time.time() - start) * 1000, 2)
        log_health_check("database", db_ok, latency_ms, error)
        components["database"] = {"healthy": db_ok, "latency_ms": latency_ms, "error": error}

        if self.browser_pool is not None:
            components["browser"] = self.browser_pool.health_check()

        guard_summary = self.guard.violation_summary()
        components["payment_guard"] = {
            "healthy": True,
            "violations": guard_summary["total"],
            "by_type": guard_summary["by_type"],
        }

        return {
            "healthy": all(c.get("healthy", False) for c in components.values()),
            "components": components,
        }
