"""
Payment guard: the service must never commit money on its own.

The authoritative check is the event's cost field. Page inspection
(keywords, payment inputs, payment iframes, visible prices) is a second line
of defence that fails closed: if the page cannot be inspected, it is treated
as unsafe.
"""

import math
import re
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.features.event_lifecycle.domain.models import Event
from app.features.event_lifecycle.errors import SafetyViolation
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PAYMENT_KEYWORDS = [
    "credit card",
    "payment",
    "checkout",
    "billing",
    "purchase",
    "visa",
    "mastercard",
    "amex",
    "paypal",
    "stripe",
    "square",
    "cvv",
    "security code",
    "expiry",
    "expiration",
    "card number",
]

PAYMENT_FIELD_SELECTORS = [
    'input[name*="card"]',
    'input[name*="credit"]',
    'input[name*="payment"]',
    'input[placeholder*="card"]',
    'input[placeholder*="payment"]',
    'input[id*="card"]',
    'input[id*="payment"]',
    'input[autocomplete^="cc-"]',
    ".payment-form",
    ".credit-card",
    '[class*="payment"]',
    '[class*="checkout"]',
]

PAYMENT_IFRAME_SELECTORS = [
    'iframe[src*="stripe"]',
    'iframe[src*="paypal"]',
    'iframe[src*="squareup"]',
    'iframe[src*="braintree"]',
]

PRICE_SELECTORS = [
    ".price",
    ".cost",
    ".amount",
    ".total",
    ".fee",
    '[class*="price"]',
    '[class*="cost"]',
    '[class*="amount"]',
    '[class*="total"]',
    '[class*="fee"]',
]

SENSITIVE_FIELD_MARKERS = ["card", "credit", "payment", "cvv", "ssn", "account"]

PRICE_PATTERN = re.compile(r"(?:\$|usd\s*)(\d+(?:,\d{3})*(?:\.\d{2})?)", re.IGNORECASE)
_KEYWORD_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(keyword) for keyword in PAYMENT_KEYWORDS) + r")"
)  # prefix match so "payments" and "checkouts" count

RECENT_VIOLATIONS = 10


@dataclass(slots=True)
class GuardDecision:
    safe: bool
    violations: list[str] = field(default_factory=list)
    payment_amount: float | None = None

    def raise_if_unsafe(self, event_id: str | None = None) -> None:
        if not self.safe:
            raise SafetyViolation(
                "Payment guard refused to proceed: " + "; ".join(self.violations),
                event_id=event_id,
                violations=self.violations,
                payment_amount=self.payment_amount,
            )


def extract_price(text: str) -> float | None:
    match = PRICE_PATTERN.search(text or "")
    if not match:
        return None
    return float(match.group(1).replace(",", ""))


class PaymentGuard:
    def __init__(self, history_size: int | None = None):
        self._history: deque[dict[str, Any]] = deque(
            maxlen=history_size or settings.GUARD_VIOLATION_HISTORY
        )
        self._counts: Counter[str] = Counter()

    def check_event_cost(self, event: Event) -> GuardDecision:
        """Authoritative check. Any positive or unreadable cost is refused."""
        cost = event.cost
        if cost is None or not math.isfinite(cost) or cost < 0:
            self._record("INVALID_COST", f"Event has invalid cost: {cost}", event)
            return GuardDecision(safe=False, violations=[f"invalid_cost:{cost}"])

        if cost > 0:
            self._record("PAID_EVENT", f"Event requires payment: ${cost:.2f}", event)
            return GuardDecision(
                safe=False, violations=[f"cost:{cost:.2f}"], payment_amount=cost
            )

        return GuardDecision(safe=True)

    async def inspect_page(self, page, event: Event | None = None) -> GuardDecision:
        """
        Look for payment signals on a live registration page.

        Any keyword, payment input, payment iframe or positive price is a
        violation, with or without an extractable amount.
        """
        violations: list[str] = []
        amount: float | None = None

        try:
            body_text = (await page.inner_text("body")).lower()
            for keyword in sorted(set(_KEYWORD_PATTERN.findall(body_text))):
                violations.append(f"keyword:{keyword}")

            for selector in PAYMENT_FIELD_SELECTORS:
                if await page.query_selector_all(selector):
                    violations.append(f"field:{selector}")

            for selector in PAYMENT_IFRAME_SELECTORS:
                if await page.query_selector_all(selector):
                    violations.append(f"iframe:{selector}")

            for selector in PRICE_SELECTORS:
                for element in await page.query_selector_all(selector):
                    price = extract_price(await element.inner_text())
                    if price and price > 0:
                        violations.append(f"price:{price:.2f}")
                        amount = max(amount or 0.0, price)

        except Exception as e:
            logger.error("Registration page inspection failed", error=str(e))
            self._record("VALIDATION_ERROR", f"Page inspection failed: {e}", event)
            return GuardDecision(safe=False, violations=[f"inspection_error:{e}"])

        if violations:
            self._record(
                "PAYMENT_PAGE_DETECTED",
                "Payment elements detected on registration page",
                event,
                details=violations,
            )
            return GuardDecision(safe=False, violations=violations, payment_amount=amount)

        return GuardDecision(safe=True)

    def validate_form_fields(self, field_names: list[str]) -> None:
        """
        Refuse to fill anything that looks like payment or identity data.

        Raises:
            SafetyViolation: on the first sensitive field name
        """
        for name in field_names:
            lowered = (name or "").lower()
            if any(marker in lowered for marker in SENSITIVE_FIELD_MARKERS):
                self._record("SENSITIVE_FORM_DATA", f"Refused to fill sensitive field: {name}")
                raise SafetyViolation(
                    f"Refusing to fill sensitive field: {name}",
                    violations=[f"sensitive_field:{name}"],
                )

    def _record(
        self,
        violation_type: str,
        message: str,
        event: Event | None = None,
        details: list[str] | None = None,
    ) -> None:
        entry = {
            "type": violation_type,
            "message": message,
            "timestamp": datetime.now(UTC).isoformat(),
            "event": (
                {"id": event.id, "title": event.title, "cost": event.cost} if event else None
            ),
            "details": details,
        }
        self._history.append(entry)
        self._counts[violation_type] += 1
        logger.warning(
            "Payment guard violation",
            violation_type=violation_type,
            message=message,
            event_id=event.id if event else None,
            details=details,
        )

    def violation_summary(self) -> dict[str, Any]:
        return {
            "total": sum(self._counts.values()),
            "by_type": dict(self._counts),
            "recent": list(self._history)[-RECENT_VIOLATIONS:],
        }

    def clear_violations(self) -> int:
        count = len(self._history)
        self._history.clear()
        self._counts.clear()
        logger.info("Cleared payment guard violations", count=count)
        return count
