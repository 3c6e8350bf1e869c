"""
Automated registration for approved, zero-cost events.

One call to `register` is one attempt: it persists exactly one
RegistrationResult and never re-submits on its own. Retrying a failed attempt
is an operator action (`register(event, operator=True)`).
"""

import asyncio
from pathlib import Path
from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from app.config import settings
from app.features.event_lifecycle.domain.models import (
    Event,
    EventStatus,
    RegistrationOutcome,
    RegistrationResult,
)
from app.features.event_lifecycle.errors import (
    InvalidTransitionError,
    LifecycleError,
    RegistrationTimeout,
    SafetyViolation,
    TransientIOError,
)
from app.features.event_lifecycle.repository.event_repository import EventStore
from app.infrastructure.audit.audit_logger import AuditLogger
from app.infrastructure.observability.logging import get_logger

from .form_strategies import (
    DEFAULT_STRATEGIES,
    FamilyProfile,
    FormStrategy,
    detect_success,
    extract_confirmation,
    fill_form,
    locate_form,
)
from .payment_guard import PaymentGuard

logger = get_logger(__name__)

SUBMIT_SETTLE_TIMEOUT_MS = 10_000
TIMEOUT_SCREENSHOT_GRACE_SECONDS = 15


class RegistrationService:
    def __init__(
        self,
        store: EventStore,
        guard: PaymentGuard,
        pages,
        audit: AuditLogger | None = None,
        strategies: list[FormStrategy] | None = None,
        profile: FamilyProfile | None = None,
        screenshot_dir: str | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Args:
            pages: anything with an async `page()` context manager (BrowserPool)
        """
        self.store = store
        self.guard = guard
        self.pages = pages
        self.audit = audit or AuditLogger()
        self.strategies = strategies or DEFAULT_STRATEGIES
        self.profile = profile or FamilyProfile.from_settings()
        self.screenshot_dir = Path(screenshot_dir or settings.SCREENSHOT_DIR)
        self.timeout_seconds = timeout_seconds or settings.REGISTRATION_TIMEOUT_SECONDS
        self._processing_lock = asyncio.Lock()

    async def register(self, event: Event, *, operator: bool = False) -> RegistrationResult:
        """
        Run one registration attempt for an event.

        Raises:
            InvalidTransitionError: the event is not approved (or failed, for operators)
        """
        existing = await self.store.get_successful_registration(event.id)
        if existing:
            logger.info("Event already registered", event_id=event.id)
            return existing

        allowed = {EventStatus.APPROVED}
        if operator:
            allowed.add(EventStatus.FAILED)
        if event.status not in allowed:
            raise InvalidTransitionError(
                event.id, event.status.value, EventStatus.REGISTERING.value, "register"
            )

        attempt = await self.store.count_registration_attempts(event.id) + 1

        decision = self.guard.check_event_cost(event)
        if not decision.safe:
            # Refused before any browser work; the event stays where it is
            result = RegistrationResult(
                event_id=event.id,
                attempt=attempt,
                outcome=RegistrationOutcome.SAFETY_VIOLATION,
                error_message="Event requires payment; automated registration refused",
                payment_required=True,
                payment_amount=decision.payment_amount,
                violations=decision.violations,
            )
            await self.store.save_registration_result(result)
            await self.audit.log_registration(event.id, result.outcome.value, result.to_dict())
            logger.warning(
                "Registration refused by payment guard",
                event_id=event.id,
                cost=event.cost,
                violations=decision.violations,
            )
            return result

        if not await self.store.update_event_status(
            event.id, EventStatus.REGISTERING, from_statuses=allowed
        ):
            raise InvalidTransitionError(
                event.id, event.status.value, EventStatus.REGISTERING.value, "register"
            )

        logger.info("Starting registration", event_id=event.id, attempt=attempt, operator=operator)
        try:
            result = await self._run_with_timeout(event, attempt)
        except TransientIOError as e:
            logger.warning("Registration attempt failed", event_id=event.id, error=e.message)
            result = self._failed(event, attempt, e.message)
        except Exception as e:
            logger.error(
                "Unexpected registration error",
                event_id=event.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            result = self._failed(event, attempt, f"{type(e).__name__}: {e}")

        return await self._finish(event, result)

    async def _run_with_timeout(self, event: Event, attempt: int) -> RegistrationResult:
        # The page itself runs on an inner deadline; this outer one also covers
        # waiting for a page and the timeout screenshot
        try:
            return await asyncio.wait_for(
                self._attempt(event, attempt),
                timeout=self.timeout_seconds + TIMEOUT_SCREENSHOT_GRACE_SECONDS,
            )
        except TimeoutError as e:
            raise RegistrationTimeout(event.id, self.timeout_seconds) from e

    async def _attempt(self, event: Event, attempt: int) -> RegistrationResult:
        if not event.registration_url:
            return self._failed(event, attempt, "Event has no registration URL")

        async with self.pages.page() as page:
            try:
                return await asyncio.wait_for(
                    self._drive(page, event, attempt), timeout=self.timeout_seconds
                )
            except TimeoutError:
                screenshot = await self._screenshot(page, event, attempt, "timeout")
                error = RegistrationTimeout(event.id, self.timeout_seconds)
                logger.warning("Registration attempt timed out", event_id=event.id)
                return self._failed(event, attempt, error.message, screenshot)
            except SafetyViolation as e:
                screenshot = await self._screenshot(page, event, attempt, "violation")
                return RegistrationResult(
                    event_id=event.id,
                    attempt=attempt,
                    outcome=RegistrationOutcome.SAFETY_VIOLATION,
                    error_message=e.message,
                    screenshot_ref=screenshot,
                    payment_required=True,
                    payment_amount=e.payment_amount,
                    violations=e.violations,
                )
            except Exception as e:
                screenshot = await self._screenshot(page, event, attempt, "error")
                return self._failed(event, attempt, f"{type(e).__name__}: {e}", screenshot)

    async def _drive(self, page, event: Event, attempt: int) -> RegistrationResult:
        url = event.registration_url
        await page.goto(url, wait_until="domcontentloaded")
        initial = await self._screenshot(page, event, attempt, "initial")

        (await self.guard.inspect_page(page, event)).raise_if_unsafe(event.id)

        located = await locate_form(page, url, self.strategies)
        if located is None:
            return self._failed(event, attempt, "No registration form found", initial)

        self.guard.validate_form_fields(located.field_names())
        filled = await fill_form(located, self.profile)

        # Some forms reveal pricing only after fields are filled
        (await self.guard.inspect_page(page, event)).raise_if_unsafe(event.id)

        await located.submit.click()
        try:
            await page.wait_for_load_state("networkidle", timeout=SUBMIT_SETTLE_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.debug("Page did not settle after submit", event_id=event.id)

        success, text = await detect_success(page)
        final = await self._screenshot(page, event, attempt, "final")

        if not success:
            return self._failed(
                event, attempt, "No confirmation detected after submitting the form", final
            )

        confirmation = extract_confirmation(text)
        logger.info(
            "Registration submitted",
            event_id=event.id,
            strategy=located.strategy,
            fields=filled,
            confirmation=confirmation,
        )
        return RegistrationResult(
            event_id=event.id,
            attempt=attempt,
            outcome=RegistrationOutcome.SUCCESS,
            confirmation_number=confirmation,
            screenshot_ref=final,
        )

    async def _screenshot(self, page, event: Event, attempt: int, label: str) -> str | None:
        path = self.screenshot_dir / f"{event.id}-{attempt}-{label}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            return str(path)
        except Exception as e:
            logger.warning("Screenshot failed", event_id=event.id, label=label, error=str(e))
            return None

    @staticmethod
    def _failed(
        event: Event, attempt: int, message: str, screenshot: str | None = None
    ) -> RegistrationResult:
        return RegistrationResult(
            event_id=event.id,
            attempt=attempt,
            outcome=RegistrationOutcome.FAILED,
            error_message=message,
            screenshot_ref=screenshot,
        )

    async def _finish(self, event: Event, result: RegistrationResult) -> RegistrationResult:
        target = EventStatus.BOOKED if result.success else EventStatus.FAILED
        try:
            if not await self.store.save_registration_result(result):
                logger.warning(
                    "Registration result already recorded",
                    event_id=event.id,
                    attempt=result.attempt,
                )
        except Exception as e:
            logger.error(
                "Could not store registration result",
                event_id=event.id,
                attempt=result.attempt,
                outcome=result.outcome.value,
                error=str(e),
            )
            raise
        finally:
            # The event never stays in registering, stored result or not
            await self.store.update_event_status(
                event.id, target, from_statuses={EventStatus.REGISTERING}
            )
        await self.audit.log_registration(event.id, result.outcome.value, result.to_dict())

        logger.info(
            "Registration finished",
            event_id=event.id,
            attempt=result.attempt,
            outcome=result.outcome.value,
            status=target.value,
        )
        return result

    async def process_approved_events(self) -> dict[str, Any]:
        """Register approved free events one at a time."""
        if self._processing_lock.locked():
            logger.info("Registration processing already running, skipping")
            return {"skipped": True, "reason": "already_running"}

        async with self._processing_lock:
            metrics = {"processed": 0, "booked": 0, "failed": 0, "awaiting_payment": 0}
            for event in await self.store.get_events_by_status(EventStatus.APPROVED):
                if not event.is_free:
                    metrics["awaiting_payment"] += 1
                    logger.info(
                        "Approved paid event awaits manual payment",
                        event_id=event.id,
                        cost=event.cost,
                    )
                    continue

                try:
                    result = await self.register(event)
                except LifecycleError as e:
                    logger.warning("Skipping event", event_id=event.id, error=e.message)
                    continue

                metrics["processed"] += 1
                metrics["booked" if result.success else "failed"] += 1

            return metrics
