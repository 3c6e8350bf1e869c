import math

import pytest

from app.features.event_lifecycle.errors import SafetyViolation
from app.features.event_lifecycle.registration import PaymentGuard
from app.features.event_lifecycle.registration.payment_guard import extract_price
from tests.conftest import FakeElement, FakePage, make_event


@pytest.fixture
def guard():
    return PaymentGuard(history_size=5)


def test_free_event_is_safe(guard):
    decision = guard.check_event_cost(make_event(cost=0.0))

    assert decision.safe is True
    assert decision.violations == []


def test_paid_event_is_refused(guard):
    decision = guard.check_event_cost(make_event(cost=15.0))

    assert decision.safe is False
    assert decision.payment_amount == 15.0
    assert decision.violations == ["cost:15.00"]
    with pytest.raises(SafetyViolation) as exc_info:
        decision.raise_if_unsafe("evt_1")
    assert exc_info.value.payment_amount == 15.0


@pytest.mark.parametrize("cost", [math.nan, math.inf, -5.0])
def test_unreadable_cost_is_refused(guard, cost):
    decision = guard.check_event_cost(make_event(cost=cost))

    assert decision.safe is False
    assert decision.violations[0].startswith("invalid_cost")


@pytest.mark.asyncio
async def test_clean_page_passes_inspection(guard):
    page = FakePage(body_text="Register for storytime. Bring the whole family!")

    decision = await guard.inspect_page(page)

    assert decision.safe is True


@pytest.mark.asyncio
async def test_payment_keyword_on_page_is_refused(guard):
    page = FakePage(body_text="Proceed to checkout to reserve your spot")

    decision = await guard.inspect_page(page, make_event())

    assert decision.safe is False
    assert "keyword:checkout" in decision.violations


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body_text, keyword",
    [
        ("Payments due at the door", "payment"),
        ("Purchases are final", "purchase"),
        ("Secure checkouts powered by our partner", "checkout"),
    ],
)
async def test_inflected_payment_keywords_are_refused(guard, body_text, keyword):
    decision = await guard.inspect_page(FakePage(body_text=body_text), make_event())

    assert decision.safe is False
    assert f"keyword:{keyword}" in decision.violations


@pytest.mark.asyncio
async def test_visible_price_is_refused(guard):
    price = FakeElement(text="Tickets: $12.50 per child")
    page = FakePage(body_text="Register below", selectors={".price": [price]})

    decision = await guard.inspect_page(page)

    assert decision.safe is False
    assert decision.payment_amount == 12.50


@pytest.mark.asyncio
async def test_payment_iframe_is_refused(guard):
    page = FakePage(selectors={'iframe[src*="stripe"]': [FakeElement(tag="iframe")]})

    decision = await guard.inspect_page(page)

    assert decision.safe is False
    assert 'iframe:iframe[src*="stripe"]' in decision.violations


@pytest.mark.asyncio
async def test_inspection_failure_fails_closed(guard):
    class BrokenPage(FakePage):
        async def inner_text(self, selector):
            raise RuntimeError("target closed")

    decision = await guard.inspect_page(BrokenPage())

    assert decision.safe is False
    assert decision.violations[0].startswith("inspection_error")


def test_sensitive_form_fields_are_refused(guard):
    guard.validate_form_fields(["first_name", "email", "phone"])

    with pytest.raises(SafetyViolation):
        guard.validate_form_fields(["first_name", "card_number"])


def test_violation_history_is_bounded(guard):
    for _ in range(8):
        guard.check_event_cost(make_event(cost=20.0))

    summary = guard.violation_summary()
    assert summary["total"] == 8
    assert summary["by_type"] == {"PAID_EVENT": 8}
    assert len(summary["recent"]) == 5

    assert guard.clear_violations() == 5
    assert guard.violation_summary()["total"] == 0


def test_extract_price():
    assert extract_price("Total: $1,250.00") == 1250.0
    assert extract_price("USD 15") == 15.0
    assert extract_price("Free admission") is None
