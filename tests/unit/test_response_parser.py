import pytest

from app.features.event_lifecycle.approval import parse_response


@pytest.mark.parametrize("text", ["YES", "  yes  ", "Y", "1", "👍"])
def test_exact_approvals_are_high_confidence(text):
    parsed = parse_response(text)

    assert parsed.approved is True
    assert parsed.rejected is False
    assert parsed.status == "approved"
    assert parsed.confidence == "high"


@pytest.mark.parametrize("text", ["NO", "n", "0", "cancel"])
def test_exact_rejections_are_high_confidence(text):
    parsed = parse_response(text)

    assert parsed.rejected is True
    assert parsed.status == "rejected"
    assert parsed.confidence == "high"


@pytest.mark.parametrize("text", ["maybe", "", "asdf", None])
def test_unrecognised_replies_are_unclear(text):
    parsed = parse_response(text)

    assert parsed.approved is False
    assert parsed.rejected is False
    assert parsed.status == "unclear"
    assert parsed.confidence == "low"


def test_contradictory_reply_is_unclear():
    assert parse_response("yes no").status == "unclear"
    assert parse_response("yes cancel").status == "unclear"
    assert parse_response("ok cancel it").status == "unclear"


def test_cancel_without_approval_is_a_rejection():
    parsed = parse_response("please cancel that one")

    assert (parsed.status, parsed.confidence) == ("rejected", "high")


def test_keyword_matches_are_medium_confidence():
    approved = parse_response("Sounds good, book it!")
    rejected = parse_response("Nah, not this time")

    assert (approved.status, approved.confidence) == ("approved", "medium")
    assert (rejected.status, rejected.confidence) == ("rejected", "medium")


def test_negated_interest_is_a_rejection():
    parsed = parse_response("not interested")

    assert parsed.status == "rejected"


def test_payment_confirmation():
    assert parse_response("PAID").status == "payment_confirmed"
    assert parse_response("payment done, thanks").status == "payment_confirmed"


def test_original_text_is_preserved():
    assert parse_response("  Yes please!  ").original_text == "Yes please!"
