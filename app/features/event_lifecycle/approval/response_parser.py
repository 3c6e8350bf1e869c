"""
Interpret free-text approval replies (SMS body or email reply line).

Exact short answers are high confidence, keyword matches are medium, and
anything contradictory or unrecognised is "unclear" and never changes state.
"""

import re

from app.features.event_lifecycle.domain.models import ParsedResponse

APPROVED = "approved"
REJECTED = "rejected"
PAYMENT_CONFIRMED = "payment_confirmed"
UNCLEAR = "unclear"

EXACT_APPROVALS = frozenset({"yes", "y", "1", "ok", "okay", "👍", "✅", "✓", "👌"})
EXACT_REJECTIONS = frozenset({"no", "n", "0", "cancel", "👎", "❌"})

PAYMENT_KEYWORDS = ["paid", "payment", "pay", "complete", "done"]
CANCEL_KEYWORDS = ["cancelled", "canceled", "cancel", "abort"]

APPROVAL_KEYWORDS = [
    "yes", "y", "yeah", "yep", "yup", "yas", "ya", "yea",
    "sure", "ok", "okay", "good", "great", "perfect", "sounds good",
    "approve", "book", "book it", "register", "go", "do it", "lets do it",
    "awesome", "love it", "want it", "interested",
    "1", "true", "accept", "✓", "✅", "👍", "👌",
]

REJECTION_KEYWORDS = [
    "no", "n", "nope", "nah", "na", "nay", "no thanks",
    "pass", "skip", "reject", "decline", "not interested",
    "not now", "next time", "not this time",
    "0", "false", "❌", "👎",
]

_WHITESPACE = re.compile(r"\s+")


def _phrase_pattern(phrases: list[str]) -> re.Pattern[str]:
    ordered = sorted(phrases, key=len, reverse=True)
    alternatives = "|".join(re.escape(phrase) for phrase in ordered)
    # \b does not work next to emoji, so spell out the boundary
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)")


_PAYMENT = _phrase_pattern(PAYMENT_KEYWORDS)
_CANCEL = _phrase_pattern(CANCEL_KEYWORDS)
_APPROVAL = _phrase_pattern(APPROVAL_KEYWORDS)
_REJECTION = _phrase_pattern(REJECTION_KEYWORDS)


def normalize_reply(text: str | None) -> str:
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def parse_response(text: str | None) -> ParsedResponse:
    original = (text or "").strip()
    normalized = normalize_reply(text)

    def result(status: str, confidence: str) -> ParsedResponse:
        return ParsedResponse(
            approved=status == APPROVED,
            rejected=status == REJECTED,
            status=status,
            confidence=confidence,
            original_text=original,
        )

    if not normalized:
        return result(UNCLEAR, "low")

    if normalized in EXACT_APPROVALS:
        return result(APPROVED, "high")
    if normalized in EXACT_REJECTIONS:
        return result(REJECTED, "high")

    if _PAYMENT.search(normalized):
        return result(PAYMENT_CONFIRMED, "high")

    # Rejection phrases are stripped first so "not interested" is not read as "interested"
    cancelled = bool(_CANCEL.search(normalized))
    rejected = cancelled or bool(_REJECTION.search(normalized))
    remainder = _REJECTION.sub(" ", _CANCEL.sub(" ", normalized))
    approved = bool(_APPROVAL.search(remainder))

    if approved and rejected:
        return result(UNCLEAR, "low")
    if cancelled:
        return result(REJECTED, "high")
    if approved:
        return result(APPROVED, "medium")
    if rejected:
        return result(REJECTED, "medium")
    return result(UNCLEAR, "low")
