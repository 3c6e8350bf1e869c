"""
Domain models for the family event lifecycle.

Dataclasses shared by the pipeline, approval, registration and API layers.
Parsing of raw scraper payloads lives here so every layer sees the same
normalised shape.
"""

import hashlib
import math
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from enum import Enum
from typing import Any

from dateutil import parser as date_parser


class EventStatus(str, Enum):
    DISCOVERED = "discovered"
    DEDUPLICATED = "deduplicated"
    SCORED = "scored"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    REGISTERING = "registering"
    BOOKED = "booked"
    FAILED = "failed"
    SCHEDULED = "scheduled"
    ATTENDED = "attended"


ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DISCOVERED: frozenset({EventStatus.DEDUPLICATED}),
    # deduplicated -> expired retires events that passed before they were scored
    EventStatus.DEDUPLICATED: frozenset({EventStatus.SCORED, EventStatus.EXPIRED}),
    # approved/rejected straight from scored are operator decisions made before dispatch
    EventStatus.SCORED: frozenset(
        {EventStatus.PENDING_APPROVAL, EventStatus.APPROVED, EventStatus.REJECTED}
    ),
    EventStatus.PENDING_APPROVAL: frozenset(
        {EventStatus.APPROVED, EventStatus.REJECTED, EventStatus.EXPIRED}
    ),
    # approved -> booked is the manual payment path for paid events
    EventStatus.APPROVED: frozenset(
        {EventStatus.REGISTERING, EventStatus.BOOKED, EventStatus.REJECTED}
    ),
    EventStatus.REGISTERING: frozenset({EventStatus.BOOKED, EventStatus.FAILED}),
    EventStatus.BOOKED: frozenset({EventStatus.SCHEDULED}),
    EventStatus.SCHEDULED: frozenset({EventStatus.ATTENDED}),
    # operator retry only
    EventStatus.FAILED: frozenset({EventStatus.REGISTERING}),
    EventStatus.REJECTED: frozenset(),
    EventStatus.EXPIRED: frozenset(),
    EventStatus.ATTENDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {EventStatus.REJECTED, EventStatus.EXPIRED, EventStatus.FAILED, EventStatus.ATTENDED}
)


def can_transition(current: EventStatus, target: EventStatus) -> bool:
    """Re-applying the current status is always allowed (idempotent no-op)."""
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(slots=True)
class Location:
    name: str = ""
    address: str = ""
    distance_miles: float | None = None

    def is_empty(self) -> bool:
        return not (self.name or self.address)


@dataclass(slots=True)
class AgeRange:
    min: int
    max: int


@dataclass(slots=True)
class Capacity:
    available: int
    total: int


@dataclass(slots=True)
class SocialProof:
    yelp_rating: float | None = None
    google_rating: float | None = None
    instagram_posts: int = 0
    influencer_mentions: bool = False


@dataclass(slots=True)
class ScoreFactors:
    novelty: float = 0.0
    urgency: float = 0.0
    social: float = 0.0
    match: float = 0.0
    cost: float = 0.0
    total: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "novelty": self.novelty,
            "urgency": self.urgency,
            "social": self.social,
            "match": self.match,
            "cost": self.cost,
            "total": self.total,
        }


@dataclass(slots=True)
class Event:
    """A (possibly merged) event listing moving through the lifecycle."""

    id: str
    title: str
    description: str = ""
    date: datetime | None = None
    location: Location = field(default_factory=Location)
    age_range: AgeRange | None = None
    cost: float = 0.0
    registration_url: str | None = None
    sources: list[str] = field(default_factory=list)
    alternate_urls: list[str] = field(default_factory=list)
    registration_opens: datetime | None = None
    capacity: Capacity | None = None
    social_proof: SocialProof | None = None
    is_recurring: bool = False
    status: EventStatus = EventStatus.DISCOVERED
    score_factors: ScoreFactors | None = None
    score_error: str | None = None
    calendar_warnings: list[str] = field(default_factory=list)
    calendar_event_id: str | None = None
    discovery_index: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self):
        if self.location is None:
            self.location = Location()
        if self.title is None:
            self.title = ""

    @property
    def is_free(self) -> bool:
        return math.isfinite(self.cost) and self.cost == 0

    @property
    def total_score(self) -> float:
        return self.score_factors.total if self.score_factors else 0.0

    def populated_field_count(self) -> int:
        """Number of optional descriptive fields carrying a value."""
        values = [
            self.description,
            self.date,
            self.location.name,
            self.location.address,
            self.location.distance_miles,
            self.age_range,
            self.registration_url,
            self.registration_opens,
            self.capacity,
            self.social_proof,
        ]
        return sum(1 for value in values if value not in (None, ""))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat() if self.date else None,
            "location": {
                "name": self.location.name,
                "address": self.location.address,
                "distance_miles": self.location.distance_miles,
            },
            "age_range": (
                {"min": self.age_range.min, "max": self.age_range.max}
                if self.age_range
                else None
            ),
            "cost": self.cost if math.isfinite(self.cost) else None,
            "registration_url": self.registration_url,
            "sources": list(self.sources),
            "alternate_urls": list(self.alternate_urls),
            "status": self.status.value,
            "score_factors": self.score_factors.to_dict() if self.score_factors else None,
            "score_error": self.score_error,
            "calendar_warnings": list(self.calendar_warnings),
            "calendar_event_id": self.calendar_event_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_raw(cls, data: dict[str, Any], index: int = 0, default_tz: tzinfo = UTC) -> "Event":
        """
        Build an Event from a scraper payload.

        Accepts camelCase or snake_case keys. Unparsable dates become None,
        a missing cost means free, an unparsable cost becomes NaN so the
        payment guard refuses it.
        """
        title = str(_pick(data, "title", default="") or "").strip()
        event_date = parse_datetime(_pick(data, "date", "start", "start_time"), default_tz)

        raw_location = _pick(data, "location", default=None)
        if isinstance(raw_location, dict):
            location = Location(
                name=str(raw_location.get("name") or "").strip(),
                address=str(raw_location.get("address") or "").strip(),
                distance_miles=_to_float(
                    raw_location.get("distance") or raw_location.get("distance_miles")
                ),
            )
        elif isinstance(raw_location, str):
            location = Location(name=raw_location.strip())
        else:
            location = Location()

        source = _pick(data, "source", default=None)
        sources = [str(s) for s in _pick(data, "sources", default=[]) or []]
        if source and source not in sources:
            sources.insert(0, str(source))

        event_id = _pick(data, "id", default=None)
        if not event_id:
            event_id = derive_event_id(title, event_date, location)

        return cls(
            id=str(event_id),
            title=title,
            description=str(_pick(data, "description", default="") or "").strip(),
            date=event_date,
            location=location,
            age_range=_parse_age_range(_pick(data, "age_range", "ageRange", default=None)),
            cost=parse_cost(_pick(data, "cost", "price", default=0)),
            registration_url=_pick(data, "registration_url", "registrationUrl", "url", default=None),
            sources=sources,
            alternate_urls=list(_pick(data, "alternate_urls", "alternateUrls", default=[]) or []),
            registration_opens=parse_datetime(
                _pick(data, "registration_opens", "registrationOpens", default=None), default_tz
            ),
            capacity=_parse_capacity(_pick(data, "capacity", default=None)),
            social_proof=_parse_social_proof(
                _pick(data, "social_proof", "socialProof", default=None)
            ),
            is_recurring=bool(_pick(data, "is_recurring", "isRecurring", default=False)),
            discovery_index=index,
        )


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    PAYMENT_CONFIRMED = "payment_confirmed"


@dataclass(slots=True)
class ParsedResponse:
    """Outcome of interpreting a free-text approval reply."""

    approved: bool
    rejected: bool
    status: str  # approved | rejected | payment_confirmed | unclear
    confidence: str  # high | medium | low
    original_text: str


@dataclass(slots=True)
class ApprovalRequest:
    id: str
    event_id: str
    channel: str  # "sms" or "email"
    recipient: str
    sent_at: datetime
    expires_at: datetime
    remind_after: datetime
    message_id: str | None = None
    reminders_sent: int = 0
    status: ApprovalStatus = ApprovalStatus.PENDING
    response_text: str | None = None
    parsed_decision: str | None = None
    confidence: str | None = None
    responded_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.status == ApprovalStatus.PENDING and now < self.expires_at


class RegistrationOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SAFETY_VIOLATION = "safety_violation"


@dataclass(slots=True)
class RegistrationResult:
    event_id: str
    attempt: int
    outcome: RegistrationOutcome
    confirmation_number: str | None = None
    error_message: str | None = None
    screenshot_ref: str | None = None
    payment_required: bool = False
    payment_amount: float | None = None
    violations: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.outcome == RegistrationOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "attempt": self.attempt,
            "outcome": self.outcome.value,
            "success": self.success,
            "confirmation_number": self.confirmation_number,
            "error_message": self.error_message,
            "screenshot_ref": self.screenshot_ref,
            "payment_required": self.payment_required,
            "payment_amount": self.payment_amount,
            "violations": list(self.violations),
        }


# ---------------------------------------------------------------------------
# Raw payload parsing
# ---------------------------------------------------------------------------

_PRICE_PATTERN = re.compile(r"(\d+(?:\.\d+)?)")


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_datetime(value: Any, default_tz: tzinfo = UTC) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError, TypeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed


def parse_cost(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, int | float):
        return float(value)

    text = str(value).strip().lower()
    if text in {"free", "no cost", "$0", "0"}:
        return 0.0
    match = _PRICE_PATTERN.search(text.replace(",", ""))
    if not match:
        return math.nan
    amount = float(match.group(1))
    return -amount if text.startswith("-") else amount


def _parse_age_range(value: Any) -> AgeRange | None:
    if not isinstance(value, dict):
        return None
    low = _to_float(value.get("min"))
    high = _to_float(value.get("max"))
    if low is None or high is None:
        return None
    return AgeRange(min=int(low), max=int(high))


def _parse_capacity(value: Any) -> Capacity | None:
    if not isinstance(value, dict):
        return None
    available = _to_float(value.get("available"))
    total = _to_float(value.get("total"))
    if available is None or not total:
        return None
    return Capacity(available=int(available), total=int(total))


def _parse_social_proof(value: Any) -> SocialProof | None:
    if not isinstance(value, dict):
        return None
    return SocialProof(
        yelp_rating=_to_float(value.get("yelp_rating", value.get("yelpRating"))),
        google_rating=_to_float(value.get("google_rating", value.get("googleRating"))),
        instagram_posts=int(
            _to_float(value.get("instagram_posts", value.get("instagramPosts"))) or 0
        ),
        influencer_mentions=bool(
            value.get("influencer_mentions", value.get("influencerMentions", False))
        ),
    )


def derive_event_id(title: str, event_date: datetime | None, location: Location) -> str:
    key = "|".join(
        [
            title.lower(),
            event_date.isoformat() if event_date else "",
            (location.name or location.address).lower(),
        ]
    )
    return "evt_" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
