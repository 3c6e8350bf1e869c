"""
Domain subpackage for the event lifecycle feature.
"""

from .models import (
    ALLOWED_TRANSITIONS,
    ApprovalRequest,
    ApprovalStatus,
    Event,
    EventStatus,
    ParsedResponse,
    RegistrationOutcome,
    RegistrationResult,
    ScoreFactors,
    can_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ApprovalRequest",
    "ApprovalStatus",
    "Event",
    "EventStatus",
    "ParsedResponse",
    "RegistrationOutcome",
    "RegistrationResult",
    "ScoreFactors",
    "can_transition",
]
