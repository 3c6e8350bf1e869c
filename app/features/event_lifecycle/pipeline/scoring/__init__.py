"""
Event scoring package.

Ranks deduplicated events by novelty, urgency, social proof, family fit
and cost.
"""

from .service import ScoringService, VenueHistory

__all__ = ["ScoringService", "VenueHistory"]
