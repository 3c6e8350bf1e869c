"""
Event scoring service - ranks deduplicated events for approval dispatch.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol

from app.config import settings
from app.features.event_lifecycle.domain.models import Event, EventStatus, ScoreFactors
from app.features.event_lifecycle.errors import EventValidationError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class VenueHistory(Protocol):
    async def is_venue_visited(self, venue_name: str) -> bool: ...


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern[str]:
    escaped = sorted((re.escape(keyword) for keyword in keywords), key=len, reverse=True)
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b", re.IGNORECASE)


class ScoringService:
    WEIGHTS = {
        "novelty": 0.35,
        "urgency": 0.25,
        "social": 0.20,
        "match": 0.15,
        "cost": 0.05,
    }

    SPECIAL_KEYWORDS = [
        "grand opening",
        "new",
        "first time",
        "inaugural",
        "launch",
        "pop-up",
        "limited time",
        "exclusive",
        "special edition",
        "festival",
        "celebration",
        "anniversary",
    ]
    SEASONAL_KEYWORDS = {
        "winter": ["holiday", "christmas", "winter", "snow", "ice"],
        "spring": ["spring", "easter", "garden", "bloom", "flower"],
        "summer": ["summer", "beach", "outdoor", "picnic", "water"],
        "fall": ["fall", "autumn", "halloween", "harvest", "pumpkin"],
    }
    TRENDING_KEYWORDS = [
        "viral",
        "trending",
        "popular",
        "instagram",
        "tiktok",
        "interactive",
        "immersive",
        "experience",
        "sensory",
    ]

    def __init__(
        self,
        venue_history: VenueHistory | None = None,
        min_child_age: int | None = None,
        max_child_age: int | None = None,
        max_cost: float | None = None,
        preferred_keywords: list[str] | None = None,
    ):
        self.venue_history = venue_history
        self.min_child_age = settings.MIN_CHILD_AGE if min_child_age is None else min_child_age
        self.max_child_age = settings.MAX_CHILD_AGE if max_child_age is None else max_child_age
        self.max_cost = settings.MAX_COST_PER_EVENT if max_cost is None else max_cost
        self._special = _keyword_pattern(self.SPECIAL_KEYWORDS)
        self._seasonal = {
            season: _keyword_pattern(words) for season, words in self.SEASONAL_KEYWORDS.items()
        }
        self._trending = _keyword_pattern(self.TRENDING_KEYWORDS)
        self._preferred = _keyword_pattern(
            preferred_keywords or settings.PREFERRED_ACTIVITY_KEYWORDS
        )

    async def score_event(self, event: Event, now: datetime | None = None) -> ScoreFactors:
        """
        Compute the weighted score for a single event.

        Raises:
            EventValidationError: when id, title or description is missing
        """
        now = now or datetime.now(UTC)
        for field_name in ("id", "title", "description"):
            if not getattr(event, field_name):
                raise EventValidationError(
                    f"Event is missing required field '{field_name}'",
                    event_id=event.id or None,
                    operation="score_event",
                )

        factors = ScoreFactors(
            novelty=await self._novelty(event, now),
            urgency=self._urgency(event, now),
            social=self._social(event),
            match=self._match(event),
            cost=self._cost(event),
        )
        total = (
            factors.novelty * self.WEIGHTS["novelty"]
            + factors.urgency * self.WEIGHTS["urgency"]
            + factors.social * self.WEIGHTS["social"]
            + factors.match * self.WEIGHTS["match"]
            + factors.cost * self.WEIGHTS["cost"]
        )
        factors.total = round(min(100.0, max(0.0, total)), 2)
        return factors

    async def score_events(self, events: list[Event], now: datetime | None = None) -> list[Event]:
        """
        Score a batch and return it sorted by total, highest first.

        Events that fail scoring keep total 0 and carry score_error; they
        are never dropped.
        """
        now = now or datetime.now(UTC)
        scored: list[Event] = []
        failures = 0

        for event in events:
            try:
                factors = await self.score_event(event, now=now)
                scored.append(
                    replace(
                        event,
                        score_factors=factors,
                        score_error=None,
                        status=EventStatus.SCORED,
                    )
                )
            except Exception as e:
                failures += 1
                logger.warning(
                    "Event scoring failed", event_id=event.id, error=str(e), error_type=type(e).__name__
                )
                scored.append(
                    replace(
                        event,
                        score_factors=ScoreFactors(),
                        score_error=str(e),
                        status=EventStatus.SCORED,
                    )
                )

        # sorted() is stable, so equal totals keep discovery order
        scored.sort(key=lambda e: e.total_score, reverse=True)
        logger.info("Scored events", count=len(scored), failures=failures)
        return scored

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    async def _novelty(self, event: Event, now: datetime) -> float:
        text = self._text(event)
        venue = event.location.name or event.location.address
        if venue and self.venue_history and await self.venue_history.is_venue_visited(venue):
            return 20.0
        if event.is_recurring:
            return 40.0
        if self._special.search(text):
            return 95.0
        if self._seasonal[_season(now)].search(text):
            return 85.0
        return 75.0

    def _urgency(self, event: Event, now: datetime) -> float:
        score = 50.0

        if event.registration_opens:
            hours = (event.registration_opens - now).total_seconds() / 3600
            if 0 <= hours <= 2:
                score = max(score, 100.0)
            elif 0 <= hours <= 24:
                score = max(score, 90.0)
            elif 0 <= hours <= 72:
                score = max(score, 70.0)

        if event.capacity and event.capacity.total > 0:
            ratio = event.capacity.available / event.capacity.total
            if ratio <= 0.1:
                score = max(score, 95.0)
            elif ratio <= 0.3:
                score = max(score, 80.0)
            elif ratio <= 0.5:
                score = max(score, 65.0)

        if event.date:
            days = (event.date - now).total_seconds() / 86400
            if 0 <= days <= 7:
                score = max(score, 85.0)
            elif 0 <= days <= 14:
                score = max(score, 70.0)

        return score

    def _social(self, event: Event) -> float:
        score = 50.0
        proof = event.social_proof

        if proof:
            if proof.yelp_rating is not None:
                if proof.yelp_rating >= 4.5:
                    score += 20
                elif proof.yelp_rating >= 4.0:
                    score += 10
            if proof.google_rating is not None:
                if proof.google_rating >= 4.5:
                    score += 15
                elif proof.google_rating >= 4.0:
                    score += 8
            score += min(25, max(0, proof.instagram_posts) * 5)
            if proof.influencer_mentions:
                score += 30

        if self._trending.search(self._text(event)):
            score += 15

        return float(min(100, score))

    def _match(self, event: Event) -> float:
        score = 50.0

        if event.age_range:
            child_span = self.max_child_age - self.min_child_age
            overlap_start = max(event.age_range.min, self.min_child_age)
            overlap_end = min(event.age_range.max, self.max_child_age)
            if child_span > 0:
                score += max(0, overlap_end - overlap_start) / child_span * 30
            elif overlap_start <= overlap_end:
                score += 30

        if event.date:
            hour = event.date.hour
            if event.date.weekday() >= 5:
                if 9 <= hour <= 11:
                    score += 20
                elif 14 <= hour <= 16:
                    score += 15
            elif hour >= 16:
                score += 10

        if self._preferred.search(self._text(event)):
            score += 20

        return float(min(100, score))

    def _cost(self, event: Event) -> float:
        cost = event.cost
        if not math.isfinite(cost) or cost < 0:
            return 20.0
        if cost == 0:
            return 100.0
        if cost <= self.max_cost * 0.25:
            return 90.0
        if cost <= self.max_cost * 0.5:
            return 75.0
        if cost <= self.max_cost * 0.75:
            return 60.0
        if cost <= self.max_cost:
            return 40.0
        return 20.0

    @staticmethod
    def _text(event: Event) -> str:
        return f"{event.title} {event.description}".lower()


def _season(now: datetime) -> str:
    month = now.month
    if month in (12, 1, 2):
        return "winter"
    if month in (3, 4, 5):
        return "spring"
    if month in (6, 7, 8):
        return "summer"
    return "fall"
