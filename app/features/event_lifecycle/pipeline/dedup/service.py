"""
Cross-source event deduplication.

Events reported by several scrapers are clustered with union-find over a
composite title/location/time similarity, then collapsed into one canonical
record per cluster. The canonical record keeps its own title, date and
location, which makes a second pass a no-op.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime

from app.config import settings
from app.features.event_lifecycle.domain.models import Event, EventStatus
from app.infrastructure.observability.logging import get_logger

from .normalizer import compare_locations, street_number, title_similarity

logger = get_logger(__name__)

TITLE_WEIGHT = 0.5
LOCATION_WEIGHT = 0.3
TIME_WEIGHT = 0.2
UNDATED_TIME_SCORE = 0.5


@dataclass(slots=True)
class DedupStats:
    input_count: int = 0
    output_count: int = 0
    clusters_merged: int = 0
    events_merged: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "input_count": self.input_count,
            "output_count": self.output_count,
            "clusters_merged": self.clusters_merged,
            "events_merged": self.events_merged,
        }


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, item: int) -> int:
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, left: int, right: int) -> None:
        root_left, root_right = self.find(left), self.find(right)
        if root_left == root_right:
            return
        # Lower index stays root so clusters order by first appearance
        if root_left < root_right:
            self.parent[root_right] = root_left
        else:
            self.parent[root_left] = root_right


class DeduplicationService:
    """Collapse the same real-world event reported by multiple sources."""

    def __init__(
        self,
        high_threshold: float | None = None,
        low_threshold: float | None = None,
        time_tolerance_minutes: int | None = None,
    ):
        self.high_threshold = (
            settings.DEDUP_HIGH_THRESHOLD if high_threshold is None else high_threshold
        )
        self.low_threshold = settings.DEDUP_LOW_THRESHOLD if low_threshold is None else low_threshold
        self.time_tolerance_minutes = (
            settings.DEDUP_TIME_TOLERANCE_MINUTES
            if time_tolerance_minutes is None
            else time_tolerance_minutes
        )
        self.last_stats = DedupStats()

    def deduplicate(self, events: list[Event]) -> list[Event]:
        stats = DedupStats(input_count=len(events))
        if not events:
            self.last_stats = stats
            return []

        clusters = _UnionFind(len(events))
        for left, right in self._candidate_pairs(events):
            if self.is_duplicate(events[left], events[right]):
                clusters.union(left, right)

        grouped: dict[int, list[int]] = {}
        for index in range(len(events)):
            grouped.setdefault(clusters.find(index), []).append(index)

        result = []
        for root in sorted(grouped):
            members = grouped[root]
            merged = self._merge_cluster([events[i] for i in members], members)
            result.append(merged)
            if len(members) > 1:
                stats.clusters_merged += 1
                stats.events_merged += len(members) - 1

        stats.output_count = len(result)
        self.last_stats = stats
        logger.info("Deduplication complete", **stats.to_dict())
        return result

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------

    def similarity(self, left: Event, right: Event) -> float:
        title_score = title_similarity(left.title, right.title)
        location_score = self._location_similarity(left, right)
        time_score = self._time_similarity(left.date, right.date)
        return (
            TITLE_WEIGHT * title_score
            + LOCATION_WEIGHT * location_score
            + TIME_WEIGHT * time_score
        )

    def is_duplicate(self, left: Event, right: Event) -> bool:
        score = self.similarity(left, right)
        if score >= self.high_threshold:
            return True
        if score >= self.low_threshold:
            number = street_number(left.location.address)
            return number is not None and number == street_number(right.location.address)
        return False

    def _location_similarity(self, left: Event, right: Event) -> float:
        left_texts = [text for text in (left.location.name, left.location.address) if text]
        right_texts = [text for text in (right.location.name, right.location.address) if text]
        best = 0.0
        for a in left_texts:
            for b in right_texts:
                best = max(best, compare_locations(a, b))
        return best

    def _time_similarity(self, left: datetime | None, right: datetime | None) -> float:
        if left is None and right is None:
            return UNDATED_TIME_SCORE
        if left is None or right is None:
            return 0.0
        minutes = abs((left - right).total_seconds()) / 60
        if minutes <= self.time_tolerance_minutes:
            return 1.0
        return max(0.0, 1.0 - (minutes / 60) / 24)

    def _candidate_pairs(self, events: list[Event]):
        """Pairs on the same calendar day or within the time tolerance."""
        for left in range(len(events)):
            for right in range(left + 1, len(events)):
                a, b = events[left].date, events[right].date
                if a is None and b is None:
                    yield left, right
                elif a is None or b is None:
                    continue
                elif a.date() == b.date():
                    yield left, right
                elif abs((a - b).total_seconds()) / 60 <= self.time_tolerance_minutes:
                    yield left, right

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge_cluster(self, members: list[Event], positions: list[int]) -> Event:
        ranked = sorted(
            zip(positions, members, strict=True),
            key=lambda pair: (-pair[1].populated_field_count(), pair[0]),
        )
        canonical = ranked[0][1]

        sources: list[str] = []
        alternate_urls: list[str] = []
        description = canonical.description
        cost = canonical.cost

        for _, member in ranked:
            for source in member.sources:
                if source not in sources:
                    sources.append(source)
            for url in [member.registration_url, *member.alternate_urls]:
                if url and url != canonical.registration_url and url not in alternate_urls:
                    alternate_urls.append(url)
            if len(member.description or "") > len(description or ""):
                description = member.description
            cost = _conservative_cost(cost, member.cost)

        return replace(
            canonical,
            sources=sources,
            alternate_urls=alternate_urls,
            description=description,
            cost=cost,
            status=EventStatus.DEDUPLICATED,
        )


def _conservative_cost(current: float, other: float) -> float:
    """Keep the higher (or unknown) cost so the payment guard stays strict."""
    if not math.isfinite(current):
        return current
    if not math.isfinite(other):
        return other
    return max(current, other)
