from dataclasses import replace
from datetime import timedelta

import pytest

from app.features.event_lifecycle.domain.models import (
    AgeRange,
    Capacity,
    EventStatus,
    SocialProof,
)
from app.features.event_lifecycle.errors import EventValidationError
from app.features.event_lifecycle.pipeline.scoring import ScoringService
from tests.conftest import NOW, FakeEventStore, make_event


@pytest.fixture
def scorer():
    return ScoringService(min_child_age=2, max_child_age=4, max_cost=200)


@pytest.mark.asyncio
async def test_scoring_is_deterministic(scorer):
    event = make_event(
        age_range=AgeRange(min=2, max=5),
        social_proof=SocialProof(yelp_rating=4.6, instagram_posts=3),
    )

    first = await scorer.score_event(event, now=NOW)
    second = await scorer.score_event(event, now=NOW)

    assert first.to_dict() == second.to_dict()
    assert 0 <= first.total <= 100


@pytest.mark.asyncio
async def test_free_event_gets_maximal_cost_component(scorer):
    factors = await scorer.score_event(make_event(cost=0.0), now=NOW)
    assert factors.cost == 100.0

    paid = await scorer.score_event(make_event(cost=150.0), now=NOW)
    assert paid.cost < factors.cost


@pytest.mark.asyncio
async def test_unknown_cost_scores_as_worst_case(scorer):
    factors = await scorer.score_event(make_event(cost=float("nan")), now=NOW)
    assert factors.cost == 20.0


@pytest.mark.asyncio
async def test_missing_required_field_raises(scorer):
    with pytest.raises(EventValidationError):
        await scorer.score_event(make_event(description=""), now=NOW)


@pytest.mark.asyncio
async def test_batch_keeps_failed_events_with_zero_total(scorer):
    good = make_event("good")
    broken = make_event("broken", description="")

    scored = await scorer.score_events([broken, good], now=NOW)

    assert [event.id for event in scored] == ["good", "broken"]
    failed = scored[1]
    assert failed.total_score == 0
    assert failed.score_error
    assert failed.status == EventStatus.SCORED
    assert scored[0].score_error is None


@pytest.mark.asyncio
async def test_batch_is_sorted_by_total(scorer):
    plain = make_event("plain", date=NOW + timedelta(days=40))
    urgent = make_event(
        "urgent",
        title="Grand opening: interactive music playground",
        capacity=Capacity(available=2, total=40),
        social_proof=SocialProof(influencer_mentions=True),
    )

    scored = await scorer.score_events([plain, urgent], now=NOW)

    assert scored[0].id == "urgent"
    assert scored[0].total_score > scored[1].total_score


@pytest.mark.asyncio
async def test_visited_venue_lowers_novelty():
    store = FakeEventStore()
    store.visited_venues.add("exploratorium")
    scorer = ScoringService(venue_history=store)
    event = make_event()

    visited = await scorer.score_event(event, now=NOW)
    fresh = await ScoringService().score_event(event, now=NOW)

    assert visited.novelty == 20.0
    assert fresh.novelty > visited.novelty


@pytest.mark.asyncio
async def test_urgency_rises_as_registration_opens(scorer):
    soon = replace(make_event(), registration_opens=NOW + timedelta(hours=1))
    later = replace(make_event(), date=NOW + timedelta(days=30))

    assert scorer._urgency(soon, NOW) == 100.0
    assert scorer._urgency(later, NOW) == 50.0
