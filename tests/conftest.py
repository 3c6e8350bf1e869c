import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from app.config import settings
from app.features.event_lifecycle.approval import ApprovalService
from app.features.event_lifecycle.container import ServiceContainer
from app.features.event_lifecycle.domain.models import (
    ApprovalStatus,
    Event,
    EventStatus,
    Location,
    RegistrationOutcome,
)
from app.features.event_lifecycle.errors import NotificationError
from app.features.event_lifecycle.pipeline.dedup import DeduplicationService
from app.features.event_lifecycle.pipeline.filtering import EventFilter
from app.features.event_lifecycle.pipeline.scoring import ScoringService
from app.features.event_lifecycle.registration import (
    FamilyProfile,
    PaymentGuard,
    RegistrationService,
)
from app.features.event_lifecycle.repository.event_repository import allowed_sources
from app.features.event_lifecycle.services import (
    LifecyclePipeline,
    LifecycleScheduler,
    ReportingService,
)
from app.infrastructure.audit.audit_logger import AuditLogger
from app.models.domain.calendar_domain import BusyPeriod, CalendarEntry
from app.services.calendar.sync_service import CalendarSyncService

NOW = datetime(2025, 8, 10, 9, 0, tzinfo=UTC)
RECIPIENT = "+14155550100"


class FakeEventStore:
    """In-memory EventStore with the same conditional-update rules as Postgres."""

    def __init__(self, events=()):
        self.events: dict[str, Event] = {}
        self.requests = {}
        self.results = []
        self.visited_venues: set[str] = set()
        self.transitions: list[tuple[str, str, str]] = []
        self.healthy = True
        for event in events:
            self.events[event.id] = event

    def add(self, event: Event) -> Event:
        self.events[event.id] = event
        return event

    def status_of(self, event_id: str) -> EventStatus:
        return self.events[event_id].status

    async def upsert_events(self, events):
        actionable = set()
        for event in events:
            existing = self.events.get(event.id)
            if existing is None:
                self.events[event.id] = event
            else:
                self.events[event.id] = replace(
                    existing,
                    description=event.description,
                    sources=list(event.sources),
                    alternate_urls=list(event.alternate_urls),
                    cost=max(existing.cost, event.cost),
                    calendar_warnings=list(event.calendar_warnings),
                )
            if self.events[event.id].status == EventStatus.DEDUPLICATED:
                actionable.add(event.id)
        return actionable

    async def get_event(self, event_id):
        return self.events.get(event_id)

    async def get_events_by_status(self, status, limit=None):
        found = [event for event in self.events.values() if event.status == status]
        found.sort(key=lambda event: event.total_score, reverse=True)
        return found[:limit] if limit else found

    async def list_events(
        self, *, status=None, search=None, venue=None, cost=None, page=1, limit=20
    ):
        found = list(self.events.values())
        if status:
            found = [event for event in found if event.status == status]
        if search:
            needle = search.lower()
            found = [
                event
                for event in found
                if needle in event.title.lower() or needle in event.description.lower()
            ]
        if venue:
            found = [event for event in found if venue.lower() in event.location.name.lower()]
        if cost == "free":
            found = [event for event in found if event.cost == 0]
        elif cost == "under25":
            found = [event for event in found if event.cost < 25]
        elif cost == "under50":
            found = [event for event in found if event.cost < 50]

        found.sort(key=lambda event: event.total_score, reverse=True)
        offset = (page - 1) * limit
        return found[offset : offset + limit], len(found)

    async def update_event_status(self, event_id, status, *, from_statuses=None):
        event = self.events.get(event_id)
        if event is None:
            return False
        sources = set(from_statuses) if from_statuses else allowed_sources(status)
        sources.add(status)
        if event.status not in sources:
            return False
        if event.status != status:
            self.transitions.append((event_id, event.status.value, status.value))
        self.events[event_id] = replace(event, status=status)
        return True

    async def save_event_score(self, event_id, factors, score_error):
        event = self.events[event_id]
        status = EventStatus.SCORED if event.status == EventStatus.DEDUPLICATED else event.status
        self.events[event_id] = replace(
            event, score_factors=factors, score_error=score_error, status=status
        )

    async def set_calendar_event(self, event_id, calendar_event_id):
        self.events[event_id] = replace(self.events[event_id], calendar_event_id=calendar_event_id)

    async def is_venue_visited(self, venue_name):
        return venue_name.lower() in self.visited_venues

    async def status_counts(self):
        counts: dict[str, int] = {}
        for event in self.events.values():
            counts[event.status.value] = counts.get(event.status.value, 0) + 1
        return counts

    async def ping(self):
        if not self.healthy:
            raise ConnectionError("database unreachable")
        return True

    async def save_registration_result(self, result):
        if any(
            r.event_id == result.event_id and r.attempt == result.attempt for r in self.results
        ):
            return False
        self.results.append(replace(result, created_at=datetime.now(UTC)))
        return True

    async def get_successful_registration(self, event_id):
        successes = [
            r
            for r in self.results
            if r.event_id == event_id and r.outcome == RegistrationOutcome.SUCCESS
        ]
        return successes[-1] if successes else None

    async def count_registration_attempts(self, event_id):
        return max((r.attempt for r in self.results if r.event_id == event_id), default=0)

    async def create_approval_request(self, request):
        existing = await self.get_pending_request(request.event_id)
        if existing:
            return existing
        self.requests[request.id] = request
        return request

    async def set_request_message_id(self, request_id, message_id):
        self.requests[request_id].message_id = message_id

    async def release_request(self, request_id):
        if self.requests[request_id].status == ApprovalStatus.PENDING:
            del self.requests[request_id]

    async def get_pending_request(self, event_id):
        return next(
            (
                r
                for r in self.requests.values()
                if r.event_id == event_id and r.status == ApprovalStatus.PENDING
            ),
            None,
        )

    async def get_pending_requests(self):
        pending = [r for r in self.requests.values() if r.status == ApprovalStatus.PENDING]
        return sorted(pending, key=lambda r: r.sent_at)

    async def expire_request(self, request_id, now):
        request = self.requests[request_id]
        if request.status != ApprovalStatus.PENDING or request.expires_at > now:
            return False
        request.status = ApprovalStatus.EXPIRED
        return True

    async def record_reminder(self, request_id):
        request = self.requests[request_id]
        if request.status != ApprovalStatus.PENDING or request.reminders_sent:
            return False
        request.reminders_sent += 1
        return True

    async def resolve_request(
        self,
        request_id,
        status,
        *,
        response_text,
        parsed_decision,
        confidence,
        responded_at,
        from_status=ApprovalStatus.PENDING,
    ):
        request = self.requests[request_id]
        if request.status != from_status:
            return False
        request.status = status
        request.response_text = response_text
        request.parsed_decision = parsed_decision
        request.confidence = confidence
        request.responded_at = responded_at
        return True

    async def record_unclear_response(self, request_id, response_text, responded_at):
        request = self.requests[request_id]
        request.response_text = response_text
        request.parsed_decision = "unclear"
        request.confidence = "low"
        request.responded_at = responded_at

    async def latest_request_for_recipient(self, recipient, statuses):
        matching = [
            r for r in self.requests.values() if r.recipient == recipient and r.status in statuses
        ]
        return max(matching, key=lambda r: r.sent_at) if matching else None


class FakeChannel:
    def __init__(self, name: str = "sms", recipient: str = RECIPIENT, fail: bool = False):
        self.name = name
        self.recipient = recipient
        self.fail = fail
        self.sent: list[dict] = []
        self.closed = False

    async def send(self, body, subject=None):
        if self.fail:
            raise NotificationError("provider unavailable", channel=self.name, status_code=503)
        self.sent.append({"body": body, "subject": subject})
        return f"msg-{len(self.sent)}"

    async def close(self):
        self.closed = True


class RecordingAuditLogger(AuditLogger):
    def __init__(self):
        self.entries: list[dict] = []

    async def log(self, event_id, action, resource_type, actor="system", metadata=None):
        self.entries.append(
            {
                "event_id": event_id,
                "action": action,
                "resource_type": resource_type,
                "actor": actor,
                "metadata": metadata,
            }
        )
        return True

    def actions(self) -> list[str]:
        return [entry["action"] for entry in self.entries]


class FakeElement:
    def __init__(self, attributes=None, tag="input", text="", children=None, on_click=None):
        self.attributes = attributes or {}
        self.tag = tag
        self.text = text
        self.children = children or {}
        self.on_click = on_click
        self.filled: str | None = None
        self.selected: str | None = None
        self.clicks = 0

    async def get_attribute(self, name):
        return self.attributes.get(name)

    async def evaluate(self, script):
        return self.tag

    async def inner_text(self):
        return self.text

    async def query_selector_all(self, selector):
        return list(self.children.get(selector, []))

    async def fill(self, value):
        self.filled = value

    async def select_option(self, value):
        self.selected = value

    async def click(self):
        self.clicks += 1
        if self.on_click:
            self.on_click()


class FakePage:
    def __init__(self, body_text="", selectors=None, url="about:blank", goto_error=None):
        self.body_text = body_text
        self.selectors = selectors or {}
        self.url = url
        self.goto_error = goto_error
        self.goto_delay = 0.0
        self.goto_calls: list[str] = []
        self.screenshots: list[str] = []
        self.load_states: list[str] = []

    async def goto(self, url, wait_until=None):
        self.goto_calls.append(url)
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        if self.goto_error:
            raise self.goto_error
        self.url = url

    async def screenshot(self, path=None, full_page=False):
        self.screenshots.append(path)

    async def inner_text(self, selector):
        return self.body_text

    async def query_selector_all(self, selector):
        return list(self.selectors.get(selector, []))

    async def query_selector(self, selector):
        found = self.selectors.get(selector, [])
        return found[0] if found else None

    async def wait_for_load_state(self, state="load", timeout=None):
        self.load_states.append(state)


class FakeBrowserPool:
    def __init__(self, page=None):
        self.current = page or FakePage()
        self.acquired = 0
        self.released = 0
        self.closed = False

    @asynccontextmanager
    async def page(self):
        self.acquired += 1
        try:
            yield self.current
        finally:
            self.released += 1

    def health_check(self):
        return {
            "healthy": True,
            "service": "browser_pool",
            "started": False,
            "active_pages": self.acquired - self.released,
            "max_pages": 1,
        }

    async def close(self):
        self.closed = True


class FakeCalendarService:
    def __init__(self, configured=True, busy=None, error=None):
        self.configured = configured
        self.busy = busy or {}
        self.error = error
        self.created: list[dict] = []

    async def free_busy(self, start_time, end_time, calendar_ids):
        if self.error:
            raise self.error
        return {
            cal_id: {
                "busy": [BusyPeriod(cal_id, block) for block in self.busy.get(cal_id, [])],
                "errors": [],
            }
            for cal_id in calendar_ids
        }

    async def create_event(
        self,
        summary,
        start_time,
        end_time,
        calendar_id="primary",
        description="",
        location="",
        timezone_str="UTC",
    ):
        if self.error:
            raise self.error
        self.created.append({"summary": summary, "start": start_time, "calendar_id": calendar_id})
        return CalendarEntry({"id": f"cal-{len(self.created)}", "summary": summary})

    async def close(self):
        return None


class FakeAggregator:
    def __init__(self, raw_events=None):
        self.raw_events = raw_events or []

    async def discover_all(self):
        return list(self.raw_events)


def make_event(event_id="evt_1", **overrides) -> Event:
    values = {
        "id": event_id,
        "title": "Storytime Science for Kids",
        "description": "Hands-on science storytime for toddlers",
        "date": NOW + timedelta(days=6),
        "location": Location(name="Exploratorium", address="Pier 15, The Embarcadero"),
        "cost": 0.0,
        "registration_url": f"https://events.example.org/{event_id}",
        "sources": ["eventbrite"],
        "status": EventStatus.SCORED,
    }
    values.update(overrides)
    return Event(**values)


def make_registration_page(confirmation="ABC12345") -> tuple[FakePage, FakeElement]:
    """A page with one free registration form whose submit leads to a thank-you page."""
    page = FakePage(body_text="Register for Storytime Science. Spots are limited.")

    def submitted():
        page.url = "https://events.example.org/thank-you"
        page.body_text = f"Thank you! Your confirmation number: {confirmation}"

    submit = FakeElement({"type": "submit"}, tag="button", on_click=submitted)
    form = FakeElement(
        tag="form",
        text="Register for this event. First name Last name Email",
        children={
            "input, select, textarea": [
                FakeElement({"name": "first_name", "type": "text"}),
                FakeElement({"name": "last_name", "type": "text"}),
                FakeElement({"name": "email", "type": "email"}),
            ],
            'button[type="submit"]': [submit],
        },
    )
    page.selectors["form"] = [form]
    return page, submit


@pytest.fixture
def store():
    return FakeEventStore()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def audit():
    return RecordingAuditLogger()


@pytest.fixture
def profile():
    return FamilyProfile(
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        phone="4155550100",
        emergency_contact="4155550199",
        child_count=1,
        child_age=3,
    )


@pytest.fixture
def registration_page():
    return make_registration_page()


@pytest.fixture
def browser_pool(registration_page):
    page, _ = registration_page
    return FakeBrowserPool(page)


@pytest.fixture
def registration_service(store, browser_pool, audit, profile, tmp_path):
    return RegistrationService(
        store,
        PaymentGuard(),
        browser_pool,
        audit=audit,
        profile=profile,
        screenshot_dir=str(tmp_path / "screenshots"),
        timeout_seconds=5,
    )


@pytest.fixture
def approval_service(store, channel, audit):
    return ApprovalService(store, [channel], audit=audit, timeout_hours=24, reminder_after_hours=12)


@pytest.fixture
def terminations():
    return []


@pytest.fixture
def service_container(
    store, channel, audit, browser_pool, registration_service, approval_service, terminations
):
    guard = registration_service.guard
    calendar_sync = CalendarSyncService(store, FakeCalendarService())
    reporting = ReportingService(store, guard, browser_pool)
    pipeline = LifecyclePipeline(
        store=store,
        aggregator=FakeAggregator(),
        event_filter=EventFilter(DeduplicationService()),
        scorer=ScoringService(venue_history=store),
        approval=approval_service,
        registration=registration_service,
        calendar_sync=calendar_sync,
        reporting=reporting,
        dispatch_pacing_seconds=0,
    )
    return ServiceContainer(
        store=store,
        guard=guard,
        approval=approval_service,
        registration=registration_service,
        calendar_sync=calendar_sync,
        pipeline=pipeline,
        scheduler=LifecycleScheduler.for_pipeline(pipeline),
        reporting=reporting,
        browser_pool=browser_pool,
        closeables=[channel],
        terminate=lambda: terminations.append(True),
    )


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "test-api-key")
    return "test-api-key"
