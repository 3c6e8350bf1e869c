"""
Locating, filling and verifying registration forms.

Strategies are tried in order: site-specific ones for known hosts first,
then the generic heuristic that scores every <form> on the page by how much
it looks like a registration form.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlparse

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Order matters: "emergency contact name" is not the parent's name
FIELD_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("emergency", re.compile(r"emergency", re.I)),
    ("first_name", re.compile(r"first.?name|\bfname\b|given.?name", re.I)),
    ("last_name", re.compile(r"last.?name|\blname\b|surname|family.?name", re.I)),
    ("name", re.compile(r"^name$|full.?name|contact.?name|\bname\b", re.I)),
    ("email", re.compile(r"email|e.?mail", re.I)),
    ("phone", re.compile(r"phone|telephone|mobile|cell", re.I)),
    ("age", re.compile(r"(?:child|kid).?age|\bages?\b|birth|dob", re.I)),
    ("children", re.compile(r"child|kid|participant|attendee|group.?size|party.?size", re.I)),
]

REGISTRATION_KEYWORDS = [
    "register",
    "sign up",
    "registration",
    "event",
    "rsvp",
    "first name",
    "last name",
    "email",
    "phone",
    "contact",
]

SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Register")',
    'button:has-text("Sign Up")',
    'button:has-text("RSVP")',
    'button:has-text("Submit")',
    ".submit-btn",
    ".register-btn",
]

SUCCESS_SELECTORS = [
    ".success",
    ".confirmation",
    ".thank-you",
    ".registered",
    ".reservation-confirmed",
    '[class*="success"]',
    '[class*="confirmation"]',
    '[class*="thank"]',
]

SUCCESS_TEXT = [
    "thank you",
    "confirmation",
    "registered",
    "success",
    "we have received",
    "registration complete",
    "you are registered",
    "you're registered",
    "see you there",
]

SUCCESS_URL_MARKERS = ["success", "confirmation", "thank", "complete", "reserved"]

CONFIRMATION_PATTERNS = [
    re.compile(r"confirmation\s*(?:number|code|id|#)?\s*[:#]\s*([a-z0-9\-]{4,})", re.I),
    re.compile(r"reference\s*(?:number|code|id|#)?\s*[:#]\s*([a-z0-9\-]{4,})", re.I),
    re.compile(r"registration\s*(?:number|code|id|#)?\s*[:#]\s*([a-z0-9\-]{4,})", re.I),
    re.compile(r"\b(?:conf|ref|reg)\s*#?\s*:?\s*([a-z0-9\-]{6,})", re.I),
]

SKIPPED_INPUT_TYPES = {"hidden", "submit", "button", "checkbox", "radio", "file", "image", "reset"}


@dataclass(slots=True)
class FamilyProfile:
    first_name: str
    last_name: str
    email: str
    phone: str
    emergency_contact: str
    child_count: int
    child_age: int

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_settings(cls) -> "FamilyProfile":
        return cls(
            first_name=settings.PARENT_FIRST_NAME,
            last_name=settings.PARENT_LAST_NAME,
            email=settings.PARENT_EMAIL,
            phone=settings.PARENT_PHONE,
            emergency_contact=settings.EMERGENCY_CONTACT or settings.PARENT_PHONE,
            child_count=settings.CHILD_COUNT,
            child_age=settings.CHILD_AGE,
        )

    def value_for(self, kind: str) -> str | None:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "emergency": self.emergency_contact,
            "children": str(self.child_count),
            "age": str(self.child_age),
        }.get(kind)


@dataclass(slots=True)
class FormField:
    kind: str
    handle: Any
    name: str
    tag: str = "input"
    input_type: str = ""


@dataclass(slots=True)
class LocatedForm:
    strategy: str
    fields: dict[str, FormField] = field(default_factory=dict)
    submit: Any = None
    score: int = 0

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields.values()]


class FormStrategy(Protocol):
    name: str

    def matches(self, url: str) -> bool: ...

    async def locate(self, page) -> LocatedForm | None: ...


async def _attribute(handle, attribute: str) -> str:
    return (await handle.get_attribute(attribute)) or ""


async def classify_field(handle) -> FormField | None:
    """Work out what a form control is for from its name/id/placeholder/label."""
    input_type = (await _attribute(handle, "type")).lower()
    if input_type in SKIPPED_INPUT_TYPES:
        return None

    name = await _attribute(handle, "name")
    element_id = await _attribute(handle, "id")
    placeholder = await _attribute(handle, "placeholder")
    aria_label = await _attribute(handle, "aria-label")
    tag = (await handle.evaluate("el => el.tagName.toLowerCase()")) or "input"

    identifier = name or element_id
    for text in (name, element_id, placeholder, aria_label):
        if not text:
            continue
        for kind, pattern in FIELD_PATTERNS:
            if pattern.search(text):
                return FormField(
                    kind=kind, handle=handle, name=identifier or text, tag=tag, input_type=input_type
                )

    if input_type == "email":
        return FormField(kind="email", handle=handle, name=identifier, tag=tag, input_type=input_type)
    if input_type == "tel":
        return FormField(kind="phone", handle=handle, name=identifier, tag=tag, input_type=input_type)
    return None


async def analyze_form(form, strategy: str) -> LocatedForm:
    located = LocatedForm(strategy=strategy)
    text = (await form.inner_text()).lower()
    located.score += 10 * sum(1 for keyword in REGISTRATION_KEYWORDS if keyword in text)

    for control in await form.query_selector_all("input, select, textarea"):
        form_field = await classify_field(control)
        if form_field is None or form_field.kind in located.fields:
            continue
        located.fields[form_field.kind] = form_field
        located.score += 10

    for selector in SUBMIT_SELECTORS:
        buttons = await form.query_selector_all(selector)
        if buttons:
            located.submit = buttons[0]
            located.score += 20
            break

    if "first_name" in located.fields or "name" in located.fields:
        located.score += 15
    if "email" in located.fields:
        located.score += 25
    if "phone" in located.fields:
        located.score += 10
    return located


def _usable(located: LocatedForm | None) -> bool:
    return bool(
        located
        and located.submit is not None
        and ("email" in located.fields or "name" in located.fields or "first_name" in located.fields)
    )


class GenericFormStrategy:
    name = "generic"

    def matches(self, url: str) -> bool:
        return True

    async def locate(self, page) -> LocatedForm | None:
        best: LocatedForm | None = None
        for form in await page.query_selector_all("form"):
            located = await analyze_form(form, self.name)
            if _usable(located) and (best is None or located.score > best.score):
                best = located
        return best


class SiteFormStrategy:
    """Known host: prefer its registration form selectors, optionally open the form first."""

    def __init__(
        self,
        name: str,
        hosts: list[str],
        form_selectors: list[str],
        open_form_selector: str | None = None,
    ):
        self.name = name
        self.hosts = hosts
        self.form_selectors = form_selectors
        self.open_form_selector = open_form_selector

    def matches(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.hosts)

    async def locate(self, page) -> LocatedForm | None:
        forms = await self._forms(page)
        if not forms and self.open_form_selector:
            opener = await page.query_selector(self.open_form_selector)
            if opener is not None:
                await opener.click()
                await page.wait_for_load_state("domcontentloaded")
                forms = await self._forms(page)

        best: LocatedForm | None = None
        for form in forms:
            located = await analyze_form(form, self.name)
            if _usable(located) and (best is None or located.score > best.score):
                best = located
        return best

    async def _forms(self, page) -> list:
        found = []
        for selector in self.form_selectors:
            found.extend(await page.query_selector_all(selector))
        return found


DEFAULT_STRATEGIES: list[FormStrategy] = [
    SiteFormStrategy(
        "exploratorium",
        ["exploratorium.edu"],
        ['form[action*="register"]', 'form[action*="rsvp"]', 'form[action*="event"]'],
        open_form_selector='button:has-text("Register"), a:has-text("Register"), '
        'button:has-text("Sign Up"), a:has-text("Sign Up")',
    ),
    SiteFormStrategy(
        "cal_academy",
        ["calacademy.org"],
        ['form[action*="ticket"]', 'form[action*="admission"]', 'form[class*="ticket"]'],
    ),
    SiteFormStrategy(
        "sf_library",
        ["sfpl.org"],
        ['form[action*="register"]', 'form[class*="registration"]', 'form[id*="register"]'],
    ),
    SiteFormStrategy(
        "sf_rec_parks",
        ["sfrecpark.org"],
        ['form[action*="register"]', 'form[class*="registration"]'],
    ),
    GenericFormStrategy(),
]


async def locate_form(page, url: str, strategies: list[FormStrategy]) -> LocatedForm | None:
    for strategy in strategies:
        if not strategy.matches(url):
            continue
        located = await strategy.locate(page)
        if located is not None:
            logger.debug(
                "Registration form located",
                strategy=strategy.name,
                fields=sorted(located.fields),
                score=located.score,
            )
            return located
    return None


async def fill_form(located: LocatedForm, profile: FamilyProfile) -> list[str]:
    """Fill every recognised field from the family profile. Returns the kinds filled."""
    filled = []
    for kind, form_field in located.fields.items():
        value = profile.value_for(kind)
        if not value:
            continue
        if form_field.tag == "select":
            await form_field.handle.select_option(value)
        else:
            await form_field.handle.fill(value)
        filled.append(kind)
    return filled


def extract_confirmation(text: str) -> str | None:
    for pattern in CONFIRMATION_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(1)
    return None


async def detect_success(page) -> tuple[bool, str]:
    """Returns (success, page text) after a submission."""
    text = await page.inner_text("body")
    url = (page.url or "").lower()

    if any(marker in url for marker in SUCCESS_URL_MARKERS):
        return True, text

    for selector in SUCCESS_SELECTORS:
        if await page.query_selector_all(selector):
            return True, text

    lowered = text.lower()
    return any(phrase in lowered for phrase in SUCCESS_TEXT), text
