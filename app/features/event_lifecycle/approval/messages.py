"""
Outbound message text for approval requests, reminders and payment follow-ups.
"""

import math
from datetime import UTC, datetime

from app.features.event_lifecycle.domain.models import Event

MAX_LOCATION_LENGTH = 40


def _format_date(event: Event) -> str:
    if not event.date:
        return "Date TBD"
    return event.date.strftime("%a, %b %-d at %-I:%M %p")


def _format_location(event: Event) -> str:
    text = event.location.name or event.location.address or "Location TBD"
    if len(text) > MAX_LOCATION_LENGTH:
        return text[: MAX_LOCATION_LENGTH - 3] + "..."
    return text


def format_cost_line(event: Event) -> str:
    if event.is_free:
        return "Cost: FREE"
    amount = f"${event.cost:.2f}" if math.isfinite(event.cost) else "unknown amount"
    return f"⚠️ COST: {amount} - REQUIRES PAYMENT"


def build_approval_message(event: Event, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    lines = ["New family event found!", event.title]

    date_line = f"Date: {_format_date(event)}"
    if event.date:
        weeks_away = round((event.date - now).total_seconds() / (86400 * 7))
        date_line += f" ({weeks_away} weeks away)"
    lines.append(date_line)
    lines.append(f"Location: {_format_location(event)}")
    lines.append(format_cost_line(event))

    if event.age_range:
        lines.append(f"Ages: {event.age_range.min}-{event.age_range.max}")

    if event.capacity and event.capacity.total and event.capacity.available <= 5:
        lines.append(f"Only {event.capacity.available} spots left!")

    if event.calendar_warnings:
        lines.append("Note: overlaps something on the family calendar")

    lines.append("")
    if event.is_free:
        lines.append("Reply YES to book or NO to skip")
    else:
        lines.append("Reply YES to approve (you'll get a payment link) or NO to skip")
    return "\n".join(lines)


def build_reminder_message(event: Event) -> str:
    return (
        f"Reminder: You have a pending event approval for {event.title} "
        f"({_format_date(event)}). Reply YES to book or NO to skip."
    )


def build_payment_message(event: Event) -> str:
    link = event.registration_url or "the event page"
    amount = f"${event.cost:.2f}" if math.isfinite(event.cost) else "the listed price"
    return (
        f"To complete booking for {event.title}, pay {amount} at {link}. "
        "Reply PAY after payment."
    )


def build_decision_ack(event: Event, status: str) -> str:
    if status == "approved":
        if event.is_free:
            return f"✅ Perfect! \"{event.title}\" approved and will be booked automatically."
        return f"✅ Great! \"{event.title}\" approved. Payment link coming next..."
    if status == "rejected":
        return f"👍 No problem, skipping \"{event.title}\"."
    if status == "payment_confirmed":
        return f"🎉 Thanks! \"{event.title}\" is booked. Calendar invite coming soon."
    return (
        f"Sorry, I didn't understand that. Reply YES to book \"{event.title}\" or NO to skip it."
    )
