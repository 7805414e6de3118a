"""Map Google Calendar event resources to memory vault entries.

Converts a Google Calendar event ``dict`` into a
:class:`~cal_memsync.models.memory.MemoryEntry`:

- **content** -- a multi-line text summary (times, duration, location,
  description, attendees, recurrence).
- **tags** -- date/time buckets plus heuristics over attendees, location,
  recurrence and keywords in the title and description.
- **metadata** -- the structured event fields, keyed by ``event_id``.

Times are rendered in the event's own UTC offset; all-day events start at
midnight of their date.
"""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime
from typing import Any

from cal_memsync.models.memory import MemoryEntry, MemoryMetadata
from cal_memsync.models.sync import ChangeType

logger = logging.getLogger(__name__)

_BASE_TAGS = ("calendar", "event", "schedule")
_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WORK_KEYWORDS = ("meeting", "standup", "review", "project", "client", "work", "office")
_PERSONAL_KEYWORDS = ("doctor", "dentist", "gym", "workout", "personal", "family", "birthday")
_SOCIAL_KEYWORDS = ("party", "dinner", "lunch", "coffee", "social", "event")
_ONLINE_KEYWORDS = ("zoom", "meet", "teams")
_MEETING_LINK_HOSTS = ("meet.google.com", "zoom.us")


def map_to_memory_entry(
    event: dict[str, Any],
    change_type: ChangeType,
    calendar_id: str | None = None,
) -> MemoryEntry:
    """Convert a Google Calendar event into a memory vault entry.

    Args:
        event: A Google Calendar event resource dict.  Must carry ``id``.
        change_type: Classification of the change, stored in metadata.
        calendar_id: Calendar the event was fetched from.  Falls back to
            the organizer's email, then ``"primary"``.

    Returns:
        A :class:`MemoryEntry` ready for the vault.

    Raises:
        ValueError: If the event has no ``id``.
    """
    event_id = event.get("id")
    if not event_id:
        raise ValueError("Calendar event has no id")

    start_raw = _time_field(event, "start")
    end_raw = _time_field(event, "end")
    summary = event.get("summary") or "Untitled Event"

    metadata = MemoryMetadata(
        event_id=str(event_id),
        calendar_id=calendar_id or (event.get("organizer") or {}).get("email") or "primary",
        start_time=start_raw,
        end_time=end_raw,
        location=event.get("location") or "",
        attendees=_attendee_emails(event),
        change_type=change_type.value,
        last_modified=event.get("updated") or "",
        recurrence=list(event.get("recurrence") or []),
        color_id=event.get("colorId") or "",
        creator=(event.get("creator") or {}).get("email"),
        status=event.get("status") or "",
    )

    entry = MemoryEntry(
        content=build_content(event),
        title=f"Calendar Event: {summary}",
        tags=build_tags(event),
        metadata=metadata,
    )
    logger.debug("Mapped event %s (%s) to memory entry", event_id, change_type.value)
    return entry


def build_content(event: dict[str, Any]) -> str:
    """Render the human readable body of a calendar memory."""
    start = _parse_time(_time_field(event, "start"))
    end_obj = event.get("end") or {}
    end = _parse_time(end_obj.get("dateTime") or "")

    lines: list[str] = [f"Calendar Event: {event.get('summary') or 'Untitled Event'}", ""]

    lines.append(f"Start: {_format_time(start, _time_field(event, 'start'))}")
    if end is not None:
        lines.append(f"End: {_format_time(end, end_obj.get('dateTime', ''))}")

    if start is not None and end is not None:
        duration = _format_duration(start, end)
        if duration:
            lines.append(f"Duration: {duration}")

    if event.get("location"):
        lines.append(f"Location: {event['location']}")

    description = event.get("description") or ""
    if description:
        lines.append(f"Description: {description}")

    emails = _attendee_emails(event)
    if emails:
        lines.append(f"Attendees: {', '.join(emails)}")

    recurrence = event.get("recurrence") or []
    if recurrence:
        lines.append(f"Recurring: {', '.join(recurrence)}")

    if any(host in description for host in _MEETING_LINK_HOSTS):
        lines.append("Online meeting details in description")

    status = event.get("status")
    if status and status != "confirmed":
        lines.append(f"Status: {status}")

    return "\n".join(lines).strip()


def build_tags(event: dict[str, Any]) -> list[str]:
    """Derive search tags for a calendar memory.

    Returns:
        Tags in insertion order with duplicates removed.
    """
    tags: list[str] = list(_BASE_TAGS)

    start = _parse_time(_time_field(event, "start"))
    if start is not None:
        tags.extend(
            [
                f"year_{start.year}",
                f"month_{start.month}",
                f"day_{start.day}",
                f"hour_{start.hour}",
                _WEEKDAYS[start.weekday()],
                _time_of_day(start.hour),
            ]
        )

    attendees = event.get("attendees") or []
    if len(attendees) > 1:
        tags.append("meeting")
    elif len(attendees) == 1:
        tags.append("one_on_one")
    else:
        tags.append("personal")

    location = (event.get("location") or "").lower()
    if location:
        tags.append("in_person")
        if "home" in location:
            tags.append("home")
        if "office" in location:
            tags.append("office")

    summary = (event.get("summary") or "").lower()
    combined = f"{summary} {(event.get('description') or '').lower()}"

    if any(keyword in combined for keyword in _ONLINE_KEYWORDS):
        tags.append("online_meeting")

    recurrence = event.get("recurrence") or []
    if recurrence:
        tags.append("recurring")
        for frequency in ("DAILY", "WEEKLY", "MONTHLY"):
            if any(frequency in rule for rule in recurrence):
                tags.append(frequency.lower())

    if any(keyword in combined for keyword in _WORK_KEYWORDS):
        tags.append("work")
    if any(keyword in combined for keyword in _PERSONAL_KEYWORDS):
        tags.append("personal")
    if any(keyword in combined for keyword in _SOCIAL_KEYWORDS):
        tags.append("social")

    if "reminder" in summary or "todo" in summary:
        tags.extend(["reminder", "task"])

    start_obj = event.get("start") or {}
    if start_obj.get("date") and not start_obj.get("dateTime"):
        tags.append("all_day")

    return list(dict.fromkeys(tags))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _time_field(event: dict[str, Any], key: str) -> str:
    obj = event.get(key) or {}
    return obj.get("dateTime") or obj.get("date") or ""


def _attendee_emails(event: dict[str, Any]) -> list[str]:
    return [a["email"] for a in event.get("attendees") or [] if a.get("email")]


def _parse_time(value: str) -> datetime | None:
    """Parse an RFC 3339 ``dateTime`` or a plain ``date`` string."""
    if not value:
        return None
    with contextlib.suppress(ValueError):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return None


def _format_time(parsed: datetime | None, raw: str) -> str:
    if parsed is None:
        return raw or "unknown"
    if "T" not in raw:
        return parsed.strftime("%Y-%m-%d")
    return parsed.strftime("%Y-%m-%d %H:%M")


def _format_duration(start: datetime, end: datetime) -> str:
    if (start.tzinfo is None) != (end.tzinfo is None):
        return ""
    minutes = round((end - start).total_seconds() / 60)
    if minutes <= 0:
        return ""
    hours, minutes = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return " ".join(parts)


def _time_of_day(hour: int) -> str:
    if hour < 6:
        return "early_morning"
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 21:
        return "evening"
    return "night"
