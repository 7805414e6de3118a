"""Pydantic models for entries written to the memory vault."""

from __future__ import annotations

from pydantic import BaseModel, Field


class MemoryMetadata(BaseModel):
    """Calendar-specific metadata stored alongside a memory.

    ``event_id`` is the stable key used to find an existing memory for
    update and delete.
    """

    event_id: str
    calendar_id: str
    start_time: str
    end_time: str = ""
    location: str = ""
    attendees: list[str] = Field(default_factory=list)
    change_type: str
    last_modified: str = ""
    recurrence: list[str] = Field(default_factory=list)
    color_id: str = ""
    creator: str | None = None
    status: str = ""


class MemoryEntry(BaseModel):
    """A calendar event rendered as a memory vault entry.

    Attributes:
        content: Multi-line human readable summary of the event.
        title: Display title (``"Calendar Event: <summary>"``).
        memory_type: Always ``"CALENDAR_EVENT"``.
        source: Always ``"GOOGLE_CALENDAR"``.
        tags: De-duplicated tags in insertion order.
        metadata: Structured event fields.
        is_private: Calendar memories are private to the user.
    """

    content: str
    title: str
    memory_type: str = "CALENDAR_EVENT"
    source: str = "GOOGLE_CALENDAR"
    tags: list[str] = Field(default_factory=list)
    metadata: MemoryMetadata
    is_private: bool = True

    @property
    def event_id(self) -> str:
        return self.metadata.event_id
