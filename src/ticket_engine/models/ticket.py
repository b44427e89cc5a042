"""Ticket models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ticket_engine.utils.clock import as_utc, utcnow


def _new_id() -> str:
    return uuid.uuid4().hex


class TicketStatus(str, Enum):
    """Lifecycle states; ``OPEN`` is initial."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"


class Priority(str, Enum):
    """Priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Ticket(BaseModel):
    """The core support-request record."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id, frozen=True)
    title: str
    description: str
    category: str = ""
    status: TicketStatus = TicketStatus.OPEN
    priority: Priority = Priority.MEDIUM
    created_at: datetime = Field(default_factory=utcnow, frozen=True)
    updated_at: Optional[datetime] = None
    customer_id: Optional[str] = None
    assignee_id: Optional[str] = None
    version: int = 0

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class TicketComment(BaseModel):
    """A comment or internal note on a ticket."""

    id: str = Field(default_factory=_new_id)
    ticket_id: str
    author_id: str
    body: str
    is_internal: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class TicketUpdate(BaseModel):
    """Edit request; ``None`` means leave the field unchanged.

    ``clear_assignee`` unassigns the ticket, since ``assignee_id=None`` cannot.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    assignee_id: Optional[str] = None
    clear_assignee: bool = False

    @field_validator("title", "description")
    @classmethod
    def reject_blank(cls, value: Optional[str]) -> Optional[str]:
        """Blank strings would wipe required ticket fields."""
        if value is None:
            return value
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title and description cannot be blank")
        return cleaned

    @model_validator(mode="after")
    def reject_conflicting_assignee(self) -> "TicketUpdate":
        if self.clear_assignee and self.assignee_id is not None:
            raise ValueError("assignee_id and clear_assignee cannot be combined")
        return self
