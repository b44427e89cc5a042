"""Email ingestion models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ticket_engine.utils.clock import utcnow


class InboundEmail(BaseModel):
    """Inbound message payload from the mail provider."""

    subject: str
    body: str
    from_email: str
    from_name: Optional[str] = None
    message_id: str

    @field_validator("subject", "body", "from_email", "message_id")
    @classmethod
    def validate_required(cls, value: str) -> str:
        """Reject blank values before anything is persisted."""
        if not (value or "").strip():
            raise ValueError("subject, body, from_email and message_id must be provided")
        return value


class EmailIngestion(BaseModel):
    """One record per inbound message, keyed by ``message_id``."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    message_id: str
    subject: str
    original_body: str
    processed_body: str
    from_email: str
    from_name: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    is_processed: bool = False
    processing_error: Optional[str] = None
    created_ticket_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_linked(self) -> bool:
        """Processed and pointing at a ticket; retry is refused."""
        return self.is_processed and self.created_ticket_id is not None


class EmailProcessingResult(BaseModel):
    """Outcome of processing or retrying an inbound email."""

    success: bool
    error_code: Optional[str] = None
    error_message: str = ""
    ingestion_id: Optional[str] = None
    created_ticket_id: Optional[str] = None
    processed_body: str = ""


class EmailIngestionPage(BaseModel):
    """Paged listing of ingestion records, newest first."""

    items: List[EmailIngestion] = Field(default_factory=list)
    total_count: int
    page: int
    page_size: int
    total_pages: int
