"""Attachment models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ticket_engine.utils.clock import utcnow


class TicketAttachment(BaseModel):
    """Stored file metadata; ``original_file_name`` is display-only."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    ticket_id: str
    uploaded_by_id: str
    original_file_name: str
    stored_file_name: str
    content_type: str
    file_size_bytes: int = Field(ge=0)
    uploaded_at: datetime = Field(default_factory=utcnow)
    download_token: str
    token_expires_at: Optional[datetime] = None


class FileRejectionReason(str, Enum):
    """Why an upload failed validation."""

    SIZE_EXCEEDED = "size_exceeded"
    EXTENSION_NOT_ALLOWED = "extension_not_allowed"
    CONTENT_TYPE_NOT_ALLOWED = "content_type_not_allowed"
    CONTENT_UNDETECTABLE = "content_undetectable"
    CONTENT_TYPE_MISMATCH = "content_type_mismatch"
    READ_ERROR = "read_error"


@dataclass
class FileValidationResult:
    """Validation outcome; ``detected_content_type`` is set only when valid."""

    is_valid: bool
    reason: Optional[FileRejectionReason] = None
    error_message: str = ""
    detected_content_type: Optional[str] = None


@dataclass
class StoredFile:
    """Result of writing attachment bytes."""

    stored_file_name: str
    download_token: str
