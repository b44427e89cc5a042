"""Test data builders shared across test modules."""

import io
from datetime import datetime, timedelta, timezone

from ticket_engine.models.ticket import Ticket, TicketStatus

PNG_BYTES = bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A]) + b"\x00\x00\x00\rIHDR" * 4
JPEG_BYTES = bytes([0xFF, 0xD8, 0xFF, 0xE0]) + b"\x00\x10JFIF\x00" * 4
PDF_BYTES = b"%PDF-1.7\n1 0 obj\n<< /Type /Catalog >>\nendobj\n"

START = datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def make_ticket(**overrides) -> Ticket:
    """Build a realistic ticket snapshot owned by cust-1 and assigned to agent-1."""
    fields = {
        "title": "Cannot log in",
        "description": "Password reset link never arrives",
        "status": TicketStatus.OPEN,
        "created_at": START,
        "customer_id": "cust-1",
        "assignee_id": "agent-1",
    }
    fields.update(overrides)
    return Ticket(**fields)


def upload_stream(data: bytes) -> io.BytesIO:
    return io.BytesIO(data)
