"""
In-memory repositories.

All repositories built on the same ``InMemoryDatabase`` share one lock, so
cascades and uniqueness checks are atomic the way a relational store would
make them. Records are copied on the way in and out; callers never hold a
reference into the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Optional, Tuple

from ticket_engine.models.attachment import TicketAttachment
from ticket_engine.models.email import EmailIngestion
from ticket_engine.models.principal import UserAccount
from ticket_engine.models.ticket import Ticket, TicketComment
from ticket_engine.utils.error_handling import ConflictError


@dataclass
class InMemoryDatabase:
    tickets: Dict[str, Ticket] = field(default_factory=dict)
    comments: Dict[str, TicketComment] = field(default_factory=dict)
    attachments: Dict[str, TicketAttachment] = field(default_factory=dict)
    emails: Dict[str, EmailIngestion] = field(default_factory=dict)
    users: Dict[str, UserAccount] = field(default_factory=dict)
    lock: RLock = field(default_factory=RLock)


class InMemoryTicketRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get(self, ticket_id: str) -> Optional[Ticket]:
        with self.db.lock:
            ticket = self.db.tickets.get(ticket_id)
            return ticket.model_copy() if ticket else None

    def add(self, ticket: Ticket) -> Ticket:
        with self.db.lock:
            if ticket.id in self.db.tickets:
                raise ConflictError(f"Ticket {ticket.id} already exists")
            stored = ticket.model_copy(update={"version": 1})
            self.db.tickets[ticket.id] = stored
            return stored.model_copy()

    def save(self, ticket: Ticket, expected_version: int) -> Ticket:
        with self.db.lock:
            current = self.db.tickets.get(ticket.id)
            if current is None or current.version != expected_version:
                raise ConflictError(f"Ticket {ticket.id} was modified concurrently")
            # created_at is immutable: keep the stored value.
            stored = ticket.model_copy(
                update={"version": expected_version + 1, "created_at": current.created_at}
            )
            self.db.tickets[ticket.id] = stored
            return stored.model_copy()

    def delete(self, ticket_id: str) -> List[TicketAttachment]:
        with self.db.lock:
            if self.db.tickets.pop(ticket_id, None) is None:
                return []
            for comment_id in [c.id for c in self.db.comments.values() if c.ticket_id == ticket_id]:
                del self.db.comments[comment_id]
            removed = [a for a in self.db.attachments.values() if a.ticket_id == ticket_id]
            for attachment in removed:
                del self.db.attachments[attachment.id]
            for email in self.db.emails.values():
                if email.created_ticket_id == ticket_id:
                    email.created_ticket_id = None
            return removed


class InMemoryCommentRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def add(self, comment: TicketComment) -> TicketComment:
        with self.db.lock:
            self.db.comments[comment.id] = comment.model_copy()
            return comment

    def list_for_ticket(self, ticket_id: str) -> List[TicketComment]:
        with self.db.lock:
            found = [c.model_copy() for c in self.db.comments.values() if c.ticket_id == ticket_id]
        return sorted(found, key=lambda c: c.created_at)


class InMemoryAttachmentRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get(self, attachment_id: str) -> Optional[TicketAttachment]:
        with self.db.lock:
            attachment = self.db.attachments.get(attachment_id)
            return attachment.model_copy() if attachment else None

    def add(self, attachment: TicketAttachment) -> TicketAttachment:
        with self.db.lock:
            self._ensure_token_unused(attachment)
            self.db.attachments[attachment.id] = attachment.model_copy()
            return attachment

    def update(self, attachment: TicketAttachment) -> TicketAttachment:
        with self.db.lock:
            if attachment.id not in self.db.attachments:
                raise ConflictError(f"Attachment {attachment.id} no longer exists")
            self._ensure_token_unused(attachment)
            self.db.attachments[attachment.id] = attachment.model_copy()
            return attachment

    def delete(self, attachment_id: str) -> bool:
        with self.db.lock:
            return self.db.attachments.pop(attachment_id, None) is not None

    def list_for_ticket(self, ticket_id: str) -> List[TicketAttachment]:
        with self.db.lock:
            found = [
                a.model_copy() for a in self.db.attachments.values() if a.ticket_id == ticket_id
            ]
        return sorted(found, key=lambda a: a.uploaded_at, reverse=True)

    def _ensure_token_unused(self, attachment: TicketAttachment) -> None:
        for other in self.db.attachments.values():
            if other.id != attachment.id and other.download_token == attachment.download_token:
                raise ConflictError("Download token already in use")


class InMemoryEmailIngestionRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get(self, ingestion_id: str) -> Optional[EmailIngestion]:
        with self.db.lock:
            ingestion = self.db.emails.get(ingestion_id)
            return ingestion.model_copy() if ingestion else None

    def get_by_message_id(self, message_id: str) -> Optional[EmailIngestion]:
        with self.db.lock:
            for ingestion in self.db.emails.values():
                if ingestion.message_id == message_id:
                    return ingestion.model_copy()
        return None

    def add(self, ingestion: EmailIngestion) -> EmailIngestion:
        with self.db.lock:
            if any(e.message_id == ingestion.message_id for e in self.db.emails.values()):
                raise ConflictError(f"Message {ingestion.message_id} already ingested")
            stored = ingestion.model_copy(update={"version": 1})
            self.db.emails[ingestion.id] = stored
            return stored.model_copy()

    def update(self, ingestion: EmailIngestion) -> EmailIngestion:
        with self.db.lock:
            current = self.db.emails.get(ingestion.id)
            version = current.version if current else ingestion.version
            self.db.emails[ingestion.id] = ingestion.model_copy(update={"version": version})
            return ingestion

    def claim(self, ingestion: EmailIngestion, expected_version: int) -> EmailIngestion:
        with self.db.lock:
            current = self.db.emails.get(ingestion.id)
            if current is None or current.version != expected_version:
                raise ConflictError(f"Email ingestion {ingestion.id} was modified concurrently")
            stored = ingestion.model_copy(update={"version": expected_version + 1})
            self.db.emails[ingestion.id] = stored
            return stored.model_copy()

    def list_recent(self, offset: int, limit: int) -> Tuple[List[EmailIngestion], int]:
        with self.db.lock:
            ordered = sorted(self.db.emails.values(), key=lambda e: e.received_at, reverse=True)
            return [e.model_copy() for e in ordered[offset : offset + limit]], len(ordered)


class InMemoryUserRepository:
    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def find_by_email(self, email: str) -> Optional[UserAccount]:
        wanted = email.strip().lower()
        with self.db.lock:
            for user in self.db.users.values():
                if user.email.lower() == wanted:
                    return user.model_copy()
        return None

    def add(self, user: UserAccount) -> UserAccount:
        with self.db.lock:
            if self.find_by_email(user.email) is not None:
                raise ConflictError("Email already registered")
            self.db.users[user.id] = user.model_copy()
            return user
