"""Interfaces the services depend on."""

from __future__ import annotations

from typing import BinaryIO, List, Optional, Protocol, Tuple

from ticket_engine.models.attachment import TicketAttachment
from ticket_engine.models.email import EmailIngestion
from ticket_engine.models.principal import UserAccount
from ticket_engine.models.ticket import Ticket, TicketComment


class TicketRepository(Protocol):
    def get(self, ticket_id: str) -> Optional[Ticket]: ...

    def add(self, ticket: Ticket) -> Ticket: ...

    def save(self, ticket: Ticket, expected_version: int) -> Ticket:
        """Persist if the stored version still equals ``expected_version``, else ConflictError."""
        ...

    def delete(self, ticket_id: str) -> List[TicketAttachment]:
        """Delete the ticket with its comments and attachments; null email links.

        Returns the removed attachment records so their bytes can be deleted.
        """
        ...


class CommentRepository(Protocol):
    def add(self, comment: TicketComment) -> TicketComment: ...

    def list_for_ticket(self, ticket_id: str) -> List[TicketComment]: ...


class AttachmentRepository(Protocol):
    def get(self, attachment_id: str) -> Optional[TicketAttachment]: ...

    def add(self, attachment: TicketAttachment) -> TicketAttachment:
        """ConflictError if the download token is already in use."""
        ...

    def update(self, attachment: TicketAttachment) -> TicketAttachment: ...

    def delete(self, attachment_id: str) -> bool: ...

    def list_for_ticket(self, ticket_id: str) -> List[TicketAttachment]: ...


class EmailIngestionRepository(Protocol):
    def get(self, ingestion_id: str) -> Optional[EmailIngestion]: ...

    def get_by_message_id(self, message_id: str) -> Optional[EmailIngestion]: ...

    def add(self, ingestion: EmailIngestion) -> EmailIngestion:
        """ConflictError if ``message_id`` already exists."""
        ...

    def update(self, ingestion: EmailIngestion) -> EmailIngestion:
        """Write processing outcome fields; the version is left as stored."""
        ...

    def claim(self, ingestion: EmailIngestion, expected_version: int) -> EmailIngestion:
        """Persist if the stored version still equals ``expected_version``, else ConflictError."""
        ...

    def list_recent(self, offset: int, limit: int) -> Tuple[List[EmailIngestion], int]: ...


class UserRepository(Protocol):
    def find_by_email(self, email: str) -> Optional[UserAccount]: ...

    def add(self, user: UserAccount) -> UserAccount:
        """ConflictError if the email is already registered."""
        ...


class BlobStore(Protocol):
    def exists(self, name: str) -> bool: ...

    def write(self, name: str, stream: BinaryIO) -> None:
        """Create ``name``; FileExistsError if it already exists."""
        ...

    def open(self, name: str) -> Optional[BinaryIO]: ...

    def delete(self, name: str) -> bool: ...
