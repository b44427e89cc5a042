"""
Attachment workflows: upload, secure download, delete, list, token rotation.

Ties together the ticket access policy, upload validation, byte storage and
the attachment record.
"""

from __future__ import annotations

import io
from datetime import timedelta
from typing import BinaryIO, List, Tuple

from ticket_engine.models.attachment import TicketAttachment
from ticket_engine.models.principal import Principal
from ticket_engine.models.ticket import Ticket
from ticket_engine.repositories.base import AttachmentRepository, TicketRepository
from ticket_engine.services.authorization import (
    AuthorizationDecision,
    authorize_staff,
    authorize_ticket_access,
)
from ticket_engine.services.file_storage import FileStorageService
from ticket_engine.services.file_validation import FileValidationService
from ticket_engine.utils.error_handling import (
    AuthorizationDeniedError,
    NotFoundError,
    StorageFailureError,
    ValidationFailedError,
)
from ticket_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TOKEN_TTL = timedelta(days=7)


def _require(decision: AuthorizationDecision, **context) -> None:
    if not decision.allowed:
        logger.info(
            "Authorization denied",
            extra={"policy": decision.policy, "rule": decision.reason, **context},
        )
        raise AuthorizationDeniedError(decision.policy)


def _stream_length(stream: BinaryIO) -> int:
    """Bytes left from the current position; the position is restored."""
    try:
        start = stream.tell()
        end = stream.seek(0, io.SEEK_END)
        stream.seek(start)
    except (OSError, ValueError) as exc:
        raise ValidationFailedError("Error reading file content.", reason="read_error") from exc
    return end - start


class AttachmentService:
    """Attachment operations on behalf of an authenticated principal."""

    def __init__(
        self,
        tickets: TicketRepository,
        attachments: AttachmentRepository,
        storage: FileStorageService,
        validator: FileValidationService,
        clock,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        self.tickets = tickets
        self.attachments = attachments
        self.storage = storage
        self.validator = validator
        self.clock = clock
        self.token_ttl = token_ttl

    def _load_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found.")
        return ticket

    def _load_attachment(self, attachment_id: str) -> TicketAttachment:
        attachment = self.attachments.get(attachment_id)
        if attachment is None:
            raise NotFoundError("Attachment not found.")
        return attachment

    def _discard(self, stored_file_name: str) -> None:
        """Remove bytes whose record was never written."""
        try:
            self.storage.delete(stored_file_name)
        except StorageFailureError:
            logger.error("Orphaned attachment bytes", extra={"stored_file_name": stored_file_name})

    def upload(
        self,
        principal: Principal,
        ticket_id: str,
        stream: BinaryIO,
        file_name: str,
        content_type: str,
        file_size: int,
    ) -> TicketAttachment:
        measured_size = _stream_length(stream)
        if measured_size != file_size:
            logger.warning(
                "Declared upload size differs from content",
                extra={"declared": file_size, "measured": measured_size},
            )
        if measured_size <= 0:
            raise ValidationFailedError("No file uploaded.", reason="empty_upload")

        ticket = self._load_ticket(ticket_id)
        _require(authorize_ticket_access(principal, ticket), ticket_id=ticket_id)

        validation = self.validator.validate(stream, file_name, content_type, measured_size)
        if not validation.is_valid:
            raise ValidationFailedError(validation.error_message, reason=validation.reason.value)

        stored = self.storage.store(stream, file_name, content_type, principal.user_id)
        now = self.clock.now()
        attachment = TicketAttachment(
            ticket_id=ticket_id,
            uploaded_by_id=principal.user_id,
            original_file_name=file_name,
            stored_file_name=stored.stored_file_name,
            content_type=validation.detected_content_type,
            file_size_bytes=measured_size,
            uploaded_at=now,
            download_token=stored.download_token,
            token_expires_at=now + self.token_ttl,
        )
        try:
            self.attachments.add(attachment)
        except Exception:
            self._discard(stored.stored_file_name)
            raise

        logger.info(
            "Attachment uploaded",
            extra={"ticket_id": ticket_id, "attachment_id": attachment.id},
        )
        return attachment

    def download(
        self, principal: Principal, attachment_id: str, token: str
    ) -> Tuple[TicketAttachment, BinaryIO]:
        """Token first, then ticket access, then bytes."""
        attachment = self._load_attachment(attachment_id)
        _require(
            self.storage.verify_download(attachment, token, self.clock.now()),
            attachment_id=attachment_id,
        )

        ticket = self._load_ticket(attachment.ticket_id)
        _require(authorize_ticket_access(principal, ticket), attachment_id=attachment_id)

        stream = self.storage.retrieve(attachment.stored_file_name)
        if stream is None:
            logger.error("Attachment bytes missing", extra={"attachment_id": attachment_id})
            raise NotFoundError("File not found.")
        return attachment, stream

    def delete(self, principal: Principal, attachment_id: str) -> None:
        _require(authorize_staff(principal), attachment_id=attachment_id)
        attachment = self._load_attachment(attachment_id)
        self.storage.delete(attachment.stored_file_name)
        self.attachments.delete(attachment_id)
        logger.info("Attachment deleted", extra={"attachment_id": attachment_id})

    def list_for_ticket(self, principal: Principal, ticket_id: str) -> List[TicketAttachment]:
        ticket = self._load_ticket(ticket_id)
        _require(authorize_ticket_access(principal, ticket), ticket_id=ticket_id)
        return self.attachments.list_for_ticket(ticket_id)

    def rotate_token(self, principal: Principal, attachment_id: str) -> TicketAttachment:
        """Issue a fresh token and expiry; the previous token stops working."""
        attachment = self._load_attachment(attachment_id)
        ticket = self._load_ticket(attachment.ticket_id)
        _require(authorize_ticket_access(principal, ticket), attachment_id=attachment_id)

        rotated = attachment.model_copy(
            update={
                "download_token": self.storage.generate_download_token(),
                "token_expires_at": self.clock.now() + self.token_ttl,
            }
        )
        self.attachments.update(rotated)
        logger.info("Download token rotated", extra={"attachment_id": attachment_id})
        return rotated

    def download_url(self, attachment: TicketAttachment) -> str:
        return self.storage.get_secure_download_url(attachment.download_token, attachment.id)
