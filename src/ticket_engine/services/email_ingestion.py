"""
Email-to-ticket ingestion.

The ingestion record is written before any ticket exists so that a failed
ticket creation leaves something to retry. ``message_id`` is the
idempotency key; the repository's uniqueness guarantee settles races
between concurrent deliveries of the same message.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from ticket_engine.models.email import (
    EmailIngestion,
    EmailIngestionPage,
    EmailProcessingResult,
    InboundEmail,
)
from ticket_engine.models.principal import Role, UserAccount
from ticket_engine.repositories.base import EmailIngestionRepository, UserRepository
from ticket_engine.services.pii_redaction import redact_pii
from ticket_engine.services.ticket_service import TicketService
from ticket_engine.utils.error_handling import (
    AlreadyProcessedError,
    ConflictError,
    NotFoundError,
    ValidationFailedError,
)
from ticket_engine.utils.logging_config import get_logger

logger = get_logger(__name__)

ALREADY_PROCESSED = "already_processed"
TICKET_CREATION_FAILED = "ticket_creation_failed"

TITLE_MAX_LENGTH = 200
MAX_PAGE_SIZE = 100

# A record neither processed nor failed is treated as being worked on until this elapses.
IN_FLIGHT_LEASE = timedelta(minutes=5)


class EmailIngestionService:
    """Turns inbound emails into tickets exactly once per message id."""

    def __init__(
        self,
        ingestions: EmailIngestionRepository,
        users: UserRepository,
        ticket_service: TicketService,
        clock,
    ):
        self.ingestions = ingestions
        self.users = users
        self.ticket_service = ticket_service
        self.clock = clock

    def ingest(self, email: InboundEmail) -> EmailProcessingResult:
        return self.process_email(
            email.subject, email.body, email.from_email, email.from_name, email.message_id
        )

    def process_email(
        self,
        subject: str,
        body: str,
        from_email: str,
        from_name: Optional[str],
        message_id: str,
    ) -> EmailProcessingResult:
        if self.ingestions.get_by_message_id(message_id) is not None:
            return self._already_processed(message_id)

        now = self.clock.now()
        ingestion = EmailIngestion(
            message_id=message_id,
            subject=subject,
            original_body=body,
            processed_body=redact_pii(body, from_email),
            from_email=from_email,
            from_name=from_name or None,
            received_at=now,
            claimed_at=now,
        )
        try:
            ingestion = self.ingestions.add(ingestion)
        except ConflictError:
            # A concurrent delivery of the same message got there first.
            return self._already_processed(message_id)

        logger.info(
            "Email ingested", extra={"ingestion_id": ingestion.id, "message_id": message_id}
        )
        return self._create_ticket(ingestion)

    def retry(self, ingestion_id: str) -> EmailProcessingResult:
        """Re-run redaction and ticket creation from the original body.

        The reset is written as a versioned claim, so of two concurrent
        retries only one goes on to create a ticket.
        """
        ingestion = self.get(ingestion_id)
        if ingestion.is_linked:
            raise AlreadyProcessedError()

        now = self.clock.now()
        if self._in_flight(ingestion, now):
            raise ConflictError("Email ingestion is already being processed.")

        reset = ingestion.model_copy(
            update={
                "is_processed": False,
                "processing_error": None,
                "created_ticket_id": None,
                "processed_at": None,
                "processed_body": redact_pii(ingestion.original_body, ingestion.from_email),
                "claimed_at": now,
            }
        )
        try:
            ingestion = self.ingestions.claim(reset, expected_version=ingestion.version)
        except ConflictError as exc:
            logger.info("Concurrent retry lost the claim", extra={"ingestion_id": ingestion_id})
            raise ConflictError("Email ingestion is already being processed.") from exc

        logger.info("Retrying email ingestion", extra={"ingestion_id": ingestion_id})
        return self._create_ticket(ingestion)

    def get(self, ingestion_id: str) -> EmailIngestion:
        ingestion = self.ingestions.get(ingestion_id)
        if ingestion is None:
            raise NotFoundError("Email ingestion not found.")
        return ingestion

    def list_recent(self, page: int = 1, page_size: int = 20) -> EmailIngestionPage:
        if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationFailedError(
                f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}.",
                reason="invalid_paging",
            )
        items, total = self.ingestions.list_recent(offset=(page - 1) * page_size, limit=page_size)
        return EmailIngestionPage(
            items=items,
            total_count=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )

    @staticmethod
    def _in_flight(ingestion: EmailIngestion, now: datetime) -> bool:
        """Unprocessed, no recorded failure, and claimed within the lease."""
        if ingestion.is_processed or ingestion.processing_error is not None:
            return False
        return ingestion.claimed_at is not None and now - ingestion.claimed_at < IN_FLIGHT_LEASE

    def _already_processed(self, message_id: str) -> EmailProcessingResult:
        logger.info("Duplicate email ignored", extra={"message_id": message_id})
        return EmailProcessingResult(
            success=False,
            error_code=ALREADY_PROCESSED,
            error_message="Email already processed.",
        )

    def _resolve_customer(self, email: str, name: Optional[str]) -> UserAccount:
        existing = self.users.find_by_email(email)
        if existing is not None:
            return existing

        customer = UserAccount(
            email=email,
            first_name=(name or "").strip() or "Customer",
            last_name="User",
            roles=frozenset({Role.CUSTOMER}),
            email_confirmed=True,
            created_at=self.clock.now(),
        )
        try:
            self.users.add(customer)
        except ConflictError:
            existing = self.users.find_by_email(email)
            if existing is None:
                raise
            return existing
        logger.info("Customer account created from email", extra={"user_id": customer.id})
        return customer

    def _create_ticket(self, ingestion: EmailIngestion) -> EmailProcessingResult:
        try:
            customer = self._resolve_customer(ingestion.from_email, ingestion.from_name)
            ticket = self.ticket_service.create_ticket(
                title=ingestion.subject[:TITLE_MAX_LENGTH],
                description=ingestion.processed_body,
                customer_id=customer.id,
            )
        except Exception:  # any failure leaves the record unprocessed for retry
            logger.exception(
                "Error creating ticket from email", extra={"ingestion_id": ingestion.id}
            )
            ingestion.is_processed = False
            ingestion.processing_error = "Error creating ticket from email."
            self.ingestions.update(ingestion)
            return EmailProcessingResult(
                success=False,
                error_code=TICKET_CREATION_FAILED,
                error_message=ingestion.processing_error,
                ingestion_id=ingestion.id,
                processed_body=ingestion.processed_body,
            )

        ingestion.is_processed = True
        ingestion.created_ticket_id = ticket.id
        ingestion.processed_at = self.clock.now()
        ingestion.processing_error = None
        self.ingestions.update(ingestion)

        logger.info(
            "Ticket created from email",
            extra={"ingestion_id": ingestion.id, "ticket_id": ticket.id},
        )
        return EmailProcessingResult(
            success=True,
            ingestion_id=ingestion.id,
            created_ticket_id=ticket.id,
            processed_body=ingestion.processed_body,
        )
