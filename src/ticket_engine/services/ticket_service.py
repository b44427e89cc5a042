"""
Ticket lifecycle operations.

Status changes and edits are checked against the authorization policies and
the transition table, then saved with the version that was read. A stale
write is re-read and retried once before the conflict is surfaced.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable, Tuple

from ticket_engine.models.principal import Principal
from ticket_engine.models.ticket import Priority, Ticket, TicketComment, TicketStatus, TicketUpdate
from ticket_engine.repositories.base import CommentRepository, TicketRepository
from ticket_engine.services.authorization import (
    DEFAULT_EDIT_WINDOW,
    AuthorizationDecision,
    authorize_admin,
    authorize_edit,
    authorize_ticket_access,
    authorize_transition,
    filter_ticket_update,
)
from ticket_engine.services.status_transitions import validate_transition
from ticket_engine.utils.error_handling import (
    AuthorizationDeniedError,
    ConflictError,
    NotFoundError,
    StorageFailureError,
    ValidationFailedError,
)
from ticket_engine.utils.logging_config import get_logger
from ticket_engine.utils.validators import ensure_present

logger = get_logger(__name__)

MAX_SAVE_ATTEMPTS = 2


class TicketService:
    """Encapsulates ticket mutation rules."""

    def __init__(
        self,
        tickets: TicketRepository,
        comments: CommentRepository,
        clock,
        storage=None,
        edit_window: timedelta = DEFAULT_EDIT_WINDOW,
    ):
        self.tickets = tickets
        self.comments = comments
        self.clock = clock
        self.storage = storage
        self.edit_window = edit_window

    def _load(self, ticket_id: str) -> Ticket:
        ticket = self.tickets.get(ticket_id)
        if ticket is None:
            raise NotFoundError("Ticket not found.")
        return ticket

    @staticmethod
    def _require(decision: AuthorizationDecision, principal: Principal, ticket_id: str) -> None:
        if not decision.allowed:
            logger.info(
                "Authorization denied",
                extra={
                    "policy": decision.policy,
                    "rule": decision.reason,
                    "user_id": principal.user_id,
                    "ticket_id": ticket_id,
                },
            )
            raise AuthorizationDeniedError(decision.policy)

    def _save_with_retry(
        self, ticket_id: str, mutate: Callable[[Ticket], Ticket]
    ) -> Tuple[Ticket, Ticket]:
        """Load, mutate and save; returns (saved, as_read)."""
        for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
            current = self._load(ticket_id)
            updated = mutate(current)
            try:
                return self.tickets.save(updated, expected_version=current.version), current
            except ConflictError:
                if attempt == MAX_SAVE_ATTEMPTS:
                    logger.warning("Ticket write conflict", extra={"ticket_id": ticket_id})
                    raise
                logger.info("Retrying after write conflict", extra={"ticket_id": ticket_id})
        raise ConflictError(f"Ticket {ticket_id} was modified concurrently")

    def create_ticket(
        self,
        title: str,
        description: str,
        customer_id: str,
        priority: Priority = Priority.MEDIUM,
        category: str = "",
    ) -> Ticket:
        ensure_present(title, "title")
        ensure_present(description, "description")
        ticket = Ticket(
            title=title,
            description=description,
            category=category,
            status=TicketStatus.OPEN,
            priority=priority,
            customer_id=customer_id,
            created_at=self.clock.now(),
        )
        created = self.tickets.add(ticket)
        logger.info("Ticket created", extra={"ticket_id": created.id, "customer_id": customer_id})
        return created

    def get_ticket(self, principal: Principal, ticket_id: str) -> Ticket:
        ticket = self._load(ticket_id)
        self._require(authorize_ticket_access(principal, ticket), principal, ticket_id)
        return ticket

    def change_status(self, principal: Principal, ticket_id: str, new_status) -> Ticket:
        """Authorization is checked before the transition table; each fails on its own terms."""
        try:
            target = TicketStatus(new_status)
        except ValueError as exc:
            raise ValidationFailedError(
                f"Unknown status '{new_status}'.", reason="invalid_transition"
            ) from exc

        def mutate(ticket: Ticket) -> Ticket:
            self._require(authorize_transition(principal, ticket), principal, ticket_id)
            check = validate_transition(ticket.status, target)
            if not check.allowed:
                raise ValidationFailedError(
                    f"Invalid status transition from {ticket.status.value} to {target.value}.",
                    reason=check.reason,
                )
            return ticket.model_copy(update={"status": target, "updated_at": self.clock.now()})

        saved, previous = self._save_with_retry(ticket_id, mutate)
        logger.info(
            "Ticket status changed",
            extra={
                "ticket_id": ticket_id,
                "old_status": previous.status.value,
                "new_status": saved.status.value,
                "user_id": principal.user_id,
            },
        )
        return saved

    def update_ticket(self, principal: Principal, ticket_id: str, update: TicketUpdate) -> Ticket:
        """Customers' priority and assignee changes are dropped, not rejected."""

        def mutate(ticket: Ticket) -> Ticket:
            now = self.clock.now()
            self._require(
                authorize_edit(principal, ticket, now, self.edit_window), principal, ticket_id
            )
            permitted = filter_ticket_update(principal, update)
            if permitted != update:
                logger.info(
                    "Ignored staff-only fields",
                    extra={"ticket_id": ticket_id, "user_id": principal.user_id},
                )
            changes = permitted.model_dump(exclude_none=True, exclude={"clear_assignee"})
            if permitted.clear_assignee:
                changes["assignee_id"] = None
            changes["updated_at"] = now
            return ticket.model_copy(update=changes)

        saved, _ = self._save_with_retry(ticket_id, mutate)
        logger.info("Ticket updated", extra={"ticket_id": ticket_id, "user_id": principal.user_id})
        return saved

    def add_comment(
        self, principal: Principal, ticket_id: str, body: str, is_internal: bool = False
    ) -> TicketComment:
        """Internal notes are staff-only; a customer's flag is ignored."""
        ticket = self._load(ticket_id)
        self._require(authorize_ticket_access(principal, ticket), principal, ticket_id)
        ensure_present(body, "body")
        comment = TicketComment(
            ticket_id=ticket_id,
            author_id=principal.user_id,
            body=body,
            is_internal=is_internal and principal.is_staff,
            created_at=self.clock.now(),
        )
        return self.comments.add(comment)

    def delete_ticket(self, principal: Principal, ticket_id: str) -> None:
        """Removes comments and attachments with the ticket; email links are nulled."""
        self._require(authorize_admin(principal), principal, ticket_id)
        self._load(ticket_id)
        removed = self.tickets.delete(ticket_id)
        for attachment in removed:
            if self.storage is None:
                break
            try:
                self.storage.delete(attachment.stored_file_name)
            except StorageFailureError:
                logger.error(
                    "Orphaned attachment bytes",
                    extra={"ticket_id": ticket_id, "attachment_id": attachment.id},
                )
        logger.info(
            "Ticket deleted",
            extra={"ticket_id": ticket_id, "attachments_removed": len(removed)},
        )
