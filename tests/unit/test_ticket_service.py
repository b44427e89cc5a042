"""
Ticket lifecycle tests: status changes, edits, comments, deletion.

Run with: pytest tests/unit/test_ticket_service.py -v
"""

from unittest.mock import MagicMock

import pytest

from helpers import PNG_BYTES, START, make_ticket, upload_stream
from ticket_engine.models.ticket import Priority, TicketStatus, TicketUpdate
from ticket_engine.services.authorization import (
    ADMIN_ONLY,
    OWN_TICKET_EDIT,
    TICKET_ACCESS,
    TICKET_TRANSITION,
)
from ticket_engine.services.ticket_service import TicketService
from ticket_engine.utils.error_handling import (
    AuthorizationDeniedError,
    ConflictError,
    NotFoundError,
    StorageFailureError,
    ValidationFailedError,
)


class TestCreateAndGet:
    def test_create_ticket(self, engine, clock):
        ticket = engine.tickets.create_ticket("Printer jam", "Tray 2 jams", customer_id="cust-9")
        assert ticket.status == TicketStatus.OPEN
        assert ticket.priority == Priority.MEDIUM
        assert ticket.created_at == clock.now()
        assert ticket.version == 1

    def test_create_requires_title(self, engine):
        with pytest.raises(ValidationFailedError) as exc_info:
            engine.tickets.create_ticket("  ", "desc", customer_id="cust-9")
        assert exc_info.value.reason == "missing_field"

    def test_get_ticket_access(self, engine, customer, other_customer, agent, stored_ticket):
        assert engine.tickets.get_ticket(customer, stored_ticket.id).id == stored_ticket.id
        assert engine.tickets.get_ticket(agent, stored_ticket.id).id == stored_ticket.id
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            engine.tickets.get_ticket(other_customer, stored_ticket.id)
        assert exc_info.value.policy == TICKET_ACCESS

    def test_get_missing(self, engine, admin):
        with pytest.raises(NotFoundError):
            engine.tickets.get_ticket(admin, "missing")


class TestChangeStatus:
    def test_assignee_moves_ticket_forward(self, engine, agent, stored_ticket, clock):
        clock.advance(hours=1)
        saved = engine.tickets.change_status(agent, stored_ticket.id, TicketStatus.IN_PROGRESS)
        assert saved.status == TicketStatus.IN_PROGRESS
        assert saved.updated_at == clock.now()
        assert saved.created_at == START
        assert saved.version == stored_ticket.version + 1

    def test_accepts_status_value(self, engine, admin, stored_ticket):
        engine.tickets.change_status(admin, stored_ticket.id, "in_progress")
        assert engine.tickets.change_status(admin, stored_ticket.id, "resolved").status == TicketStatus.RESOLVED

    def test_unassigned_agent_denied(self, engine, other_agent, stored_ticket):
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            engine.tickets.change_status(other_agent, stored_ticket.id, TicketStatus.IN_PROGRESS)
        assert exc_info.value.policy == TICKET_TRANSITION

    def test_customer_denied(self, engine, customer, stored_ticket):
        with pytest.raises(AuthorizationDeniedError):
            engine.tickets.change_status(customer, stored_ticket.id, TicketStatus.CLOSED)

    def test_authorization_checked_before_transition(self, engine, other_agent, stored_ticket):
        # open -> reopened is not in the table, but the caller is not allowed either.
        with pytest.raises(AuthorizationDeniedError):
            engine.tickets.change_status(other_agent, stored_ticket.id, TicketStatus.REOPENED)

    def test_invalid_transition(self, engine, admin, stored_ticket):
        with pytest.raises(ValidationFailedError) as exc_info:
            engine.tickets.change_status(admin, stored_ticket.id, TicketStatus.REOPENED)
        assert exc_info.value.reason == "invalid_transition"
        assert str(exc_info.value) == "Invalid status transition from open to reopened."
        assert engine.tickets.tickets.get(stored_ticket.id).status == TicketStatus.OPEN

    def test_unknown_status(self, engine, admin, stored_ticket):
        with pytest.raises(ValidationFailedError) as exc_info:
            engine.tickets.change_status(admin, stored_ticket.id, "archived")
        assert exc_info.value.reason == "invalid_transition"

    def test_full_lifecycle(self, engine, admin, stored_ticket):
        for target in ("in_progress", "resolved", "reopened", "in_progress", "closed", "reopened"):
            engine.tickets.change_status(admin, stored_ticket.id, target)
        assert engine.tickets.tickets.get(stored_ticket.id).status == TicketStatus.REOPENED

    def test_conflict_is_retried_once(self, clock, admin):
        repo = MagicMock()
        repo.get.return_value = make_ticket(version=3)
        repo.save.side_effect = [ConflictError("stale"), make_ticket(version=4, status=TicketStatus.CLOSED)]
        service = TicketService(repo, MagicMock(), clock)

        saved = service.change_status(admin, "t-1", TicketStatus.CLOSED)

        assert saved.status == TicketStatus.CLOSED
        assert repo.get.call_count == 2
        assert repo.save.call_count == 2

    def test_conflict_surfaces_after_retry(self, clock, admin):
        repo = MagicMock()
        repo.get.return_value = make_ticket(version=3)
        repo.save.side_effect = ConflictError("stale")
        service = TicketService(repo, MagicMock(), clock)

        with pytest.raises(ConflictError):
            service.change_status(admin, "t-1", TicketStatus.CLOSED)
        assert repo.save.call_count == 2


class TestUpdateTicket:
    def test_customer_edits_inside_window(self, engine, customer, stored_ticket, clock):
        clock.advance(hours=23, minutes=59)
        saved = engine.tickets.update_ticket(
            customer, stored_ticket.id, TicketUpdate(title="Still cannot log in")
        )
        assert saved.title == "Still cannot log in"
        assert saved.description == stored_ticket.description

    def test_customer_edit_window_boundary_is_exclusive(self, engine, customer, stored_ticket, clock):
        clock.advance(hours=24)
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            engine.tickets.update_ticket(customer, stored_ticket.id, TicketUpdate(title="Late"))
        assert exc_info.value.policy == OWN_TICKET_EDIT

    def test_customer_cannot_edit_resolved(self, engine, customer, admin, stored_ticket):
        engine.tickets.change_status(admin, stored_ticket.id, TicketStatus.IN_PROGRESS)
        engine.tickets.change_status(admin, stored_ticket.id, TicketStatus.RESOLVED)
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            engine.tickets.update_ticket(customer, stored_ticket.id, TicketUpdate(title="Again"))
        assert exc_info.value.policy == OWN_TICKET_EDIT

    def test_other_customer_cannot_edit(self, engine, other_customer, stored_ticket):
        with pytest.raises(AuthorizationDeniedError):
            engine.tickets.update_ticket(other_customer, stored_ticket.id, TicketUpdate(title="Mine"))

    def test_customer_staff_fields_dropped(self, engine, customer, stored_ticket):
        saved = engine.tickets.update_ticket(
            customer,
            stored_ticket.id,
            TicketUpdate(description="More detail", priority=Priority.CRITICAL, assignee_id="cust-1"),
        )
        assert saved.description == "More detail"
        assert saved.priority == Priority.MEDIUM
        assert saved.assignee_id == "agent-1"

    def test_staff_edit_any_time(self, engine, other_agent, stored_ticket, clock):
        clock.advance(days=30)
        saved = engine.tickets.update_ticket(
            other_agent, stored_ticket.id, TicketUpdate(priority=Priority.HIGH, assignee_id="agent-2")
        )
        assert saved.priority == Priority.HIGH
        assert saved.assignee_id == "agent-2"
        assert saved.updated_at == clock.now()

    def test_blank_title_rejected_by_model(self):
        with pytest.raises(ValueError):
            TicketUpdate(title="   ")

    def test_staff_can_unassign(self, engine, agent, stored_ticket):
        saved = engine.tickets.update_ticket(agent, stored_ticket.id, TicketUpdate(clear_assignee=True))
        assert saved.assignee_id is None
        assert engine.tickets.tickets.get(stored_ticket.id).assignee_id is None

    def test_customer_unassign_dropped(self, engine, customer, stored_ticket):
        saved = engine.tickets.update_ticket(
            customer, stored_ticket.id, TicketUpdate(title="Updated", clear_assignee=True)
        )
        assert saved.title == "Updated"
        assert saved.assignee_id == "agent-1"


class TestComments:
    def test_customer_internal_flag_ignored(self, engine, customer, stored_ticket):
        comment = engine.tickets.add_comment(customer, stored_ticket.id, "Any update?", is_internal=True)
        assert comment.is_internal is False
        assert comment.author_id == "cust-1"

    def test_staff_internal_note(self, engine, agent, stored_ticket):
        comment = engine.tickets.add_comment(agent, stored_ticket.id, "Escalating", is_internal=True)
        assert comment.is_internal is True

    def test_outsider_cannot_comment(self, engine, other_customer, stored_ticket):
        with pytest.raises(AuthorizationDeniedError):
            engine.tickets.add_comment(other_customer, stored_ticket.id, "Hello")

    def test_empty_comment_rejected(self, engine, customer, stored_ticket):
        with pytest.raises(ValidationFailedError):
            engine.tickets.add_comment(customer, stored_ticket.id, " ")


class TestDeleteTicket:
    def test_admin_only(self, engine, agent, stored_ticket):
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            engine.tickets.delete_ticket(agent, stored_ticket.id)
        assert exc_info.value.policy == ADMIN_ONLY

    def test_cascade_removes_comments_attachments_and_bytes(
        self, engine, admin, customer, stored_ticket, blob_store
    ):
        engine.tickets.add_comment(customer, stored_ticket.id, "Screenshot attached")
        attachment = engine.attachments.upload(
            customer, stored_ticket.id, upload_stream(PNG_BYTES), "shot.png", "image/png", len(PNG_BYTES)
        )

        engine.tickets.delete_ticket(admin, stored_ticket.id)

        assert engine.tickets.tickets.get(stored_ticket.id) is None
        assert engine.tickets.comments.list_for_ticket(stored_ticket.id) == []
        assert engine.attachments.attachments.get(attachment.id) is None
        assert not blob_store.exists(attachment.stored_file_name)

    def test_blob_failure_does_not_block_delete(self, clock, admin):
        repo = MagicMock()
        repo.get.return_value = make_ticket()
        repo.delete.return_value = [MagicMock(id="a-1", stored_file_name="1_" + "0" * 32)]
        storage = MagicMock()
        storage.delete.side_effect = StorageFailureError("Error deleting file.")
        service = TicketService(repo, MagicMock(), clock, storage=storage)

        service.delete_ticket(admin, "t-1")

        repo.delete.assert_called_once_with("t-1")
        storage.delete.assert_called_once()

    def test_missing_ticket(self, engine, admin):
        with pytest.raises(NotFoundError):
            engine.tickets.delete_ticket(admin, "missing")
