"""
Authorization policies for tickets.

Every policy is a plain function over an explicit principal and ticket
snapshot and returns an ``AuthorizationDecision`` naming the policy that
decided. Nothing here reads request state or the clock on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ticket_engine.models.principal import Principal, Role
from ticket_engine.models.ticket import Ticket, TicketStatus, TicketUpdate

TICKET_TRANSITION = "ticket_transition"
OWN_TICKET_EDIT = "own_ticket_edit"
TICKET_EDIT = "ticket_edit"
TICKET_ACCESS = "ticket_access"
STAFF_ONLY = "staff_only"
ADMIN_ONLY = "admin_only"
ATTACHMENT_DOWNLOAD = "attachment_download"

DEFAULT_EDIT_WINDOW = timedelta(hours=24)

# Customers cannot edit once a ticket reaches these states.
_LOCKED_FOR_CUSTOMER = frozenset({TicketStatus.CLOSED, TicketStatus.RESOLVED})


@dataclass(frozen=True)
class AuthorizationDecision:
    """Allow/deny with the policy that decided and a short rule name."""

    allowed: bool
    policy: str
    reason: Optional[str] = None

    @classmethod
    def allow(cls, policy: str) -> "AuthorizationDecision":
        return cls(allowed=True, policy=policy)

    @classmethod
    def deny(cls, policy: str, reason: str) -> "AuthorizationDecision":
        return cls(allowed=False, policy=policy, reason=reason)


def authorize_transition(principal: Principal, ticket: Ticket) -> AuthorizationDecision:
    """Admins always; agents only on tickets assigned to them."""
    if principal.has_role(Role.ADMIN):
        return AuthorizationDecision.allow(TICKET_TRANSITION)
    if principal.has_role(Role.AGENT) and ticket.assignee_id == principal.user_id:
        return AuthorizationDecision.allow(TICKET_TRANSITION)
    return AuthorizationDecision.deny(TICKET_TRANSITION, "not_admin_or_assignee")


def authorize_own_ticket_edit(
    principal: Principal,
    ticket: Ticket,
    now: datetime,
    edit_window: timedelta = DEFAULT_EDIT_WINDOW,
) -> AuthorizationDecision:
    """
    Customer self-service edit.

    The customer must own the ticket, be strictly inside the edit window
    measured from ``created_at``, and the ticket must not be resolved or
    closed.
    """
    if not principal.has_role(Role.CUSTOMER):
        return AuthorizationDecision.deny(OWN_TICKET_EDIT, "not_customer")
    if ticket.customer_id is None or ticket.customer_id != principal.user_id:
        return AuthorizationDecision.deny(OWN_TICKET_EDIT, "not_ticket_customer")
    if now - ticket.created_at >= edit_window:
        return AuthorizationDecision.deny(OWN_TICKET_EDIT, "edit_window_elapsed")
    if ticket.status in _LOCKED_FOR_CUSTOMER:
        return AuthorizationDecision.deny(OWN_TICKET_EDIT, "ticket_locked")
    return AuthorizationDecision.allow(OWN_TICKET_EDIT)


def authorize_edit(
    principal: Principal,
    ticket: Ticket,
    now: datetime,
    edit_window: timedelta = DEFAULT_EDIT_WINDOW,
) -> AuthorizationDecision:
    """Staff edit any ticket; everyone else goes through the own-ticket policy."""
    if principal.is_staff:
        return AuthorizationDecision.allow(TICKET_EDIT)
    return authorize_own_ticket_edit(principal, ticket, now, edit_window)


def filter_ticket_update(principal: Principal, update: TicketUpdate) -> TicketUpdate:
    """Drop priority and assignee changes from non-staff callers without failing."""
    if principal.is_staff:
        return update
    return update.model_copy(
        update={"priority": None, "assignee_id": None, "clear_assignee": False}
    )


def authorize_ticket_access(principal: Principal, ticket: Ticket) -> AuthorizationDecision:
    """View, comment, upload or download: staff or the ticket's customer."""
    if principal.is_staff:
        return AuthorizationDecision.allow(TICKET_ACCESS)
    if ticket.customer_id is not None and ticket.customer_id == principal.user_id:
        return AuthorizationDecision.allow(TICKET_ACCESS)
    return AuthorizationDecision.deny(TICKET_ACCESS, "not_staff_or_customer")


def authorize_staff(principal: Principal) -> AuthorizationDecision:
    if principal.is_staff:
        return AuthorizationDecision.allow(STAFF_ONLY)
    return AuthorizationDecision.deny(STAFF_ONLY, "not_staff")


def authorize_admin(principal: Principal) -> AuthorizationDecision:
    if principal.has_role(Role.ADMIN):
        return AuthorizationDecision.allow(ADMIN_ONLY)
    return AuthorizationDecision.deny(ADMIN_ONLY, "not_admin")
