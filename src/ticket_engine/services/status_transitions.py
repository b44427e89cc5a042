"""Ticket status state machine."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from ticket_engine.models.ticket import TicketStatus

ALLOWED_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
    TicketStatus.IN_PROGRESS: frozenset(
        {TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.OPEN}
    ),
    TicketStatus.RESOLVED: frozenset({TicketStatus.CLOSED, TicketStatus.REOPENED}),
    TicketStatus.CLOSED: frozenset({TicketStatus.REOPENED}),
    TicketStatus.REOPENED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
}

INVALID_TRANSITION = "invalid_transition"


@dataclass(frozen=True)
class TransitionCheck:
    """Outcome of a transition lookup."""

    allowed: bool
    reason: Optional[str] = None


def is_valid_transition(current, target) -> bool:
    """True only for pairs listed in ``ALLOWED_TRANSITIONS``; unknown states are rejected."""
    try:
        current_status = TicketStatus(current)
        target_status = TicketStatus(target)
    except ValueError:
        return False
    return target_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


def validate_transition(current, target) -> TransitionCheck:
    if is_valid_transition(current, target):
        return TransitionCheck(allowed=True)
    return TransitionCheck(allowed=False, reason=INVALID_TRANSITION)
