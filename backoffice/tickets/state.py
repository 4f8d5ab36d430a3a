from __future__ import annotations

from datetime import datetime

from backoffice.core.errors import IllegalTransitionError

from .models import AssignmentState, SlaStatus, Ticket, TicketStatus
from .sla import DEFAULT_WARNING_RATIO, evaluate_sla


class TicketStateMachine:
    """Validate and apply ticket transitions in place.

    Every transition checks the lock first, then its own source state, and
    bumps ``updated_at`` on success. Nothing here touches storage.
    """

    _ASSIGNMENT_ORDER: dict[AssignmentState, int] = {
        AssignmentState.UNASSIGNED: 0,
        AssignmentState.ASSIGNED: 1,
        AssignmentState.TECHNICAL: 2,
    }

    def __init__(self, *, warning_ratio: float = DEFAULT_WARNING_RATIO) -> None:
        self._warning_ratio = warning_ratio

    @staticmethod
    def initial_state() -> tuple[TicketStatus, AssignmentState, SlaStatus]:
        return TicketStatus.NEW, AssignmentState.UNASSIGNED, SlaStatus.OK

    @staticmethod
    def ensure_unlocked(ticket: Ticket) -> None:
        if ticket.is_locked:
            raise IllegalTransitionError(f"Ticket {ticket.code} is locked ({ticket.status.value})")

    def _advance_assignment(self, ticket: Ticket, target: AssignmentState) -> None:
        if self._ASSIGNMENT_ORDER[target] > self._ASSIGNMENT_ORDER[ticket.assignment_state]:
            ticket.assignment_state = target

    def assign(self, ticket: Ticket, *, assignee_id: str | None, now: datetime) -> None:
        self.ensure_unlocked(ticket)
        self._advance_assignment(ticket, AssignmentState.ASSIGNED)
        if ticket.status is TicketStatus.NEW:
            ticket.status = TicketStatus.IN_PROGRESS
        if assignee_id is not None:
            ticket.assignee_id = assignee_id
        ticket.updated_at = now

    def transfer_to_technical(self, ticket: Ticket, *, assignee_id: str | None, now: datetime) -> None:
        self.ensure_unlocked(ticket)
        if ticket.assignment_state is AssignmentState.UNASSIGNED:
            raise IllegalTransitionError("Ticket must be assigned before it can be transferred")
        self._advance_assignment(ticket, AssignmentState.TECHNICAL)
        if ticket.status is TicketStatus.NEW:
            ticket.status = TicketStatus.IN_PROGRESS
        if assignee_id is not None:
            ticket.assignee_id = assignee_id
        ticket.updated_at = now

    def complete(self, ticket: Ticket, *, now: datetime) -> None:
        self.ensure_unlocked(ticket)
        if ticket.status is not TicketStatus.IN_PROGRESS:
            raise IllegalTransitionError("Ticket can only be completed while in progress")
        ticket.status = TicketStatus.COMPLETED
        self._resolve(ticket, now)

    def close(self, ticket: Ticket, *, now: datetime) -> None:
        self.ensure_unlocked(ticket)
        if ticket.status is not TicketStatus.NEW:
            raise IllegalTransitionError("Ticket can only be closed while new")
        ticket.status = TicketStatus.CLOSED
        self._resolve(ticket, now)

    def record_reply(self, ticket: Ticket, *, is_staff_reply: bool, sent_at: datetime) -> None:
        """Apply the side effects of a reply that has just been written."""

        if is_staff_reply:
            if ticket.first_responded_at is None:
                ticket.first_responded_at = sent_at
            if ticket.status is TicketStatus.NEW:
                ticket.status = TicketStatus.IN_PROGRESS
        ticket.sla_status = evaluate_sla(ticket, sent_at, warning_ratio=self._warning_ratio)
        ticket.updated_at = sent_at

    def refresh_sla(self, ticket: Ticket, *, now: datetime) -> bool:
        """Recompute ``sla_status``; return whether it changed."""

        previous = ticket.sla_status
        ticket.sla_status = evaluate_sla(ticket, now, warning_ratio=self._warning_ratio)
        return ticket.sla_status is not previous

    def _resolve(self, ticket: Ticket, now: datetime) -> None:
        if ticket.resolved_at is None:
            ticket.resolved_at = now
        ticket.updated_at = now
        ticket.sla_status = evaluate_sla(ticket, now, warning_ratio=self._warning_ratio)
