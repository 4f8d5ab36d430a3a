from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from backoffice.core.errors import IllegalTransitionError
from backoffice.tickets.models import AssignmentState, SlaStatus, Ticket, TicketSeverity, TicketStatus
from backoffice.tickets.state import TicketStateMachine

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _ticket(**overrides) -> Ticket:
    ticket = Ticket(
        id="t-1",
        code="TCK-0001",
        subject="Printer on fire",
        description=None,
        status=TicketStatus.NEW,
        severity=TicketSeverity.MEDIUM,
        priority_level=0,
        assignment_state=AssignmentState.UNASSIGNED,
        sla_status=SlaStatus.OK,
        user_id="customer",
        assignee_id=None,
        sla_rule_id=None,
        first_response_due_at=None,
        resolution_due_at=None,
        first_responded_at=None,
        resolved_at=None,
        created_at=NOW - timedelta(hours=1),
        updated_at=NOW - timedelta(hours=1),
    )
    return replace(ticket, **overrides)


@pytest.fixture
def machine() -> TicketStateMachine:
    return TicketStateMachine()


def test_initial_state():
    assert TicketStateMachine.initial_state() == (TicketStatus.NEW, AssignmentState.UNASSIGNED, SlaStatus.OK)


def test_assign_moves_new_ticket_in_progress(machine):
    ticket = _ticket()
    machine.assign(ticket, assignee_id="agent", now=NOW)

    assert ticket.assignment_state is AssignmentState.ASSIGNED
    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.assignee_id == "agent"
    assert ticket.updated_at == NOW


def test_assign_never_moves_technical_back(machine):
    ticket = _ticket(status=TicketStatus.IN_PROGRESS, assignment_state=AssignmentState.TECHNICAL, assignee_id="a")
    machine.assign(ticket, assignee_id="b", now=NOW)

    assert ticket.assignment_state is AssignmentState.TECHNICAL
    assert ticket.assignee_id == "b"


def test_transfer_requires_prior_assignment(machine):
    ticket = _ticket()
    with pytest.raises(IllegalTransitionError):
        machine.transfer_to_technical(ticket, assignee_id=None, now=NOW)

    machine.assign(ticket, assignee_id="agent", now=NOW)
    machine.transfer_to_technical(ticket, assignee_id=None, now=NOW + timedelta(minutes=1))

    assert ticket.assignment_state is AssignmentState.TECHNICAL
    assert ticket.assignee_id == "agent"
    assert ticket.updated_at == NOW + timedelta(minutes=1)


@pytest.mark.parametrize("status", [TicketStatus.NEW, TicketStatus.COMPLETED, TicketStatus.CLOSED])
def test_complete_only_from_in_progress(machine, status):
    ticket = _ticket(status=status)
    with pytest.raises(IllegalTransitionError):
        machine.complete(ticket, now=NOW)


def test_complete_sets_resolution(machine):
    ticket = _ticket(status=TicketStatus.IN_PROGRESS)
    machine.complete(ticket, now=NOW)

    assert ticket.status is TicketStatus.COMPLETED
    assert ticket.resolved_at == NOW
    assert ticket.updated_at == NOW


@pytest.mark.parametrize("status", [TicketStatus.IN_PROGRESS, TicketStatus.COMPLETED, TicketStatus.CLOSED])
def test_close_only_from_new(machine, status):
    ticket = _ticket(status=status)
    with pytest.raises(IllegalTransitionError):
        machine.close(ticket, now=NOW)


def test_close_new_ticket(machine):
    ticket = _ticket()
    machine.close(ticket, now=NOW)
    assert ticket.status is TicketStatus.CLOSED
    assert ticket.resolved_at == NOW


@pytest.mark.parametrize("status", [TicketStatus.COMPLETED, TicketStatus.CLOSED])
def test_locked_ticket_rejects_every_transition(machine, status):
    ticket = _ticket(status=status, assignment_state=AssignmentState.ASSIGNED, assignee_id="agent")
    before = replace(ticket)

    for transition in (
        lambda: machine.assign(ticket, assignee_id="agent", now=NOW),
        lambda: machine.transfer_to_technical(ticket, assignee_id=None, now=NOW),
        lambda: machine.complete(ticket, now=NOW),
        lambda: machine.close(ticket, now=NOW),
    ):
        with pytest.raises(IllegalTransitionError, match="locked"):
            transition()

    assert ticket == before


def test_staff_reply_sets_first_response_once(machine):
    ticket = _ticket()
    machine.record_reply(ticket, is_staff_reply=True, sent_at=NOW)
    machine.record_reply(ticket, is_staff_reply=True, sent_at=NOW + timedelta(minutes=5))

    assert ticket.first_responded_at == NOW
    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.updated_at == NOW + timedelta(minutes=5)


def test_customer_reply_changes_no_state(machine):
    ticket = _ticket()
    machine.record_reply(ticket, is_staff_reply=False, sent_at=NOW)

    assert ticket.first_responded_at is None
    assert ticket.status is TicketStatus.NEW
    assert ticket.updated_at == NOW


def test_status_parsing_normalises_legacy_values():
    assert TicketStatus.parse("Open") is TicketStatus.NEW
    assert TicketStatus.parse("  ") is TicketStatus.NEW
    assert TicketStatus.parse(None) is TicketStatus.NEW
    assert TicketStatus.parse("inprogress") is TicketStatus.IN_PROGRESS
    with pytest.raises(ValueError):
        TicketStatus.parse("Archived")
