"""Response-time health of a ticket."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import SlaStatus, Ticket

DEFAULT_WARNING_RATIO = 0.75


@dataclass(frozen=True, slots=True)
class SlaTargets:
    """Minutes allowed for the first response and for resolution."""

    rule_id: int
    first_response_minutes: int
    resolution_minutes: int

    def due_dates(self, created_at: datetime) -> tuple[datetime, datetime]:
        return (
            created_at + timedelta(minutes=self.first_response_minutes),
            created_at + timedelta(minutes=self.resolution_minutes),
        )


def _window_status(
    *,
    start: datetime,
    due: datetime | None,
    actual: datetime | None,
    now: datetime,
    warning_ratio: float,
) -> SlaStatus:
    if due is None:
        return SlaStatus.OK
    if due < start:
        due = start
    if actual is not None:
        return SlaStatus.BREACHED if actual > due else SlaStatus.OK
    if now > due:
        return SlaStatus.BREACHED
    warn_at = start + (due - start) * warning_ratio
    if now >= warn_at:
        return SlaStatus.AT_RISK
    return SlaStatus.OK


def evaluate_sla(ticket: Ticket, now: datetime, *, warning_ratio: float = DEFAULT_WARNING_RATIO) -> SlaStatus:
    """Derive the SLA status from the ticket's due dates and milestones.

    Tickets without an SLA rule are always ``OK``. Otherwise the first
    response and the resolution windows are judged separately and the worse
    of the two wins: a milestone reached after its due date, or a missing
    milestone past its due date, is ``Breached``; a missing milestone once
    ``warning_ratio`` of the window has elapsed is ``AtRisk``.
    """

    if ticket.sla_rule_id is None:
        return SlaStatus.OK

    first_response = _window_status(
        start=ticket.created_at,
        due=ticket.first_response_due_at,
        actual=ticket.first_responded_at,
        now=now,
        warning_ratio=warning_ratio,
    )
    resolution = _window_status(
        start=ticket.created_at,
        due=ticket.resolution_due_at,
        actual=ticket.resolved_at,
        now=now,
        warning_ratio=warning_ratio,
    )
    return max(first_response, resolution, key=lambda status: status.weight)
