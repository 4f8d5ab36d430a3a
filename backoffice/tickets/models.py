from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence


class TicketStatus(str, Enum):
    """Lifecycle of a ticket. ``Completed`` and ``Closed`` are terminal."""

    NEW = "New"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CLOSED = "Closed"

    @classmethod
    def parse(cls, value: str | None) -> "TicketStatus":
        """Read a stored status; blank and the legacy ``Open`` mean ``New``."""

        raw = (value or "").strip()
        if not raw or raw.lower() == "open":
            return cls.NEW
        for member in cls:
            if member.value.lower() == raw.lower():
                return member
        raise ValueError(f"Unknown ticket status: {value!r}")

    @property
    def is_locked(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CLOSED)


class TicketSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @classmethod
    def parse(cls, value: str | None) -> "TicketSeverity":
        raw = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == raw:
                return member
        return cls.MEDIUM


class AssignmentState(str, Enum):
    """Hand-off stage; only ever moves forward."""

    UNASSIGNED = "Unassigned"
    ASSIGNED = "Assigned"
    TECHNICAL = "Technical"

    @classmethod
    def parse(cls, value: str | None) -> "AssignmentState":
        raw = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == raw:
                return member
        return cls.UNASSIGNED


class SlaStatus(str, Enum):
    OK = "OK"
    AT_RISK = "AtRisk"
    BREACHED = "Breached"

    @classmethod
    def parse(cls, value: str | None) -> "SlaStatus":
        raw = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == raw:
                return member
        return cls.OK

    @property
    def weight(self) -> int:
        return {SlaStatus.OK: 0, SlaStatus.AT_RISK: 1, SlaStatus.BREACHED: 2}[self]


@dataclass(slots=True)
class UserSummary:
    id: str
    email: str | None
    full_name: str | None
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or ""


@dataclass(slots=True)
class Ticket:
    """Ticket record as the state machine sees it."""

    id: str
    code: str
    subject: str
    description: str | None
    status: TicketStatus
    severity: TicketSeverity
    priority_level: int
    assignment_state: AssignmentState
    sla_status: SlaStatus
    user_id: str
    assignee_id: str | None
    sla_rule_id: int | None
    first_response_due_at: datetime | None
    resolution_due_at: datetime | None
    first_responded_at: datetime | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime | None

    @property
    def is_locked(self) -> bool:
        return self.status.is_locked


@dataclass(slots=True)
class TicketReply:
    id: int
    ticket_id: str
    sender_id: str
    message: str
    is_staff_reply: bool
    sent_at: datetime
    sender: UserSummary | None = None


@dataclass(slots=True)
class RelatedTicket:
    """Another ticket of the same customer, shown beside a ticket detail."""

    id: str
    code: str
    subject: str
    status: TicketStatus
    severity: TicketSeverity
    sla_status: SlaStatus
    created_at: datetime


@dataclass(slots=True)
class TicketDetail:
    """Ticket with its people and replies ordered by ``sent_at``."""

    ticket: Ticket
    customer: UserSummary | None
    assignee: UserSummary | None
    replies: Sequence[TicketReply] = field(default_factory=list)
    related: Sequence[RelatedTicket] = field(default_factory=list)


@dataclass(slots=True)
class TicketListItem:
    ticket: Ticket
    customer: UserSummary | None
    assignee: UserSummary | None


@dataclass(slots=True)
class TicketListQuery:
    q: str | None = None
    status: TicketStatus | None = None
    severity: TicketSeverity | None = None
    sla: SlaStatus | None = None
    assignment_state: str | None = None
    page: int = 1
    page_size: int = 10


@dataclass(slots=True)
class TicketPage:
    page: int
    page_size: int
    total_items: int
    items: Sequence[TicketListItem]
