from .models import (
    AssignmentState,
    RelatedTicket,
    SlaStatus,
    Ticket,
    TicketDetail,
    TicketListItem,
    TicketListQuery,
    TicketPage,
    TicketReply,
    TicketSeverity,
    TicketStatus,
    UserSummary,
)
from .repository import TicketRepository
from .service import ReplyView, TicketService
from .sla import SlaTargets, evaluate_sla
from .state import TicketStateMachine

__all__ = [
    "AssignmentState",
    "RelatedTicket",
    "ReplyView",
    "SlaStatus",
    "SlaTargets",
    "Ticket",
    "TicketDetail",
    "TicketListItem",
    "TicketListQuery",
    "TicketPage",
    "TicketReply",
    "TicketRepository",
    "TicketService",
    "TicketSeverity",
    "TicketStateMachine",
    "TicketStatus",
    "UserSummary",
    "evaluate_sla",
]
