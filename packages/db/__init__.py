"""Database models and utilities."""

from .models import (
    AuditLogTable,
    SlaRuleTable,
    TicketReplyTable,
    TicketTable,
    UserTable,
)

__all__ = [
    "AuditLogTable",
    "SlaRuleTable",
    "TicketReplyTable",
    "TicketTable",
    "UserTable",
]
