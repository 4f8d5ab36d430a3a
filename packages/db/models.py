"""SQLModel table definitions for the back-office data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class UserTable(SQLModel, table=True):
    """Customer and staff accounts with their role codes."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    full_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    avatar_url: str | None = Field(default=None, sa_column=Column(String(1024), nullable=True))
    roles: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: str = Field(default="Active", sa_column=Column(String(20), nullable=False, default="Active"))
    api_token: str | None = Field(
        default=None, sa_column=Column(String(255), nullable=True, unique=True, index=True)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class SlaRuleTable(SQLModel, table=True):
    """Response and resolution targets per severity and priority level."""

    __tablename__ = "sla_rules"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    severity: str = Field(sa_column=Column(String(20), nullable=False))
    priority_level: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    first_response_minutes: int = Field(sa_column=Column(Integer, nullable=False))
    resolution_minutes: int = Field(sa_column=Column(Integer, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))


class TicketTable(SQLModel, table=True):
    """Support tickets raised by customers."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    code: str = Field(sa_column=Column(String(20), nullable=False, unique=True))
    subject: str = Field(sa_column=Column(String(255), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    status: str | None = Field(default="New", sa_column=Column(String(20), nullable=True))
    severity: str | None = Field(default="Medium", sa_column=Column(String(20), nullable=True))
    priority_level: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    assignment_state: str | None = Field(default="Unassigned", sa_column=Column(String(20), nullable=True))
    sla_status: str | None = Field(default="OK", sa_column=Column(String(20), nullable=True))
    sla_rule_id: int | None = Field(
        default=None, sa_column=Column(Integer, ForeignKey("sla_rules.id"), nullable=True)
    )
    user_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True))
    assignee_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    )
    first_response_due_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolution_due_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    first_responded_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class TicketReplyTable(SQLModel, table=True):
    """Messages exchanged on a ticket; never updated once written."""

    __tablename__ = "ticket_replies"

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    sender_id: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    is_staff_reply: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    sent_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLogTable(SQLModel, table=True):
    """Append-only trail of mutating actions across the back office."""

    __tablename__ = "audit_logs"

    id: int | None = Field(default=None, primary_key=True)
    occurred_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    actor_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    actor_email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    actor_role: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    session_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    ip_address: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    user_agent: str | None = Field(default=None, sa_column=Column(String(512), nullable=True))
    action: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    entity_type: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    entity_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True))
    before_data_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    after_data_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
