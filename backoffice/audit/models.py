from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence

from .diff import FieldChange

SYSTEM_ROLE = "System"


class AuditSortKey(str, Enum):
    """Columns the audit list can be ordered by."""

    ACTOR_EMAIL = "actoremail"
    ACTOR_ROLE = "actorrole"
    ACTION = "action"
    ENTITY_TYPE = "entitytype"
    ENTITY_ID = "entityid"
    OCCURRED_AT = "occurredat"

    @classmethod
    def parse(cls, value: str | None) -> "AuditSortKey":
        key = (value or "").strip().lower().replace("_", "")
        if key == "actor":
            return cls.ACTOR_EMAIL
        try:
            return cls(key)
        except ValueError:
            return cls.OCCURRED_AT


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: str | None) -> "SortDirection":
        if (value or "").strip().lower() == "asc":
            return cls.ASC
        return cls.DESC


@dataclass(slots=True)
class AuditLogFilter:
    """Query accepted by the audit list; paging is corrected, never rejected."""

    page: int = 1
    page_size: int = 20
    from_: datetime | None = None
    to: datetime | None = None
    keyword: str | None = None
    actor_role: str | None = None
    action: str | None = None
    entity_type: str | None = None
    sort_by: AuditSortKey = AuditSortKey.OCCURRED_AT
    sort_direction: SortDirection = SortDirection.DESC


@dataclass(slots=True)
class AuditLogEntry:
    """Stored audit record."""

    audit_id: int
    occurred_at: datetime
    actor_id: str | None
    actor_email: str | None
    actor_role: str | None
    session_id: str | None
    ip_address: str | None
    user_agent: str | None
    action: str
    entity_type: str | None
    entity_id: str | None
    before_data_json: str | None
    after_data_json: str | None


@dataclass(slots=True)
class AuditLogItem:
    entry: AuditLogEntry
    changes: Sequence[FieldChange] = field(default_factory=list)


@dataclass(slots=True)
class AuditLogPage:
    page: int
    page_size: int
    total_items: int
    items: Sequence[AuditLogItem]


@dataclass(slots=True)
class AuditFilterOptions:
    actions: list[str]
    entity_types: list[str]
    actor_roles: list[str]
