from __future__ import annotations

from dataclasses import dataclass, replace

from backoffice.core.errors import NotFoundError

from .diff import FieldChange, build_diff
from .models import (
    SYSTEM_ROLE,
    AuditFilterOptions,
    AuditLogEntry,
    AuditLogFilter,
    AuditLogItem,
    AuditLogPage,
)
from .repository import AuditLogRepository

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


@dataclass(slots=True)
class AuditLogDetail:
    entry: AuditLogEntry
    changes: list[FieldChange]


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


class AuditLogService:
    """Filtered, sorted and paged views over the audit trail, with diffs."""

    def __init__(
        self,
        repository: AuditLogRepository,
        *,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._repository = repository
        self._default_page_size = default_page_size
        self._max_page_size = min(max_page_size, MAX_PAGE_SIZE)

    def normalize_filter(self, criteria: AuditLogFilter) -> AuditLogFilter:
        page = criteria.page if criteria.page > 0 else 1
        page_size = criteria.page_size
        if page_size <= 0 or page_size > self._max_page_size:
            page_size = self._default_page_size
        return replace(
            criteria,
            page=page,
            page_size=page_size,
            keyword=_clean(criteria.keyword),
            actor_role=_clean(criteria.actor_role),
            action=_clean(criteria.action),
            entity_type=_clean(criteria.entity_type),
        )

    async def list_logs(self, criteria: AuditLogFilter) -> AuditLogPage:
        effective = self.normalize_filter(criteria)
        total, entries = await self._repository.search(effective)
        items = [
            AuditLogItem(entry=entry, changes=build_diff(entry.before_data_json, entry.after_data_json))
            for entry in entries
        ]
        return AuditLogPage(
            page=effective.page,
            page_size=effective.page_size,
            total_items=total,
            items=items,
        )

    async def get_log(self, audit_id: int) -> AuditLogDetail:
        entry = await self._repository.get(audit_id)
        if entry is None:
            raise NotFoundError(f"Audit log {audit_id} not found")
        return AuditLogDetail(
            entry=entry,
            changes=build_diff(entry.before_data_json, entry.after_data_json),
        )

    async def get_filter_options(self) -> AuditFilterOptions:
        actions = await self._repository.distinct_values("action")
        entity_types = await self._repository.distinct_values("entity_type")
        actor_roles = await self._repository.distinct_values("actor_role")

        if SYSTEM_ROLE not in actor_roles and await self._repository.has_system_entries():
            actor_roles = sorted([*actor_roles, SYSTEM_ROLE])

        return AuditFilterOptions(actions=actions, entity_types=entity_types, actor_roles=actor_roles)
