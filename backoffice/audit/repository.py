from __future__ import annotations

from typing import Any

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.core.clock import ensure_utc
from packages.db.models import AuditLogTable

from .models import SYSTEM_ROLE, AuditLogEntry, AuditLogFilter, AuditSortKey, SortDirection

_SORT_COLUMNS: dict[AuditSortKey, Any] = {
    AuditSortKey.ACTOR_EMAIL: AuditLogTable.actor_email,
    AuditSortKey.ACTOR_ROLE: AuditLogTable.actor_role,
    AuditSortKey.ACTION: AuditLogTable.action,
    AuditSortKey.ENTITY_TYPE: AuditLogTable.entity_type,
    AuditSortKey.ENTITY_ID: AuditLogTable.entity_id,
    AuditSortKey.OCCURRED_AT: AuditLogTable.occurred_at,
}

_KEYWORD_COLUMNS = (
    AuditLogTable.actor_email,
    AuditLogTable.actor_role,
    AuditLogTable.ip_address,
    AuditLogTable.action,
    AuditLogTable.entity_type,
    AuditLogTable.entity_id,
)


def _order_by(sort_by: AuditSortKey, direction: SortDirection) -> tuple[Any, Any]:
    """Primary column plus ``id`` tie-break, both in the requested direction."""

    column = _SORT_COLUMNS[sort_by]
    if direction is SortDirection.ASC:
        return column.asc(), AuditLogTable.id.asc()
    return column.desc(), AuditLogTable.id.desc()


class AuditLogRepository:
    """Read access to the ``audit_logs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def search(self, criteria: AuditLogFilter) -> tuple[int, list[AuditLogEntry]]:
        conditions = self._conditions(criteria)

        count_stmt = select(func.count()).select_from(AuditLogTable)
        page_stmt = select(AuditLogTable)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)

        page_stmt = (
            page_stmt.order_by(*_order_by(criteria.sort_by, criteria.sort_direction))
            .offset((criteria.page - 1) * criteria.page_size)
            .limit(criteria.page_size)
        )

        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(page_stmt)).scalars().all()
        return int(total), [self._table_to_entry(row) for row in rows]

    async def get(self, audit_id: int) -> AuditLogEntry | None:
        async with self._session_factory() as session:
            row = await session.get(AuditLogTable, audit_id)
        if row is None:
            return None
        return self._table_to_entry(row)

    async def distinct_values(self, column_name: str) -> list[str]:
        column = getattr(AuditLogTable, column_name)
        stmt = select(distinct(column)).where(column.is_not(None), column != "").order_by(column)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [str(value) for value in result.scalars().all()]

    async def has_system_entries(self) -> bool:
        stmt = (
            select(AuditLogTable.id)
            .where(
                or_(
                    AuditLogTable.actor_role.is_(None),
                    AuditLogTable.actor_role == "",
                    AuditLogTable.actor_role == SYSTEM_ROLE,
                )
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.first() is not None

    @staticmethod
    def _conditions(criteria: AuditLogFilter) -> list[Any]:
        conditions: list[Any] = []

        if criteria.keyword:
            conditions.append(
                or_(*(column.icontains(criteria.keyword, autoescape=True) for column in _KEYWORD_COLUMNS))
            )

        if criteria.actor_role:
            if criteria.actor_role.lower() == SYSTEM_ROLE.lower():
                conditions.append(
                    or_(
                        AuditLogTable.actor_role.is_(None),
                        AuditLogTable.actor_role == "",
                        AuditLogTable.actor_role == SYSTEM_ROLE,
                    )
                )
            else:
                conditions.append(AuditLogTable.actor_role == criteria.actor_role)

        if criteria.action:
            conditions.append(AuditLogTable.action == criteria.action)

        if criteria.entity_type:
            conditions.append(AuditLogTable.entity_type == criteria.entity_type)

        if criteria.from_ is not None:
            conditions.append(AuditLogTable.occurred_at >= criteria.from_)

        if criteria.to is not None:
            conditions.append(AuditLogTable.occurred_at <= criteria.to)

        return conditions

    @staticmethod
    def _table_to_entry(row: AuditLogTable) -> AuditLogEntry:
        return AuditLogEntry(
            audit_id=int(row.id or 0),
            occurred_at=ensure_utc(row.occurred_at),
            actor_id=row.actor_id,
            actor_email=row.actor_email,
            actor_role=row.actor_role,
            session_id=row.session_id,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            action=row.action or "",
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            before_data_json=row.before_data_json,
            after_data_json=row.after_data_json,
        )

