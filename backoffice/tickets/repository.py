from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Sequence

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased
from sqlmodel import SQLModel

from backoffice.core.clock import ensure_utc
from backoffice.security.users import UserAccount, row_to_account
from packages.db.models import SlaRuleTable, TicketReplyTable, TicketTable, UserTable

from .models import (
    AssignmentState,
    RelatedTicket,
    SlaStatus,
    Ticket,
    TicketDetail,
    TicketListItem,
    TicketListQuery,
    TicketReply,
    TicketSeverity,
    TicketStatus,
    UserSummary,
)
from .sla import SlaTargets

logger = logging.getLogger(__name__)

CODE_PREFIX = "TCK-"
# Rows scanned for the highest numeric code suffix.
_CODE_SCAN_LIMIT = 20
RELATED_TICKET_LIMIT = 10
MINE = "mine"
# Stored values still read as ``New``.
_NEW_ALIASES = ("New", "Open", "")
_SLA_SWEEP_STATUSES = ("New", "Open", "InProgress")


def read_status(value: str | None) -> TicketStatus:
    """Lenient read of a stored status; unrecognised values are logged and read as ``New``."""

    try:
        return TicketStatus.parse(value)
    except ValueError:
        logger.warning("Unrecognised stored ticket status %r read as %s", value, TicketStatus.NEW.value)
        return TicketStatus.NEW


class TicketRepository:
    """Persistence helper wrapping ``tickets``, ``ticket_replies`` and SLA rules."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session whose work commits on clean exit and rolls back on error."""

        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # -- reads and writes inside a caller supplied transaction --------------

    async def lock_ticket(self, session: AsyncSession, ticket_id: str) -> Ticket | None:
        result = await session.execute(
            select(TicketTable).where(TicketTable.id == ticket_id).with_for_update()
        )
        row = result.scalar_one_or_none()
        return self._table_to_ticket(row) if row is not None else None

    async def get_user(self, session: AsyncSession, user_id: str) -> UserAccount | None:
        row = await session.get(UserTable, user_id)
        return row_to_account(row) if row is not None else None

    async def save_ticket(self, session: AsyncSession, ticket: Ticket) -> None:
        row = await session.get(TicketTable, ticket.id)
        if row is None:
            raise LookupError(f"Ticket {ticket.id} disappeared during update")
        self._apply(row, ticket)
        await session.flush()

    async def insert_ticket(self, session: AsyncSession, ticket: Ticket) -> None:
        row = TicketTable(
            id=ticket.id,
            code=ticket.code,
            subject=ticket.subject,
            user_id=ticket.user_id,
            status=ticket.status.value,
        )
        self._apply(row, ticket)
        session.add(row)
        await session.flush()

    async def add_reply(
        self,
        session: AsyncSession,
        *,
        ticket_id: str,
        sender_id: str,
        message: str,
        is_staff_reply: bool,
        sent_at: datetime,
    ) -> TicketReply:
        row = TicketReplyTable(
            ticket_id=ticket_id,
            sender_id=sender_id,
            message=message,
            is_staff_reply=is_staff_reply,
            sent_at=sent_at,
        )
        session.add(row)
        await session.flush()
        return self._table_to_reply(row)

    async def next_ticket_code(self, session: AsyncSession) -> str:
        """``TCK-`` plus the highest numeric suffix in use + 1, at least four digits."""

        result = await session.execute(
            select(TicketTable.code)
            .where(TicketTable.code.startswith(CODE_PREFIX))
            .order_by(func.length(TicketTable.code).desc(), TicketTable.code.desc())
            .limit(_CODE_SCAN_LIMIT)
        )
        last_number = 0
        for code in result.scalars():
            suffix = code[len(CODE_PREFIX) :]
            if suffix.isdigit():
                last_number = int(suffix)
                break
        return f"{CODE_PREFIX}{last_number + 1:04d}"

    async def find_sla_targets(
        self, session: AsyncSession, *, severity: TicketSeverity, priority_level: int
    ) -> SlaTargets | None:
        result = await session.execute(
            select(SlaRuleTable)
            .where(
                SlaRuleTable.is_active.is_(True),
                SlaRuleTable.severity == severity.value,
                SlaRuleTable.priority_level == priority_level,
            )
            .order_by(SlaRuleTable.id.asc())
            .limit(1)
        )
        rule = result.scalar_one_or_none()
        if rule is None or rule.id is None:
            return None
        return SlaTargets(
            rule_id=rule.id,
            first_response_minutes=rule.first_response_minutes,
            resolution_minutes=rule.resolution_minutes,
        )

    async def lock_sla_candidates(self, session: AsyncSession) -> list[Ticket]:
        status = func.coalesce(TicketTable.status, "")
        result = await session.execute(
            select(TicketTable)
            .where(TicketTable.sla_rule_id.is_not(None), status.in_(_SLA_SWEEP_STATUSES))
            .with_for_update()
        )
        return [self._table_to_ticket(row) for row in result.scalars().all()]

    # -- standalone queries --------------------------------------------------

    async def get_detail(self, ticket_id: str) -> TicketDetail | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            customer = await session.get(UserTable, row.user_id)
            assignee = await session.get(UserTable, row.assignee_id) if row.assignee_id else None
            reply_result = await session.execute(
                select(TicketReplyTable, UserTable)
                .join(UserTable, UserTable.id == TicketReplyTable.sender_id, isouter=True)
                .where(TicketReplyTable.ticket_id == ticket_id)
                .order_by(TicketReplyTable.sent_at.asc(), TicketReplyTable.id.asc())
            )
            replies = [
                self._table_to_reply(reply_row, sender=self._summary(sender_row))
                for reply_row, sender_row in reply_result.all()
            ]
            related_result = await session.execute(
                select(TicketTable)
                .where(TicketTable.user_id == row.user_id, TicketTable.id != ticket_id)
                .order_by(TicketTable.created_at.desc(), TicketTable.code.desc())
                .limit(RELATED_TICKET_LIMIT)
            )
            related = [self._table_to_related(related_row) for related_row in related_result.scalars()]

        return TicketDetail(
            ticket=self._table_to_ticket(row),
            customer=self._summary(customer),
            assignee=self._summary(assignee),
            replies=replies,
            related=related,
        )

    async def list_tickets(
        self, query: TicketListQuery, *, caller_id: str | None = None
    ) -> tuple[int, list[TicketListItem]]:
        customer = aliased(UserTable)
        assignee = aliased(UserTable)
        conditions = self._list_conditions(query, customer=customer, caller_id=caller_id)

        count_stmt = (
            select(func.count())
            .select_from(TicketTable)
            .join(customer, customer.id == TicketTable.user_id, isouter=True)
        )
        page_stmt = (
            select(TicketTable, customer, assignee)
            .join(customer, customer.id == TicketTable.user_id, isouter=True)
            .join(assignee, assignee.id == TicketTable.assignee_id, isouter=True)
        )
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            page_stmt = page_stmt.where(*conditions)

        unassigned = func.coalesce(TicketTable.assignment_state, AssignmentState.UNASSIGNED.value) == (
            AssignmentState.UNASSIGNED.value
        )
        sla_rank = case(
            (TicketTable.sla_status == SlaStatus.BREACHED.value, 0),
            (TicketTable.sla_status == SlaStatus.AT_RISK.value, 1),
            (TicketTable.sla_status == SlaStatus.OK.value, 2),
            else_=3,
        )
        due_at = case((unassigned, TicketTable.first_response_due_at), else_=TicketTable.resolution_due_at)
        page_stmt = (
            page_stmt.order_by(
                sla_rank,
                case((unassigned, 0), else_=1),
                due_at.is_(None),
                due_at,
                TicketTable.code.desc(),
            )
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        )

        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(page_stmt)).all()

        items = [
            TicketListItem(
                ticket=self._table_to_ticket(ticket_row),
                customer=self._summary(customer_row),
                assignee=self._summary(assignee_row),
            )
            for ticket_row, customer_row, assignee_row in rows
        ]
        return int(total), items

    @staticmethod
    def _list_conditions(query: TicketListQuery, *, customer: Any, caller_id: str | None) -> list[Any]:
        conditions: list[Any] = []
        if query.q:
            keyword = query.q
            conditions.append(
                or_(
                    TicketTable.code.icontains(keyword, autoescape=True),
                    TicketTable.subject.icontains(keyword, autoescape=True),
                    customer.full_name.icontains(keyword, autoescape=True),
                    customer.email.icontains(keyword, autoescape=True),
                )
            )
        if query.status is not None:
            if query.status is TicketStatus.NEW:
                conditions.append(
                    or_(TicketTable.status.is_(None), TicketTable.status.in_(_NEW_ALIASES))
                )
            else:
                conditions.append(TicketTable.status == query.status.value)
        if query.severity is not None:
            conditions.append(TicketTable.severity == query.severity.value)
        if query.sla is not None:
            conditions.append(TicketTable.sla_status == query.sla.value)
        if query.assignment_state:
            if query.assignment_state.lower() == MINE:
                conditions.append(TicketTable.assignee_id == caller_id)
            else:
                state = AssignmentState.parse(query.assignment_state)
                conditions.append(
                    func.coalesce(TicketTable.assignment_state, AssignmentState.UNASSIGNED.value) == state.value
                )
        return conditions

    # -- mapping -------------------------------------------------------------

    @staticmethod
    def _apply(row: TicketTable, ticket: Ticket) -> None:
        row.subject = ticket.subject
        row.description = ticket.description
        # Legacy or unrecognised stored values stay as they are until a transition changes the status.
        if read_status(row.status) is not ticket.status:
            row.status = ticket.status.value
        row.severity = ticket.severity.value
        row.priority_level = ticket.priority_level
        row.assignment_state = ticket.assignment_state.value
        row.sla_status = ticket.sla_status.value
        row.sla_rule_id = ticket.sla_rule_id
        row.assignee_id = ticket.assignee_id
        row.first_response_due_at = ticket.first_response_due_at
        row.resolution_due_at = ticket.resolution_due_at
        row.first_responded_at = ticket.first_responded_at
        row.resolved_at = ticket.resolved_at
        row.created_at = ticket.created_at
        row.updated_at = ticket.updated_at

    @staticmethod
    def _table_to_ticket(row: TicketTable) -> Ticket:
        return Ticket(
            id=row.id,
            code=row.code,
            subject=row.subject,
            description=row.description,
            status=read_status(row.status),
            severity=TicketSeverity.parse(row.severity),
            priority_level=row.priority_level or 0,
            assignment_state=AssignmentState.parse(row.assignment_state),
            sla_status=SlaStatus.parse(row.sla_status),
            user_id=row.user_id,
            assignee_id=row.assignee_id,
            sla_rule_id=row.sla_rule_id,
            first_response_due_at=_optional_utc(row.first_response_due_at),
            resolution_due_at=_optional_utc(row.resolution_due_at),
            first_responded_at=_optional_utc(row.first_responded_at),
            resolved_at=_optional_utc(row.resolved_at),
            created_at=ensure_utc(row.created_at),
            updated_at=_optional_utc(row.updated_at),
        )

    @staticmethod
    def _table_to_related(row: TicketTable) -> RelatedTicket:
        return RelatedTicket(
            id=row.id,
            code=row.code,
            subject=row.subject,
            status=read_status(row.status),
            severity=TicketSeverity.parse(row.severity),
            sla_status=SlaStatus.parse(row.sla_status),
            created_at=ensure_utc(row.created_at),
        )

    @staticmethod
    def _table_to_reply(row: TicketReplyTable, *, sender: UserSummary | None = None) -> TicketReply:
        return TicketReply(
            id=int(row.id or 0),
            ticket_id=row.ticket_id,
            sender_id=row.sender_id,
            message=row.message,
            is_staff_reply=bool(row.is_staff_reply),
            sent_at=ensure_utc(row.sent_at),
            sender=sender,
        )

    @staticmethod
    def _summary(row: UserTable | None) -> UserSummary | None:
        if row is None:
            return None
        return UserSummary(id=row.id, email=row.email, full_name=row.full_name, avatar_url=row.avatar_url)


def _optional_utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


__all__: Sequence[str] = ("TicketRepository",)
