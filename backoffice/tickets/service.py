from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Any, Awaitable, Callable, TypeVar

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.audit.logger import AuditLogger
from backoffice.core.clock import Clock, SystemClock
from backoffice.core.errors import ForbiddenError, NotFoundError, ValidationError
from backoffice.core.logging import span_attributes
from backoffice.realtime.hub import RECEIVE_REPLY, EventPublisher, topic_for
from backoffice.security.context import AuthContext

from . import policy
from .models import (
    Ticket,
    TicketDetail,
    TicketListQuery,
    TicketPage,
    TicketSeverity,
)
from .repository import TicketRepository
from .state import TicketStateMachine

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ENTITY_TICKET = "Ticket"
ENTITY_REPLY = "TicketReply"
PREVIEW_LENGTH = 200
# Attempts at inserting a new ticket when a concurrent create took the same code.
CODE_ATTEMPTS = 3

T = TypeVar("T")


@dataclass(slots=True)
class ReplyView:
    """Reply as returned to the caller and pushed to live viewers."""

    reply_id: int
    ticket_id: str
    sender_id: str
    sender_name: str
    sender_avatar_url: str | None
    is_staff_reply: bool
    message: str
    sent_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "reply_id": self.reply_id,
            "ticket_id": self.ticket_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "sender_avatar_url": self.sender_avatar_url,
            "is_staff_reply": self.is_staff_reply,
            "message": self.message,
            "sent_at": self.sent_at.isoformat(),
        }


def _log_abandoned(span_name: str, task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("%s failed after its caller was cancelled", span_name, exc_info=error)


def ticket_snapshot(ticket: Ticket) -> dict[str, Any]:
    """Fields recorded on audit entries for ticket transitions."""

    return {
        "ticket_code": ticket.code,
        "status": ticket.status.value,
        "assignment_state": ticket.assignment_state.value,
        "assignee_id": ticket.assignee_id,
        "sla_status": ticket.sla_status.value,
        "first_responded_at": ticket.first_responded_at,
        "resolved_at": ticket.resolved_at,
        "updated_at": ticket.updated_at,
    }


class TicketService:
    """Ticket workflow: queries, transitions, replies and the SLA sweep.

    Every mutation locks the ticket row inside a single transaction and runs
    shielded from caller cancellation, so once started it either commits or
    rolls back as a whole. Queries are plain awaits.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        state_machine: TicketStateMachine | None = None,
        clock: Clock | None = None,
        audit_logger: AuditLogger | None = None,
        publisher: EventPublisher | None = None,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ) -> None:
        self._repository = repository
        self._state = state_machine or TicketStateMachine()
        self._clock = clock or SystemClock()
        self._audit = audit_logger or AuditLogger(clock=self._clock)
        self._publisher = publisher
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._pending: set[asyncio.Task[Any]] = set()

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    # -- queries -------------------------------------------------------------

    async def get_ticket(self, ticket_id: str, auth: AuthContext) -> TicketDetail:
        detail = await self._repository.get_detail(ticket_id)
        if detail is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        if not policy.can_view(detail.ticket, auth):
            raise ForbiddenError("You may not view this ticket")
        return detail

    async def list_tickets(self, query: TicketListQuery, auth: AuthContext) -> TicketPage:
        policy.ensure_staff(auth)
        normalized = self.normalize_query(query)
        total, items = await self._repository.list_tickets(normalized, caller_id=auth.user_id)
        return TicketPage(
            page=normalized.page,
            page_size=normalized.page_size,
            total_items=total,
            items=items,
        )

    def normalize_query(self, query: TicketListQuery) -> TicketListQuery:
        page_size = query.page_size if query.page_size else self._default_page_size
        return TicketListQuery(
            q=(query.q or "").strip() or None,
            status=query.status,
            severity=query.severity,
            sla=query.sla,
            assignment_state=(query.assignment_state or "").strip() or None,
            page=max(1, query.page),
            page_size=min(max(1, page_size), self._max_page_size),
        )

    # -- creation ------------------------------------------------------------

    async def create_ticket(
        self,
        auth: AuthContext,
        *,
        subject: str,
        description: str | None = None,
        severity: str | TicketSeverity | None = None,
        priority_level: int = 0,
    ) -> Ticket:
        policy.ensure_customer(auth)
        subject = (subject or "").strip()
        if not subject:
            raise ValidationError("Subject is required")
        parsed_severity = severity if isinstance(severity, TicketSeverity) else TicketSeverity.parse(severity)
        description = (description or "").strip() or None
        attempt = 1
        while True:
            try:
                return await self._shielded(
                    "tickets.create",
                    lambda: self._create(auth, subject, description, parsed_severity, priority_level),
                    auth=auth,
                )
            except IntegrityError:
                if attempt >= CODE_ATTEMPTS:
                    raise
                logger.warning("Ticket code taken by a concurrent create, retrying (attempt %d)", attempt)
                attempt += 1

    async def _create(
        self,
        auth: AuthContext,
        subject: str,
        description: str | None,
        severity: TicketSeverity,
        priority_level: int,
    ) -> Ticket:
        now = self._clock.now()
        status, assignment_state, sla_status = self._state.initial_state()
        async with self._repository.transaction() as session:
            targets = await self._repository.find_sla_targets(
                session, severity=severity, priority_level=priority_level
            )
            ticket = Ticket(
                id=str(uuid.uuid4()),
                code=await self._repository.next_ticket_code(session),
                subject=subject,
                description=description,
                status=status,
                severity=severity,
                priority_level=priority_level,
                assignment_state=assignment_state,
                sla_status=sla_status,
                user_id=auth.user_id,
                assignee_id=None,
                sla_rule_id=None,
                first_response_due_at=None,
                resolution_due_at=None,
                first_responded_at=None,
                resolved_at=None,
                created_at=now,
                updated_at=now,
            )
            if targets is not None:
                ticket.sla_rule_id = targets.rule_id
                ticket.first_response_due_at, ticket.resolution_due_at = targets.due_dates(now)
                self._state.refresh_sla(ticket, now=now)
            await self._repository.insert_ticket(session, ticket)
            self._audit.record(
                session,
                actor=auth,
                action="CreateTicket",
                entity_type=ENTITY_TICKET,
                entity_id=ticket.id,
                after=ticket_snapshot(ticket),
            )
        logger.info("Ticket %s created by %s", ticket.code, auth.user_id)
        return ticket

    # -- transitions ---------------------------------------------------------

    async def assign(self, ticket_id: str, auth: AuthContext, *, assignee_id: str | None = None) -> Ticket:
        """Assign the ticket to ``assignee_id``, or to the caller when omitted."""

        policy.ensure_staff(auth)
        return await self._shielded(
            "tickets.assign", lambda: self._assign(ticket_id, auth, assignee_id), ticket_id=ticket_id, auth=auth
        )

    async def _assign(self, ticket_id: str, auth: AuthContext, assignee_id: str | None) -> Ticket:
        async with self._repository.transaction() as session:
            ticket = await self._lock(session, ticket_id)
            self._state.ensure_unlocked(ticket)
            before = ticket_snapshot(ticket)
            if assignee_id is None:
                if not auth.is_admin and ticket.assignee_id not in (None, auth.user_id):
                    raise ForbiddenError("Ticket is already assigned to another staff member")
                target, action = auth.user_id, "AssignToMe"
            else:
                policy.ensure_admin(auth)
                await self._require_care_staff(session, assignee_id)
                target, action = assignee_id, "AssignTicket"
            self._state.assign(ticket, assignee_id=target, now=self._clock.now())
            await self._commit_transition(session, ticket, auth, action, before)
        return ticket

    async def transfer_to_technical(
        self, ticket_id: str, auth: AuthContext, *, assignee_id: str | None = None
    ) -> Ticket:
        policy.ensure_staff(auth)
        return await self._shielded(
            "tickets.transfer_to_technical",
            lambda: self._transfer(ticket_id, auth, assignee_id),
            ticket_id=ticket_id,
            auth=auth,
        )

    async def _transfer(self, ticket_id: str, auth: AuthContext, assignee_id: str | None) -> Ticket:
        async with self._repository.transaction() as session:
            ticket = await self._lock(session, ticket_id)
            self._state.ensure_unlocked(ticket)
            policy.ensure_admin_or_assignee(ticket, auth)
            before = ticket_snapshot(ticket)
            if assignee_id is not None:
                if assignee_id == ticket.assignee_id:
                    raise ValidationError("Ticket is already assigned to this staff member")
                await self._require_care_staff(session, assignee_id)
            self._state.transfer_to_technical(ticket, assignee_id=assignee_id, now=self._clock.now())
            await self._commit_transition(session, ticket, auth, "TransferToTech", before)
        return ticket

    async def complete(self, ticket_id: str, auth: AuthContext) -> Ticket:
        policy.ensure_staff(auth)
        return await self._shielded(
            "tickets.complete", lambda: self._complete(ticket_id, auth), ticket_id=ticket_id, auth=auth
        )

    async def _complete(self, ticket_id: str, auth: AuthContext) -> Ticket:
        async with self._repository.transaction() as session:
            ticket = await self._lock(session, ticket_id)
            self._state.ensure_unlocked(ticket)
            policy.ensure_admin_or_assignee(ticket, auth)
            before = ticket_snapshot(ticket)
            self._state.complete(ticket, now=self._clock.now())
            await self._commit_transition(session, ticket, auth, "CompleteTicket", before)
        return ticket

    async def close(self, ticket_id: str, auth: AuthContext) -> Ticket:
        policy.ensure_admin(auth)
        return await self._shielded(
            "tickets.close", lambda: self._close(ticket_id, auth), ticket_id=ticket_id, auth=auth
        )

    async def _close(self, ticket_id: str, auth: AuthContext) -> Ticket:
        async with self._repository.transaction() as session:
            ticket = await self._lock(session, ticket_id)
            before = ticket_snapshot(ticket)
            self._state.close(ticket, now=self._clock.now())
            await self._commit_transition(session, ticket, auth, "CloseTicket", before)
        return ticket

    # -- replies -------------------------------------------------------------

    async def add_reply(self, ticket_id: str, auth: AuthContext, message: str | None) -> ReplyView:
        """Persist a reply with its ticket side effects, then notify live viewers.

        The broadcast happens after commit and is fire-and-forget: a delivery
        failure is logged and the created reply is still returned.
        """

        text = (message or "").strip()
        if not text:
            raise ValidationError("Reply message must not be blank")
        reply = await self._shielded(
            "tickets.add_reply", lambda: self._add_reply(ticket_id, auth, text), ticket_id=ticket_id, auth=auth
        )
        await self._broadcast(reply)
        return reply

    async def _add_reply(self, ticket_id: str, auth: AuthContext, text: str) -> ReplyView:
        async with self._repository.transaction() as session:
            ticket = await self._lock(session, ticket_id)
            sender = await self._repository.get_user(session, auth.user_id)
            if sender is None:
                raise ValidationError("Unable to resolve the sending user")
            caller = sender.to_context(
                ip_address=auth.ip_address,
                session_id=auth.session_id,
                user_agent=auth.user_agent,
            )
            policy.ensure_active(caller)
            if not policy.can_reply(ticket, caller):
                raise ForbiddenError("You may not reply to this ticket")

            is_staff_reply = not policy.is_owner(ticket, caller)
            sent_at = self._clock.now()
            reply = await self._repository.add_reply(
                session,
                ticket_id=ticket.id,
                sender_id=sender.id,
                message=text,
                is_staff_reply=is_staff_reply,
                sent_at=sent_at,
            )
            self._state.record_reply(ticket, is_staff_reply=is_staff_reply, sent_at=sent_at)
            await self._repository.save_ticket(session, ticket)

            if is_staff_reply:
                self._audit.record(
                    session,
                    actor=caller,
                    action="StaffReply",
                    entity_type=ENTITY_REPLY,
                    entity_id=str(reply.id),
                    after={
                        "reply_id": reply.id,
                        "ticket_id": ticket.id,
                        "sender_id": sender.id,
                        "is_staff_reply": True,
                        "message_preview": text[:PREVIEW_LENGTH],
                        "status": ticket.status.value,
                        "sla_status": ticket.sla_status.value,
                        "first_responded_at": ticket.first_responded_at,
                        "updated_at": ticket.updated_at,
                    },
                )

        return ReplyView(
            reply_id=reply.id,
            ticket_id=ticket.id,
            sender_id=sender.id,
            sender_name=sender.display_name,
            sender_avatar_url=sender.avatar_url,
            is_staff_reply=is_staff_reply,
            message=text,
            sent_at=sent_at,
        )

    async def _broadcast(self, reply: ReplyView) -> None:
        if self._publisher is None:
            return
        topic = topic_for(reply.ticket_id)
        try:
            await self._publisher.publish(topic, RECEIVE_REPLY, reply.to_payload())
        except Exception:
            logger.exception("Failed to deliver reply %s on %s", reply.reply_id, topic)

    # -- SLA sweep -----------------------------------------------------------

    async def refresh_sla_statuses(self) -> int:
        """Recompute SLA status of open tickets; return how many changed."""

        return await self._shielded("tickets.refresh_sla", self._refresh_sla)

    async def _refresh_sla(self) -> int:
        now = self._clock.now()
        changed = 0
        async with self._repository.transaction() as session:
            for ticket in await self._repository.lock_sla_candidates(session):
                if self._state.refresh_sla(ticket, now=now):
                    await self._repository.save_ticket(session, ticket)
                    changed += 1
        if changed:
            logger.info("SLA sweep updated %d tickets", changed)
        return changed

    # -- helpers -------------------------------------------------------------

    async def _shielded(
        self,
        span_name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        ticket_id: str | None = None,
        auth: AuthContext | None = None,
    ) -> T:
        attributes = span_attributes(ticket_id=ticket_id, user_id=auth.user_id if auth else None)

        async def run() -> T:
            with tracer.start_as_current_span(span_name, attributes=attributes):
                return await operation()

        task = asyncio.ensure_future(run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(partial(_log_abandoned, span_name))
            raise

    async def drain(self) -> None:
        """Wait for mutations still running after their callers went away."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _lock(self, session: AsyncSession, ticket_id: str) -> Ticket:
        ticket = await self._repository.lock_ticket(session, ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _require_care_staff(self, session: AsyncSession, user_id: str) -> None:
        account = await self._repository.get_user(session, user_id)
        if account is None or not account.is_active or not account.is_care_staff:
            raise ValidationError("Assignee must be an active customer care staff member")

    async def _commit_transition(
        self,
        session: AsyncSession,
        ticket: Ticket,
        auth: AuthContext,
        action: str,
        before: dict[str, Any],
    ) -> None:
        await self._repository.save_ticket(session, ticket)
        self._audit.record(
            session,
            actor=auth,
            action=action,
            entity_type=ENTITY_TICKET,
            entity_id=ticket.id,
            before=before,
            after=ticket_snapshot(ticket),
        )
        logger.info("%s applied to ticket %s by %s", action, ticket.code, auth.user_id)
