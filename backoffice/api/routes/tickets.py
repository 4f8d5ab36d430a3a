from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Annotated, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from backoffice.core.errors import ServiceError
from backoffice.dependencies.auth import CurrentUser, StaffUser, resolve_websocket_user
from backoffice.dependencies.services import get_ticket_hub, get_ticket_service
from backoffice.realtime.hub import topic_for
from backoffice.tickets.models import (
    RelatedTicket,
    SlaStatus,
    Ticket,
    TicketListQuery,
    TicketReply,
    TicketSeverity,
    TicketStatus,
    UserSummary,
)
from backoffice.tickets.service import ReplyView, TicketService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["tickets"])

E = TypeVar("E", bound=Enum)


class TicketCreateRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    severity: str | None = None
    priority_level: int = Field(default=0, ge=0)


class TicketAssigneeRequest(BaseModel):
    assignee_id: str | None = None


class ReplyCreateRequest(BaseModel):
    message: str | None = None


class UserSummaryResponse(BaseModel):
    id: str
    email: str | None
    full_name: str | None
    avatar_url: str | None


class TicketResponse(BaseModel):
    id: str
    code: str
    subject: str
    description: str | None
    status: str
    severity: str
    priority_level: int
    assignment_state: str
    sla_status: str
    user_id: str
    assignee_id: str | None
    first_response_due_at: datetime | None
    resolution_due_at: datetime | None
    first_responded_at: datetime | None
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime | None


class ReplyResponse(BaseModel):
    reply_id: int
    sender_id: str
    sender_name: str
    sender_avatar_url: str | None
    is_staff_reply: bool
    message: str
    sent_at: datetime


class TicketListItemResponse(TicketResponse):
    customer: UserSummaryResponse | None
    assignee: UserSummaryResponse | None


class RelatedTicketResponse(BaseModel):
    id: str
    code: str
    subject: str
    status: str
    severity: str
    sla_status: str
    created_at: datetime


class TicketDetailResponse(TicketListItemResponse):
    replies: list[ReplyResponse]
    related_tickets: list[RelatedTicketResponse]


class TicketPageResponse(BaseModel):
    page: int
    page_size: int
    total_items: int
    items: list[TicketListItemResponse]


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _ticket_fields(ticket: Ticket) -> dict:
    return {
        "id": ticket.id,
        "code": ticket.code,
        "subject": ticket.subject,
        "description": ticket.description,
        "status": ticket.status.value,
        "severity": ticket.severity.value,
        "priority_level": ticket.priority_level,
        "assignment_state": ticket.assignment_state.value,
        "sla_status": ticket.sla_status.value,
        "user_id": ticket.user_id,
        "assignee_id": ticket.assignee_id,
        "first_response_due_at": ticket.first_response_due_at,
        "resolution_due_at": ticket.resolution_due_at,
        "first_responded_at": ticket.first_responded_at,
        "resolved_at": ticket.resolved_at,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
    }


def _user(summary: UserSummary | None) -> UserSummaryResponse | None:
    if summary is None:
        return None
    return UserSummaryResponse(
        id=summary.id,
        email=summary.email,
        full_name=summary.full_name,
        avatar_url=summary.avatar_url,
    )


def _reply(reply: TicketReply) -> ReplyResponse:
    sender = reply.sender
    return ReplyResponse(
        reply_id=reply.id,
        sender_id=reply.sender_id,
        sender_name=sender.display_name if sender else "",
        sender_avatar_url=sender.avatar_url if sender else None,
        is_staff_reply=reply.is_staff_reply,
        message=reply.message,
        sent_at=reply.sent_at,
    )


def _related(related: RelatedTicket) -> RelatedTicketResponse:
    return RelatedTicketResponse(
        id=related.id,
        code=related.code,
        subject=related.subject,
        status=related.status.value,
        severity=related.severity.value,
        sla_status=related.sla_status.value,
        created_at=related.created_at,
    )


def _reply_view(view: ReplyView) -> ReplyResponse:
    return ReplyResponse(
        reply_id=view.reply_id,
        sender_id=view.sender_id,
        sender_name=view.sender_name,
        sender_avatar_url=view.sender_avatar_url,
        is_staff_reply=view.is_staff_reply,
        message=view.message,
        sent_at=view.sent_at,
    )


def _parse_filter(enum_cls: type[E], value: str | None, name: str) -> E | None:
    raw = (value or "").strip()
    if not raw:
        return None
    if enum_cls is TicketStatus:
        try:
            return TicketStatus.parse(raw)  # type: ignore[return-value]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unknown {name} filter: {raw}") from exc
    for member in enum_cls:
        if str(member.value).lower() == raw.lower():
            return member
    raise HTTPException(status_code=400, detail=f"Unknown {name} filter: {raw}")


@router.get("", response_model=TicketPageResponse)
async def list_tickets(
    user: StaffUser,
    service: TicketServiceDep,
    q: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    severity: str | None = Query(default=None),
    sla: str | None = Query(default=None),
    assignment_state: str | None = Query(default=None, alias="assignmentState"),
    page: int = Query(default=1),
    page_size: int = Query(default=10, alias="pageSize"),
) -> TicketPageResponse:
    query = TicketListQuery(
        q=q,
        status=_parse_filter(TicketStatus, status_filter, "status"),
        severity=_parse_filter(TicketSeverity, severity, "severity"),
        sla=_parse_filter(SlaStatus, sla, "sla"),
        assignment_state=assignment_state,
        page=page,
        page_size=page_size,
    )
    result = await service.list_tickets(query, user)
    return TicketPageResponse(
        page=result.page,
        page_size=result.page_size,
        total_items=result.total_items,
        items=[
            TicketListItemResponse(
                **_ticket_fields(item.ticket),
                customer=_user(item.customer),
                assignee=_user(item.assignee),
            )
            for item in result.items
        ],
    )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, user: CurrentUser, service: TicketServiceDep) -> TicketResponse:
    ticket = await service.create_ticket(
        user,
        subject=payload.subject,
        description=payload.description,
        severity=payload.severity,
        priority_level=payload.priority_level,
    )
    return TicketResponse(**_ticket_fields(ticket))


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, user: CurrentUser, service: TicketServiceDep) -> TicketDetailResponse:
    detail = await service.get_ticket(ticket_id, user)
    return TicketDetailResponse(
        **_ticket_fields(detail.ticket),
        customer=_user(detail.customer),
        assignee=_user(detail.assignee),
        replies=[_reply(reply) for reply in detail.replies],
        related_tickets=[_related(related) for related in detail.related],
    )


@router.post("/{ticket_id}/assign", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def assign_ticket(
    ticket_id: str,
    user: CurrentUser,
    service: TicketServiceDep,
    payload: TicketAssigneeRequest | None = None,
) -> Response:
    await service.assign(ticket_id, user, assignee_id=payload.assignee_id if payload else None)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ticket_id}/transfer-tech", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def transfer_ticket(
    ticket_id: str,
    user: CurrentUser,
    service: TicketServiceDep,
    payload: TicketAssigneeRequest | None = None,
) -> Response:
    await service.transfer_to_technical(ticket_id, user, assignee_id=payload.assignee_id if payload else None)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ticket_id}/complete", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def complete_ticket(ticket_id: str, user: CurrentUser, service: TicketServiceDep) -> Response:
    await service.complete(ticket_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ticket_id}/close", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def close_ticket(ticket_id: str, user: CurrentUser, service: TicketServiceDep) -> Response:
    await service.close(ticket_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ticket_id}/replies", response_model=ReplyResponse)
async def create_reply(
    ticket_id: str,
    payload: ReplyCreateRequest,
    user: CurrentUser,
    service: TicketServiceDep,
) -> ReplyResponse:
    reply = await service.add_reply(ticket_id, user, payload.message)
    return _reply_view(reply)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/{ticket_id}/live")
async def ticket_live(websocket: WebSocket, ticket_id: str, token: str | None = None) -> None:
    """Push ``ReceiveReply`` frames for one ticket to an authorised viewer."""

    auth = await resolve_websocket_user(websocket, token)
    service: TicketService | None = getattr(websocket.app.state, "ticket_service", None)
    if auth is None or service is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        await service.get_ticket(ticket_id, auth)
    except ServiceError as exc:
        logger.info("Live subscription to %s refused: %s", ticket_id, exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub = get_ticket_hub(websocket.app.state)
    await websocket.accept()
    async with hub.subscribe(topic_for(ticket_id)) as queue:
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            while True:
                next_event = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({next_event, disconnected}, return_when=asyncio.FIRST_COMPLETED)
                if disconnected in done:
                    next_event.cancel()
                    break
                await websocket.send_json(next_event.result().to_frame())
        finally:
            disconnected.cancel()
