from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from backoffice.audit.diff import FieldChange
from backoffice.audit.models import AuditLogEntry, AuditLogFilter, AuditSortKey, SortDirection
from backoffice.audit.service import AuditLogService
from backoffice.core.clock import ensure_utc
from backoffice.core.errors import ValidationError
from backoffice.dependencies.auth import AdminUser
from backoffice.dependencies.services import get_audit_log_service

router = APIRouter(prefix="/audit-logs", tags=["audit"])


class FieldChangeResponse(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class AuditLogResponse(BaseModel):
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
    changes: list[FieldChangeResponse]


class AuditLogDetailResponse(AuditLogResponse):
    before_data_json: str | None
    after_data_json: str | None


class AuditLogPageResponse(BaseModel):
    page: int
    page_size: int
    total_items: int
    items: list[AuditLogResponse]


class AuditFilterOptionsResponse(BaseModel):
    actions: list[str]
    entity_types: list[str]
    actor_roles: list[str]


AuditServiceDep = Annotated[AuditLogService, Depends(get_audit_log_service)]

_DATETIME = TypeAdapter(datetime)


def parse_bound(raw: str | None, *, end_of_day: bool = False) -> datetime | None:
    """Read a ``From``/``To`` filter value as a UTC datetime.

    A bare date covers the whole UTC day: it starts at midnight for ``From``
    and runs to the last microsecond of the day for ``To``. Values without an
    offset are taken as UTC.
    """

    value = (raw or "").strip()
    if not value:
        return None
    try:
        day = date.fromisoformat(value)
    except ValueError:
        pass
    else:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        return start + timedelta(days=1, microseconds=-1) if end_of_day else start
    try:
        return ensure_utc(_DATETIME.validate_python(value))
    except PydanticValidationError:
        raise ValidationError(f"Invalid date filter: {value}") from None


def _changes(changes: list[FieldChange]) -> list[FieldChangeResponse]:
    return [
        FieldChangeResponse(field=change.field, old_value=change.old_value, new_value=change.new_value)
        for change in changes
    ]


def _entry_fields(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "audit_id": entry.audit_id,
        "occurred_at": entry.occurred_at,
        "actor_id": entry.actor_id,
        "actor_email": entry.actor_email,
        "actor_role": entry.actor_role,
        "session_id": entry.session_id,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
    }


@router.get("", response_model=AuditLogPageResponse)
async def list_audit_logs(
    _: AdminUser,
    service: AuditServiceDep,
    page: int = Query(default=1, alias="Page"),
    page_size: int = Query(default=20, alias="PageSize"),
    from_: str | None = Query(default=None, alias="From"),
    to: str | None = Query(default=None, alias="To"),
    keyword: str | None = Query(default=None, alias="ActorEmail"),
    actor_role: str | None = Query(default=None, alias="ActorRole"),
    action: str | None = Query(default=None, alias="Action"),
    entity_type: str | None = Query(default=None, alias="EntityType"),
    sort_by: str | None = Query(default=None, alias="SortBy"),
    sort_direction: str | None = Query(default=None, alias="SortDirection"),
) -> AuditLogPageResponse:
    result = await service.list_logs(
        AuditLogFilter(
            page=page,
            page_size=page_size,
            from_=parse_bound(from_),
            to=parse_bound(to, end_of_day=True),
            keyword=keyword,
            actor_role=actor_role,
            action=action,
            entity_type=entity_type,
            sort_by=AuditSortKey.parse(sort_by),
            sort_direction=SortDirection.parse(sort_direction),
        )
    )
    return AuditLogPageResponse(
        page=result.page,
        page_size=result.page_size,
        total_items=result.total_items,
        items=[
            AuditLogResponse(**_entry_fields(item.entry), changes=_changes(list(item.changes)))
            for item in result.items
        ],
    )


@router.get("/options", response_model=AuditFilterOptionsResponse)
async def get_audit_filter_options(_: AdminUser, service: AuditServiceDep) -> AuditFilterOptionsResponse:
    options = await service.get_filter_options()
    return AuditFilterOptionsResponse(
        actions=options.actions,
        entity_types=options.entity_types,
        actor_roles=options.actor_roles,
    )


@router.get("/{audit_id}", response_model=AuditLogDetailResponse)
async def get_audit_log(audit_id: int, _: AdminUser, service: AuditServiceDep) -> AuditLogDetailResponse:
    detail = await service.get_log(audit_id)
    return AuditLogDetailResponse(
        **_entry_fields(detail.entry),
        before_data_json=detail.entry.before_data_json,
        after_data_json=detail.entry.after_data_json,
        changes=_changes(detail.changes),
    )
