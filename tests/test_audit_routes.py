from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from backoffice.audit.diff import FieldChange
from backoffice.audit.models import (
    AuditFilterOptions,
    AuditLogEntry,
    AuditLogItem,
    AuditLogPage,
    AuditSortKey,
    SortDirection,
)
from backoffice.audit.service import AuditLogDetail
from backoffice.core.errors import NotFoundError
from backoffice.dependencies import auth as auth_deps
from backoffice.dependencies import services as service_deps
from backoffice.main import create_app
from backoffice.security.context import AuthContext, Role

ADMIN = AuthContext(user_id="admin-1", roles=(Role.ADMIN,), email="ada@support.example.com")
AGENT = AuthContext(user_id="agent-1", roles=(Role.CUSTOMER_CARE,), email="alex@support.example.com")


def _entry() -> AuditLogEntry:
    return AuditLogEntry(
        audit_id=5,
        occurred_at=datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc),
        actor_id=AGENT.user_id,
        actor_email=AGENT.email,
        actor_role="CustomerCare",
        session_id="sess-1",
        ip_address="10.0.0.1",
        user_agent="pytest",
        action="AssignToMe",
        entity_type="Ticket",
        entity_id="ticket-1",
        before_data_json='{"status": "New"}',
        after_data_json='{"status": "InProgress"}',
    )


@pytest.fixture
def audit_client():
    app = create_app()
    service = AsyncMock()
    caller = {"user": ADMIN}

    async def override_service():
        return service

    async def override_user():
        return caller["user"]

    app.dependency_overrides[service_deps.get_audit_log_service] = override_service
    app.dependency_overrides[auth_deps.get_current_user] = override_user

    client = TestClient(app)
    try:
        yield client, service, caller
    finally:
        app.dependency_overrides.clear()


def test_list_maps_query_aliases(audit_client):
    client, service, _ = audit_client
    change = FieldChange(field="status", old_value="New", new_value="InProgress")
    service.list_logs = AsyncMock(
        return_value=AuditLogPage(page=2, page_size=5, total_items=6, items=[AuditLogItem(_entry(), [change])])
    )

    response = client.get(
        "/audit-logs",
        params={
            "Page": 2,
            "PageSize": 5,
            "ActorEmail": "alex",
            "Action": "AssignToMe",
            "SortBy": "actor",
            "SortDirection": "ASC",
            "From": "2026-03-01T00:00:00Z",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_items"] == 6
    assert body["items"][0]["changes"] == [{"field": "status", "old_value": "New", "new_value": "InProgress"}]
    assert "before_data_json" not in body["items"][0]

    criteria = service.list_logs.await_args.args[0]
    assert criteria.page == 2
    assert criteria.page_size == 5
    assert criteria.keyword == "alex"
    assert criteria.action == "AssignToMe"
    assert criteria.sort_by is AuditSortKey.ACTOR_EMAIL
    assert criteria.sort_direction is SortDirection.ASC
    assert criteria.from_ == datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_detail_includes_raw_snapshots(audit_client):
    client, service, _ = audit_client
    service.get_log = AsyncMock(
        return_value=AuditLogDetail(
            entry=_entry(),
            changes=[FieldChange(field="status", old_value="New", new_value="InProgress")],
        )
    )

    response = client.get("/audit-logs/5")

    assert response.status_code == 200
    body = response.json()
    assert body["audit_id"] == 5
    assert body["before_data_json"] == '{"status": "New"}'
    service.get_log.assert_awaited_with(5)


def test_missing_entry_is_not_found(audit_client):
    client, service, _ = audit_client
    service.get_log = AsyncMock(side_effect=NotFoundError("Audit log 99 not found"))

    response = client.get("/audit-logs/99")

    assert response.status_code == 404
    assert response.json() == {"detail": "Audit log 99 not found"}


def test_filter_options(audit_client):
    client, service, _ = audit_client
    service.get_filter_options = AsyncMock(
        return_value=AuditFilterOptions(
            actions=["AssignToMe", "StaffReply"],
            entity_types=["Ticket", "TicketReply"],
            actor_roles=["CustomerCare"],
        )
    )

    response = client.get("/audit-logs/options")

    assert response.status_code == 200
    assert response.json()["entity_types"] == ["Ticket", "TicketReply"]


def test_audit_logs_are_admin_only(audit_client):
    client, service, caller = audit_client
    caller["user"] = AGENT
    service.list_logs = AsyncMock()

    response = client.get("/audit-logs")

    assert response.status_code == 403
    service.list_logs.assert_not_awaited()


def test_date_only_bounds_cover_whole_days(audit_client):
    client, service, _ = audit_client
    service.list_logs = AsyncMock(return_value=AuditLogPage(page=1, page_size=20, total_items=0, items=[]))

    response = client.get("/audit-logs", params={"From": "2026-03-02", "To": "2026-03-02"})

    assert response.status_code == 200
    criteria = service.list_logs.await_args.args[0]
    assert criteria.from_ == datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert criteria.to == datetime(2026, 3, 2, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_datetime_bounds_are_kept_as_given(audit_client):
    client, service, _ = audit_client
    service.list_logs = AsyncMock(return_value=AuditLogPage(page=1, page_size=20, total_items=0, items=[]))

    response = client.get("/audit-logs", params={"From": "2026-03-02T08:15:00", "To": "2026-03-02T17:00:00+07:00"})

    assert response.status_code == 200
    criteria = service.list_logs.await_args.args[0]
    assert criteria.from_ == datetime(2026, 3, 2, 8, 15, tzinfo=timezone.utc)
    assert criteria.to == datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_unparseable_bound_is_rejected(audit_client):
    client, service, _ = audit_client
    service.list_logs = AsyncMock()

    response = client.get("/audit-logs", params={"To": "yesterday"})

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid date filter: yesterday"}
    service.list_logs.assert_not_awaited()


def test_missing_token_is_checked_before_the_service():
    app = create_app()

    response = TestClient(app).get("/audit-logs")

    assert response.status_code == 401
