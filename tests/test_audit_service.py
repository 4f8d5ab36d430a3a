from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from backoffice.audit.models import AuditLogFilter, AuditSortKey, SortDirection
from backoffice.audit.repository import AuditLogRepository
from backoffice.audit.service import AuditLogService
from backoffice.core.errors import NotFoundError
from packages.db.models import AuditLogTable

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


async def _seed(session_factory: async_sessionmaker, rows: list[dict]) -> list[int]:
    ids: list[int] = []
    async with session_factory() as session:
        tables = [AuditLogTable(**row) for row in rows]
        session.add_all(tables)
        await session.commit()
        ids = [int(table.id) for table in tables]
    return ids


@pytest_asyncio.fixture
async def service(session_factory: async_sessionmaker) -> AuditLogService:
    return AuditLogService(AuditLogRepository(session_factory))


@pytest_asyncio.fixture
async def supplier_logs(session_factory: async_sessionmaker) -> list[int]:
    return await _seed(
        session_factory,
        [
            {
                "occurred_at": T0,
                "actor_email": "ada@support.example.com",
                "actor_role": "Admin",
                "action": "CreateSupplier",
                "entity_type": "Supplier",
                "entity_id": "sup-1",
                "after_data_json": json.dumps({"name": "Acme"}),
            },
            {
                "occurred_at": T0 + timedelta(minutes=5),
                "actor_email": "ada@support.example.com",
                "actor_role": "Admin",
                "action": "UpdateSupplier",
                "entity_type": "Supplier",
                "entity_id": "sup-1",
                "before_data_json": json.dumps({"name": "Acme"}),
                "after_data_json": json.dumps({"name": "Acme Ltd"}),
                "ip_address": "10.1.2.3",
            },
            {
                "occurred_at": T0 + timedelta(minutes=10),
                "actor_email": "bo@support.example.com",
                "actor_role": "CustomerCare",
                "action": "CreateSupplier",
                "entity_type": "Supplier",
                "entity_id": "sup-2",
                "after_data_json": "{broken",
            },
        ],
    )


@pytest.mark.asyncio
async def test_filter_by_action_returns_only_matching_rows(service: AuditLogService, supplier_logs):
    page = await service.list_logs(AuditLogFilter(action="CreateSupplier"))

    assert page.total_items == 2
    assert {item.entry.action for item in page.items} == {"CreateSupplier"}


@pytest.mark.asyncio
async def test_filter_options_are_distinct_and_sorted(service: AuditLogService, supplier_logs):
    options = await service.get_filter_options()

    assert options.actions == ["CreateSupplier", "UpdateSupplier"]
    assert options.entity_types == ["Supplier"]
    assert options.actor_roles == ["Admin", "CustomerCare"]


@pytest.mark.asyncio
async def test_items_carry_their_diff(service: AuditLogService, supplier_logs):
    page = await service.list_logs(AuditLogFilter(action="UpdateSupplier"))

    (item,) = page.items
    assert [(c.field, c.old_value, c.new_value) for c in item.changes] == [("name", "Acme", "Acme Ltd")]


@pytest.mark.asyncio
async def test_malformed_snapshot_degrades_to_raw_diff(service: AuditLogService, supplier_logs):
    detail = await service.get_log(supplier_logs[2])

    assert detail.entry.after_data_json == "{broken"
    assert [c.field for c in detail.changes] == ["(raw)"]


@pytest.mark.asyncio
async def test_get_log_missing_raises_not_found(service: AuditLogService, supplier_logs):
    with pytest.raises(NotFoundError):
        await service.get_log(9999)


@pytest.mark.parametrize(
    ("page", "page_size", "expected"),
    [
        (0, 0, (1, 20)),
        (-3, 500, (1, 20)),
        (2, 201, (2, 20)),
        (3, 200, (3, 200)),
        (1, 1, (1, 1)),
    ],
)
def test_paging_is_corrected_not_rejected(page, page_size, expected):
    service = AuditLogService(AuditLogRepository(None))  # type: ignore[arg-type]
    effective = service.normalize_filter(AuditLogFilter(page=page, page_size=page_size))
    assert (effective.page, effective.page_size) == expected


@pytest.mark.asyncio
async def test_keyword_matches_case_insensitively_across_columns(service: AuditLogService, supplier_logs):
    by_email = await service.list_logs(AuditLogFilter(keyword="  BO@SUPPORT  "))
    by_ip = await service.list_logs(AuditLogFilter(keyword="10.1.2"))
    by_entity = await service.list_logs(AuditLogFilter(keyword="sup-2"))

    assert [item.entry.actor_email for item in by_email.items] == ["bo@support.example.com"]
    assert [item.entry.action for item in by_ip.items] == ["UpdateSupplier"]
    assert by_entity.total_items == 1


@pytest.mark.asyncio
async def test_keyword_wildcards_are_literal(service: AuditLogService, supplier_logs):
    page = await service.list_logs(AuditLogFilter(keyword="%"))
    assert page.total_items == 0


@pytest.mark.asyncio
async def test_date_range_is_inclusive(service: AuditLogService, supplier_logs):
    page = await service.list_logs(
        AuditLogFilter(from_=T0 + timedelta(minutes=5), to=T0 + timedelta(minutes=10))
    )
    assert page.total_items == 2


@pytest.mark.asyncio
async def test_default_sort_is_newest_first(service: AuditLogService, supplier_logs):
    page = await service.list_logs(AuditLogFilter())
    assert [item.entry.audit_id for item in page.items] == list(reversed(supplier_logs))


@pytest.mark.asyncio
async def test_system_role_matches_entries_without_role(
    service: AuditLogService, session_factory: async_sessionmaker, supplier_logs
):
    await _seed(
        session_factory,
        [
            {"occurred_at": T0, "actor_role": None, "action": "RefreshSla", "entity_type": "Ticket"},
            {"occurred_at": T0, "actor_role": "", "action": "RefreshSla", "entity_type": "Ticket"},
        ],
    )

    page = await service.list_logs(AuditLogFilter(actor_role="system"))
    options = await service.get_filter_options()

    assert page.total_items == 2
    assert options.actor_roles == ["Admin", "CustomerCare", "System"]


@pytest.mark.asyncio
async def test_pages_concatenate_without_gaps_or_duplicates(
    service: AuditLogService, session_factory: async_sessionmaker
):
    actions = ["Beta", "Alpha", "Beta", "Gamma", "Alpha", "Beta", "Alpha"]
    await _seed(
        session_factory,
        [{"occurred_at": T0, "action": action, "entity_type": "Ticket"} for action in actions],
    )

    for direction in (SortDirection.ASC, SortDirection.DESC):
        seen = []
        for page_number in range(1, 5):
            page = await service.list_logs(
                AuditLogFilter(
                    page=page_number,
                    page_size=2,
                    sort_by=AuditSortKey.ACTION,
                    sort_direction=direction,
                )
            )
            seen.extend((item.entry.action, item.entry.audit_id) for item in page.items)

        assert len(seen) == len(actions)
        assert len({audit_id for _, audit_id in seen}) == len(actions)
        assert seen == sorted(seen, reverse=direction is SortDirection.DESC)


def test_sort_key_parsing():
    assert AuditSortKey.parse("ActorEmail") is AuditSortKey.ACTOR_EMAIL
    assert AuditSortKey.parse("actor") is AuditSortKey.ACTOR_EMAIL
    assert AuditSortKey.parse("entity_type") is AuditSortKey.ENTITY_TYPE
    assert AuditSortKey.parse("bogus") is AuditSortKey.OCCURRED_AT
    assert AuditSortKey.parse(None) is AuditSortKey.OCCURRED_AT
    assert SortDirection.parse("ASC") is SortDirection.ASC
    assert SortDirection.parse("up") is SortDirection.DESC
