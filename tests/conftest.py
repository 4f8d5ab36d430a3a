from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from backoffice.core.clock import FrozenClock
from backoffice.realtime.hub import TicketHub
from backoffice.security.context import AuthContext
from backoffice.security.users import row_to_account
from backoffice.tickets.repository import TicketRepository
from backoffice.tickets.service import TicketService
from packages.db.models import SlaRuleTable, TicketTable, UserTable

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

USER_SEED: dict[str, dict[str, Any]] = {
    "customer": {"email": "cara@example.com", "full_name": "Cara Customer", "roles": ["customer"]},
    "other_customer": {"email": "olly@example.com", "full_name": "Olly Other", "roles": ["customer"]},
    "agent": {
        "email": "alex@support.example.com",
        "full_name": "Alex Agent",
        "roles": ["customer_care"],
        "avatar_url": "https://cdn.example.com/alex.png",
    },
    "agent_two": {"email": "bo@support.example.com", "full_name": "Bo Agent", "roles": ["customer_care"]},
    "admin": {"email": "ada@support.example.com", "full_name": "Ada Admin", "roles": ["admin"]},
    "locked_agent": {
        "email": "lee@support.example.com",
        "full_name": "Lee Locked",
        "roles": ["customer_care"],
        "status": "Locked",
    },
}


@pytest_asyncio.fixture
async def engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest_asyncio.fixture
async def users(session_factory: async_sessionmaker) -> dict[str, UserTable]:
    rows: dict[str, UserTable] = {}
    async with session_factory() as session:
        for name, values in USER_SEED.items():
            row = UserTable(api_token=f"{name}-token", created_at=T0 - timedelta(days=30), **values)
            session.add(row)
            rows[name] = row
        await session.commit()
    return rows


@pytest.fixture
def auth_for(users: dict[str, UserTable]) -> Callable[..., AuthContext]:
    def build(name: str, **extra: Any) -> AuthContext:
        return row_to_account(users[name]).to_context(**extra)

    return build


@pytest_asyncio.fixture
async def sla_rule(session_factory: async_sessionmaker) -> SlaRuleTable:
    rule = SlaRuleTable(
        name="High priority 1",
        severity="High",
        priority_level=1,
        first_response_minutes=60,
        resolution_minutes=480,
    )
    async with session_factory() as session:
        session.add(rule)
        await session.commit()
        await session.refresh(rule)
    return rule


@pytest.fixture
def make_ticket(session_factory: async_sessionmaker, users: dict[str, UserTable]) -> Callable[..., Awaitable[str]]:
    counter = {"value": 0}

    async def factory(**overrides: Any) -> str:
        counter["value"] += 1
        values: dict[str, Any] = {
            "id": f"00000000-0000-0000-0000-{counter['value']:012d}",
            "code": f"TCK-{counter['value']:04d}",
            "subject": f"Ticket {counter['value']}",
            "status": "New",
            "severity": "Medium",
            "assignment_state": "Unassigned",
            "sla_status": "OK",
            "user_id": users["customer"].id,
            "created_at": T0,
            "updated_at": T0,
        }
        values.update(overrides)
        async with session_factory() as session:
            session.add(TicketTable(**values))
            await session.commit()
        return values["id"]

    return factory


@pytest.fixture
def hub() -> TicketHub:
    return TicketHub(queue_size=10)


@pytest.fixture
def ticket_service(session_factory: async_sessionmaker, clock: FrozenClock, hub: TicketHub) -> TicketService:
    return TicketService(TicketRepository(session_factory), clock=clock, publisher=hub)
