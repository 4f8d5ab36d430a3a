from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from packages.db.models import UserTable

from .context import AuthContext, Role, parse_roles

ACTIVE_STATUS = "Active"


@dataclass(slots=True)
class UserAccount:
    """User row reduced to what the services need."""

    id: str
    email: str | None
    full_name: str | None
    avatar_url: str | None
    roles: tuple[Role, ...]
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS

    @property
    def is_care_staff(self) -> bool:
        return Role.CUSTOMER_CARE in self.roles

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or ""

    def to_context(
        self,
        *,
        ip_address: str | None = None,
        session_id: str | None = None,
        user_agent: str | None = None,
    ) -> AuthContext:
        return AuthContext(
            user_id=self.id,
            roles=self.roles,
            email=self.email,
            display_name=self.display_name,
            is_active=self.is_active,
            ip_address=ip_address,
            session_id=session_id,
            user_agent=user_agent,
        )


def row_to_account(row: UserTable) -> UserAccount:
    return UserAccount(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        avatar_url=row.avatar_url,
        roles=parse_roles(row.roles),
        status=(row.status or ACTIVE_STATUS).strip(),
    )


class UserDirectory:
    """Look up accounts by opaque API token."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve_token(self, token: str) -> UserAccount | None:
        if not token:
            return None
        async with self._session_factory() as session:
            result = await session.execute(select(UserTable).where(UserTable.api_token == token))
            row = result.scalar_one_or_none()
        return row_to_account(row) if row is not None else None
