from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Role codes stored on user accounts."""

    ADMIN = "admin"
    CUSTOMER_CARE = "customer_care"
    CUSTOMER = "customer"


# Label written to audit entries; the first role present wins.
_ROLE_LABELS: tuple[tuple[Role, str], ...] = (
    (Role.ADMIN, "Admin"),
    (Role.CUSTOMER_CARE, "CustomerCare"),
    (Role.CUSTOMER, "Customer"),
)


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Identity of the caller, resolved once per request by the boundary layer."""

    user_id: str
    roles: tuple[Role, ...] = ()
    email: str | None = None
    display_name: str | None = None
    is_active: bool = True
    ip_address: str | None = None
    session_id: str | None = None
    user_agent: str | None = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def is_care_staff(self) -> bool:
        return Role.CUSTOMER_CARE in self.roles

    @property
    def is_staff(self) -> bool:
        return self.is_admin or self.is_care_staff

    @property
    def role_label(self) -> str | None:
        for role, label in _ROLE_LABELS:
            if role in self.roles:
                return label
        return None


def parse_roles(values: list[str] | tuple[str, ...] | None) -> tuple[Role, ...]:
    """Map stored role codes onto ``Role`` members, ignoring unknown codes."""

    roles: list[Role] = []
    for value in values or ():
        code = str(value).strip().lower()
        try:
            role = Role(code)
        except ValueError:
            continue
        if role not in roles:
            roles.append(role)
    return tuple(roles)
