"""Who may do what to a ticket."""

from __future__ import annotations

from backoffice.core.errors import ForbiddenError
from backoffice.security.context import AuthContext, Role

from .models import Ticket


def is_owner(ticket: Ticket, auth: AuthContext) -> bool:
    return ticket.user_id == auth.user_id


def is_assignee(ticket: Ticket, auth: AuthContext) -> bool:
    return ticket.assignee_id is not None and ticket.assignee_id == auth.user_id


def can_reply(ticket: Ticket, auth: AuthContext) -> bool:
    return is_owner(ticket, auth) or is_assignee(ticket, auth) or auth.is_admin


def can_view(ticket: Ticket, auth: AuthContext) -> bool:
    return can_reply(ticket, auth) or auth.is_care_staff


def ensure_active(auth: AuthContext) -> None:
    if not auth.is_active:
        raise ForbiddenError("Account is locked")


def ensure_staff(auth: AuthContext) -> None:
    ensure_active(auth)
    if not auth.is_staff:
        raise ForbiddenError("Only support staff may perform this action")


def ensure_customer(auth: AuthContext) -> None:
    ensure_active(auth)
    if not auth.has_role(Role.CUSTOMER):
        raise ForbiddenError("Only customers may open tickets")


def ensure_admin(auth: AuthContext) -> None:
    ensure_active(auth)
    if not auth.is_admin:
        raise ForbiddenError("Only administrators may perform this action")


def ensure_admin_or_assignee(ticket: Ticket, auth: AuthContext) -> None:
    ensure_staff(auth)
    if not auth.is_admin and not is_assignee(ticket, auth):
        raise ForbiddenError("Only the assignee or an administrator may perform this action")
