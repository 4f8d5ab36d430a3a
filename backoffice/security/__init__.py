"""Caller identity passed into the ticket and audit services."""

from .context import AuthContext, Role, parse_roles
from .users import UserAccount, UserDirectory

__all__ = ["AuthContext", "Role", "UserAccount", "UserDirectory", "parse_roles"]
