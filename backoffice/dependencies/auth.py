from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.datastructures import Headers

from backoffice.security.context import AuthContext, Role
from backoffice.security.users import UserDirectory

SESSION_HEADER = "X-Session-Id"

bearer_scheme = HTTPBearer(auto_error=False)


def _directory_from_state(state: object) -> UserDirectory:
    directory = getattr(state, "user_directory", None)
    if directory is None:
        raise HTTPException(status_code=503, detail="User directory is not configured")
    return directory


def get_user_directory(request: Request) -> UserDirectory:
    return _directory_from_state(request.app.state)


def _client_ip(headers: Headers, client_host: str | None) -> str | None:
    forwarded = headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or client_host
    return client_host


async def _resolve(
    directory: UserDirectory, token: str | None, headers: Headers, client_host: str | None
) -> AuthContext | None:
    if not token:
        return None
    account = await directory.resolve_token(token)
    if account is None:
        return None
    return account.to_context(
        ip_address=_client_ip(headers, client_host),
        session_id=headers.get(SESSION_HEADER),
        user_agent=headers.get("User-Agent"),
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> AuthContext:
    """Resolve the bearer token against the user store.

    The resolved context is cached on ``request.state`` so nested
    dependencies share a single lookup.
    """

    cached = getattr(request.state, "auth", None)
    if isinstance(cached, AuthContext):
        return cached

    token = credentials.credentials if credentials is not None else None
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    auth = await _resolve(
        get_user_directory(request),
        token,
        request.headers,
        request.client.host if request.client else None,
    )
    if auth is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    request.state.auth = auth
    return auth


async def resolve_websocket_user(websocket: WebSocket, token: str | None) -> AuthContext | None:
    """Same lookup as ``get_current_user`` for live connections, which pass the token as a query parameter."""

    directory = _directory_from_state(websocket.app.state)
    return await _resolve(
        directory,
        token,
        websocket.headers,
        websocket.client.host if websocket.client else None,
    )


def role_required(*roles: Role) -> Callable[[AuthContext], AuthContext]:
    """Dependency factory ensuring the current user holds one of ``roles``."""

    async def dependency(user: Annotated[AuthContext, Depends(get_current_user)]) -> AuthContext:
        if not any(user.has_role(role) for role in roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


require_admin = role_required(Role.ADMIN)
require_staff = role_required(Role.ADMIN, Role.CUSTOMER_CARE)

CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AdminUser = Annotated[AuthContext, Depends(require_admin)]
StaffUser = Annotated[AuthContext, Depends(require_staff)]
