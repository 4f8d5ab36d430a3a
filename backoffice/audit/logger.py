from __future__ import annotations

import json
import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.core.clock import Clock, SystemClock
from backoffice.security.context import AuthContext
from packages.db.models import AuditLogTable

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def dump_snapshot(snapshot: Mapping[str, Any] | None) -> str | None:
    """Serialise an entity snapshot the way it is stored on audit entries."""

    if snapshot is None:
        return None
    return json.dumps(dict(snapshot), default=_json_default, ensure_ascii=False)


class AuditLogger:
    """Append audit entries inside the caller's unit of work."""

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()

    def record(
        self,
        session: AsyncSession,
        *,
        actor: AuthContext | None,
        action: str,
        entity_type: str,
        entity_id: str,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
    ) -> AuditLogTable:
        entry = AuditLogTable(
            occurred_at=self._clock.now(),
            actor_id=actor.user_id if actor else None,
            actor_email=actor.email if actor else None,
            actor_role=actor.role_label if actor else None,
            session_id=actor.session_id if actor else None,
            ip_address=actor.ip_address if actor else None,
            user_agent=actor.user_agent if actor else None,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before_data_json=dump_snapshot(before),
            after_data_json=dump_snapshot(after),
        )
        session.add(entry)
        logger.debug("Audit %s on %s %s by %s", action, entity_type, entity_id, entry.actor_id or "system")
        return entry
