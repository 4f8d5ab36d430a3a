"""Field level diff between two JSON snapshots of the same entity."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from backoffice.core.errors import UnavailableDiffError

logger = logging.getLogger(__name__)

RAW_FIELD = "(raw)"

Snapshot = str | Mapping[str, Any] | None


@dataclass(frozen=True, slots=True)
class FieldChange:
    """One field whose value differs between ``before`` and ``after``."""

    field: str
    old_value: Any
    new_value: Any


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def parse_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Return the snapshot as a dict; blank or null snapshots are empty.

    Raises ``UnavailableDiffError`` when the text is not JSON or the JSON is
    not an object.
    """

    if snapshot is None:
        return {}
    if isinstance(snapshot, Mapping):
        return dict(snapshot)
    if not snapshot.strip():
        return {}
    try:
        parsed = json.loads(snapshot)
    except json.JSONDecodeError as exc:
        raise UnavailableDiffError(f"Snapshot is not valid JSON: {exc.msg}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise UnavailableDiffError(f"Snapshot is a JSON {type(parsed).__name__}, expected an object")
    return parsed


def diff_snapshots(before: Mapping[str, Any], after: Mapping[str, Any]) -> list[FieldChange]:
    """Compare two parsed snapshots key by key.

    Keys keep first-seen order: every key of ``before``, then keys that only
    ``after`` has. Missing keys compare equal to ``null``; nested values are
    compared by their canonical serialisation and reported whole.
    """

    fields = list(before.keys())
    seen = set(fields)
    for key in after.keys():
        if key not in seen:
            seen.add(key)
            fields.append(key)

    changes: list[FieldChange] = []
    for name in fields:
        old_value = before.get(name)
        new_value = after.get(name)
        if _canonical(old_value) != _canonical(new_value):
            changes.append(FieldChange(field=name, old_value=old_value, new_value=new_value))
    return changes


def _raw_text(snapshot: Snapshot) -> str | None:
    if snapshot is None or isinstance(snapshot, str):
        return snapshot
    return _canonical(dict(snapshot))


def build_diff(before: Snapshot, after: Snapshot) -> list[FieldChange]:
    """Diff two snapshots without ever raising.

    When either side cannot be parsed the two raw texts are reported as a
    single ``(raw)`` change, or nothing when the texts are identical.
    """

    try:
        parsed_before = parse_snapshot(before)
        parsed_after = parse_snapshot(after)
    except UnavailableDiffError as exc:
        logger.debug("Diff unavailable, falling back to raw snapshots: %s", exc)
        raw_before = _raw_text(before)
        raw_after = _raw_text(after)
        if raw_before == raw_after:
            return []
        return [FieldChange(field=RAW_FIELD, old_value=raw_before, new_value=raw_after)]
    return diff_snapshots(parsed_before, parsed_after)
