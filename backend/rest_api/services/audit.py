"""
Audit trail for orders, refunds, closings and presets.

Entries are added to the caller's session and commit (or roll back) with
the change they describe.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from rest_api.models import AuditLog
from shared.infrastructure.correlation import get_request_id


def _to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _dump(values: Optional[dict]) -> Optional[str]:
    return json.dumps(values, default=str) if values else None


def diff_values(old_values: Optional[dict], new_values: Optional[dict]) -> dict[str, dict]:
    """Fields whose value changed, as {field: {"old": ..., "new": ...}}."""
    if not old_values or not new_values:
        return {}
    return {
        key: {"old": old_values.get(key), "new": new_values.get(key)}
        for key in sorted(old_values.keys() | new_values.keys())
        if old_values.get(key) != new_values.get(key)
    }


def log_change(
    db: Session,
    *,
    chain_id: int,
    branch_id: Optional[int],
    user_id: Optional[int],
    user_email: Optional[str],
    entity_type: str,
    entity_id: int,
    action: str,
    old_values: Optional[dict] = None,
    new_values: Optional[dict] = None,
    reason: Optional[str] = None,
) -> AuditLog:
    """Stage an audit entry; `user_id` is None for scheduler actions."""
    entry = AuditLog(
        chain_id=chain_id,
        branch_id=branch_id,
        user_id=user_id,
        user_email=user_email,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_values=_dump(old_values),
        new_values=_dump(new_values),
        changes=_dump(diff_values(old_values, new_values)),
        reason=reason,
        request_id=get_request_id() or None,
    )
    db.add(entry)
    return entry


def serialize_model(obj: Any, exclude: list[str] | None = None) -> dict:
    """Column values of a model row, JSON-safe."""
    skipped = set(exclude or ())
    return {
        column.name: _to_json(getattr(obj, column.name))
        for column in obj.__table__.columns
        if column.name not in skipped
    }
