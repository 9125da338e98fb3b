# Overview: Service-layer operations for the audit trail; transactional and best-effort writes.

from __future__ import annotations

import json

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import AuditLogEntry
"""
Audit Trail Invariants

- One entry per mutating action; entries are immutable and never deleted.
- With a session: the entry joins the caller's transaction. Errors propagate,
  and a rollback of the business operation discards the entry with it.
- Without a session: the entry is written on its own short-lived session and
  committed independently. A failure is logged and swallowed; it must never
  fail or roll back the business operation that triggered it.
"""


def _build_entry(actor_id, action: str, details: dict | None, ip: str | None) -> AuditLogEntry:
    details = details or {}
    entity = details.get("entity") or action.split("_", 1)[0]
    entity_id = details.get("entity_id", details.get("id"))

    return AuditLogEntry(
        user_id=actor_id,
        action=action,
        entity=str(entity),
        entity_id=str(entity_id) if entity_id is not None else None,
        metadata_json=json.dumps(details, default=str, sort_keys=True),
        ip_address=ip,
    )


def record(
    actor_id: int | None,
    action: str,
    details: dict | None = None,
    ip: str | None = None,
    session=None,
) -> AuditLogEntry | None:
    """
    Record an audit entry.

    Args:
        actor_id: User performing the action
        action: Action code, e.g. SALES_ORDER_APPROVED
        details: JSON-serializable payload; "entity"/"entity_id" (or "id")
            keys are lifted into their own columns when present
        ip: Originating IP address
        session: Session of an open transaction to participate in

    Returns:
        The entry, or None when a best-effort write failed.
    """
    entry = _build_entry(actor_id, action, details, ip)

    if session is not None:
        session.add(entry)
        session.flush()
        return entry

    try:
        with Session(db.engine, expire_on_commit=False) as independent:
            independent.add(entry)
            independent.commit()
        return entry
    except SQLAlchemyError:
        current_app.logger.exception("Failed to write audit entry %s", action)
        return None


def list_recent(limit: int = 100) -> list[dict]:
    entries = (
        db.session.query(AuditLogEntry)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )
    return [entry.to_dict() for entry in entries]


def get_client_ip(request) -> str | None:
    """First hop of X-Forwarded-For when behind a proxy, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr
