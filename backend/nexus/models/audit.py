from __future__ import annotations

import json

from sqlalchemy import event

from ..extensions import db
from ..errors import ImmutableRecordError
from nexus.time_utils import to_utc_z


class AuditLogEntry(db.Model):
    """
    One record per mutating action: who, what, on which entity, from where.

    Written once, never updated, never deleted by the application.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity", "entity_id"),
        db.Index("ix_audit_logs_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)  # e.g. SALES_ORDER_APPROVED
    entity = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)
    metadata_json = db.Column("metadata", db.Text, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    @property
    def details(self) -> dict | None:
        if not self.metadata_json:
            return None
        return json.loads(self.metadata_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user.email if self.user else None,
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(AuditLogEntry, "before_update")
def _prevent_audit_update(mapper, connection, target):
    raise ImmutableRecordError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditLogEntry, "before_delete")
def _prevent_audit_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Audit entry {target.id} cannot be deleted")
