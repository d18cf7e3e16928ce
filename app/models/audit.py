"""
HR Onboarding Platform
Audit domain model.

Models:
    - AuditLog: append-only trail of mutations on programs, templates,
      links, tasks and users.
"""

import json
from datetime import datetime, timezone

from app.models import db

AUDIT_ENTITY_TYPES = {"program", "template", "link", "task", "user", "membership"}


class AuditLog(db.Model):
    """
    One row per mutation. ``diff_json`` carries the changed fields
    (``{field: {old, new}}``) or an action-specific payload.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_program", "program_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(db.String(64), nullable=True)
    entity_type = db.Column(db.String(30), nullable=False, comment="program | template | link | task | user")
    entity_id = db.Column(db.String(64), nullable=False)
    action = db.Column(db.String(60), nullable=False, comment="program.publish | link.attach | task.update | ...")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime, nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "program_id": self.program_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    program_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control.
    """
    log = AuditLog(
        program_id=program_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
