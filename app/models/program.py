"""
HR Onboarding Platform
Program domain models.

Models:
    - Program: an onboarding program (status lifecycle + soft delete)
    - Template: a reusable onboarding step with default metadata
    - ProgramTemplateLink: Program ↔ Template association with per-link overrides
    - Task: a scheduled onboarding step owned by exactly one user
"""

import uuid
from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

RESOURCE_STATUSES = ("draft", "published", "deprecated")


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Program ──────────────────────────────────────────────────────────────────


class Program(SoftDeleteMixin, db.Model):
    """An onboarding program. ``id`` is a client-chosen slug or a generated hex id."""

    __tablename__ = "programs"

    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    total_weeks = db.Column(db.Integer, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | published | deprecated",
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    links = db.relationship(
        "ProgramTemplateLink", back_populates="program", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "total_weeks": self.total_weeks,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "deleted_at": _iso(self.deleted_at),
        }

    def __repr__(self):
        return f"<Program {self.id}: {self.title}>"


# ── Template ─────────────────────────────────────────────────────────────────


class Template(SoftDeleteMixin, db.Model):
    """Catalog entry carrying the default metadata for every program that links it."""

    __tablename__ = "templates"

    id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(255), nullable=False)
    week_number = db.Column(db.Integer)
    due_offset_days = db.Column(db.Integer)
    required = db.Column(db.Boolean)
    visibility = db.Column(db.String(50))
    sort_order = db.Column(db.Integer)
    notes = db.Column(db.Text)
    external_link = db.Column(db.String(2048))
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | published | deprecated",
    )
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    links = db.relationship(
        "ProgramTemplateLink", back_populates="template", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "label": self.label,
            "week_number": self.week_number,
            "due_offset_days": self.due_offset_days,
            "required": self.required,
            "visibility": self.visibility,
            "sort_order": self.sort_order,
            "notes": self.notes,
            "external_link": self.external_link,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "deleted_at": _iso(self.deleted_at),
        }

    def __repr__(self):
        return f"<Template {self.id}: {self.label}>"


# ── ProgramTemplateLink ──────────────────────────────────────────────────────


class ProgramTemplateLink(db.Model):
    """
    Many-to-many association between Program and Template.

    Metadata columns are nullable overrides: NULL means "use the template
    default". ``app.services.metadata.merge_metadata`` resolves them.
    """

    __tablename__ = "program_template_links"
    __table_args__ = (
        db.UniqueConstraint("program_id", "template_id", name="uq_program_template"),
        db.Index("ix_ptl_template", "template_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(
        db.String(64), db.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False
    )
    week_number = db.Column(db.Integer)
    due_offset_days = db.Column(db.Integer)
    required = db.Column(db.Boolean)
    visibility = db.Column(db.String(50))
    sort_order = db.Column(db.Integer)
    notes = db.Column(db.Text)
    external_link = db.Column(db.String(2048))
    visible = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    program = db.relationship("Program", back_populates="links")
    template = db.relationship("Template", back_populates="links")

    def to_dict(self):
        return {
            "id": self.id,
            "program_id": self.program_id,
            "template_id": self.template_id,
            "week_number": self.week_number,
            "due_offset_days": self.due_offset_days,
            "required": self.required,
            "visibility": self.visibility,
            "sort_order": self.sort_order,
            "notes": self.notes,
            "external_link": self.external_link,
            "visible": self.visible,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ── Task ─────────────────────────────────────────────────────────────────────


class Task(db.Model):
    """A user's onboarding task. Soft delete flips ``deleted``; rows are never removed."""

    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("ix_tasks_user", "user_id"),
        db.Index("ix_tasks_program", "program_id"),
        db.Index("ix_tasks_scheduled_for", "scheduled_for"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    program_id = db.Column(
        db.String(64), db.ForeignKey("programs.id", ondelete="SET NULL"), nullable=True
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("templates.id", ondelete="SET NULL"), nullable=True
    )
    label = db.Column(db.String(255), nullable=False)
    scheduled_for = db.Column(db.Date)
    scheduled_time = db.Column(db.String(10))
    done = db.Column(db.Boolean, nullable=False, default=False)
    week_number = db.Column(db.Integer)
    notes = db.Column(db.Text)
    journal_entry = db.Column(db.Text)
    responsible_person = db.Column(db.String(200))
    deleted = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "program_id": self.program_id,
            "template_id": self.template_id,
            "label": self.label,
            "scheduled_for": _iso(self.scheduled_for),
            "scheduled_time": self.scheduled_time,
            "done": bool(self.done),
            "week_number": self.week_number,
            "notes": self.notes,
            "journal_entry": self.journal_entry,
            "responsible_person": self.responsible_person,
            "deleted": bool(self.deleted),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.label}>"
