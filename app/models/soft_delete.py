"""
Soft delete mixin for Programs and Templates.

Adds a nullable ``deleted_at`` timestamp. A row with ``deleted_at`` set is
archived: excluded from default listings, still addressable by id, and
reversible via ``restore()``.

Usage:
    class Program(SoftDeleteMixin, db.Model):
        ...

    changed = program.soft_delete()   # False when already archived
    db.session.commit()

    Program.query_active().all()
"""

from datetime import datetime, timezone

from app.models import db


class SoftDeleteMixin:
    """Mixin that adds idempotent archive/restore to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    def soft_delete(self) -> bool:
        """Mark this record as deleted. Returns True if the state changed."""
        if self.deleted_at is not None:
            return False
        self.deleted_at = datetime.now(timezone.utc)
        return True

    def restore(self) -> bool:
        """Clear the deletion mark. Returns True if the state changed."""
        if self.deleted_at is None:
            return False
        self.deleted_at = None
        return True

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))
