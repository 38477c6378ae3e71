"""
Soft delete mixin.

Adds a ``deleted_at`` timestamp column. Frameworks, versions and structural
nodes are never physically removed; engines filter them out with
``active_clause()`` in every read.

Usage:
    class Course(TenantModel, SoftDeleteMixin):
        ...

    course.soft_delete()
    select(Course).where(Course.active_clause())
"""

from datetime import datetime, timezone

from curriculum.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def active_clause(cls):
        """SQL predicate excluding soft-deleted rows."""
        return cls.deleted_at.is_(None)
