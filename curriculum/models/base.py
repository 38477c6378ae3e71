"""
TenantModel — abstract base class for tenant-scoped models.

Every curriculum table inherits from TenantModel instead of db.Model
directly. This adds:
  - tenant_id FK column with index
  - timestamp columns shared by every row
"""

from datetime import datetime, timezone

from curriculum.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False,
    )


def iso(value):
    """Serialise an optional datetime for to_dict()."""
    return value.isoformat() if value else None
