"""
Tenant, user and campus models.

Users and campuses are owned by the identity and operations services
upstream; this service stores the rows it needs to validate reviewer
assignments and campus references.
"""

from datetime import datetime, timezone

from curriculum.core.identity import Role
from curriculum.models import db
from curriculum.models.base import TenantModel, iso

USER_ROLES = tuple(r.value for r in Role)


class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Tenant {self.slug}>"


class User(TenantModel):
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(30), nullable=False, default=Role.TEACHER.value)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


class Campus(TenantModel):
    __tablename__ = "campuses"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
        }
