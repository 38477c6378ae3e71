"""
Curriculum content models.

Ownership chain:
    Framework ─1:N─ Version ─1:N─ Course ─1:N─ Unit ─1:N─ Resource

Courses, units and resources are "structural nodes": they are mutable only
while their owning Version is in draft. The version lifecycle is declared
here as an event table and compiled into ``VERSION_MACHINE``.
"""

from sqlalchemy import text

from curriculum.core.state_machine import StateMachine
from curriculum.models import db
from curriculum.models.base import TenantModel, iso
from curriculum.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────────

# Uniqueness among live rows only; a soft-deleted code or version_no can be reused.
_LIVE_SQL = "deleted_at IS NULL"

VERSION_STATES = ("draft", "pending_review", "approved", "published", "archived")

# Structure is editable only in draft.
EDITABLE_VERSION_STATES = frozenset({"draft"})

VERSION_TRANSITIONS = {
    "submit": {"from": ["draft"], "to": "pending_review"},
    "approve": {"from": ["pending_review"], "to": "approved"},
    "reject": {"from": ["pending_review"], "to": "draft"},
    "publish": {"from": ["approved"], "to": "published", "effects": ["stamp_published_at"]},
    "archive": {"from": ["draft", "approved", "published"], "to": "archived"},
}

VERSION_MACHINE = StateMachine("version", VERSION_STATES, VERSION_TRANSITIONS)

# Events reachable through a plain version update; the rest belong to the
# approval workflow.
VERSION_UPDATE_EVENTS = frozenset({"publish", "archive"})

AGE_GROUPS = ("kids", "teens", "adults", "all")
DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced")
RESOURCE_KINDS = (
    "pdf", "slide", "video", "audio", "link", "doc", "image", "worksheet", "interactive",
)

INITIAL_VERSION_NO = "v1.0"


class Framework(TenantModel, SoftDeleteMixin):
    """Tenant-owned curriculum definition.

    ``status`` mirrors the latest version's state for display only;
    Version.state is authoritative.
    """

    __tablename__ = "frameworks"
    __table_args__ = (
        db.Index(
            "uq_frameworks_tenant_code", "tenant_id", "code", unique=True,
            sqlite_where=text(_LIVE_SQL), postgresql_where=text(_LIVE_SQL),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    language = db.Column(db.String(10), nullable=False)
    target_level = db.Column(db.String(50), nullable=True)
    age_group = db.Column(db.String(10), nullable=True)
    total_hours = db.Column(db.Integer, nullable=True)
    campus_id = db.Column(
        db.Integer, db.ForeignKey("campuses.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(db.String(20), nullable=False, default="draft")
    # Plain integer: a FK here would make frameworks/versions a cycle.
    latest_version_id = db.Column(db.Integer, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "language": self.language,
            "target_level": self.target_level,
            "age_group": self.age_group,
            "total_hours": self.total_hours,
            "campus_id": self.campus_id,
            "status": self.status,
            "latest_version_id": self.latest_version_id,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Framework {self.id}: {self.code}>"


class Version(TenantModel, SoftDeleteMixin):
    """Lifecycle-governed snapshot of a framework's structure."""

    __tablename__ = "versions"
    __table_args__ = (
        db.Index(
            "uq_versions_framework_no", "framework_id", "version_no", unique=True,
            sqlite_where=text(_LIVE_SQL), postgresql_where=text(_LIVE_SQL),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    framework_id = db.Column(
        db.Integer, db.ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    version_no = db.Column(db.String(20), nullable=False)
    state = db.Column(db.String(20), nullable=False, default="draft")
    changelog = db.Column(db.Text, nullable=True)
    # "metadata" is reserved on declarative classes.
    meta = db.Column("metadata", db.JSON, nullable=True)
    published_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "framework_id": self.framework_id,
            "version_no": self.version_no,
            "state": self.state,
            "changelog": self.changelog,
            "metadata": self.meta or {},
            "published_at": iso(self.published_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "deleted_at": iso(self.deleted_at),
        }

    def __repr__(self):
        return f"<Version {self.id}: {self.version_no} [{self.state}]>"


class Course(TenantModel, SoftDeleteMixin):
    __tablename__ = "courses"
    __table_args__ = (
        db.Index(
            "uq_courses_version_code", "version_id", "code", unique=True,
            sqlite_where=text(_LIVE_SQL), postgresql_where=text(_LIVE_SQL),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    version_id = db.Column(
        db.Integer, db.ForeignKey("versions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    code = db.Column(db.String(50), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    level = db.Column(db.String(50), nullable=True)
    hours = db.Column(db.Integer, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    summary = db.Column(db.Text, nullable=True)
    learning_outcomes = db.Column(db.JSON, nullable=True)
    assessment_types = db.Column(db.JSON, nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "version_id": self.version_id,
            "code": self.code,
            "title": self.title,
            "level": self.level,
            "hours": self.hours,
            "order_index": self.order_index,
            "summary": self.summary,
            "learning_outcomes": self.learning_outcomes or [],
            "assessment_types": self.assessment_types or [],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Unit(TenantModel, SoftDeleteMixin):
    __tablename__ = "units"

    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(
        db.Integer, db.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    objectives = db.Column(db.JSON, nullable=True)
    skills = db.Column(db.JSON, nullable=True)
    activities = db.Column(db.JSON, nullable=True)
    rubric = db.Column(db.JSON, nullable=True)
    homework = db.Column(db.Text, nullable=True)
    hours = db.Column(db.Integer, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    difficulty_level = db.Column(db.String(20), nullable=False, default="intermediate")
    estimated_time = db.Column(db.String(50), nullable=True)
    completeness_score = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "objectives": self.objectives or [],
            "skills": self.skills or [],
            "activities": self.activities or [],
            "rubric": self.rubric,
            "homework": self.homework,
            "hours": self.hours,
            "order_index": self.order_index,
            "difficulty_level": self.difficulty_level,
            "estimated_time": self.estimated_time,
            "completeness_score": self.completeness_score,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Resource(TenantModel, SoftDeleteMixin):
    __tablename__ = "resources"

    id = db.Column(db.Integer, primary_key=True)
    unit_id = db.Column(
        db.Integer, db.ForeignKey("units.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    kind = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    url = db.Column(db.String(2000), nullable=True)
    file_path = db.Column(db.String(1000), nullable=True)
    mime_type = db.Column(db.String(100), nullable=True)
    license_type = db.Column(db.String(50), nullable=True)
    license_note = db.Column(db.Text, nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "file_path": self.file_path,
            "mime_type": self.mime_type,
            "license_type": self.license_type,
            "license_note": self.license_note,
            "order_index": self.order_index,
            "is_required": self.is_required,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
