"""
Mapping model — binds a Version to an operational target.

A mapping's status is authoritative once created and outlives the
version's own lifecycle. ``mismatch_report`` is produced by an external
comparison step and stored verbatim.
"""

from curriculum.core.state_machine import StateMachine
from curriculum.models import db
from curriculum.models.base import TenantModel, iso

# ── Constants ────────────────────────────────────────────────────────────────

TARGET_TYPES = ("course_template", "class_instance")
ROLLOUT_PHASES = ("planned", "pilot", "phased", "full")
RISK_LEVELS = ("low", "medium", "high", "critical")
OVERRIDE_REQUIRED_RISKS = frozenset({"high", "critical"})
MAPPING_STATUSES = ("planned", "validated", "applied", "failed", "rolled_back")

MAPPING_TRANSITIONS = {
    "validate": {"from": ["planned"], "to": "validated"},
    "apply": {"from": ["validated"], "to": "applied", "effects": ["stamp_applied_at"]},
    "rollback": {"from": ["applied"], "to": "rolled_back", "effects": ["stamp_rolled_back_at"]},
    "fail": {"from": ["planned", "validated"], "to": "failed"},
}

MAPPING_MACHINE = StateMachine("mapping", MAPPING_STATUSES, MAPPING_TRANSITIONS)


class Mapping(TenantModel):
    __tablename__ = "mappings"

    id = db.Column(db.Integer, primary_key=True)
    framework_id = db.Column(
        db.Integer, db.ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    version_id = db.Column(
        db.Integer, db.ForeignKey("versions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    target_type = db.Column(db.String(30), nullable=False)
    target_id = db.Column(db.Integer, nullable=False)
    campus_id = db.Column(
        db.Integer, db.ForeignKey("campuses.id", ondelete="SET NULL"), nullable=True,
    )
    rollout_phase = db.Column(db.String(20), nullable=False, default="planned")
    rollout_batch = db.Column(db.String(64), nullable=True)
    risk_assessment = db.Column(db.String(20), nullable=False, default="low")
    mismatch_report = db.Column(db.JSON, nullable=True)
    override_reason = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="planned")
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rolled_back_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))

    def to_dict(self):
        return {
            "id": self.id,
            "framework_id": self.framework_id,
            "version_id": self.version_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "campus_id": self.campus_id,
            "rollout_phase": self.rollout_phase,
            "rollout_batch": self.rollout_batch,
            "risk_assessment": self.risk_assessment,
            "mismatch_report": self.mismatch_report,
            "override_reason": self.override_reason,
            "status": self.status,
            "applied_at": iso(self.applied_at),
            "rolled_back_at": iso(self.rolled_back_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Mapping {self.id}: {self.target_type}/{self.target_id} [{self.status}]>"


# A null campus is its own key value, not a wildcard.
db.Index(
    "uq_mappings_target_key",
    Mapping.tenant_id,
    Mapping.framework_id,
    Mapping.version_id,
    Mapping.target_type,
    Mapping.target_id,
    db.func.coalesce(Mapping.campus_id, 0),
    unique=True,
)
