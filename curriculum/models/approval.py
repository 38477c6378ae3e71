"""
Approval model — gates a Version's draft → approved progression.

At most one approval per version may be pending (requested or in_review).
The partial unique index below enforces that at the storage level, so two
concurrent requests cannot both insert.
"""

from sqlalchemy import text

from curriculum.core.state_machine import StateMachine
from curriculum.models import db
from curriculum.models.base import TenantModel, iso

# ── Constants ────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = ("requested", "in_review", "approved", "rejected", "escalated")
PENDING_STATUSES = ("requested", "in_review")
APPROVAL_PRIORITIES = ("low", "normal", "high", "urgent")

APPROVAL_TRANSITIONS = {
    "start_review": {"from": ["requested"], "to": "in_review"},
    "approve": {
        "from": ["requested", "in_review", "escalated"],
        "to": "approved",
        "effects": ["stamp_decision", "version:approve"],
    },
    "reject": {
        "from": ["requested", "in_review", "escalated"],
        "to": "rejected",
        "effects": ["stamp_decision", "version:reject"],
    },
    "escalate": {
        "from": ["requested", "in_review"],
        "to": "escalated",
        "effects": ["stamp_escalation"],
    },
    "resume": {"from": ["escalated"], "to": "in_review"},
}

APPROVAL_MACHINE = StateMachine("approval", APPROVAL_STATUSES, APPROVAL_TRANSITIONS)

_PENDING_SQL = "status IN ('requested', 'in_review')"


class Approval(TenantModel):
    __tablename__ = "approvals"
    __table_args__ = (
        db.Index(
            "uq_approvals_pending_version",
            "version_id",
            unique=True,
            sqlite_where=text(_PENDING_SQL),
            postgresql_where=text(_PENDING_SQL),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    version_id = db.Column(
        db.Integer, db.ForeignKey("versions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    assigned_reviewer_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="requested")
    priority = db.Column(db.String(10), nullable=False, default="normal")
    review_deadline = db.Column(db.DateTime(timezone=True), nullable=True)
    decision = db.Column(db.Text, nullable=True)
    decision_made_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    decision_made_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escalation_reason = db.Column(db.Text, nullable=True)
    escalated_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_pending(self):
        return self.status in PENDING_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "version_id": self.version_id,
            "requested_by": self.requested_by,
            "assigned_reviewer_id": self.assigned_reviewer_id,
            "status": self.status,
            "priority": self.priority,
            "review_deadline": iso(self.review_deadline),
            "decision": self.decision,
            "decision_made_by": self.decision_made_by,
            "decision_made_at": iso(self.decision_made_at),
            "escalation_reason": self.escalation_reason,
            "escalated_to": self.escalated_to,
            "escalated_at": iso(self.escalated_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Approval {self.id}: version={self.version_id} [{self.status}]>"
