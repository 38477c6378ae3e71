"""
Approval Workflow Engine tests.

Tests cover:
  - Request: draft -> pending_review, reviewer validation, single pending approval
  - Concurrent request blocked by the partial unique index
  - Decide: authorization, approve/reject cascade into the version
  - Escalation (target required, must be active)
  - Terminal approvals refuse further changes
"""

import pytest

from curriculum.core.exceptions import (
    ConflictError,
    InvalidReferenceError,
    InvalidStateError,
    NoUpdatesError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from curriculum.core.identity import ActorContext, Role
from curriculum.models import db
from curriculum.models.approval import Approval
from curriculum.models.auth import User
from curriculum.models.curriculum import Framework, Version
from curriculum.services import approval_service as aps


@pytest.fixture()
def approval(session, designer_ctx, users, draft_version):
    return aps.request_approval(
        session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id},
    )


def _version(session, version_id) -> Version:
    return session.get(Version, version_id)


# ═════════════════════════════════════════════════════════════════════════
# REQUEST
# ═════════════════════════════════════════════════════════════════════════


class TestRequestApproval:
    def test_request_freezes_version(self, session, framework, draft_version, approval, users):
        assert approval.status == "requested"
        assert approval.is_pending
        assert approval.priority == "normal"
        assert approval.assigned_reviewer_id == users["qa"].id
        assert _version(session, draft_version.id).state == "pending_review"
        assert session.get(Framework, framework.id).status == "pending_review"

    def test_priority_and_deadline(self, session, designer_ctx, users, draft_version):
        a = aps.request_approval(session, designer_ctx, draft_version.id, {
            "assigned_reviewer_id": users["program_owner"].id,
            "priority": "urgent",
            "review_deadline": "2026-11-01T12:00:00Z",
        })
        assert a.priority == "urgent"
        assert a.to_dict()["review_deadline"].startswith("2026-11-01T12:00:00")

    def test_second_request_conflicts(self, session, designer_ctx, users, draft_version, approval):
        with pytest.raises(ConflictError) as exc:
            aps.request_approval(
                session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id},
            )
        assert exc.value.code == "APPROVAL_EXISTS"
        assert session.query(Approval).count() == 1

    def test_non_draft_version(self, session, designer_ctx, users, draft_version):
        draft_version.state = "published"
        session.commit()
        with pytest.raises(InvalidStateError):
            aps.request_approval(session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id})

    def test_reviewer_must_have_reviewer_role(self, session, designer_ctx, users, draft_version):
        with pytest.raises(InvalidReferenceError) as exc:
            aps.request_approval(
                session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["teacher"].id},
            )
        assert exc.value.code == "INVALID_REVIEWER"
        assert _version(session, draft_version.id).state == "draft"

    def test_reviewer_must_be_active(self, session, designer_ctx, users, draft_version):
        users["qa"].is_active = False
        session.commit()
        with pytest.raises(InvalidReferenceError):
            aps.request_approval(session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id})

    def test_reviewer_required(self, session, designer_ctx, draft_version):
        with pytest.raises(ValidationError):
            aps.request_approval(session, designer_ctx, draft_version.id, {})

    def test_teacher_cannot_request(self, session, teacher_ctx, users, draft_version):
        with pytest.raises(UnauthorizedError):
            aps.request_approval(session, teacher_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id})

    def test_other_tenant_version(self, session, outsider_ctx, users, draft_version):
        with pytest.raises(NotFoundError):
            aps.request_approval(session, outsider_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id})


class TestConcurrentRequest:
    def test_index_blocks_second_pending_approval(self, session, designer_ctx, users, draft_version, approval,
                                                  monkeypatch):
        """Two requests that both pass the pre-check: the index decides."""
        # Simulate the race: the version still reads as draft and the
        # pending lookup misses the first request's row.
        draft_version.state = "draft"
        session.commit()
        monkeypatch.setattr(aps, "_pending_approval", lambda *a, **kw: None)

        with pytest.raises(ConflictError) as exc:
            aps.request_approval(
                session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["program_owner"].id},
            )
        assert exc.value.code == "APPROVAL_EXISTS"
        assert session.query(Approval).count() == 1
        # The losing transaction rolled back whole, version write included.
        assert _version(session, draft_version.id).state == "draft"

    def test_decided_approval_does_not_block_new_request(self, session, designer_ctx, qa_ctx, users,
                                                         draft_version, approval):
        aps.decide(session, qa_ctx, approval.id, {"status": "rejected", "decision": "Needs rubric"})
        again = aps.request_approval(
            session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id},
        )
        assert again.status == "requested"
        assert len(aps.list_approvals(session, designer_ctx, draft_version.id)) == 2


# ═════════════════════════════════════════════════════════════════════════
# DECIDE
# ═════════════════════════════════════════════════════════════════════════


class TestDecide:
    def test_assigned_reviewer_approves(self, session, framework, draft_version, qa_ctx, approval, users):
        a = aps.decide(session, qa_ctx, approval.id, {"status": "approved", "decision": "Looks good"})
        assert not a.is_pending
        assert a.status == "approved"
        assert a.decision == "Looks good"
        assert a.decision_made_by == users["qa"].id
        assert a.decision_made_at is not None
        assert _version(session, draft_version.id).state == "approved"
        assert session.get(Framework, framework.id).status == "approved"

    def test_reject_returns_version_to_draft(self, session, draft_version, qa_ctx, approval):
        aps.decide(session, qa_ctx, approval.id, {"status": "rejected"})
        assert _version(session, draft_version.id).state == "draft"

    def test_in_review_keeps_version_pending(self, session, draft_version, qa_ctx, approval):
        a = aps.decide(session, qa_ctx, approval.id, {"status": "in_review"})
        assert a.status == "in_review"
        assert a.decision_made_at is None
        assert _version(session, draft_version.id).state == "pending_review"

    def test_decision_text_only(self, session, qa_ctx, approval):
        a = aps.decide(session, qa_ctx, approval.id, {"decision": "Reading now"})
        assert a.status == "requested"
        assert a.decision == "Reading now"

    def test_program_owner_may_decide_any(self, session, owner_ctx, draft_version, approval):
        aps.decide(session, owner_ctx, approval.id, {"status": "approved"})
        assert _version(session, draft_version.id).state == "approved"

    def test_designer_cannot_decide(self, session, designer_ctx, draft_version, approval):
        with pytest.raises(UnauthorizedError):
            aps.decide(session, designer_ctx, approval.id, {"status": "approved"})
        assert _version(session, draft_version.id).state == "pending_review"

    def test_unassigned_qa_cannot_decide(self, session, tenant, draft_version, approval):
        other_qa = User(tenant_id=tenant.id, email="qa2@example.test", role="qa")
        db.session.add(other_qa)
        db.session.commit()
        ctx = ActorContext(actor_id=other_qa.id, tenant_id=tenant.id, role=Role.QA)
        with pytest.raises(UnauthorizedError):
            aps.decide(session, ctx, approval.id, {"status": "approved"})

    def test_empty_patch(self, session, qa_ctx, approval):
        with pytest.raises(NoUpdatesError):
            aps.decide(session, qa_ctx, approval.id, {"priority": "low"})

    def test_cannot_move_back_to_requested(self, session, qa_ctx, approval):
        aps.decide(session, qa_ctx, approval.id, {"status": "in_review"})
        with pytest.raises(ValidationError):
            aps.decide(session, qa_ctx, approval.id, {"status": "requested"})

    @pytest.mark.parametrize("final", ["approved", "rejected"])
    def test_terminal_refuses_changes(self, session, qa_ctx, approval, final):
        aps.decide(session, qa_ctx, approval.id, {"status": final})
        with pytest.raises(InvalidStateError):
            aps.decide(session, qa_ctx, approval.id, {"decision": "late note"})
        with pytest.raises(InvalidStateError):
            aps.decide(session, qa_ctx, approval.id, {"status": "in_review"})

    def test_version_state_drift_blocks_decision(self, session, qa_ctx, draft_version, approval):
        draft_version.state = "archived"
        session.commit()
        with pytest.raises(InvalidStateError):
            aps.decide(session, qa_ctx, approval.id, {"status": "approved"})
        assert session.get(Approval, approval.id).status == "requested"

    def test_unknown_approval(self, session, qa_ctx):
        with pytest.raises(NotFoundError):
            aps.decide(session, qa_ctx, 999, {"status": "approved"})


class TestEscalation:
    def test_escalate_and_resume(self, session, qa_ctx, users, approval):
        a = aps.decide(session, qa_ctx, approval.id, {
            "status": "escalated",
            "escalation_reason": "Needs program owner sign-off",
            "escalated_to": users["program_owner"].id,
        })
        assert a.status == "escalated"
        assert a.escalated_to == users["program_owner"].id
        assert a.escalated_at is not None
        a = aps.decide(session, qa_ctx, approval.id, {"status": "in_review"})
        assert a.status == "in_review"

    def test_escalated_can_be_approved(self, session, qa_ctx, owner_ctx, users, draft_version, approval):
        aps.decide(session, qa_ctx, approval.id, {"status": "escalated", "escalated_to": users["program_owner"].id})
        aps.decide(session, owner_ctx, approval.id, {"status": "approved"})
        assert _version(session, draft_version.id).state == "approved"

    def test_escalated_to_required(self, session, qa_ctx, approval):
        with pytest.raises(ValidationError):
            aps.decide(session, qa_ctx, approval.id, {"status": "escalated"})

    def test_escalated_to_must_be_active_user(self, session, qa_ctx, approval):
        with pytest.raises(InvalidReferenceError):
            aps.decide(session, qa_ctx, approval.id, {"status": "escalated", "escalated_to": 999})

    def test_escalated_to_without_escalation(self, session, qa_ctx, users, approval):
        with pytest.raises(ValidationError):
            aps.decide(session, qa_ctx, approval.id, {"status": "in_review", "escalated_to": users["admin"].id})
