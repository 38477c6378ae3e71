"""
Audit emission and transition-completed signal tests.

  - Every engine write leaves an AuditLog row with the actor and details
  - A failing audit store never fails the operation
  - Subscribers receive committed transitions; a failing subscriber is
    logged and ignored
"""

import logging
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from curriculum.core.signals import notify_transition, transition_completed
from curriculum.models.audit import AuditLog, write_audit
from curriculum.models.curriculum import Framework, Version
from curriculum.services import approval_service as aps
from curriculum.services import audit_emitter
from curriculum.services import framework_service as fws
from curriculum.services import mapping_service as ms
from curriculum.services import structure_service as ss


def _audit_rows(session, entity_type):
    return session.query(AuditLog).filter_by(entity_type=entity_type).order_by(AuditLog.id).all()


class TestAuditTrail:
    def test_framework_create_audited(self, session, designer_ctx, framework):
        rows = _audit_rows(session, "framework")
        assert len(rows) == 1
        assert rows[0].action == "create"
        assert rows[0].entity_id == str(framework.id)
        assert rows[0].actor_user_id == designer_ctx.actor_id
        assert rows[0].tenant_id == designer_ctx.tenant_id
        assert rows[0].diff["code"] == "ENG-A1"

    def test_approval_decision_audits_state_change(self, session, designer_ctx, qa_ctx, users, draft_version):
        approval = aps.request_approval(
            session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id},
        )
        aps.decide(session, qa_ctx, approval.id, {"status": "approved"})
        update = _audit_rows(session, "approval")[-1]
        assert update.action == "update"
        assert update.diff["status"] == {"old": "requested", "new": "approved"}
        assert update.diff["version_state"] == {"old": "pending_review", "new": "approved"}

    def test_write_audit_serialises_non_json_values(self, session, tenant):
        row = write_audit(
            session, entity_type="version", entity_id=7, action="update", tenant_id=tenant.id,
            diff={"on": date(2026, 1, 2)},
        )
        assert row.diff == {"on": "2026-01-02"}
        assert row.to_dict()["entity_id"] == "7"


class TestAuditFailure:
    def test_operation_survives_audit_failure(self, session, designer_ctx, monkeypatch, caplog):
        def _broken(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk full"))

        monkeypatch.setattr(audit_emitter, "write_audit", _broken)
        with caplog.at_level(logging.WARNING, logger="curriculum.services.audit_emitter"):
            fw = fws.create_framework(session, designer_ctx, {"code": "SAFE", "name": "Safe", "language": "en"})

        assert session.get(Framework, fw.id) is not None
        assert session.get(Version, fw.latest_version_id).version_no == "v1.0"
        assert session.query(AuditLog).count() == 0
        assert "Audit emission failed" in caplog.text

    def test_audit_event_logged(self, session, designer_ctx, caplog):
        with caplog.at_level(logging.INFO, logger="curriculum.audit"):
            fws.create_framework(session, designer_ctx, {"code": "LOGGED", "name": "Logged", "language": "en"})
        records = [r for r in caplog.records if r.name == "curriculum.audit"]
        assert records
        assert records[0].entity_type == "framework"
        assert records[0].tenant_id == designer_ctx.tenant_id


class TestTransitionSignal:
    def test_version_subscriber_receives_submit(self, session, designer_ctx, users, draft_version):
        received = []

        def on_version(sender, **payload):
            received.append((sender, payload))

        with transition_completed.connected_to(on_version, sender="version"):
            aps.request_approval(
                session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id},
            )

        assert len(received) == 1
        sender, payload = received[0]
        assert sender == "version"
        assert payload["entity_id"] == draft_version.id
        assert payload["from_state"] == "draft"
        assert payload["to_state"] == "pending_review"
        assert payload["event"] == "submit"
        assert payload["actor_id"] == designer_ctx.actor_id

    def test_sender_filter(self, session, designer_ctx, framework, draft_version):
        received = []

        def on_mapping(sender, **payload):
            received.append(payload)

        draft_version.state = "approved"
        session.commit()
        with transition_completed.connected_to(on_mapping, sender="mapping"):
            m = ms.create_mapping(session, designer_ctx, {
                "framework_id": framework.id, "version_id": draft_version.id,
                "target_type": "class_instance", "target_id": 12,
            })
            ms.update_mapping(session, designer_ctx, m.id, {"status": "validated"})

        assert [(p["from_state"], p["to_state"]) for p in received] == [("planned", "validated")]

    def test_failing_subscriber_is_logged_not_raised(self, session, designer_ctx, qa_ctx, users, draft_version,
                                                     caplog):
        def explode(sender, **payload):
            raise RuntimeError("export service down")

        approval = aps.request_approval(
            session, designer_ctx, draft_version.id, {"assigned_reviewer_id": users["qa"].id},
        )
        with transition_completed.connected_to(explode, sender="approval"):
            with caplog.at_level(logging.ERROR, logger="curriculum.core.signals"):
                decided = aps.decide(session, qa_ctx, approval.id, {"status": "approved"})

        assert decided.status == "approved"
        assert session.get(Version, draft_version.id).state == "approved"
        assert "subscriber failed" in caplog.text
        assert "export service down" in caplog.text

    def test_notify_without_subscribers(self):
        notify_transition(
            entity_type="version", entity_id=1, tenant_id=1,
            from_state="draft", to_state="pending_review", event="submit", actor_id=None,
        )


@pytest.mark.parametrize("entity_type", ["course", "unit", "resource"])
def test_structure_writes_audited(session, designer_ctx, draft_version, entity_type):
    course = ss.create_course(session, designer_ctx, draft_version.id, {"title": "C"})
    unit = ss.create_unit(session, designer_ctx, course.id, {"title": "U"})
    ss.create_resource(session, designer_ctx, unit.id, {"kind": "link", "title": "R"})
    assert [r.action for r in _audit_rows(session, entity_type)] == ["create"]
