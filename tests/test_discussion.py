"""
Comment and tag tests.

Tests cover:
  - Comments on every commentable type; missing, deleted and cross-tenant targets
  - Replies must stay on the parent's entity; mentions must be tenant users
  - Author-only body edits, shared resolution, author/admin delete
  - Comments stay open on frozen versions
  - Tag names unique per tenant (case-insensitive), type-restricted tags
  - Attach/detach conflicts and usage counts
  - HTTP routes for both
"""

import pytest

from curriculum.core.exceptions import (
    ConflictError,
    InvalidReferenceError,
    NoUpdatesError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from curriculum.models.audit import AuditLog
from curriculum.models.discussion import Comment, Tag
from curriculum.services import comment_service as cs
from curriculum.services import tag_service as ts
from curriculum.services.framework_service import delete_framework
from curriculum.services.structure_service import create_course

API = "/api/v1"


@pytest.fixture()
def course(session, designer_ctx, draft_version):
    return create_course(session, designer_ctx, draft_version.id, {"title": "Core"})


@pytest.fixture()
def comment(session, designer_ctx, draft_version):
    return cs.create_comment(session, designer_ctx, "version", draft_version.id, {"body": "Check unit 3"})


@pytest.fixture()
def tag(session, designer_ctx):
    return ts.create_tag(session, designer_ctx, {"name": "Grammar"})


# ═════════════════════════════════════════════════════════════════════════
# COMMENTS
# ═════════════════════════════════════════════════════════════════════════


class TestCreateComment:
    def test_defaults(self, comment, users):
        assert comment.author_id == users["curriculum_designer"].id
        assert comment.entity_type == "version"
        assert comment.is_resolved is False
        assert comment.parent_id is None
        assert comment.to_dict()["mentions"] == []

    def test_every_role_may_comment(self, session, teacher_ctx, qa_ctx, framework):
        cs.create_comment(session, teacher_ctx, "framework", framework.id, {"body": "From class"})
        cs.create_comment(session, qa_ctx, "framework", framework.id, {"body": "From QA"})
        assert session.query(Comment).count() == 2

    def test_on_structural_node(self, session, qa_ctx, course):
        c = cs.create_comment(session, qa_ctx, "course", course.id, {"body": "Title?"})
        assert (c.entity_type, c.entity_id) == ("course", course.id)

    def test_body_required_and_bounded(self, session, designer_ctx, framework):
        with pytest.raises(ValidationError):
            cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "   "})
        with pytest.raises(ValidationError):
            cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "x" * 2001})

    def test_unknown_entity_type(self, session, designer_ctx, framework):
        with pytest.raises(ValidationError):
            cs.create_comment(session, designer_ctx, "campus", framework.id, {"body": "Hi"})

    def test_missing_target(self, session, designer_ctx, users):
        with pytest.raises(NotFoundError):
            cs.create_comment(session, designer_ctx, "unit", 9999, {"body": "Hi"})

    def test_deleted_target(self, session, designer_ctx, owner_ctx, framework):
        delete_framework(session, owner_ctx, framework.id)
        with pytest.raises(NotFoundError):
            cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "Hi"})

    def test_cross_tenant_target(self, session, outsider_ctx, framework):
        with pytest.raises(NotFoundError):
            cs.create_comment(session, outsider_ctx, "framework", framework.id, {"body": "Hi"})

    def test_allowed_on_frozen_version(self, session, qa_ctx, draft_version):
        draft_version.state = "pending_review"
        session.commit()
        c = cs.create_comment(session, qa_ctx, "version", draft_version.id, {"body": "Reviewing"})
        assert c.id is not None

    def test_audit_body_excerpt(self, session, designer_ctx, framework):
        c = cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "y" * 150})
        row = session.query(AuditLog).filter_by(entity_type="comment", entity_id=str(c.id)).one()
        assert row.action == "create"
        assert '"body": "' + "y" * 100 + '..."' in row.diff_json


class TestReplies:
    def test_reply(self, session, qa_ctx, comment, draft_version):
        reply = cs.create_comment(
            session, qa_ctx, "version", draft_version.id, {"body": "Done", "parent_id": comment.id},
        )
        assert reply.parent_id == comment.id

    def test_parent_on_other_entity(self, session, qa_ctx, comment, framework):
        with pytest.raises(InvalidReferenceError) as exc:
            cs.create_comment(session, qa_ctx, "framework", framework.id, {"body": "x", "parent_id": comment.id})
        assert exc.value.code == "INVALID_PARENT"

    def test_deleted_parent(self, session, designer_ctx, comment, draft_version):
        cs.delete_comment(session, designer_ctx, comment.id)
        with pytest.raises(InvalidReferenceError):
            cs.create_comment(
                session, designer_ctx, "version", draft_version.id, {"body": "x", "parent_id": comment.id},
            )


class TestMentions:
    def test_mentions_stored(self, session, designer_ctx, framework, users):
        qa_id = users["qa"].id
        c = cs.create_comment(
            session, designer_ctx, "framework", framework.id, {"body": "@qa", "mentions": [qa_id, qa_id]},
        )
        assert c.mentions == [qa_id]

    def test_unknown_user(self, session, designer_ctx, framework):
        with pytest.raises(InvalidReferenceError) as exc:
            cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "x", "mentions": [9999]})
        assert exc.value.code == "INVALID_MENTION"
        assert exc.value.details == {"mentions": [9999]}

    def test_user_from_other_tenant(self, session, designer_ctx, framework, outsider_ctx):
        with pytest.raises(InvalidReferenceError):
            cs.create_comment(
                session, designer_ctx, "framework", framework.id,
                {"body": "x", "mentions": [outsider_ctx.actor_id]},
            )

    @pytest.mark.parametrize("bad", ["1", [0], [True], ["2"]])
    def test_malformed(self, session, designer_ctx, framework, bad):
        with pytest.raises(ValidationError):
            cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "x", "mentions": bad})

    def test_attachments_must_be_objects(self, session, designer_ctx, framework):
        with pytest.raises(ValidationError):
            cs.create_comment(session, designer_ctx, "framework", framework.id, {"body": "x", "attachments": ["a"]})
        c = cs.create_comment(
            session, designer_ctx, "framework", framework.id,
            {"body": "x", "attachments": [{"name": "plan.pdf", "url": "https://files.test/plan.pdf"}]},
        )
        assert c.attachments[0]["name"] == "plan.pdf"


class TestUpdateComment:
    def test_author_edits_body(self, session, designer_ctx, comment):
        c = cs.update_comment(session, designer_ctx, comment.id, {"body": "Check unit 4"})
        assert c.body == "Check unit 4"
        assert c.edited_at is not None

    def test_other_user_cannot_edit(self, session, admin_ctx, comment):
        with pytest.raises(UnauthorizedError):
            cs.update_comment(session, admin_ctx, comment.id, {"body": "Rewritten"})

    def test_anyone_resolves(self, session, qa_ctx, comment, users):
        c = cs.update_comment(session, qa_ctx, comment.id, {"is_resolved": True})
        assert c.is_resolved
        assert c.resolved_by == users["qa"].id
        assert c.resolved_at is not None

        c = cs.update_comment(session, qa_ctx, comment.id, {"is_resolved": False})
        assert not c.is_resolved
        assert c.resolved_by is None
        assert c.resolved_at is None

    def test_resolve_must_be_boolean(self, session, qa_ctx, comment):
        with pytest.raises(ValidationError):
            cs.update_comment(session, qa_ctx, comment.id, {"is_resolved": "yes"})

    def test_no_updates(self, session, designer_ctx, comment):
        with pytest.raises(NoUpdatesError):
            cs.update_comment(session, designer_ctx, comment.id, {"author_id": 1})


class TestDeleteAndList:
    def test_author_deletes(self, session, designer_ctx, comment):
        cs.delete_comment(session, designer_ctx, comment.id)
        assert session.get(Comment, comment.id).is_deleted
        with pytest.raises(NotFoundError):
            cs.get_comment(session, designer_ctx, comment.id)

    def test_admin_deletes_any(self, session, admin_ctx, comment):
        cs.delete_comment(session, admin_ctx, comment.id)
        assert session.get(Comment, comment.id).is_deleted

    def test_owner_cannot_delete_others(self, session, owner_ctx, comment):
        with pytest.raises(UnauthorizedError):
            cs.delete_comment(session, owner_ctx, comment.id)

    def test_list_oldest_first_without_deleted(self, session, designer_ctx, qa_ctx, comment, draft_version):
        second = cs.create_comment(session, qa_ctx, "version", draft_version.id, {"body": "Second"})
        third = cs.create_comment(session, qa_ctx, "version", draft_version.id, {"body": "Third"})
        cs.delete_comment(session, qa_ctx, third.id)

        result = cs.list_comments(session, designer_ctx, "version", draft_version.id)
        assert [c["id"] for c in result["data"]] == [comment.id, second.id]
        assert result["pagination"]["total"] == 2

    def test_list_filters_resolution(self, session, designer_ctx, comment, draft_version):
        cs.create_comment(session, designer_ctx, "version", draft_version.id, {"body": "Open"})
        cs.update_comment(session, designer_ctx, comment.id, {"is_resolved": True})
        result = cs.list_comments(session, designer_ctx, "version", draft_version.id, is_resolved=False)
        assert [c["body"] for c in result["data"]] == ["Open"]

    def test_list_for_other_tenant(self, session, outsider_ctx, comment, draft_version):
        with pytest.raises(NotFoundError):
            cs.list_comments(session, outsider_ctx, "version", draft_version.id)


# ═════════════════════════════════════════════════════════════════════════
# TAGS
# ═════════════════════════════════════════════════════════════════════════


class TestCreateTag:
    def test_defaults(self, tag):
        assert tag.color == "#3B82F6"
        assert tag.entity_type is None

    def test_duplicate_name_case_insensitive(self, session, owner_ctx, tag):
        with pytest.raises(ConflictError) as exc:
            ts.create_tag(session, owner_ctx, {"name": "grammar"})
        assert exc.value.code == "DUPLICATE_TAG"

    def test_index_catches_duplicate_name(self, session, owner_ctx, tag, monkeypatch):
        monkeypatch.setattr(ts, "_name_taken", lambda *a, **kw: False)
        with pytest.raises(ConflictError) as exc:
            ts.create_tag(session, owner_ctx, {"name": "GRAMMAR"})
        assert exc.value.code == "DUPLICATE_TAG"
        assert session.query(Tag).count() == 1

    def test_same_name_in_other_tenant(self, session, outsider_ctx, tag):
        assert ts.create_tag(session, outsider_ctx, {"name": "Grammar"}).id != tag.id

    @pytest.mark.parametrize("data", [
        {"name": "bad/name"},
        {"name": "x" * 51},
        {"name": "Ok", "color": "blue"},
        {"name": "Ok", "entity_type": "mapping"},
    ])
    def test_invalid(self, session, designer_ctx, data):
        with pytest.raises(ValidationError):
            ts.create_tag(session, designer_ctx, data)

    def test_teacher_cannot_create(self, session, teacher_ctx):
        with pytest.raises(UnauthorizedError):
            ts.create_tag(session, teacher_ctx, {"name": "Mine"})


class TestAttachDetach:
    def test_attach_and_list(self, session, designer_ctx, tag, course):
        link = ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        assert link.tag_id == tag.id
        assert [t.name for t in ts.list_entity_tags(session, designer_ctx, "course", course.id)] == ["Grammar"]

    def test_already_attached(self, session, designer_ctx, tag, course):
        ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        with pytest.raises(ConflictError) as exc:
            ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        assert exc.value.code == "ALREADY_ATTACHED"

    def test_missing_entity(self, session, designer_ctx, tag):
        with pytest.raises(NotFoundError):
            ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "unit", "entity_id": 9999})

    def test_missing_tag(self, session, designer_ctx, course):
        with pytest.raises(NotFoundError):
            ts.attach_tag(session, designer_ctx, 9999, {"entity_type": "course", "entity_id": course.id})

    def test_type_restricted_tag(self, session, designer_ctx, framework, course):
        unit_only = ts.create_tag(session, designer_ctx, {"name": "Listening", "entity_type": "unit"})
        with pytest.raises(ValidationError):
            ts.attach_tag(session, designer_ctx, unit_only.id, {"entity_type": "course", "entity_id": course.id})

    def test_attach_ignores_freeze(self, session, designer_ctx, tag, draft_version, course):
        draft_version.state = "published"
        session.commit()
        ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})

    def test_detach(self, session, designer_ctx, tag, course):
        ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        ts.detach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        assert ts.list_entity_tags(session, designer_ctx, "course", course.id) == []

    def test_detach_not_attached(self, session, designer_ctx, tag, course):
        with pytest.raises(NotFoundError) as exc:
            ts.detach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        assert exc.value.code == "NOT_ATTACHED"
        assert exc.value.status_code == 404

    def test_usage_counts_and_filters(self, session, designer_ctx, tag, framework, course):
        ts.create_tag(session, designer_ctx, {"name": "Vocabulary", "entity_type": "unit"})
        ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "course", "entity_id": course.id})
        ts.attach_tag(session, designer_ctx, tag.id, {"entity_type": "framework", "entity_id": framework.id})

        result = ts.list_tags(session, designer_ctx)
        assert [(t["name"], t["usage_count"]) for t in result["data"]] == [("Grammar", 2), ("Vocabulary", 0)]
        assert [t["name"] for t in ts.list_tags(session, designer_ctx, q="voc")["data"]] == ["Vocabulary"]
        assert [t["name"] for t in ts.list_tags(session, designer_ctx, entity_type="course")["data"]] == ["Grammar"]


# ═════════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════════


class TestDiscussionEndpoints:
    def test_comment_flow(self, client, auth_headers, framework):
        designer, qa = auth_headers("curriculum_designer"), auth_headers("qa")
        url = f"{API}/entities/framework/{framework.id}/comments"

        res = client.post(url, json={"body": "Needs a B1 bridge"}, headers=designer)
        assert res.status_code == 201
        cid = res.get_json()["id"]

        res = client.patch(f"{API}/comments/{cid}", json={"is_resolved": True}, headers=qa)
        assert res.status_code == 200
        assert res.get_json()["is_resolved"] is True

        res = client.patch(f"{API}/comments/{cid}", json={"body": "Mine now"}, headers=qa)
        assert res.status_code == 403
        assert res.get_json()["error"]["code"] == "UNAUTHORIZED"

        body = client.get(f"{url}?is_resolved=true", headers=qa).get_json()
        assert [c["id"] for c in body["data"]] == [cid]

        assert client.delete(f"{API}/comments/{cid}", headers=designer).status_code == 204
        assert client.get(url, headers=qa).get_json()["pagination"]["total"] == 0

    def test_unknown_entity_type(self, client, auth_headers, framework):
        res = client.post(
            f"{API}/entities/campus/{framework.id}/comments", json={"body": "x"},
            headers=auth_headers("qa"),
        )
        assert res.status_code == 422

    def test_missing_entity(self, client, auth_headers, users):
        res = client.get(f"{API}/entities/mapping/9999/comments", headers=auth_headers("qa"))
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "NOT_FOUND"

    def test_tag_flow(self, client, auth_headers, framework):
        designer = auth_headers("curriculum_designer")
        res = client.post(f"{API}/tags", json={"name": "CEFR", "color": "#10B981"}, headers=designer)
        assert res.status_code == 201
        tid = res.get_json()["id"]

        target = {"entity_type": "framework", "entity_id": framework.id}
        assert client.post(f"{API}/tags/{tid}/attach", json=target, headers=designer).status_code == 201
        res = client.post(f"{API}/tags/{tid}/attach", json=target, headers=designer)
        assert res.status_code == 409
        assert res.get_json()["error"]["code"] == "ALREADY_ATTACHED"

        tags = client.get(f"{API}/entities/framework/{framework.id}/tags", headers=designer).get_json()
        assert [t["name"] for t in tags] == ["CEFR"]
        assert client.get(f"{API}/tags", headers=designer).get_json()["data"][0]["usage_count"] == 1

        assert client.delete(
            f"{API}/tags/{tid}/detach?entity_type=framework&entity_id={framework.id}", headers=designer,
        ).status_code == 204
        res = client.delete(f"{API}/tags/{tid}/detach", json=target, headers=designer)
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "NOT_ATTACHED"

    def test_teacher_cannot_tag(self, client, auth_headers):
        res = client.post(f"{API}/tags", json={"name": "Nope"}, headers=auth_headers("teacher"))
        assert res.status_code == 403
