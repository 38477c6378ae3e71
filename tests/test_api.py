"""
HTTP surface tests: actor headers, error envelope, request guards and the
structure endpoints that take bulk bodies.
"""

import pytest

from curriculum.models import db

API = "/api/v1"


@pytest.fixture()
def designer(auth_headers):
    return auth_headers("curriculum_designer")


@pytest.fixture()
def fw(client, designer):
    res = client.post(
        f"{API}/frameworks", json={"code": "FR-B2", "name": "French B2", "language": "fr"}, headers=designer,
    )
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def course_id(client, designer, fw):
    res = client.post(f"{API}/versions/{fw['latest_version_id']}/courses", json={"title": "Core"}, headers=designer)
    assert res.status_code == 201
    return res.get_json()["id"]


# ═════════════════════════════════════════════════════════════════════════
# ACTOR CONTEXT
# ═════════════════════════════════════════════════════════════════════════


class TestActorHeaders:
    def test_health_needs_no_identity(self, client):
        res = client.get(f"{API}/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_missing_headers(self, client, users):
        res = client.get(f"{API}/frameworks")
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "UNAUTHENTICATED"

    @pytest.mark.parametrize("raw", ["²", "-1", "1.0", "abc"])
    def test_non_numeric_user_id(self, client, designer, raw):
        res = client.get(f"{API}/frameworks", headers={**designer, "X-User-Id": raw})
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "UNAUTHENTICATED"

    def test_unknown_role(self, client, designer):
        res = client.get(f"{API}/frameworks", headers={**designer, "X-User-Role": "superuser"})
        assert res.status_code == 401

    def test_role_must_match_user(self, client, designer):
        res = client.get(f"{API}/frameworks", headers={**designer, "X-User-Role": "admin"})
        assert res.status_code == 401

    def test_user_from_other_tenant(self, client, designer, outsider_ctx):
        res = client.get(f"{API}/frameworks", headers={**designer, "X-Tenant-Id": str(outsider_ctx.tenant_id)})
        assert res.status_code == 401

    def test_inactive_user(self, client, users, designer):
        users["curriculum_designer"].is_active = False
        db.session.commit()
        assert client.get(f"{API}/frameworks", headers=designer).status_code == 401

    def test_valid_identity(self, client, designer):
        res = client.get(f"{API}/frameworks", headers=designer)
        assert res.status_code == 200
        assert res.get_json()["data"] == []


# ═════════════════════════════════════════════════════════════════════════
# ERROR ENVELOPE & GUARDS
# ═════════════════════════════════════════════════════════════════════════


class TestErrorEnvelope:
    def test_not_found(self, client, designer):
        res = client.get(f"{API}/versions/9999", headers=designer)
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "NOT_FOUND"

    def test_unknown_route(self, client, designer):
        res = client.get(f"{API}/nowhere", headers=designer)
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "NOT_FOUND"

    def test_validation_error(self, client, designer):
        res = client.post(f"{API}/frameworks", json={"code": "X"}, headers=designer)
        assert res.status_code == 422
        body = res.get_json()["error"]
        assert body["code"] == "VALIDATION_ERROR"
        assert "language" in body["details"] or "name" in body["details"]

    def test_no_updates(self, client, designer, fw):
        res = client.patch(f"{API}/frameworks/{fw['id']}", json={}, headers=designer)
        assert res.status_code == 400
        assert res.get_json()["error"]["code"] == "NO_UPDATES"

    def test_duplicate_code(self, client, designer, fw):
        res = client.post(
            f"{API}/frameworks", json={"code": "FR-B2", "name": "Again", "language": "fr"}, headers=designer,
        )
        assert res.status_code == 409
        assert res.get_json()["error"]["code"] == "DUPLICATE_CODE"

    def test_unauthorized_role(self, client, auth_headers):
        res = client.post(
            f"{API}/frameworks", json={"code": "T1", "name": "T", "language": "en"}, headers=auth_headers("teacher"),
        )
        assert res.status_code == 403
        assert res.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_non_json_body_rejected(self, client, designer):
        res = client.post(
            f"{API}/frameworks", data="code=X", headers={**designer, "Content-Type": "text/plain"},
        )
        assert res.status_code == 415

    def test_method_not_allowed(self, client, designer, fw):
        res = client.put(f"{API}/frameworks/{fw['id']}", json={}, headers=designer)
        assert res.status_code == 405

    def test_request_id_echoed(self, client, designer):
        res = client.get(f"{API}/frameworks", headers={**designer, "X-Request-ID": "req-abc"})
        assert res.headers["X-Request-ID"] == "req-abc"
        assert "X-Request-Duration-Ms" in res.headers


# ═════════════════════════════════════════════════════════════════════════
# LISTING
# ═════════════════════════════════════════════════════════════════════════


class TestListing:
    def test_pagination_params(self, client, designer):
        for i in range(3):
            client.post(f"{API}/frameworks", json={"code": f"P{i}", "name": f"P{i}", "language": "en"},
                        headers=designer)
        res = client.get(f"{API}/frameworks?page=2&page_size=2", headers=designer)
        body = res.get_json()
        assert len(body["data"]) == 1
        assert body["pagination"]["total"] == 3

    def test_bad_page(self, client, designer):
        res = client.get(f"{API}/frameworks?page=0", headers=designer)
        assert res.status_code == 422

    def test_stats_endpoint(self, client, designer, fw):
        res = client.get(f"{API}/frameworks/{fw['id']}/versions/stats", headers=designer)
        assert res.status_code == 200
        assert res.get_json()["draft_versions"] == 1


# ═════════════════════════════════════════════════════════════════════════
# STRUCTURE BULK ENDPOINTS
# ═════════════════════════════════════════════════════════════════════════


class TestStructureEndpoints:
    def test_reorder_and_split(self, client, designer, course_id):
        ids = []
        for title in ("Intro", "Verbs", "Review"):
            res = client.post(f"{API}/courses/{course_id}/units", json={"title": title}, headers=designer)
            ids.append(res.get_json()["id"])

        res = client.post(f"{API}/units/reorder", json={
            "course_id": course_id,
            "orders": [{"unit_id": ids[2], "order_index": 0}, {"unit_id": ids[0], "order_index": 2}],
        }, headers=designer)
        assert res.status_code == 200
        assert [u["title"] for u in res.get_json()] == ["Review", "Verbs", "Intro"]

        res = client.post(f"{API}/units/{ids[2]}/split",
                          json={"split_after_order_index": 0, "new_unit_title": "Review II"}, headers=designer)
        assert res.status_code == 201
        assert res.get_json()["order_index"] == 1
        titles = [u["title"] for u in client.get(f"{API}/courses/{course_id}/units", headers=designer).get_json()]
        assert titles == ["Review", "Review II", "Verbs", "Intro"]

    def test_reorder_requires_parent(self, client, designer):
        res = client.post(f"{API}/units/reorder", json={"orders": []}, headers=designer)
        assert res.status_code == 422

    def test_resource_lifecycle_rescores_unit(self, client, designer, course_id):
        unit = client.post(f"{API}/courses/{course_id}/units", json={"title": "U"}, headers=designer).get_json()
        res = client.post(f"{API}/units/{unit['id']}/resources", json={"kind": "audio", "title": "Dialogue"},
                          headers=designer)
        assert res.status_code == 201
        assert client.get(f"{API}/units/{unit['id']}", headers=designer).get_json()["completeness_score"] == 20
        assert client.delete(f"{API}/resources/{res.get_json()['id']}", headers=designer).status_code == 204
        assert client.get(f"{API}/units/{unit['id']}", headers=designer).get_json()["completeness_score"] == 0
