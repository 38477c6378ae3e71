"""
Framework & Version Lifecycle Blueprint.

Routes:
  GET    /frameworks                              – list frameworks (filters, q, paging)
  POST   /frameworks                              – create framework + initial v1.0
  GET    /frameworks/<fid>                        – framework detail
  PATCH  /frameworks/<fid>                        – update framework fields
  DELETE /frameworks/<fid>                        – soft delete
  GET    /frameworks/<fid>/versions               – live versions, newest first
  POST   /frameworks/<fid>/versions               – create a draft version
  GET    /frameworks/<fid>/versions/history       – all versions, paginated
  GET    /frameworks/<fid>/versions/stats         – counts by state
  GET    /versions/<vid>                          – version detail
  PATCH  /versions/<vid>                          – changelog / metadata / publish / archive
  DELETE /versions/<vid>                          – soft delete (not the latest version)

Service layer owns all business logic and commits.
"""

from flask import Blueprint, jsonify, request

import curriculum.services.framework_service as fws
import curriculum.services.version_service as vs
from curriculum.blueprints.common import current_actor, json_body, page_args, register_error_handlers
from curriculum.models import db

curriculum_bp = Blueprint("curriculum", __name__, url_prefix="/api/v1")
register_error_handlers(curriculum_bp)


# ═════════════════════════════════════════════════════════════════════════
# Frameworks
# ═════════════════════════════════════════════════════════════════════════


@curriculum_bp.route("/frameworks", methods=["GET"])
def list_frameworks():
    page, page_size = page_args()
    result = fws.list_frameworks(
        db.session,
        current_actor(),
        status=request.args.get("status"),
        campus_id=request.args.get("campus_id", type=int),
        language=request.args.get("language"),
        q=request.args.get("q"),
        page=page,
        page_size=page_size,
    )
    return jsonify(result)


@curriculum_bp.route("/frameworks", methods=["POST"])
def create_framework():
    framework = fws.create_framework(db.session, current_actor(), json_body())
    return jsonify(framework.to_dict()), 201


@curriculum_bp.route("/frameworks/<int:fid>", methods=["GET"])
def get_framework(fid):
    return jsonify(fws.get_framework(db.session, current_actor(), fid).to_dict())


@curriculum_bp.route("/frameworks/<int:fid>", methods=["PATCH"])
def update_framework(fid):
    framework = fws.update_framework(db.session, current_actor(), fid, json_body())
    return jsonify(framework.to_dict())


@curriculum_bp.route("/frameworks/<int:fid>", methods=["DELETE"])
def delete_framework(fid):
    fws.delete_framework(db.session, current_actor(), fid)
    return "", 204


# ═════════════════════════════════════════════════════════════════════════
# Versions
# ═════════════════════════════════════════════════════════════════════════


@curriculum_bp.route("/frameworks/<int:fid>/versions", methods=["GET"])
def list_versions(fid):
    versions = vs.list_versions(db.session, current_actor(), fid)
    return jsonify([v.to_dict() for v in versions])


@curriculum_bp.route("/frameworks/<int:fid>/versions", methods=["POST"])
def create_version(fid):
    version = vs.create_version(db.session, current_actor(), fid, json_body())
    return jsonify(version.to_dict()), 201


@curriculum_bp.route("/frameworks/<int:fid>/versions/history", methods=["GET"])
def version_history(fid):
    page, page_size = page_args()
    return jsonify(vs.get_version_history(db.session, current_actor(), fid, page=page, page_size=page_size))


@curriculum_bp.route("/frameworks/<int:fid>/versions/stats", methods=["GET"])
def version_stats(fid):
    return jsonify(vs.get_version_stats(db.session, current_actor(), fid))


@curriculum_bp.route("/versions/<int:vid>", methods=["GET"])
def get_version(vid):
    return jsonify(vs.get_version(db.session, current_actor(), vid).to_dict())


@curriculum_bp.route("/versions/<int:vid>", methods=["PATCH"])
def update_version(vid):
    version = vs.update_version(db.session, current_actor(), vid, json_body())
    return jsonify(version.to_dict())


@curriculum_bp.route("/versions/<int:vid>", methods=["DELETE"])
def delete_version(vid):
    vs.delete_version(db.session, current_actor(), vid)
    return "", 204
