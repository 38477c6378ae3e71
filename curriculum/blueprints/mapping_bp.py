"""
Mapping & Rollout Blueprint.

Routes:
  GET    /mappings          – list (framework_id, version_id, target_type, campus_id, status; paging)
  POST   /mappings          – create a planned mapping
  GET    /mappings/<mid>    – mapping detail
  PATCH  /mappings/<mid>    – rollout fields and/or status transition
  DELETE /mappings/<mid>    – hard delete (not while applied)
"""

from flask import Blueprint, current_app, jsonify, request

import curriculum.services.mapping_service as ms
from curriculum.blueprints.common import current_actor, json_body, page_args, register_error_handlers
from curriculum.models import db

mapping_bp = Blueprint("mapping", __name__, url_prefix="/api/v1")
register_error_handlers(mapping_bp)


def _override_required() -> bool:
    return current_app.config.get("MAPPING_REQUIRE_OVERRIDE_REASON", True)


@mapping_bp.route("/mappings", methods=["GET"])
def list_mappings():
    page, page_size = page_args()
    result = ms.list_mappings(
        db.session,
        current_actor(),
        framework_id=request.args.get("framework_id", type=int),
        version_id=request.args.get("version_id", type=int),
        target_type=request.args.get("target_type"),
        campus_id=request.args.get("campus_id", type=int),
        status=request.args.get("status"),
        page=page,
        page_size=page_size,
    )
    return jsonify(result)


@mapping_bp.route("/mappings", methods=["POST"])
def create_mapping():
    mapping = ms.create_mapping(
        db.session, current_actor(), json_body(), require_override_reason=_override_required(),
    )
    return jsonify(mapping.to_dict()), 201


@mapping_bp.route("/mappings/<int:mid>", methods=["GET"])
def get_mapping(mid):
    return jsonify(ms.get_mapping(db.session, current_actor(), mid).to_dict())


@mapping_bp.route("/mappings/<int:mid>", methods=["PATCH"])
def update_mapping(mid):
    mapping = ms.update_mapping(
        db.session, current_actor(), mid, json_body(), require_override_reason=_override_required(),
    )
    return jsonify(mapping.to_dict())


@mapping_bp.route("/mappings/<int:mid>", methods=["DELETE"])
def delete_mapping(mid):
    ms.delete_mapping(db.session, current_actor(), mid)
    return "", 204
