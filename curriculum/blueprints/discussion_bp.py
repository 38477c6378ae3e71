"""
Discussion Blueprint: comments and tags on curriculum entities.

Routes:
  GET    /entities/<type>/<id>/comments  – list (is_resolved filter; paging)
  POST   /entities/<type>/<id>/comments  – add a comment or reply
  PATCH  /comments/<cid>                 – edit body (author) and/or resolve
  DELETE /comments/<cid>                 – soft delete (author or admin)

  GET    /tags                           – list (q, entity_type; paging)
  POST   /tags                           – create
  GET    /entities/<type>/<id>/tags      – tags attached to an entity
  POST   /tags/<tid>/attach              – attach to {entity_type, entity_id}
  DELETE /tags/<tid>/detach              – detach from {entity_type, entity_id}
"""

from flask import Blueprint, jsonify, request

import curriculum.services.comment_service as cs
import curriculum.services.tag_service as ts
from curriculum.blueprints.common import current_actor, json_body, page_args, register_error_handlers
from curriculum.models import db
from curriculum.services.helpers.payloads import parse_choice

discussion_bp = Blueprint("discussion", __name__, url_prefix="/api/v1")
register_error_handlers(discussion_bp)


def _resolved_arg() -> bool | None:
    raw = parse_choice(request.args.get("is_resolved"), "is_resolved", ("true", "false"))
    return None if raw is None else raw == "true"


# ── Comments ─────────────────────────────────────────────────────────────────


@discussion_bp.route("/entities/<entity_type>/<int:entity_id>/comments", methods=["GET"])
def list_comments(entity_type, entity_id):
    page, page_size = page_args()
    result = cs.list_comments(
        db.session, current_actor(), entity_type, entity_id,
        is_resolved=_resolved_arg(), page=page, page_size=page_size,
    )
    return jsonify(result)


@discussion_bp.route("/entities/<entity_type>/<int:entity_id>/comments", methods=["POST"])
def create_comment(entity_type, entity_id):
    comment = cs.create_comment(db.session, current_actor(), entity_type, entity_id, json_body())
    return jsonify(comment.to_dict()), 201


@discussion_bp.route("/comments/<int:cid>", methods=["PATCH"])
def update_comment(cid):
    return jsonify(cs.update_comment(db.session, current_actor(), cid, json_body()).to_dict())


@discussion_bp.route("/comments/<int:cid>", methods=["DELETE"])
def delete_comment(cid):
    cs.delete_comment(db.session, current_actor(), cid)
    return "", 204


# ── Tags ─────────────────────────────────────────────────────────────────────


@discussion_bp.route("/tags", methods=["GET"])
def list_tags():
    page, page_size = page_args()
    result = ts.list_tags(
        db.session, current_actor(),
        q=request.args.get("q"),
        entity_type=request.args.get("entity_type"),
        page=page,
        page_size=page_size,
    )
    return jsonify(result)


@discussion_bp.route("/tags", methods=["POST"])
def create_tag():
    return jsonify(ts.create_tag(db.session, current_actor(), json_body()).to_dict()), 201


@discussion_bp.route("/entities/<entity_type>/<int:entity_id>/tags", methods=["GET"])
def list_entity_tags(entity_type, entity_id):
    tags = ts.list_entity_tags(db.session, current_actor(), entity_type, entity_id)
    return jsonify([t.to_dict() for t in tags])


@discussion_bp.route("/tags/<int:tid>/attach", methods=["POST"])
def attach_tag(tid):
    return jsonify(ts.attach_tag(db.session, current_actor(), tid, json_body()).to_dict()), 201


@discussion_bp.route("/tags/<int:tid>/detach", methods=["DELETE"])
def detach_tag(tid):
    # DELETE bodies are optional in HTTP; query args work too.
    data = json_body() or request.args.to_dict()
    ts.detach_tag(db.session, current_actor(), tid, data)
    return "", 204
