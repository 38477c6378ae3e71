"""
Approval Workflow Blueprint.

Routes:
  GET    /versions/<vid>/approvals     – approvals for a version, newest first
  POST   /versions/<vid>/approvals     – request approval {assigned_reviewer_id, priority?, review_deadline?}
  GET    /approvals/<aid>              – approval detail
  PATCH  /approvals/<aid>              – review step {status?, decision?, escalation_reason?, escalated_to?}
"""

from flask import Blueprint, jsonify

import curriculum.services.approval_service as aps
from curriculum.blueprints.common import current_actor, json_body, register_error_handlers
from curriculum.models import db

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


@approval_bp.route("/versions/<int:vid>/approvals", methods=["GET"])
def list_approvals(vid):
    return jsonify([a.to_dict() for a in aps.list_approvals(db.session, current_actor(), vid)])


@approval_bp.route("/versions/<int:vid>/approvals", methods=["POST"])
def request_approval(vid):
    approval = aps.request_approval(db.session, current_actor(), vid, json_body())
    return jsonify(approval.to_dict()), 201


@approval_bp.route("/approvals/<int:aid>", methods=["GET"])
def get_approval(aid):
    return jsonify(aps.get_approval(db.session, current_actor(), aid).to_dict())


@approval_bp.route("/approvals/<int:aid>", methods=["PATCH"])
def decide(aid):
    approval = aps.decide(db.session, current_actor(), aid, json_body())
    return jsonify(approval.to_dict())
