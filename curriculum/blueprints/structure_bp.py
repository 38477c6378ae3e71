"""
Structure Blueprint — courses, units and resources under a version.

Routes:
  GET    /versions/<vid>/courses          – list courses
  POST   /versions/<vid>/courses          – create course
  GET    /courses/<cid>                   – course detail
  PATCH  /courses/<cid>                   – update course
  DELETE /courses/<cid>                   – soft delete
  POST   /courses/reorder                 – {version_id, orders: [{course_id, order_index}]}
  GET    /courses/<cid>/units             – list units
  POST   /courses/<cid>/units             – create unit
  GET    /units/<uid>                     – unit detail
  PATCH  /units/<uid>                     – update unit (rescores completeness)
  DELETE /units/<uid>                     – soft delete
  POST   /units/reorder                   – {course_id, orders: [{unit_id, order_index}]}
  POST   /units/<uid>/split               – {split_after_order_index, new_unit_title}
  GET    /units/<uid>/resources           – list resources
  POST   /units/<uid>/resources           – create resource
  GET    /resources/<rid>                 – resource detail
  PATCH  /resources/<rid>                 – update resource
  DELETE /resources/<rid>                 – soft delete

All writes answer 403 VERSION_FROZEN unless the owning version is draft.
"""

from flask import Blueprint, jsonify

import curriculum.services.structure_service as ss
from curriculum.blueprints.common import current_actor, json_body, register_error_handlers
from curriculum.models import db
from curriculum.services.helpers.payloads import parse_int

structure_bp = Blueprint("structure", __name__, url_prefix="/api/v1")
register_error_handlers(structure_bp)


# ── Courses ──────────────────────────────────────────────────────────────


@structure_bp.route("/versions/<int:vid>/courses", methods=["GET"])
def list_courses(vid):
    return jsonify([c.to_dict() for c in ss.list_courses(db.session, current_actor(), vid)])


@structure_bp.route("/versions/<int:vid>/courses", methods=["POST"])
def create_course(vid):
    course = ss.create_course(db.session, current_actor(), vid, json_body())
    return jsonify(course.to_dict()), 201


@structure_bp.route("/courses/<int:cid>", methods=["GET"])
def get_course(cid):
    return jsonify(ss.get_course(db.session, current_actor(), cid).to_dict())


@structure_bp.route("/courses/<int:cid>", methods=["PATCH"])
def update_course(cid):
    return jsonify(ss.update_course(db.session, current_actor(), cid, json_body()).to_dict())


@structure_bp.route("/courses/<int:cid>", methods=["DELETE"])
def delete_course(cid):
    ss.delete_course(db.session, current_actor(), cid)
    return "", 204


@structure_bp.route("/courses/reorder", methods=["POST"])
def reorder_courses():
    data = json_body()
    version_id = parse_int(data.get("version_id"), "version_id", required=True, minimum=1)
    courses = ss.reorder_courses(db.session, current_actor(), version_id, data.get("orders"))
    return jsonify([c.to_dict() for c in courses])


# ── Units ────────────────────────────────────────────────────────────────


@structure_bp.route("/courses/<int:cid>/units", methods=["GET"])
def list_units(cid):
    return jsonify([u.to_dict() for u in ss.list_units(db.session, current_actor(), cid)])


@structure_bp.route("/courses/<int:cid>/units", methods=["POST"])
def create_unit(cid):
    unit = ss.create_unit(db.session, current_actor(), cid, json_body())
    return jsonify(unit.to_dict()), 201


@structure_bp.route("/units/<int:uid>", methods=["GET"])
def get_unit(uid):
    return jsonify(ss.get_unit(db.session, current_actor(), uid).to_dict())


@structure_bp.route("/units/<int:uid>", methods=["PATCH"])
def update_unit(uid):
    return jsonify(ss.update_unit(db.session, current_actor(), uid, json_body()).to_dict())


@structure_bp.route("/units/<int:uid>", methods=["DELETE"])
def delete_unit(uid):
    ss.delete_unit(db.session, current_actor(), uid)
    return "", 204


@structure_bp.route("/units/reorder", methods=["POST"])
def reorder_units():
    data = json_body()
    course_id = parse_int(data.get("course_id"), "course_id", required=True, minimum=1)
    units = ss.reorder_units(db.session, current_actor(), course_id, data.get("orders"))
    return jsonify([u.to_dict() for u in units])


@structure_bp.route("/units/<int:uid>/split", methods=["POST"])
def split_unit(uid):
    new_unit = ss.split_unit(db.session, current_actor(), uid, json_body())
    return jsonify(new_unit.to_dict()), 201


# ── Resources ────────────────────────────────────────────────────────────


@structure_bp.route("/units/<int:uid>/resources", methods=["GET"])
def list_resources(uid):
    return jsonify([r.to_dict() for r in ss.list_resources(db.session, current_actor(), uid)])


@structure_bp.route("/units/<int:uid>/resources", methods=["POST"])
def create_resource(uid):
    resource = ss.create_resource(db.session, current_actor(), uid, json_body())
    return jsonify(resource.to_dict()), 201


@structure_bp.route("/resources/<int:rid>", methods=["GET"])
def get_resource(rid):
    return jsonify(ss.get_resource(db.session, current_actor(), rid).to_dict())


@structure_bp.route("/resources/<int:rid>", methods=["PATCH"])
def update_resource(rid):
    return jsonify(ss.update_resource(db.session, current_actor(), rid, json_body()).to_dict())


@structure_bp.route("/resources/<int:rid>", methods=["DELETE"])
def delete_resource(rid):
    ss.delete_resource(db.session, current_actor(), rid)
    return "", 204
