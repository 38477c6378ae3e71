"""
Course / Unit / Resource service.

Every course, unit and resource mutation first passes
``guard_mutation`` so nothing is written under a frozen version. Bulk
operations (reorder, split) run as one transaction over all sibling rows.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from curriculum.core.exceptions import ConflictError, NoUpdatesError, ValidationError
from curriculum.core.identity import Action, ActorContext, require
from curriculum.core.store import atomic, violates_unique
from curriculum.models.curriculum import (
    DIFFICULTY_LEVELS,
    RESOURCE_KINDS,
    Course,
    Resource,
    Unit,
    Version,
)
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.payloads import (
    parse_bool,
    parse_choice,
    parse_int,
    parse_json_object,
    parse_str,
    parse_string_list,
)
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select
from curriculum.services.structure_guard import guard_mutation, recompute_completeness

logger = logging.getLogger(__name__)

COURSE_FIELDS = (
    "code", "title", "level", "hours", "order_index", "summary",
    "learning_outcomes", "assessment_types",
)
UNIT_FIELDS = (
    "title", "objectives", "skills", "activities", "rubric", "homework",
    "hours", "order_index", "difficulty_level", "estimated_time",
)
UNIT_CONTENT_FIELDS = frozenset({"objectives", "skills", "activities", "rubric"})
RESOURCE_FIELDS = (
    "kind", "title", "description", "url", "file_path", "mime_type",
    "license_type", "license_note", "order_index", "is_required",
)


def _utcnow():
    return datetime.now(timezone.utc)


# ── Field parsers ────────────────────────────────────────────────────────────


def _parse_course(data: dict, *, creating: bool) -> dict:
    parsed = {}
    if creating or "title" in data:
        parsed["title"] = parse_str(data.get("title"), "title", required=True, max_len=255)
    if "code" in data:
        parsed["code"] = parse_str(data["code"], "code", max_len=50)
    if "level" in data:
        parsed["level"] = parse_str(data["level"], "level", max_len=50)
    if "hours" in data:
        parsed["hours"] = parse_int(data["hours"], "hours", minimum=0)
    if "order_index" in data:
        parsed["order_index"] = parse_int(data["order_index"], "order_index", minimum=0)
    if "summary" in data:
        parsed["summary"] = parse_str(data["summary"], "summary", max_len=1000)
    if "learning_outcomes" in data:
        parsed["learning_outcomes"] = parse_string_list(data["learning_outcomes"], "learning_outcomes")
    if "assessment_types" in data:
        parsed["assessment_types"] = parse_string_list(data["assessment_types"], "assessment_types")
    return parsed


def _parse_unit(data: dict, *, creating: bool) -> dict:
    parsed = {}
    if creating or "title" in data:
        parsed["title"] = parse_str(data.get("title"), "title", required=True, max_len=255)
    for field in ("objectives", "skills", "activities"):
        if field in data:
            parsed[field] = parse_string_list(data[field], field)
    if "rubric" in data:
        parsed["rubric"] = parse_json_object(data["rubric"], "rubric")
    if "homework" in data:
        parsed["homework"] = parse_str(data["homework"], "homework")
    if "hours" in data:
        parsed["hours"] = parse_int(data["hours"], "hours", minimum=0)
    if "order_index" in data:
        parsed["order_index"] = parse_int(data["order_index"], "order_index", minimum=0)
    if creating or "difficulty_level" in data:
        parsed["difficulty_level"] = parse_choice(
            data.get("difficulty_level"), "difficulty_level", DIFFICULTY_LEVELS,
            default="intermediate",
        )
    if "estimated_time" in data:
        parsed["estimated_time"] = parse_str(data["estimated_time"], "estimated_time", max_len=50)
    return parsed


def _parse_resource(data: dict, *, creating: bool) -> dict:
    parsed = {}
    if creating or "kind" in data:
        parsed["kind"] = parse_choice(
            parse_str(data.get("kind"), "kind", required=True), "kind", RESOURCE_KINDS,
        )
    if creating or "title" in data:
        parsed["title"] = parse_str(data.get("title"), "title", required=True, max_len=255)
    if "description" in data:
        parsed["description"] = parse_str(data["description"], "description")
    if "url" in data:
        parsed["url"] = parse_str(data["url"], "url", max_len=2000)
    if "file_path" in data:
        parsed["file_path"] = parse_str(data["file_path"], "file_path", max_len=1000)
    if "mime_type" in data:
        parsed["mime_type"] = parse_str(data["mime_type"], "mime_type", max_len=100)
    if "license_type" in data:
        parsed["license_type"] = parse_str(data["license_type"], "license_type", max_len=50)
    if "license_note" in data:
        parsed["license_note"] = parse_str(data["license_note"], "license_note")
    if "order_index" in data:
        parsed["order_index"] = parse_int(data["order_index"], "order_index", minimum=0)
    if "is_required" in data:
        parsed["is_required"] = parse_bool(data["is_required"], "is_required")
    return parsed


def _parse_orders(orders, id_field: str) -> list[tuple[int, int]]:
    if not isinstance(orders, list) or not orders:
        raise ValidationError("orders must be a non-empty list", details={"orders": "required"})
    entries = []
    for entry in orders:
        if not isinstance(entry, dict):
            raise ValidationError("orders entries must be objects", details={"orders": "invalid"})
        entries.append((
            parse_int(entry.get(id_field), id_field, required=True, minimum=1),
            parse_int(entry.get("order_index"), "order_index", required=True, minimum=0),
        ))
    ids = [node_id for node_id, _ in entries]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"duplicate {id_field} in orders", details={id_field: "duplicate"})
    return entries


def _next_order_index(session, model, parent_column, parent_id: int, tenant_id: int) -> int:
    current = session.execute(
        select(func.max(model.order_index)).where(
            model.tenant_id == tenant_id,
            parent_column == parent_id,
            model.deleted_at.is_(None),
        )
    ).scalar_one()
    return 0 if current is None else current + 1


def _course_code_taken(session, tenant_id: int, version_id: int, code: str, exclude_id=None) -> bool:
    stmt = scoped_select(Course, tenant_id=tenant_id).where(
        Course.version_id == version_id, Course.code == code,
    )
    if exclude_id is not None:
        stmt = stmt.where(Course.id != exclude_id)
    return session.execute(stmt.limit(1)).scalar_one_or_none() is not None


def _raise_if_code_conflict(exc: IntegrityError, code) -> None:
    if code and violates_unique(exc, "uq_courses_version_code", "courses", "version_id", "code"):
        raise ConflictError("Course", "code", code, code="DUPLICATE_CODE") from exc


def _load_siblings(session, model, parent_column, parent_id, ids, tenant_id, id_field):
    rows = session.execute(
        scoped_select(model, tenant_id=tenant_id).where(parent_column == parent_id, model.id.in_(ids))
    ).scalars().all()
    found = {row.id: row for row in rows}
    missing = sorted(set(ids) - set(found))
    if missing:
        raise ValidationError(
            f"{id_field} values {missing} do not belong to this parent",
            details={id_field: missing},
        )
    return found


# ═════════════════════════════════════════════════════════════════════════════
# Courses
# ═════════════════════════════════════════════════════════════════════════════


def get_course(session, ctx: ActorContext, course_id: int) -> Course:
    return get_scoped(session, Course, course_id, tenant_id=ctx.tenant_id)


def list_courses(session, ctx: ActorContext, version_id: int) -> list[Course]:
    get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id)
    stmt = (
        scoped_select(Course, tenant_id=ctx.tenant_id)
        .where(Course.version_id == version_id)
        .order_by(Course.order_index, Course.id)
    )
    return list(session.execute(stmt).scalars())


def create_course(session, ctx: ActorContext, version_id: int, data: dict) -> Course:
    require(ctx, Action.STRUCTURE_EDIT)
    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, version)
    fields = _parse_course(data or {}, creating=True)
    if fields.get("code") and _course_code_taken(session, ctx.tenant_id, version.id, fields["code"]):
        raise ConflictError("Course", "code", fields["code"], code="DUPLICATE_CODE")
    if fields.get("order_index") is None:
        fields["order_index"] = _next_order_index(
            session, Course, Course.version_id, version.id, ctx.tenant_id,
        )

    try:
        with atomic(session):
            course = Course(
                tenant_id=ctx.tenant_id,
                version_id=version.id,
                created_by=ctx.actor_id,
                updated_by=ctx.actor_id,
                **fields,
            )
            session.add(course)
    except IntegrityError as exc:
        _raise_if_code_conflict(exc, fields.get("code"))
        raise

    emit_audit(
        session, ctx, entity_type="course", entity_id=course.id, action="create",
        details={"version_id": version.id, "title": course.title},
    )
    return course


def update_course(session, ctx: ActorContext, course_id: int, patch: dict) -> Course:
    require(ctx, Action.STRUCTURE_EDIT)
    present = {k: v for k, v in (patch or {}).items() if k in COURSE_FIELDS}
    if not present:
        raise NoUpdatesError("Course")
    course = get_scoped(session, Course, course_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, course)
    fields = _parse_course(present, creating=False)
    if fields.get("code") and _course_code_taken(
        session, ctx.tenant_id, course.version_id, fields["code"], exclude_id=course.id,
    ):
        raise ConflictError("Course", "code", fields["code"], code="DUPLICATE_CODE")

    try:
        with atomic(session):
            for attr, value in fields.items():
                setattr(course, attr, value)
            course.updated_by = ctx.actor_id
    except IntegrityError as exc:
        _raise_if_code_conflict(exc, fields.get("code"))
        raise

    emit_audit(session, ctx, entity_type="course", entity_id=course.id, action="update", details=present)
    return course


def delete_course(session, ctx: ActorContext, course_id: int) -> None:
    require(ctx, Action.STRUCTURE_EDIT)
    course = get_scoped(session, Course, course_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, course)
    with atomic(session):
        course.soft_delete()
        course.updated_by = ctx.actor_id
    emit_audit(session, ctx, entity_type="course", entity_id=course.id, action="delete")


def reorder_courses(session, ctx: ActorContext, version_id: int, orders) -> list[Course]:
    """Set ``order_index`` for a batch of courses under one version."""
    require(ctx, Action.STRUCTURE_EDIT)
    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, version)
    entries = _parse_orders(orders, "course_id")
    courses = _load_siblings(
        session, Course, Course.version_id, version.id,
        [course_id for course_id, _ in entries], ctx.tenant_id, "course_id",
    )

    with atomic(session):
        for course_id, order_index in entries:
            courses[course_id].order_index = order_index
            courses[course_id].updated_by = ctx.actor_id

    emit_audit(
        session, ctx, entity_type="version", entity_id=version.id, action="reorder",
        details={"courses": [{"course_id": c, "order_index": o} for c, o in entries]},
    )
    return list_courses(session, ctx, version.id)


# ═════════════════════════════════════════════════════════════════════════════
# Units
# ═════════════════════════════════════════════════════════════════════════════


def get_unit(session, ctx: ActorContext, unit_id: int) -> Unit:
    return get_scoped(session, Unit, unit_id, tenant_id=ctx.tenant_id)


def list_units(session, ctx: ActorContext, course_id: int) -> list[Unit]:
    get_scoped(session, Course, course_id, tenant_id=ctx.tenant_id)
    stmt = (
        scoped_select(Unit, tenant_id=ctx.tenant_id)
        .where(Unit.course_id == course_id)
        .order_by(Unit.order_index, Unit.id)
    )
    return list(session.execute(stmt).scalars())


def create_unit(session, ctx: ActorContext, course_id: int, data: dict) -> Unit:
    require(ctx, Action.STRUCTURE_EDIT)
    course = get_scoped(session, Course, course_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, course)
    fields = _parse_unit(data or {}, creating=True)
    if fields.get("order_index") is None:
        fields["order_index"] = _next_order_index(session, Unit, Unit.course_id, course.id, ctx.tenant_id)

    with atomic(session):
        unit = Unit(
            tenant_id=ctx.tenant_id,
            course_id=course.id,
            created_by=ctx.actor_id,
            updated_by=ctx.actor_id,
            **fields,
        )
        session.add(unit)
        session.flush()
        recompute_completeness(session, unit)

    emit_audit(
        session, ctx, entity_type="unit", entity_id=unit.id, action="create",
        details={"course_id": course.id, "completeness_score": unit.completeness_score},
    )
    return unit


def update_unit(session, ctx: ActorContext, unit_id: int, patch: dict) -> Unit:
    """Update a unit; completeness is rescored from the post-update values."""
    require(ctx, Action.STRUCTURE_EDIT)
    present = {k: v for k, v in (patch or {}).items() if k in UNIT_FIELDS}
    if not present:
        raise NoUpdatesError("Unit")
    unit = get_scoped(session, Unit, unit_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, unit)
    fields = _parse_unit(present, creating=False)
    previous_score = unit.completeness_score

    with atomic(session):
        for attr, value in fields.items():
            setattr(unit, attr, value)
        if UNIT_CONTENT_FIELDS & fields.keys():
            recompute_completeness(session, unit)
        unit.updated_by = ctx.actor_id

    details = dict(present)
    if unit.completeness_score != previous_score:
        details["completeness_score"] = {"old": previous_score, "new": unit.completeness_score}
    emit_audit(session, ctx, entity_type="unit", entity_id=unit.id, action="update", details=details)
    return unit


def delete_unit(session, ctx: ActorContext, unit_id: int) -> None:
    require(ctx, Action.STRUCTURE_EDIT)
    unit = get_scoped(session, Unit, unit_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, unit)
    with atomic(session):
        unit.soft_delete()
        unit.updated_by = ctx.actor_id
    emit_audit(session, ctx, entity_type="unit", entity_id=unit.id, action="delete")


def reorder_units(session, ctx: ActorContext, course_id: int, orders) -> list[Unit]:
    require(ctx, Action.STRUCTURE_EDIT)
    course = get_scoped(session, Course, course_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, course)
    entries = _parse_orders(orders, "unit_id")
    units = _load_siblings(
        session, Unit, Unit.course_id, course.id,
        [unit_id for unit_id, _ in entries], ctx.tenant_id, "unit_id",
    )

    with atomic(session):
        for unit_id, order_index in entries:
            units[unit_id].order_index = order_index
            units[unit_id].updated_by = ctx.actor_id

    emit_audit(
        session, ctx, entity_type="course", entity_id=course.id, action="reorder",
        details={"units": [{"unit_id": u, "order_index": o} for u, o in entries]},
    )
    return list_units(session, ctx, course.id)


def split_unit(session, ctx: ActorContext, unit_id: int, data: dict) -> Unit:
    """Insert a new unit right after ``split_after_order_index``.

    Later siblings (including ``unit`` itself when it sits past the split
    point) move up by one; the new unit takes the freed slot.
    """
    require(ctx, Action.STRUCTURE_EDIT)
    unit = get_scoped(session, Unit, unit_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, unit)
    data = data or {}
    split_after = parse_int(
        data.get("split_after_order_index"), "split_after_order_index", required=True, minimum=0,
    )
    title = parse_str(data.get("new_unit_title"), "new_unit_title", required=True, max_len=255)

    with atomic(session):
        session.execute(
            update(Unit)
            .where(
                Unit.tenant_id == ctx.tenant_id,
                Unit.course_id == unit.course_id,
                Unit.deleted_at.is_(None),
                Unit.order_index > split_after,
            )
            .values(order_index=Unit.order_index + 1, updated_by=ctx.actor_id, updated_at=_utcnow())
            .execution_options(synchronize_session="fetch")
        )
        new_unit = Unit(
            tenant_id=ctx.tenant_id,
            course_id=unit.course_id,
            title=title,
            order_index=split_after + 1,
            difficulty_level=unit.difficulty_level,
            created_by=ctx.actor_id,
            updated_by=ctx.actor_id,
        )
        session.add(new_unit)
        session.flush()
        recompute_completeness(session, new_unit)

    logger.info(
        "Unit %s split after order_index=%s -> new unit %s",
        unit.id, split_after, new_unit.id,
        extra={"tenant_id": ctx.tenant_id},
    )
    emit_audit(
        session, ctx, entity_type="unit", entity_id=unit.id, action="split",
        details={"new_unit_id": new_unit.id, "split_after_order_index": split_after},
    )
    return new_unit


# ═════════════════════════════════════════════════════════════════════════════
# Resources
# ═════════════════════════════════════════════════════════════════════════════


def get_resource(session, ctx: ActorContext, resource_id: int) -> Resource:
    return get_scoped(session, Resource, resource_id, tenant_id=ctx.tenant_id)


def list_resources(session, ctx: ActorContext, unit_id: int) -> list[Resource]:
    get_scoped(session, Unit, unit_id, tenant_id=ctx.tenant_id)
    stmt = (
        scoped_select(Resource, tenant_id=ctx.tenant_id)
        .where(Resource.unit_id == unit_id)
        .order_by(Resource.order_index, Resource.id)
    )
    return list(session.execute(stmt).scalars())


def create_resource(session, ctx: ActorContext, unit_id: int, data: dict) -> Resource:
    require(ctx, Action.STRUCTURE_EDIT)
    unit = get_scoped(session, Unit, unit_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, unit)
    fields = _parse_resource(data or {}, creating=True)
    if fields.get("order_index") is None:
        fields["order_index"] = _next_order_index(
            session, Resource, Resource.unit_id, unit.id, ctx.tenant_id,
        )

    with atomic(session):
        resource = Resource(
            tenant_id=ctx.tenant_id,
            unit_id=unit.id,
            created_by=ctx.actor_id,
            updated_by=ctx.actor_id,
            **fields,
        )
        session.add(resource)
        session.flush()
        recompute_completeness(session, unit)

    emit_audit(
        session, ctx, entity_type="resource", entity_id=resource.id, action="create",
        details={"unit_id": unit.id, "kind": resource.kind},
    )
    return resource


def update_resource(session, ctx: ActorContext, resource_id: int, patch: dict) -> Resource:
    require(ctx, Action.STRUCTURE_EDIT)
    present = {k: v for k, v in (patch or {}).items() if k in RESOURCE_FIELDS}
    if not present:
        raise NoUpdatesError("Resource")
    resource = get_scoped(session, Resource, resource_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, resource)
    fields = _parse_resource(present, creating=False)

    with atomic(session):
        for attr, value in fields.items():
            setattr(resource, attr, value)
        resource.updated_by = ctx.actor_id

    emit_audit(session, ctx, entity_type="resource", entity_id=resource.id, action="update", details=present)
    return resource


def delete_resource(session, ctx: ActorContext, resource_id: int) -> None:
    require(ctx, Action.STRUCTURE_EDIT)
    resource = get_scoped(session, Resource, resource_id, tenant_id=ctx.tenant_id)
    guard_mutation(session, ctx, resource)
    unit = get_scoped(session, Unit, resource.unit_id, tenant_id=ctx.tenant_id)
    with atomic(session):
        resource.soft_delete()
        resource.updated_by = ctx.actor_id
        session.flush()
        recompute_completeness(session, unit)
    emit_audit(
        session, ctx, entity_type="resource", entity_id=resource.id, action="delete",
        details={"unit_id": unit.id},
    )
