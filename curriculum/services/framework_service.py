"""
Framework service — root of the curriculum tree.

Creating a framework also creates its initial draft version (v1.0) and
points ``latest_version_id`` at it, all in one transaction.
"""

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from curriculum.core.exceptions import ConflictError, NoUpdatesError
from curriculum.core.identity import Action, ActorContext, require
from curriculum.core.store import atomic, violates_unique
from curriculum.models.curriculum import (
    AGE_GROUPS,
    INITIAL_VERSION_NO,
    VERSION_STATES,
    Framework,
    Version,
)
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.pagination import paginate
from curriculum.services.helpers.payloads import parse_choice, parse_int, parse_str, pick
from curriculum.services.helpers.references import require_campus
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select

logger = logging.getLogger(__name__)

CODE_PATTERN = r"[A-Z0-9_-]+"

UPDATABLE_FIELDS = ("name", "description", "target_level", "age_group", "total_hours", "campus_id")


def _parse_fields(data: dict, *, creating: bool) -> dict:
    parsed = {}
    if creating:
        parsed["code"] = parse_str(data.get("code"), "code", required=True, max_len=64, pattern=CODE_PATTERN)
        parsed["language"] = parse_str(
            data.get("language"), "language", required=True, min_len=2, max_len=10,
        )
    if creating or "name" in data:
        parsed["name"] = parse_str(data.get("name"), "name", required=True, max_len=255)
    if "description" in data:
        parsed["description"] = parse_str(data["description"], "description")
    if "target_level" in data:
        parsed["target_level"] = parse_str(data["target_level"], "target_level", max_len=50)
    if "age_group" in data:
        parsed["age_group"] = parse_choice(data["age_group"], "age_group", AGE_GROUPS)
    if "total_hours" in data:
        parsed["total_hours"] = parse_int(data["total_hours"], "total_hours", minimum=0)
    if "campus_id" in data:
        parsed["campus_id"] = parse_int(data["campus_id"], "campus_id", minimum=1)
    return parsed


def _code_taken(session, tenant_id: int, code: str) -> bool:
    stmt = scoped_select(Framework, tenant_id=tenant_id).where(Framework.code == code)
    return session.execute(stmt.limit(1)).scalar_one_or_none() is not None


def get_framework(session, ctx: ActorContext, framework_id: int) -> Framework:
    return get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)


def list_frameworks(
    session,
    ctx: ActorContext,
    *,
    status: str | None = None,
    campus_id: int | None = None,
    language: str | None = None,
    q: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    stmt = scoped_select(Framework, tenant_id=ctx.tenant_id)
    if status:
        stmt = stmt.where(Framework.status == parse_choice(status, "status", VERSION_STATES))
    if campus_id:
        stmt = stmt.where(Framework.campus_id == campus_id)
    if language:
        stmt = stmt.where(Framework.language == language)
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(Framework.name.ilike(like), Framework.code.ilike(like)))
    stmt = stmt.order_by(Framework.created_at.desc(), Framework.id.desc())
    return paginate(session, stmt, page=page, page_size=page_size)


def create_framework(session, ctx: ActorContext, data: dict) -> Framework:
    require(ctx, Action.FRAMEWORK_CREATE)
    fields = _parse_fields(data or {}, creating=True)
    if _code_taken(session, ctx.tenant_id, fields["code"]):
        raise ConflictError("Framework", "code", fields["code"], code="DUPLICATE_CODE")
    if fields.get("campus_id"):
        require_campus(session, ctx.tenant_id, fields["campus_id"])

    try:
        with atomic(session):
            framework = Framework(
                tenant_id=ctx.tenant_id,
                status="draft",
                created_by=ctx.actor_id,
                updated_by=ctx.actor_id,
                **fields,
            )
            session.add(framework)
            session.flush()
            version = Version(
                tenant_id=ctx.tenant_id,
                framework_id=framework.id,
                version_no=INITIAL_VERSION_NO,
                state="draft",
                changelog="Initial version",
                created_by=ctx.actor_id,
                updated_by=ctx.actor_id,
            )
            session.add(version)
            session.flush()
            framework.latest_version_id = version.id
    except IntegrityError as exc:
        if not violates_unique(exc, "uq_frameworks_tenant_code", "frameworks", "tenant_id", "code"):
            raise
        raise ConflictError("Framework", "code", fields["code"], code="DUPLICATE_CODE") from exc

    logger.info(
        "Framework created id=%s code=%s initial_version=%s",
        framework.id, framework.code, version.id,
        extra={"tenant_id": ctx.tenant_id},
    )
    emit_audit(
        session, ctx, entity_type="framework", entity_id=framework.id, action="create",
        details={"code": framework.code, "initial_version_id": version.id},
    )
    return framework


def update_framework(session, ctx: ActorContext, framework_id: int, patch: dict) -> Framework:
    require(ctx, Action.FRAMEWORK_UPDATE)
    present = pick(patch or {}, UPDATABLE_FIELDS)
    if not present:
        raise NoUpdatesError("Framework")
    framework = get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)
    fields = _parse_fields(present, creating=False)
    if fields.get("campus_id"):
        require_campus(session, ctx.tenant_id, fields["campus_id"])

    with atomic(session):
        for attr, value in fields.items():
            setattr(framework, attr, value)
        framework.updated_by = ctx.actor_id

    emit_audit(
        session, ctx, entity_type="framework", entity_id=framework.id, action="update",
        details=present,
    )
    return framework


def delete_framework(session, ctx: ActorContext, framework_id: int) -> None:
    require(ctx, Action.FRAMEWORK_DELETE)
    framework = get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)
    with atomic(session):
        framework.soft_delete()
        framework.updated_by = ctx.actor_id
    emit_audit(
        session, ctx, entity_type="framework", entity_id=framework.id, action="delete",
        details={"code": framework.code},
    )
