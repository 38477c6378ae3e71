"""
Mapping & Rollout Engine.

Binds an approved or published version to an operational target (course
template or class instance). Version state is read once, at creation;
afterwards the mapping's own status is authoritative:

    planned → validated → applied → rolled_back
    planned | validated → failed

"apply" is a status write only. Provisioning, if asynchronous, happens
elsewhere and reports back through ``update_mapping``.

``mismatch_report`` comes from an external comparison step and is stored
and returned as-is.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from curriculum.core.exceptions import (
    ConflictError,
    DeleteGuardError,
    InvalidStateError,
    NoUpdatesError,
    NotFoundError,
    ValidationError,
)
from curriculum.core.identity import Action, ActorContext, require
from curriculum.core.signals import notify_transition
from curriculum.core.state_machine import TransitionError
from curriculum.core.store import atomic, violates_unique
from curriculum.models.curriculum import Framework, Version
from curriculum.models.mapping import (
    MAPPING_MACHINE,
    MAPPING_STATUSES,
    OVERRIDE_REQUIRED_RISKS,
    RISK_LEVELS,
    ROLLOUT_PHASES,
    TARGET_TYPES,
    Mapping,
)
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.pagination import paginate
from curriculum.services.helpers.payloads import (
    parse_choice,
    parse_int,
    parse_json_object,
    parse_str,
    pick,
)
from curriculum.services.helpers.references import require_campus
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select

logger = logging.getLogger(__name__)

# Version states a new mapping may bind to.
MAPPABLE_VERSION_STATES = frozenset({"approved", "published"})

UPDATABLE_FIELDS = (
    "rollout_phase", "rollout_batch", "mismatch_report", "risk_assessment",
    "override_reason", "status",
)
OVERRIDE_REASON_MAX = 2000


def _utcnow():
    return datetime.now(timezone.utc)


def _check_override_reason(risk: str, override_reason: str | None, *, required: bool) -> None:
    if required and risk in OVERRIDE_REQUIRED_RISKS and not override_reason:
        raise ValidationError(
            f"override_reason is required when risk_assessment is {risk}",
            details={"override_reason": f"required for {risk} risk"},
        )


def _find_duplicate(session, tenant_id: int, *, framework_id, version_id, target_type, target_id,
                    campus_id) -> Mapping | None:
    stmt = scoped_select(Mapping, tenant_id=tenant_id).where(
        Mapping.framework_id == framework_id,
        Mapping.version_id == version_id,
        Mapping.target_type == target_type,
        Mapping.target_id == target_id,
        Mapping.campus_id.is_(None) if campus_id is None else Mapping.campus_id == campus_id,
    )
    return session.execute(stmt.limit(1)).scalar_one_or_none()


def _parse_common(data: dict) -> dict:
    parsed = {}
    if "rollout_phase" in data:
        parsed["rollout_phase"] = parse_choice(
            parse_str(data["rollout_phase"], "rollout_phase", required=True), "rollout_phase", ROLLOUT_PHASES,
        )
    if "rollout_batch" in data:
        parsed["rollout_batch"] = parse_str(data["rollout_batch"], "rollout_batch", max_len=64)
    if "risk_assessment" in data:
        parsed["risk_assessment"] = parse_choice(
            parse_str(data["risk_assessment"], "risk_assessment", required=True), "risk_assessment", RISK_LEVELS,
        )
    if "mismatch_report" in data:
        parsed["mismatch_report"] = parse_json_object(data["mismatch_report"], "mismatch_report")
    if "override_reason" in data:
        parsed["override_reason"] = parse_str(
            data["override_reason"], "override_reason", max_len=OVERRIDE_REASON_MAX,
        )
    return parsed


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_mapping(session, ctx: ActorContext, mapping_id: int) -> Mapping:
    return get_scoped(session, Mapping, mapping_id, tenant_id=ctx.tenant_id)


def list_mappings(
    session,
    ctx: ActorContext,
    *,
    framework_id: int | None = None,
    version_id: int | None = None,
    target_type: str | None = None,
    campus_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    stmt = scoped_select(Mapping, tenant_id=ctx.tenant_id)
    if framework_id:
        stmt = stmt.where(Mapping.framework_id == framework_id)
    if version_id:
        stmt = stmt.where(Mapping.version_id == version_id)
    if target_type:
        stmt = stmt.where(Mapping.target_type == parse_choice(target_type, "target_type", TARGET_TYPES))
    if campus_id:
        stmt = stmt.where(Mapping.campus_id == campus_id)
    if status:
        stmt = stmt.where(Mapping.status == parse_choice(status, "status", MAPPING_STATUSES))
    stmt = stmt.order_by(Mapping.created_at.desc(), Mapping.id.desc())
    return paginate(session, stmt, page=page, page_size=page_size)


# ═════════════════════════════════════════════════════════════════════════════
# Writes
# ═════════════════════════════════════════════════════════════════════════════


def create_mapping(session, ctx: ActorContext, data: dict, *, require_override_reason: bool = True) -> Mapping:
    """Create a planned mapping of an approved/published version onto a target."""
    require(ctx, Action.MAPPING_CREATE)
    data = data or {}
    framework_id = parse_int(data.get("framework_id"), "framework_id", required=True, minimum=1)
    version_id = parse_int(data.get("version_id"), "version_id", required=True, minimum=1)
    target_type = parse_choice(
        parse_str(data.get("target_type"), "target_type", required=True), "target_type", TARGET_TYPES,
    )
    target_id = parse_int(data.get("target_id"), "target_id", required=True, minimum=1)
    campus_id = parse_int(data.get("campus_id"), "campus_id", minimum=1)
    fields = {"rollout_phase": "planned", "risk_assessment": "low", **_parse_common(data)}

    framework = get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)
    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id)
    if version.framework_id != framework.id:
        raise NotFoundError(resource="Version", resource_id=version_id, tenant_id=ctx.tenant_id)
    if version.state not in MAPPABLE_VERSION_STATES:
        raise InvalidStateError(
            f"Version id={version.id} is {version.state}; only approved or published versions can be mapped",
            details={"state": version.state},
        )
    if campus_id is not None:
        require_campus(session, ctx.tenant_id, campus_id)
    _check_override_reason(
        fields["risk_assessment"], fields.get("override_reason"), required=require_override_reason,
    )
    key = {
        "framework_id": framework.id,
        "version_id": version.id,
        "target_type": target_type,
        "target_id": target_id,
        "campus_id": campus_id,
    }
    if _find_duplicate(session, ctx.tenant_id, **key) is not None:
        raise ConflictError("Mapping", "target", key, code="DUPLICATE_MAPPING")

    try:
        with atomic(session):
            mapping = Mapping(
                tenant_id=ctx.tenant_id,
                status="planned",
                created_by=ctx.actor_id,
                updated_by=ctx.actor_id,
                **key,
                **fields,
            )
            session.add(mapping)
            session.flush()
    except IntegrityError as exc:
        if not violates_unique(exc, "uq_mappings_target_key", "mappings"):
            raise
        raise ConflictError("Mapping", "target", key, code="DUPLICATE_MAPPING") from exc

    logger.info(
        "Mapping %s created version=%s target=%s/%s risk=%s",
        mapping.id, version.id, target_type, target_id, mapping.risk_assessment,
        extra={"tenant_id": ctx.tenant_id},
    )
    emit_audit(
        session, ctx, entity_type="mapping", entity_id=mapping.id, action="create",
        details={**key, "risk_assessment": mapping.risk_assessment},
    )
    return mapping


def update_mapping(session, ctx: ActorContext, mapping_id: int, patch: dict, *,
                   require_override_reason: bool = True) -> Mapping:
    """Update rollout fields and/or advance the status along MAPPING_MACHINE."""
    require(ctx, Action.MAPPING_UPDATE)
    present = pick(patch or {}, UPDATABLE_FIELDS)
    if not present:
        raise NoUpdatesError("Mapping")
    mapping = get_scoped(session, Mapping, mapping_id, tenant_id=ctx.tenant_id, for_update=True)
    fields = _parse_common(present)

    transition = None
    if "status" in present:
        target = parse_choice(
            parse_str(present["status"], "status", required=True), "status", MAPPING_STATUSES,
        )
        try:
            transition = MAPPING_MACHINE.route(mapping.status, target)
        except TransitionError as exc:
            raise InvalidStateError(
                f"Mapping id={mapping.id} cannot move from {mapping.status} to {target}",
                details={"status": mapping.status, "requested": target},
            ) from exc

    _check_override_reason(
        fields.get("risk_assessment", mapping.risk_assessment),
        fields["override_reason"] if "override_reason" in fields else mapping.override_reason,
        required=require_override_reason,
    )

    with atomic(session):
        for attr, value in fields.items():
            setattr(mapping, attr, value)
        if transition is not None:
            mapping.status = transition.target
            for effect in transition.effects:
                if effect == "stamp_applied_at":
                    mapping.applied_at = _utcnow()
                elif effect == "stamp_rolled_back_at":
                    mapping.rolled_back_at = _utcnow()
        mapping.updated_by = ctx.actor_id
        mapping.updated_at = _utcnow()

    if transition is not None:
        logger.info(
            "Mapping %s: %s -> %s", mapping.id, transition.source, transition.target,
            extra={"tenant_id": ctx.tenant_id},
        )
        notify_transition(
            entity_type="mapping",
            entity_id=mapping.id,
            tenant_id=ctx.tenant_id,
            from_state=transition.source,
            to_state=transition.target,
            event=transition.event,
            actor_id=ctx.actor_id,
        )
    details = {k: v for k, v in present.items() if k != "status"}
    if transition is not None:
        details["status"] = {"old": transition.source, "new": transition.target}
    emit_audit(session, ctx, entity_type="mapping", entity_id=mapping.id, action="update", details=details)
    return mapping


def delete_mapping(session, ctx: ActorContext, mapping_id: int) -> None:
    """Hard-delete a mapping that is not currently applied."""
    require(ctx, Action.MAPPING_DELETE)
    mapping = get_scoped(session, Mapping, mapping_id, tenant_id=ctx.tenant_id, for_update=True)
    if mapping.status == "applied":
        raise DeleteGuardError(
            "CANNOT_DELETE_APPLIED",
            f"Mapping id={mapping.id} is applied; roll it back before deleting",
        )
    snapshot = {"version_id": mapping.version_id, "target_type": mapping.target_type,
                "target_id": mapping.target_id, "status": mapping.status}
    with atomic(session):
        session.delete(mapping)
    emit_audit(session, ctx, entity_type="mapping", entity_id=mapping_id, action="delete", details=snapshot)
