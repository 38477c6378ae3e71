"""
Version Lifecycle Manager.

Owns version creation, field updates, the publish/archive state writes,
the latest-version deletion guard, history and statistics.

Rules:
    - tenant_id always comes from the ActorContext (never from g).
    - Every precondition is checked before the single ``atomic`` block.
    - submit/approve/reject are fired only by approval_service; a plain
      update may publish or archive.
    - db commits happen only in the service layer.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from curriculum.core.exceptions import (
    ConflictError,
    DeleteGuardError,
    InvalidStateError,
    NoUpdatesError,
    ValidationError,
)
from curriculum.core.identity import Action, ActorContext, require
from curriculum.core.signals import notify_transition
from curriculum.core.state_machine import Transition, TransitionError
from curriculum.core.store import atomic, violates_unique
from curriculum.models.curriculum import (
    VERSION_MACHINE,
    VERSION_STATES,
    VERSION_UPDATE_EVENTS,
    Framework,
    Version,
)
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.pagination import paginate
from curriculum.services.helpers.payloads import parse_choice, parse_json_object, parse_str, pick
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select

logger = logging.getLogger(__name__)

VERSION_NO_PATTERN = r"v\d+\.\d+"
CHANGELOG_MAX = 2000

_EVENT_ACTIONS = {
    "publish": Action.VERSION_PUBLISH,
    "archive": Action.VERSION_ARCHIVE,
}


def _utcnow():
    return datetime.now(timezone.utc)


def _version_no_taken(session, tenant_id: int, framework_id: int, version_no: str) -> bool:
    stmt = scoped_select(Version, tenant_id=tenant_id).where(
        Version.framework_id == framework_id,
        Version.version_no == version_no,
    )
    return session.execute(stmt.limit(1)).scalar_one_or_none() is not None


def apply_version_transition(session, ctx: ActorContext, version: Version, transition: Transition) -> None:
    """Write a fired transition onto ``version``; caller owns the transaction.

    Also mirrors the new state onto the framework when ``version`` is its
    latest version.
    """
    version.state = transition.target
    for effect in transition.effects:
        if effect == "stamp_published_at":
            version.published_at = _utcnow()
        else:
            raise ValueError(f"Unknown version side effect: {effect}")
    version.updated_by = ctx.actor_id
    version.updated_at = _utcnow()

    framework = get_scoped(
        session, Framework, version.framework_id, tenant_id=ctx.tenant_id, include_deleted=True,
    )
    if framework.latest_version_id == version.id:
        framework.status = transition.target


def announce_version_transition(ctx: ActorContext, version: Version, transition: Transition) -> None:
    """Send the transition-completed signal; call only after commit."""
    logger.info(
        "Version %s: %s -> %s (%s)",
        version.id, transition.source, transition.target, transition.event,
        extra={"tenant_id": ctx.tenant_id},
    )
    notify_transition(
        entity_type="version",
        entity_id=version.id,
        tenant_id=ctx.tenant_id,
        from_state=transition.source,
        to_state=transition.target,
        event=transition.event,
        actor_id=ctx.actor_id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_version(session, ctx: ActorContext, version_id: int) -> Version:
    return get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id)


def list_versions(session, ctx: ActorContext, framework_id: int) -> list[Version]:
    get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)
    stmt = (
        scoped_select(Version, tenant_id=ctx.tenant_id)
        .where(Version.framework_id == framework_id)
        .order_by(Version.created_at.desc(), Version.id.desc())
    )
    return list(session.execute(stmt).scalars())


def get_version_history(session, ctx: ActorContext, framework_id: int, *, page: int = 1,
                        page_size: int = 20) -> dict:
    """Every version of the framework, archived and deleted ones included."""
    get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)
    stmt = (
        scoped_select(Version, tenant_id=ctx.tenant_id, include_deleted=True)
        .where(Version.framework_id == framework_id)
        .order_by(Version.created_at.desc(), Version.id.desc())
    )
    return paginate(session, stmt, page=page, page_size=page_size)


def get_version_stats(session, ctx: ActorContext, framework_id: int) -> dict:
    """Counts of live versions by state, and the latest publication time."""
    get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id)
    live = (
        Version.tenant_id == ctx.tenant_id,
        Version.framework_id == framework_id,
        Version.deleted_at.is_(None),
    )
    counts = dict(
        session.execute(
            select(Version.state, func.count(Version.id)).where(*live).group_by(Version.state)
        ).all()
    )
    by_state = {state: counts.get(state, 0) for state in VERSION_STATES}
    last_published_at = session.execute(
        select(func.max(Version.published_at)).where(*live)
    ).scalar_one()
    return {
        "framework_id": framework_id,
        "total_versions": sum(by_state.values()),
        "by_state": by_state,
        "published_versions": by_state["published"],
        "draft_versions": by_state["draft"],
        "last_published_at": last_published_at.isoformat() if last_published_at else None,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Writes
# ═════════════════════════════════════════════════════════════════════════════


def create_version(session, ctx: ActorContext, framework_id: int, data: dict) -> Version:
    """Create a draft version and make it the framework's latest version."""
    require(ctx, Action.VERSION_CREATE)
    framework = get_scoped(session, Framework, framework_id, tenant_id=ctx.tenant_id, for_update=True)

    version_no = parse_str(
        data.get("version_no"), "version_no", required=True, max_len=20, pattern=VERSION_NO_PATTERN,
    )
    changelog = parse_str(data.get("changelog"), "changelog", max_len=CHANGELOG_MAX)
    meta = parse_json_object(data.get("metadata"), "metadata")

    if _version_no_taken(session, ctx.tenant_id, framework.id, version_no):
        raise ConflictError("Version", "version_no", version_no, code="DUPLICATE_VERSION")

    try:
        with atomic(session):
            version = Version(
                tenant_id=ctx.tenant_id,
                framework_id=framework.id,
                version_no=version_no,
                state="draft",
                changelog=changelog,
                meta=meta,
                created_by=ctx.actor_id,
                updated_by=ctx.actor_id,
            )
            session.add(version)
            session.flush()
            framework.latest_version_id = version.id
            framework.status = version.state
            framework.updated_by = ctx.actor_id
    except IntegrityError as exc:
        if not violates_unique(exc, "uq_versions_framework_no", "versions", "framework_id", "version_no"):
            raise
        raise ConflictError("Version", "version_no", version_no, code="DUPLICATE_VERSION") from exc

    logger.info(
        "Version created id=%s framework=%s version_no=%s",
        version.id, framework.id, version_no,
        extra={"tenant_id": ctx.tenant_id},
    )
    emit_audit(
        session, ctx, entity_type="version", entity_id=version.id, action="create",
        details={"framework_id": framework.id, "version_no": version_no},
    )
    return version


def update_version(session, ctx: ActorContext, version_id: int, patch: dict) -> Version:
    """Apply any subset of {changelog, metadata, state}.

    A ``state`` equal to the current one leaves the state untouched; any
    other value must be reachable by a publish or archive event.
    """
    require(ctx, Action.VERSION_UPDATE)
    fields = pick(patch or {}, ("changelog", "metadata", "state"))
    if not fields:
        raise NoUpdatesError("Version")

    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id, for_update=True)

    changes = {}
    if "changelog" in fields:
        changes["changelog"] = parse_str(fields["changelog"], "changelog", max_len=CHANGELOG_MAX)
    if "metadata" in fields:
        changes["meta"] = parse_json_object(fields["metadata"], "metadata")

    transition = None
    if "state" in fields:
        target = parse_choice(
            parse_str(fields["state"], "state", required=True), "state", VERSION_STATES,
        )
        if target != version.state:
            try:
                transition = VERSION_MACHINE.route(
                    version.state, target, allowed_events=VERSION_UPDATE_EVENTS,
                )
            except TransitionError as exc:
                raise ValidationError(
                    str(exc),
                    details={"state": f"cannot move from '{version.state}' to '{target}'"},
                ) from exc
            require(ctx, _EVENT_ACTIONS[transition.event])

    with atomic(session):
        for attr, value in changes.items():
            setattr(version, attr, value)
        if transition is not None:
            apply_version_transition(session, ctx, version, transition)
        version.updated_by = ctx.actor_id
        version.updated_at = _utcnow()

    if transition is not None:
        announce_version_transition(ctx, version, transition)
    details = {k: v for k, v in fields.items() if k != "state"}
    if transition is not None:
        details["state"] = {"old": transition.source, "new": transition.target}
    emit_audit(
        session, ctx, entity_type="version", entity_id=version.id, action="update", details=details,
    )
    return version


def delete_version(session, ctx: ActorContext, version_id: int) -> None:
    """Soft-delete a version that is not its framework's latest; archives it."""
    require(ctx, Action.VERSION_DELETE)
    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id, for_update=True)
    framework = get_scoped(
        session, Framework, version.framework_id, tenant_id=ctx.tenant_id, include_deleted=True,
    )
    if framework.latest_version_id == version.id:
        raise DeleteGuardError(
            "CANNOT_DELETE_LATEST",
            f"Version id={version.id} is the latest version of framework id={framework.id}",
        )

    transition = None
    if version.state != "archived":
        try:
            transition = VERSION_MACHINE.fire(version.state, "archive")
        except TransitionError as exc:
            raise InvalidStateError(str(exc), details={"state": version.state}) from exc

    with atomic(session):
        if transition is not None:
            apply_version_transition(session, ctx, version, transition)
        version.soft_delete()
        version.updated_by = ctx.actor_id

    if transition is not None:
        announce_version_transition(ctx, version, transition)
    emit_audit(
        session, ctx, entity_type="version", entity_id=version.id, action="delete",
        details={"framework_id": framework.id, "version_no": version.version_no},
    )
