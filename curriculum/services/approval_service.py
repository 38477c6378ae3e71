"""
Approval Workflow Engine.

Requesting an approval freezes a draft version into pending_review; a
reviewer decision resolves it to approved or back to draft. Approval and
version transitions are both table-driven (APPROVAL_MACHINE,
VERSION_MACHINE) and written together in one transaction.

Single-pending guarantee:
    The pre-check below gives callers a clean APPROVAL_EXISTS in the common
    case. Two concurrent requests that both pass it are stopped by the
    partial unique index ``uq_approvals_pending_version``; the losing
    flush raises IntegrityError, which is translated to the same error.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from curriculum.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NoUpdatesError,
    UnauthorizedError,
    ValidationError,
)
from curriculum.core.identity import REVIEWER_ROLES, Action, ActorContext, require
from curriculum.core.signals import notify_transition
from curriculum.core.state_machine import TransitionError
from curriculum.core.store import atomic, violates_unique
from curriculum.models.approval import (
    APPROVAL_MACHINE,
    APPROVAL_PRIORITIES,
    APPROVAL_STATUSES,
    PENDING_STATUSES,
    Approval,
)
from curriculum.models.curriculum import VERSION_MACHINE, Version
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.payloads import (
    parse_choice,
    parse_datetime,
    parse_int,
    parse_str,
    pick,
)
from curriculum.services.helpers.references import require_active_user
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select
from curriculum.services.version_service import (
    announce_version_transition,
    apply_version_transition,
)

logger = logging.getLogger(__name__)

DECISION_MAX = 2000
ESCALATION_REASON_MAX = 1000
DECIDABLE_STATUSES = tuple(s for s in APPROVAL_STATUSES if s != "requested")


def _utcnow():
    return datetime.now(timezone.utc)


def version_delta(prior_status: str, new_status: str) -> str | None:
    """Version event triggered by moving an approval between two statuses.

    ``approve`` for → approved, ``reject`` for → rejected, None otherwise.
    Raises TransitionError when the approval move itself is illegal.
    """
    transition = APPROVAL_MACHINE.route(prior_status, new_status)
    for effect in transition.effects:
        if effect.startswith("version:"):
            return effect.split(":", 1)[1]
    return None


def _pending_approval(session, tenant_id: int, version_id: int) -> Approval | None:
    stmt = scoped_select(Approval, tenant_id=tenant_id).where(
        Approval.version_id == version_id,
        Approval.status.in_(PENDING_STATUSES),
    )
    return session.execute(stmt.limit(1)).scalar_one_or_none()


def get_approval(session, ctx: ActorContext, approval_id: int) -> Approval:
    return get_scoped(session, Approval, approval_id, tenant_id=ctx.tenant_id)


def list_approvals(session, ctx: ActorContext, version_id: int) -> list[Approval]:
    get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id, include_deleted=True)
    stmt = (
        scoped_select(Approval, tenant_id=ctx.tenant_id)
        .where(Approval.version_id == version_id)
        .order_by(Approval.created_at.desc(), Approval.id.desc())
    )
    return list(session.execute(stmt).scalars())


def request_approval(session, ctx: ActorContext, version_id: int, data: dict) -> Approval:
    """Open an approval for a draft version and move it to pending_review."""
    require(ctx, Action.APPROVAL_REQUEST)
    data = data or {}
    reviewer_id = parse_int(
        data.get("assigned_reviewer_id"), "assigned_reviewer_id", required=True, minimum=1,
    )
    priority = parse_choice(data.get("priority"), "priority", APPROVAL_PRIORITIES, default="normal")
    deadline = parse_datetime(data.get("review_deadline"), "review_deadline")

    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id, for_update=True)
    if _pending_approval(session, ctx.tenant_id, version.id) is not None:
        raise ConflictError("Approval", "version_id", version.id, code="APPROVAL_EXISTS")
    try:
        version_transition = VERSION_MACHINE.fire(version.state, "submit")
    except TransitionError as exc:
        raise InvalidStateError(
            "Can only request approval for draft versions", details={"state": version.state},
        ) from exc
    require_active_user(
        session, ctx.tenant_id, reviewer_id, roles=REVIEWER_ROLES, field="assigned_reviewer_id",
    )

    try:
        with atomic(session):
            approval = Approval(
                tenant_id=ctx.tenant_id,
                version_id=version.id,
                requested_by=ctx.actor_id,
                assigned_reviewer_id=reviewer_id,
                status="requested",
                priority=priority,
                review_deadline=deadline,
            )
            session.add(approval)
            session.flush()
            apply_version_transition(session, ctx, version, version_transition)
    except IntegrityError as exc:
        if not violates_unique(exc, "uq_approvals_pending_version", "approvals", "version_id"):
            raise
        logger.warning(
            "Concurrent approval request rejected for version %s", version_id,
            extra={"tenant_id": ctx.tenant_id},
        )
        raise ConflictError("Approval", "version_id", version_id, code="APPROVAL_EXISTS") from exc

    logger.info(
        "Approval %s requested for version %s reviewer=%s",
        approval.id, version.id, reviewer_id,
        extra={"tenant_id": ctx.tenant_id},
    )
    announce_version_transition(ctx, version, version_transition)
    emit_audit(
        session, ctx, entity_type="approval", entity_id=approval.id, action="create",
        details={"version_id": version.id, "assigned_reviewer_id": reviewer_id, "priority": priority},
    )
    return approval


def decide(session, ctx: ActorContext, approval_id: int, patch: dict) -> Approval:
    """Record a review step: status change, decision text and/or escalation.

    Allowed for the assigned reviewer, or any role holding
    ``approval.decide_any``. approved/rejected cascade into Version.state
    in the same transaction as the approval row.
    """
    approval = get_scoped(session, Approval, approval_id, tenant_id=ctx.tenant_id, for_update=True)
    if ctx.actor_id != approval.assigned_reviewer_id and not ctx.can(Action.APPROVAL_DECIDE_ANY):
        raise UnauthorizedError(
            "Only the assigned reviewer, an admin or a program owner may decide this approval",
            details={"approval_id": approval.id},
        )
    fields = pick(patch or {}, ("status", "decision", "escalation_reason", "escalated_to"))
    if not fields:
        raise NoUpdatesError("Approval")
    if APPROVAL_MACHINE.is_terminal(approval.status):
        raise InvalidStateError(
            f"Approval id={approval.id} is already {approval.status}",
            details={"status": approval.status},
        )

    changes = {}
    if "decision" in fields:
        changes["decision"] = parse_str(fields["decision"], "decision", max_len=DECISION_MAX)
    if "escalation_reason" in fields:
        changes["escalation_reason"] = parse_str(
            fields["escalation_reason"], "escalation_reason", max_len=ESCALATION_REASON_MAX,
        )
    escalated_to = parse_int(fields.get("escalated_to"), "escalated_to", minimum=1)

    transition = None
    version = None
    version_transition = None
    if "status" in fields:
        target = parse_choice(
            parse_str(fields["status"], "status", required=True), "status", DECIDABLE_STATUSES,
        )
        try:
            transition = APPROVAL_MACHINE.route(approval.status, target)
            version_event = version_delta(approval.status, target)
        except TransitionError as exc:
            raise InvalidStateError(str(exc), details={"status": approval.status}) from exc
        if version_event is not None:
            version = get_scoped(
                session, Version, approval.version_id, tenant_id=ctx.tenant_id, for_update=True,
            )
            try:
                version_transition = VERSION_MACHINE.fire(version.state, version_event)
            except TransitionError as exc:
                raise InvalidStateError(str(exc), details={"version_state": version.state}) from exc

    escalating = transition is not None and "stamp_escalation" in transition.effects
    if escalating:
        if escalated_to is None:
            raise ValidationError(
                "escalated_to is required when escalating", details={"escalated_to": "required"},
            )
        require_active_user(session, ctx.tenant_id, escalated_to, field="escalated_to")
    elif escalated_to is not None:
        raise ValidationError(
            "escalated_to is only accepted with status=escalated",
            details={"escalated_to": "requires status=escalated"},
        )

    with atomic(session):
        for attr, value in changes.items():
            setattr(approval, attr, value)
        if transition is not None:
            approval.status = transition.target
            for effect in transition.effects:
                if effect == "stamp_decision":
                    approval.decision_made_by = ctx.actor_id
                    approval.decision_made_at = _utcnow()
                elif effect == "stamp_escalation":
                    approval.escalated_to = escalated_to
                    approval.escalated_at = _utcnow()
        if version_transition is not None:
            apply_version_transition(session, ctx, version, version_transition)
        approval.updated_at = _utcnow()

    if transition is not None:
        logger.info(
            "Approval %s: %s -> %s by actor=%s",
            approval.id, transition.source, transition.target, ctx.actor_id,
            extra={"tenant_id": ctx.tenant_id},
        )
        notify_transition(
            entity_type="approval",
            entity_id=approval.id,
            tenant_id=ctx.tenant_id,
            from_state=transition.source,
            to_state=transition.target,
            event=transition.event,
            actor_id=ctx.actor_id,
        )
    if version_transition is not None:
        announce_version_transition(ctx, version, version_transition)

    details = dict(changes)
    if transition is not None:
        details["status"] = {"old": transition.source, "new": transition.target}
    if version_transition is not None:
        details["version_state"] = {"old": version_transition.source, "new": version_transition.target}
    emit_audit(
        session, ctx, entity_type="approval", entity_id=approval.id, action="update", details=details,
    )
    return approval
