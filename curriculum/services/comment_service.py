"""
Comment threads on curriculum entities.

A comment targets one live framework, version, course, unit, resource or
mapping in the actor's tenant. Replies name a ``parent_id`` that must be
a live comment on the same target. Comments are allowed in every version
state; they are not version content.

    body edit      author only; stamps edited_at
    is_resolved    any commenter; true stamps resolved_by/resolved_at
    delete         author, or an actor holding COMMENT_MODERATE (soft)
"""

import logging
from datetime import datetime, timezone

from curriculum.core.exceptions import InvalidReferenceError, NoUpdatesError, UnauthorizedError
from curriculum.core.identity import Action, ActorContext, require
from curriculum.core.store import atomic
from curriculum.models.discussion import COMMENTABLE_TYPES, Comment
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.entities import parse_entity_type, resolve_entity
from curriculum.services.helpers.pagination import paginate
from curriculum.services.helpers.payloads import (
    parse_bool,
    parse_id_list,
    parse_int,
    parse_object_list,
    parse_str,
    pick,
)
from curriculum.services.helpers.references import require_active_users
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select

logger = logging.getLogger(__name__)

BODY_MAX = 2000
AUDIT_EXCERPT = 100
UPDATABLE_FIELDS = ("body", "is_resolved")


def _utcnow():
    return datetime.now(timezone.utc)


def _excerpt(body: str) -> str:
    return body if len(body) <= AUDIT_EXCERPT else body[:AUDIT_EXCERPT] + "..."


def _target(session, ctx: ActorContext, entity_type, entity_id) -> tuple[str, int]:
    entity_type = parse_entity_type(entity_type, COMMENTABLE_TYPES)
    entity_id = parse_int(entity_id, "entity_id", required=True, minimum=1)
    resolve_entity(session, ctx.tenant_id, entity_type, entity_id)
    return entity_type, entity_id


def _require_parent(session, ctx: ActorContext, parent_id: int, entity_type: str, entity_id: int) -> Comment:
    parent = session.execute(
        scoped_select(Comment, tenant_id=ctx.tenant_id).where(Comment.id == parent_id)
    ).scalar_one_or_none()
    if parent is None or (parent.entity_type, parent.entity_id) != (entity_type, entity_id):
        raise InvalidReferenceError(
            "INVALID_PARENT",
            f"Comment id={parent_id} is not a comment on {entity_type} id={entity_id}",
            details={"parent_id": parent_id},
        )
    return parent


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_comment(session, ctx: ActorContext, comment_id: int) -> Comment:
    return get_scoped(session, Comment, comment_id, tenant_id=ctx.tenant_id)


def list_comments(
    session,
    ctx: ActorContext,
    entity_type,
    entity_id,
    *,
    is_resolved: bool | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """Live comments on the target, oldest first."""
    entity_type, entity_id = _target(session, ctx, entity_type, entity_id)
    stmt = scoped_select(Comment, tenant_id=ctx.tenant_id).where(
        Comment.entity_type == entity_type,
        Comment.entity_id == entity_id,
    )
    if is_resolved is not None:
        stmt = stmt.where(Comment.is_resolved.is_(is_resolved))
    stmt = stmt.order_by(Comment.created_at.asc(), Comment.id.asc())
    return paginate(session, stmt, page=page, page_size=page_size)


# ═════════════════════════════════════════════════════════════════════════════
# Writes
# ═════════════════════════════════════════════════════════════════════════════


def create_comment(session, ctx: ActorContext, entity_type, entity_id, data: dict) -> Comment:
    require(ctx, Action.COMMENT_WRITE)
    data = data or {}
    body = parse_str(data.get("body"), "body", required=True, max_len=BODY_MAX)
    parent_id = parse_int(data.get("parent_id"), "parent_id", minimum=1)
    mentions = parse_id_list(data.get("mentions"), "mentions")
    attachments = parse_object_list(data.get("attachments"), "attachments")

    entity_type, entity_id = _target(session, ctx, entity_type, entity_id)
    if parent_id is not None:
        _require_parent(session, ctx, parent_id, entity_type, entity_id)
    require_active_users(session, ctx.tenant_id, mentions)

    with atomic(session):
        comment = Comment(
            tenant_id=ctx.tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            parent_id=parent_id,
            author_id=ctx.actor_id,
            body=body,
            mentions=mentions or None,
            attachments=attachments or None,
        )
        session.add(comment)
        session.flush()

    logger.info(
        "Comment %s on %s/%s by actor=%s", comment.id, entity_type, entity_id, ctx.actor_id,
        extra={"tenant_id": ctx.tenant_id},
    )
    emit_audit(
        session, ctx, entity_type="comment", entity_id=comment.id, action="create",
        details={"entity_type": entity_type, "entity_id": entity_id, "body": _excerpt(body)},
    )
    return comment


def update_comment(session, ctx: ActorContext, comment_id: int, patch: dict) -> Comment:
    """Edit the body (author only) and/or toggle resolution."""
    require(ctx, Action.COMMENT_WRITE)
    present = pick(patch or {}, UPDATABLE_FIELDS)
    if not present:
        raise NoUpdatesError("Comment")
    comment = get_scoped(session, Comment, comment_id, tenant_id=ctx.tenant_id, for_update=True)

    body = None
    if "body" in present:
        body = parse_str(present["body"], "body", required=True, max_len=BODY_MAX)
        if comment.author_id != ctx.actor_id:
            raise UnauthorizedError(
                f"Only the author can edit comment id={comment.id}",
                details={"comment_id": comment.id},
            )
    resolved = parse_bool(present["is_resolved"], "is_resolved") if "is_resolved" in present else None

    details = {}
    with atomic(session):
        now = _utcnow()
        if body is not None and body != comment.body:
            comment.body = body
            comment.edited_at = now
            details["body"] = _excerpt(body)
        if resolved is not None and resolved != comment.is_resolved:
            comment.is_resolved = resolved
            comment.resolved_by = ctx.actor_id if resolved else None
            comment.resolved_at = now if resolved else None
            details["is_resolved"] = resolved
        comment.updated_at = now

    emit_audit(session, ctx, entity_type="comment", entity_id=comment.id, action="update", details=details)
    return comment


def delete_comment(session, ctx: ActorContext, comment_id: int) -> None:
    """Soft-delete; replies keep their parent_id and stay listed."""
    require(ctx, Action.COMMENT_WRITE)
    comment = get_scoped(session, Comment, comment_id, tenant_id=ctx.tenant_id, for_update=True)
    if comment.author_id != ctx.actor_id and not ctx.can(Action.COMMENT_MODERATE):
        raise UnauthorizedError(
            f"Only the author or an admin can delete comment id={comment.id}",
            details={"comment_id": comment.id},
        )
    with atomic(session):
        comment.soft_delete()
    emit_audit(
        session, ctx, entity_type="comment", entity_id=comment.id, action="delete",
        details={"entity_type": comment.entity_type, "entity_id": comment.entity_id},
    )
