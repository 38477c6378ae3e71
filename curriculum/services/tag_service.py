"""
Tenant tags and their attachment to curriculum entities.

Tag names are unique per tenant, case-insensitively. A tag with an
``entity_type`` attaches only to entities of that type. A repeat attach
is ALREADY_ATTACHED (409); detaching a missing link is NOT_ATTACHED (404).
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from curriculum.core.exceptions import ConflictError, NotFoundError, ValidationError
from curriculum.core.identity import Action, ActorContext, require
from curriculum.core.store import atomic, violates_unique
from curriculum.models.discussion import DEFAULT_TAG_COLOR, TAGGABLE_TYPES, Tag, TagLink
from curriculum.services.audit_emitter import emit_audit
from curriculum.services.helpers.entities import parse_entity_type, resolve_entity
from curriculum.services.helpers.pagination import paginate
from curriculum.services.helpers.payloads import parse_choice, parse_int, parse_str
from curriculum.services.helpers.scoped_queries import get_scoped, scoped_select

logger = logging.getLogger(__name__)

NAME_PATTERN = r"[A-Za-z0-9_\- ]+"
COLOR_PATTERN = r"#[0-9A-Fa-f]{6}"


def _name_taken(session, tenant_id: int, name: str) -> bool:
    stmt = select(Tag.id).where(Tag.tenant_id == tenant_id, func.lower(Tag.name) == name.lower())
    return session.execute(stmt.limit(1)).first() is not None


def _find_link(session, tenant_id: int, tag_id: int, entity_type: str, entity_id: int) -> TagLink | None:
    stmt = scoped_select(TagLink, tenant_id=tenant_id).where(
        TagLink.tag_id == tag_id,
        TagLink.entity_type == entity_type,
        TagLink.entity_id == entity_id,
    )
    return session.execute(stmt).scalar_one_or_none()


def _link_target(tag: Tag, data: dict) -> tuple[str, int]:
    entity_type = parse_entity_type(data.get("entity_type"), TAGGABLE_TYPES)
    entity_id = parse_int(data.get("entity_id"), "entity_id", required=True, minimum=1)
    if tag.entity_type is not None and tag.entity_type != entity_type:
        raise ValidationError(
            f"Tag '{tag.name}' applies only to {tag.entity_type} entities",
            details={"entity_type": f"must be {tag.entity_type}"},
        )
    return entity_type, entity_id


def _usage_counts(session, tenant_id: int, tag_ids) -> dict[int, int]:
    if not tag_ids:
        return {}
    rows = session.execute(
        select(TagLink.tag_id, func.count(TagLink.id))
        .where(TagLink.tenant_id == tenant_id, TagLink.tag_id.in_(tag_ids))
        .group_by(TagLink.tag_id)
    ).all()
    return dict(rows)


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def list_tags(
    session,
    ctx: ActorContext,
    *,
    q: str | None = None,
    entity_type: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """Tags by name, each with its ``usage_count``.

    ``entity_type`` keeps tags restricted to that type plus unrestricted ones.
    """
    stmt = scoped_select(Tag, tenant_id=ctx.tenant_id)
    if q:
        stmt = stmt.where(Tag.name.ilike(f"%{q.strip()}%"))
    if entity_type:
        entity_type = parse_choice(entity_type, "entity_type", TAGGABLE_TYPES)
        stmt = stmt.where((Tag.entity_type == entity_type) | Tag.entity_type.is_(None))
    stmt = stmt.order_by(Tag.name.asc(), Tag.id.asc())
    result = paginate(session, stmt, page=page, page_size=page_size)
    counts = _usage_counts(session, ctx.tenant_id, [t["id"] for t in result["data"]])
    for item in result["data"]:
        item["usage_count"] = counts.get(item["id"], 0)
    return result


def list_entity_tags(session, ctx: ActorContext, entity_type, entity_id) -> list[Tag]:
    entity_type = parse_entity_type(entity_type, TAGGABLE_TYPES)
    entity_id = parse_int(entity_id, "entity_id", required=True, minimum=1)
    resolve_entity(session, ctx.tenant_id, entity_type, entity_id)
    stmt = (
        scoped_select(Tag, tenant_id=ctx.tenant_id)
        .join(TagLink, TagLink.tag_id == Tag.id)
        .where(TagLink.entity_type == entity_type, TagLink.entity_id == entity_id)
        .order_by(Tag.name.asc())
    )
    return list(session.execute(stmt).scalars())


# ═════════════════════════════════════════════════════════════════════════════
# Writes
# ═════════════════════════════════════════════════════════════════════════════


def create_tag(session, ctx: ActorContext, data: dict) -> Tag:
    require(ctx, Action.TAG_MANAGE)
    data = data or {}
    name = parse_str(data.get("name"), "name", required=True, max_len=50, pattern=NAME_PATTERN)
    description = parse_str(data.get("description"), "description", max_len=200)
    entity_type = data.get("entity_type")
    if entity_type is not None:
        entity_type = parse_entity_type(entity_type, TAGGABLE_TYPES)
    color = parse_str(data.get("color"), "color", pattern=COLOR_PATTERN) or DEFAULT_TAG_COLOR

    if _name_taken(session, ctx.tenant_id, name):
        raise ConflictError("Tag", "name", name, code="DUPLICATE_TAG")

    try:
        with atomic(session):
            tag = Tag(
                tenant_id=ctx.tenant_id,
                name=name,
                description=description,
                entity_type=entity_type,
                color=color,
                created_by=ctx.actor_id,
            )
            session.add(tag)
            session.flush()
    except IntegrityError as exc:
        if not violates_unique(exc, "uq_tags_tenant_name", "tags"):
            raise
        raise ConflictError("Tag", "name", name, code="DUPLICATE_TAG") from exc

    emit_audit(session, ctx, entity_type="tag", entity_id=tag.id, action="create", details={"name": name})
    return tag


def attach_tag(session, ctx: ActorContext, tag_id: int, data: dict) -> TagLink:
    require(ctx, Action.TAG_MANAGE)
    tag = get_scoped(session, Tag, tag_id, tenant_id=ctx.tenant_id)
    entity_type, entity_id = _link_target(tag, data or {})
    resolve_entity(session, ctx.tenant_id, entity_type, entity_id)

    key = {"entity_type": entity_type, "entity_id": entity_id}
    if _find_link(session, ctx.tenant_id, tag.id, entity_type, entity_id) is not None:
        raise ConflictError("TagLink", "entity", key, code="ALREADY_ATTACHED")

    try:
        with atomic(session):
            link = TagLink(tenant_id=ctx.tenant_id, tag_id=tag.id, created_by=ctx.actor_id, **key)
            session.add(link)
            session.flush()
    except IntegrityError as exc:
        if not violates_unique(exc, "uq_tag_links_target", "tag_links", "tag_id", "entity_type", "entity_id"):
            raise
        raise ConflictError("TagLink", "entity", key, code="ALREADY_ATTACHED") from exc

    logger.info("Tag %s attached to %s/%s", tag.id, entity_type, entity_id, extra={"tenant_id": ctx.tenant_id})
    emit_audit(session, ctx, entity_type="tag", entity_id=tag.id, action="attach", details=key)
    return link


def detach_tag(session, ctx: ActorContext, tag_id: int, data: dict) -> None:
    require(ctx, Action.TAG_MANAGE)
    tag = get_scoped(session, Tag, tag_id, tenant_id=ctx.tenant_id)
    data = data or {}
    entity_type = parse_entity_type(data.get("entity_type"), TAGGABLE_TYPES)
    entity_id = parse_int(data.get("entity_id"), "entity_id", required=True, minimum=1)

    link = _find_link(session, ctx.tenant_id, tag.id, entity_type, entity_id)
    if link is None:
        raise NotFoundError(
            resource="TagLink", resource_id=f"{tag.id}:{entity_type}/{entity_id}",
            tenant_id=ctx.tenant_id, code="NOT_ATTACHED",
        )
    with atomic(session):
        session.delete(link)
    emit_audit(
        session, ctx, entity_type="tag", entity_id=tag.id, action="detach",
        details={"entity_type": entity_type, "entity_id": entity_id},
    )
