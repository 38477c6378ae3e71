"""
Fire-and-forget audit emission.

Engines call ``emit_audit`` after their own transaction has committed.
The row is written and committed on its own; a storage failure here is
rolled back and logged, and the originating operation still succeeds.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from curriculum.core.identity import ActorContext
from curriculum.models.audit import write_audit

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("curriculum.audit")


def emit_audit(
    session,
    ctx: ActorContext,
    *,
    entity_type: str,
    entity_id,
    action: str,
    details: dict | None = None,
) -> None:
    audit_logger.info(
        "audit %s %s/%s by actor=%s",
        action, entity_type, entity_id, ctx.actor_id,
        extra={
            "tenant_id": ctx.tenant_id,
            "actor_id": ctx.actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "event_type": action,
        },
    )
    try:
        write_audit(
            session,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            tenant_id=ctx.tenant_id,
            actor_user_id=ctx.actor_id,
            diff=details,
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.warning(
            "Audit emission failed for %s %s/%s",
            action, entity_type, entity_id,
            exc_info=True,
            extra={"tenant_id": ctx.tenant_id},
        )
