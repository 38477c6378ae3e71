"""
Tenant-scoped query helpers.

Every get-by-id in the curriculum engines goes through these helpers
instead of ``session.get(Model, pk)``. A bare ``.get()`` bypasses the
tenant predicate, which every query issued by this service must carry.

Usage:
    version = get_scoped(session, Version, version_id, tenant_id=ctx.tenant_id)

    # Lock the row for the rest of the transaction (no-op on SQLite)
    version = get_scoped(session, Version, version_id, tenant_id=tid, for_update=True)

Soft-deleted rows are invisible unless ``include_deleted=True``.
"""

import logging

from sqlalchemy import select

from curriculum.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def scoped_select(model, *, tenant_id: int, include_deleted: bool = False):
    """``select(model)`` with the tenant predicate (and soft-delete filter) applied."""
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__}: tenant_id is required. "
            "Unscoped lookups are forbidden: they bypass tenant isolation."
        )
    stmt = select(model).where(model.tenant_id == tenant_id)
    if not include_deleted and hasattr(model, "deleted_at"):
        stmt = stmt.where(model.deleted_at.is_(None))
    return stmt


def get_scoped(
    session,
    model,
    pk: int,
    *,
    tenant_id: int,
    include_deleted: bool = False,
    for_update: bool = False,
):
    """Fetch a single entity by PK within ``tenant_id``.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError.

    Raises:
        ValueError: If tenant_id is None.
        NotFoundError: If the entity does not exist, is soft-deleted, or
                       belongs to another tenant.
    """
    stmt = scoped_select(model, tenant_id=tenant_id, include_deleted=include_deleted)
    stmt = stmt.where(model.id == pk)
    if for_update:
        stmt = stmt.with_for_update()

    result = session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in tenant %s", model.__name__, pk, tenant_id,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)
    return result
