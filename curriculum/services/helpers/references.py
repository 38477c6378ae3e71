"""
Lookups for rows owned by other services (campuses, users) and for
comment parents.

A bad reference is reported with its own error code rather than
NOT_FOUND, because the request's target entity itself does exist.
"""

from sqlalchemy import select

from curriculum.core.exceptions import InvalidReferenceError
from curriculum.models.auth import Campus, User


def require_campus(session, tenant_id: int, campus_id: int) -> Campus:
    campus = session.execute(
        select(Campus).where(Campus.id == campus_id, Campus.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if campus is None:
        raise InvalidReferenceError(
            "INVALID_CAMPUS",
            f"Campus id={campus_id} does not belong to this tenant",
            details={"campus_id": campus_id},
        )
    return campus


def require_active_user(session, tenant_id: int, user_id: int, *, roles=None, field: str = "user_id") -> User:
    """Active user in the tenant, optionally restricted to ``roles``.

    Raises INVALID_REVIEWER; the only callers assign reviewers or
    escalation targets.
    """
    stmt = select(User).where(
        User.id == user_id,
        User.tenant_id == tenant_id,
        User.is_active.is_(True),
    )
    if roles is not None:
        stmt = stmt.where(User.role.in_([getattr(r, "value", r) for r in roles]))
    user = session.execute(stmt).scalar_one_or_none()
    if user is None:
        allowed = sorted(getattr(r, "value", r) for r in roles) if roles else None
        raise InvalidReferenceError(
            "INVALID_REVIEWER",
            f"User id={user_id} is not an active {'/'.join(allowed) if allowed else 'user'} in this tenant",
            details={field: user_id},
        )
    return user


def require_active_users(session, tenant_id: int, user_ids, *, field: str = "mentions") -> None:
    """Every id must be an active user in the tenant; raises INVALID_MENTION."""
    if not user_ids:
        return
    found = set(session.execute(
        select(User.id).where(
            User.id.in_(user_ids),
            User.tenant_id == tenant_id,
            User.is_active.is_(True),
        )
    ).scalars())
    unknown = [uid for uid in user_ids if uid not in found]
    if unknown:
        raise InvalidReferenceError(
            "INVALID_MENTION",
            f"Users {unknown} are not active users in this tenant",
            details={field: unknown},
        )
