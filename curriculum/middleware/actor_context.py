"""
Actor context middleware — resolves who is calling on API requests.

Authentication happens upstream (API gateway / SSO proxy). The gateway
forwards the resolved identity as headers:

    X-User-Id      integer user id
    X-Tenant-Id    integer tenant id
    X-User-Role    one of admin, program_owner, curriculum_designer, qa, teacher

This hook validates them against the tenants/users tables and stores an
``ActorContext`` on ``g.actor``. Blueprints pass it explicitly into the
service layer; services never read ``g``.

Chain order:
    actor_context.py  →  route handler
"""

import logging

from flask import g, jsonify, request
from sqlalchemy import select

from curriculum.core.identity import ActorContext, parse_role
from curriculum.models import db
from curriculum.models.auth import Tenant, User

logger = logging.getLogger(__name__)

# Paths that skip actor resolution
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name, "").strip()
    # str.isdigit() also accepts superscripts and other Unicode digits
    return int(raw) if raw.isascii() and raw.isdigit() else None


def _reject(reason: str):
    logger.warning(
        "Actor context rejected: %s path=%s", reason, request.path,
        extra={"path": request.path, "method": request.method},
    )
    return jsonify({"error": {"code": "UNAUTHENTICATED", "message": reason, "details": {}}}), 401


def resolve_actor():
    """Build the ActorContext for the current request, or a 401 response."""
    user_id = _header_int("X-User-Id")
    tenant_id = _header_int("X-Tenant-Id")
    if user_id is None or tenant_id is None:
        return None, _reject("X-User-Id and X-Tenant-Id headers are required")
    try:
        role = parse_role(request.headers.get("X-User-Role", ""))
    except ValueError:
        return None, _reject("X-User-Role is missing or not a known role")

    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        return None, _reject("Tenant not found or inactive")
    user = db.session.execute(
        select(User).where(User.id == user_id, User.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if user is None or not user.is_active:
        return None, _reject("User not found or inactive in tenant")
    if user.role != role.value:
        return None, _reject("X-User-Role does not match the user's role")

    return ActorContext(actor_id=user.id, tenant_id=tenant.id, role=role), None


def init_actor_context(app):
    """Register actor resolution as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        actor, error = resolve_actor()
        if error is not None:
            return error
        g.actor = actor
        return None
