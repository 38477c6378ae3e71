"""
Shared blueprint helpers: actor access, JSON bodies, pagination args and
error handlers.

Every domain error renders the same envelope with its own status code:

    {"error": {"code": "VERSION_FROZEN", "message": "...", "details": {...}}}

Anything else is logged with full context and rendered as a generic 500.
"""

import logging

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from curriculum.core.exceptions import CurriculumError
from curriculum.core.identity import ActorContext
from curriculum.services.helpers.pagination import parse_pagination

logger = logging.getLogger(__name__)


def error_response(code: str, message: str, status: int, details: dict | None = None):
    return jsonify({"error": {"code": code, "message": message, "details": details or {}}}), status


def register_error_handlers(bp):
    @bp.errorhandler(CurriculumError)
    def _handle_domain_error(error: CurriculumError):
        if error.status_code >= 500:
            logger.error("Domain error in %s: %s", request.endpoint, error)
        return jsonify({"error": error.to_dict()}), error.status_code

    @bp.errorhandler(HTTPException)
    def _handle_http_error(error: HTTPException):
        return error_response(error.name.upper().replace(" ", "_"), error.description, error.code)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        actor = getattr(g, "actor", None)
        logger.exception(
            "Unexpected error in %s endpoint=%s actor=%s",
            bp.name, request.endpoint, actor.actor_id if actor else None,
            extra={
                "tenant_id": actor.tenant_id if actor else None,
                "method": request.method,
                "path": request.path,
            },
        )
        return error_response("INTERNAL_ERROR", "Internal server error", 500)


def current_actor() -> ActorContext:
    """ActorContext resolved by the actor_context middleware."""
    return g.actor


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def page_args() -> tuple[int, int]:
    return parse_pagination(
        request.args.get("page"),
        request.args.get("page_size"),
        default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_size=current_app.config.get("MAX_PAGE_SIZE", 100),
    )
