"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter
instance is created in curriculum/__init__.py with no default limits;
this module attaches ``API_RATE_LIMIT`` to every API blueprint after
registration.

Usage:
    from curriculum.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Blueprints carrying the shared API limit
LIMITED_BLUEPRINTS = ("curriculum", "structure", "approval", "mapping", "discussion")


def init_rate_limits(app, limiter):
    """Apply the configured limit to each API blueprint. No-op under TESTING."""
    if app.config.get("TESTING"):
        return

    rate = app.config.get("API_RATE_LIMIT", "300 per minute")
    applied = []
    for bp_name in LIMITED_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(rate)(bp)
            applied.append(bp_name)

    logger.info("Rate limiter configured: %s on %s", rate, ", ".join(applied) or "nothing")
