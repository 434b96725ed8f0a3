"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

REPORTING_LIMIT = "200/minute"
SHARE_MANAGEMENT_LIMIT = "60/minute"
PUBLIC_SHARE_LIMIT = "30/minute"


def _caller_key():
    """Rate limit key: caller identity if available, else remote IP."""
    user_id = getattr(g, "current_user_id", None)
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Reporting (run, drill-down, export): 200/minute per caller
        - Share-link management:               60/minute per caller
        - Public share views:                  30/minute per remote IP
          (password guessing on PASSWORD_PROTECTED links)

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("reporting")
    if bp:
        limiter.limit(REPORTING_LIMIT, key_func=_caller_key)(bp)

    bp = app.blueprints.get("share")
    if bp:
        limiter.limit(SHARE_MANAGEMENT_LIMIT, key_func=_caller_key)(bp)

    bp = app.blueprints.get("share_public")
    if bp:
        limiter.limit(PUBLIC_SHARE_LIMIT)(bp)

    app.logger.info(
        "Rate limiter configured — reporting: %s, share: %s, public share: %s",
        REPORTING_LIMIT, SHARE_MANAGEMENT_LIMIT, PUBLIC_SHARE_LIMIT,
    )
