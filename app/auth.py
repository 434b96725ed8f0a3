"""
Test Reporting Service
Authentication & Authorization Middleware.

Provides:
    - API key authentication via X-API-Key header
    - Caller identity (X-User-Id, forwarded by the session gateway)
    - Role-based access control (RBAC) decorator
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/v1/* endpoints require a valid API key, except the health
      check and the public share-link endpoints
    - Cross-project reports require the 'admin' role
    - Share-link endpoints resolve identity when credentials are present
      but never reject anonymous callers; the link mode decides

Configuration (env vars):
    API_KEYS          — comma-separated list of valid API keys
                        e.g. "key1:admin,key2:viewer,key3:editor"
    API_AUTH_ENABLED  — set to "false" to disable auth (development only)
"""

import functools
import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "editor", "viewer"}

# Role hierarchy: admin > editor > viewer
ROLE_HIERARCHY = {
    "admin": {"admin", "editor", "viewer"},
    "editor": {"editor", "viewer"},
    "viewer": {"viewer"},
}

# Reachable without an API key; identity is still resolved when supplied.
PUBLIC_PREFIXES = ("/api/v1/share/public/",)


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: role} mapping.

    Keys without a role default to 'viewer'.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, role = entry.rsplit(":", 1)
            role = role.strip().lower()
            if role not in ROLES:
                logger.warning("Unknown role '%s' for API key, defaulting to 'viewer'", role)
                role = "viewer"
            keys[key.strip()] = role
        else:
            keys[entry] = "viewer"
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return current_app.config.get("API_AUTH_ENABLED", "true").lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    return request.headers.get("X-API-Key", "").strip() or None


def _resolve_identity() -> None:
    """Populate g.current_user_id / g.current_user_role from the request.

    Leaves the role unset when auth is enabled and the key is missing
    or unknown; callers decide whether that is an error.
    """
    g.current_user_id = request.headers.get("X-User-Id", "").strip() or None
    g.current_user_role = None

    if not _is_auth_enabled():
        g.current_user_role = "admin"
        return

    api_key = _get_api_key_from_request()
    if api_key:
        g.current_user_role = _parse_api_keys().get(api_key)


def current_user_id() -> Optional[str]:
    return getattr(g, "current_user_id", None)


def has_role(minimum_role: str) -> bool:
    user_role = getattr(g, "current_user_role", None)
    return minimum_role in ROLE_HIERARCHY.get(user_role, set())


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_role("editor")
        def create_share_link(): ...

    Role hierarchy: admin > editor > viewer
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return jsonify({"error": "Authentication required"}), 401

            if not has_role(minimum_role):
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user_role, minimum_role, request.path,
                )
                return jsonify({"error": "Insufficient permissions"}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips the health check; public share routes resolve identity only
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health":
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        _resolve_identity()

        if request.path.startswith(PUBLIC_PREFIXES):
            return None

        if g.current_user_role is not None:
            return None

        if not _get_api_key_from_request():
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        if not _parse_api_keys():
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        logger.warning("Invalid API key attempt: %s...", _get_api_key_from_request()[:8])
        return jsonify({"error": "Invalid API key"}), 401

    logger.info(
        "Auth middleware installed (enabled=%s)", _is_auth_enabled()
    )
