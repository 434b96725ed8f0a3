"""
Test Reporting Service
Share-link blueprints — management of shared reports and their public views.

Management (authenticated, editor role for writes; cross-project links are
admin-only; revoke/delete limited to admins, the creator and the project owner):
    POST   /api/v1/share                     — create a share link
    GET    /api/v1/share?projectId=          — list active links
    POST   /api/v1/share/<share_key>/revoke  — revoke a link
    DELETE /api/v1/share/<share_key>         — soft-delete a link

Public (no API key; identity resolved when present):
    GET  /api/v1/share/public/<share_key>       — link metadata
    POST /api/v1/share/public/<share_key>/view  — run and return the shared report
"""

import logging

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.auth import current_user_id, has_role, require_role
from app.blueprints import paginate_query
from app.core.exceptions import (
    AccessDeniedError,
    AuthenticationRequiredError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.services import share_service
from app.utils.errors import E, api_error
from app.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

share_bp = Blueprint("share", __name__, url_prefix="/api/v1/share")
share_public_bp = Blueprint("share_public", __name__, url_prefix="/api/v1/share/public")


# ── Error handlers (shared by both blueprints) ──────────────────────────

def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


def _handle_forbidden(error: AccessDeniedError):
    return api_error(E.FORBIDDEN, str(error))


def _handle_unauthenticated(error: AuthenticationRequiredError):
    return api_error(E.UNAUTHORIZED, str(error))


def _handle_upstream(error: UpstreamError):
    logger.error("Upstream failure during %s: %s", error.operation, error.cause)
    return api_error(E.UPSTREAM, "Report data is temporarily unavailable")


def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in share endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


for _bp in (share_bp, share_public_bp):
    _bp.register_error_handler(NotFoundError, _handle_not_found)
    _bp.register_error_handler(ValidationError, _handle_validation)
    _bp.register_error_handler(AccessDeniedError, _handle_forbidden)
    _bp.register_error_handler(AuthenticationRequiredError, _handle_unauthenticated)
    _bp.register_error_handler(UpstreamError, _handle_upstream)
    _bp.register_error_handler(Exception, _handle_unexpected)


def _caller_id():
    """Identity of an authenticated caller, None for anonymous visitors."""
    if getattr(g, "current_user_role", None) is None:
        return None
    return current_user_id()


# ═════════════════════════════════════════════════════════════════════════
# Management
# ═════════════════════════════════════════════════════════════════════════

@share_bp.route("", methods=["POST"])
@require_role("editor")
def create_share_link():
    """
    POST /api/v1/share
    Body: {entityConfig, mode, password?, title?, expiresAt?, anonymizeUsers?}
    """
    data = request.get_json(silent=True) or {}
    link = share_service.create_share_link(
        data, created_by_id=current_user_id(), is_admin=has_role("admin"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 201


@share_bp.route("", methods=["GET"])
@require_role("viewer")
def list_share_links():
    """GET /api/v1/share?projectId=&limit=&offset= — active (non-deleted) links.

    Cross-project links are listed for admins only.
    """
    project_id = request.args.get("projectId", type=int)
    query = share_service.share_links_query(project_id, include_cross_project=has_role("admin"))
    items, total = paginate_query(query)
    return jsonify({"items": [link.to_dict() for link in items], "total": total}), 200


@share_bp.route("/<share_key>/revoke", methods=["POST"])
@require_role("editor")
def revoke_share_link(share_key):
    link = share_service.revoke_share_link(
        share_key, current_user_id(), is_admin=has_role("admin"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(link.to_dict()), 200


@share_bp.route("/<share_key>", methods=["DELETE"])
@require_role("editor")
def delete_share_link(share_key):
    share_service.delete_share_link(share_key, current_user_id(), is_admin=has_role("admin"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Share link deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════
# Public access
# ═════════════════════════════════════════════════════════════════════════

@share_public_bp.route("/<share_key>", methods=["GET"])
def share_metadata(share_key):
    """GET /api/v1/share/public/<share_key> — title, mode, requiresPassword …"""
    return jsonify(share_service.share_metadata(share_key, caller_id=_caller_id())), 200


@share_public_bp.route("/<share_key>/view", methods=["POST"])
def view_shared_report(share_key):
    """
    POST /api/v1/share/public/<share_key>/view
    Body: {"password": "..."} for PASSWORD_PROTECTED links.
    """
    data = request.get_json(silent=True) or {}
    result = share_service.view_shared_report(
        share_key, password=data.get("password"), caller_id=_caller_id(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200
