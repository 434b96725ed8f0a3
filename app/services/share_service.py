"""
Share-link service — business logic for externally shared reports.

Rules:
  - A share link stores the report request, never its result
  - PASSWORD_PROTECTED links require a password at creation (bcrypt hash)
  - Cross-project reports are shared by admins only
  - Only an admin, the creator or the project owner may revoke or delete a link
  - Deleted links are indistinguishable from missing ones (404)
  - Revoked or expired links answer 403
  - AUTHENTICATED links need a caller identity (401 otherwise)
  - Non-authenticated views pass through the sensitive-data filter
  - Metadata never includes the password hash
"""

import logging

from flask import current_app

from app.core.exceptions import (
    AccessDeniedError,
    AuthenticationRequiredError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.models.project import Project
from app.models.share import SHARE_ENTITY_TYPES, SHARE_MODES, ShareLink
from app.services.report_data_source import ReportDataSource
from app.services.report_engine import AggregationEngine
from app.services.report_validator import validate, validate_or_raise
from app.services.sensitive_data_filter import filter_sensitive_data
from app.utils.crypto import generate_share_key, hash_password, verify_password
from app.utils.helpers import as_utc, parse_iso_datetime, utcnow

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
# Management
# ═════════════════════════════════════════════════════════════════════════


def create_share_link(data: dict, created_by_id: str | None = None, *, is_admin: bool = False) -> ShareLink:
    """Create a share link for a report request.

    A report without ``projectId`` spans every project and can only be
    shared by an admin, the same rule that guards running it.

    Raises:
        ValidationError: mode, password, expiry or stored report request invalid.
        AccessDeniedError: a non-admin shares a cross-project report.
        NotFoundError: the report's project does not exist.
    """
    errors = []
    mode = data.get("mode") or "AUTHENTICATED"
    entity_type = data.get("entityType") or "report"
    config = data.get("entityConfig")
    password = data.get("password")

    if mode not in SHARE_MODES:
        errors.append(("mode", f"mode must be one of: {', '.join(sorted(SHARE_MODES))}"))
    if entity_type not in SHARE_ENTITY_TYPES:
        errors.append(("entityType", f"Unsupported entity type: {entity_type}"))
    if not isinstance(config, dict):
        errors.append(("entityConfig", "entityConfig must be a report request object"))
    else:
        errors.extend((f"entityConfig.{f}" if f else "entityConfig", m) for f, m in validate(config))

    min_length = current_app.config.get("SHARE_PASSWORD_MIN_LENGTH", 4)
    if mode == "PASSWORD_PROTECTED" and (not password or len(password) < min_length):
        errors.append(("password", f"A password of at least {min_length} characters is required"))

    expires_at = None
    try:
        expires_at = parse_iso_datetime(data.get("expiresAt"))
    except ValueError:
        errors.append(("expiresAt", "expiresAt must be an ISO 8601 date"))
    if expires_at is not None and expires_at <= utcnow():
        errors.append(("expiresAt", "expiresAt must be in the future"))

    if errors:
        raise ValidationError.from_errors(errors)

    project_id = config.get("projectId") or None
    if project_id is None and not is_admin:
        raise AccessDeniedError("Cross-project reports can only be shared by an admin")
    if project_id is not None:
        ReportDataSource().get_project(int(project_id))

    link = ShareLink(
        share_key=generate_share_key(),
        project_id=int(project_id) if project_id is not None else None,
        entity_type=entity_type,
        entity_config=config,
        mode=mode,
        password_hash=hash_password(password) if mode == "PASSWORD_PROTECTED" else None,
        title=(data.get("title") or "").strip(),
        expires_at=expires_at,
        anonymize_users=bool(data.get("anonymizeUsers", False)),
        created_by_id=created_by_id,
    )
    db.session.add(link)
    db.session.flush()
    logger.info("Share link created id=%s mode=%s project=%s", link.id, mode, link.project_id)
    return link


def share_links_query(project_id: int | None = None, *, include_cross_project: bool = True):
    """Active (non-deleted) links, newest first.

    ``include_cross_project=False`` hides links whose report spans every
    project.
    """
    query = ShareLink.query_active()
    if project_id is not None:
        query = query.filter(ShareLink.project_id == project_id)
    elif not include_cross_project:
        query = query.filter(ShareLink.project_id.isnot(None))
    return query.order_by(ShareLink.created_at.desc(), ShareLink.id.desc())


def _get_link(share_key: str) -> ShareLink:
    link = ShareLink.query.filter_by(share_key=share_key).first()
    if link is None or link.is_deleted:
        raise NotFoundError(resource="ShareLink", resource_id=share_key)
    return link


def _check_can_manage(link: ShareLink, caller_id: str | None, is_admin: bool, action: str) -> None:
    """Admins, the link's creator and the project's owner may manage a link."""
    if is_admin:
        return
    if caller_id is not None:
        if link.created_by_id == caller_id:
            return
        project = db.session.get(Project, link.project_id) if link.project_id is not None else None
        if project is not None and project.created_by_id == caller_id:
            return
    logger.warning("Share link %s denied id=%s caller=%s", action, link.id, caller_id)
    raise AccessDeniedError(f"You do not have permission to {action} this share link")


def revoke_share_link(share_key: str, caller_id: str | None = None, *, is_admin: bool = False) -> ShareLink:
    link = _get_link(share_key)
    _check_can_manage(link, caller_id, is_admin, "revoke")
    link.is_revoked = True
    logger.info("Share link revoked id=%s", link.id)
    return link


def delete_share_link(share_key: str, caller_id: str | None = None, *, is_admin: bool = False) -> None:
    link = _get_link(share_key)
    _check_can_manage(link, caller_id, is_admin, "delete")
    link.soft_delete()
    logger.info("Share link deleted id=%s", link.id)


# ═════════════════════════════════════════════════════════════════════════
# Public access
# ═════════════════════════════════════════════════════════════════════════


def get_accessible_link(share_key: str, caller_id: str | None = None) -> ShareLink:
    """Return a link the caller may open, or raise the matching access error."""
    link = _get_link(share_key)
    if link.is_revoked:
        raise AccessDeniedError("This share link has been revoked")
    if link.expires_at is not None and as_utc(link.expires_at) <= utcnow():
        raise AccessDeniedError("This share link has expired")
    if link.mode == "AUTHENTICATED" and not caller_id:
        raise AuthenticationRequiredError("Sign in to view this shared report")
    return link


def share_metadata(share_key: str, caller_id: str | None = None) -> dict:
    link = get_accessible_link(share_key, caller_id)
    meta = link.to_dict()
    meta["requiresPassword"] = link.mode == "PASSWORD_PROTECTED"
    return meta


def view_shared_report(share_key: str, *, password: str | None = None, caller_id: str | None = None) -> dict:
    """Run the stored report and return it filtered for the link's mode."""
    link = get_accessible_link(share_key, caller_id)
    if link.mode == "PASSWORD_PROTECTED":
        if not password:
            raise AuthenticationRequiredError("Password required")
        if not verify_password(password, link.password_hash):
            logger.warning("Invalid password for share link id=%s", link.id)
            raise AuthenticationRequiredError("Invalid password")

    request = validate_or_raise(link.entity_config)
    report = AggregationEngine.run(request)

    link.view_count = (link.view_count or 0) + 1
    link.last_viewed_at = utcnow()

    return {
        "shareKey": link.share_key,
        "title": link.title,
        "mode": link.mode,
        "reportType": request.report_type,
        "report": filter_sensitive_data(report, link.mode, anonymize=link.anonymize_users),
    }
