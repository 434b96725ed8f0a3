"""
Test Reporting Service
Share link model — externally shareable report snapshots.

A share link stores the report request (``entity_config``), not its
result; the report is recomputed on every view and passed through the
sensitive-data filter according to ``mode``.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

SHARE_MODES = {"PUBLIC", "PASSWORD_PROTECTED", "AUTHENTICATED"}
SHARE_ENTITY_TYPES = {"report"}


class ShareLink(SoftDeleteMixin, db.Model):
    __tablename__ = "share_links"

    id = db.Column(db.Integer, primary_key=True)
    share_key = db.Column(db.String(64), nullable=False, unique=True, index=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
        comment="NULL → cross-project report",
    )
    entity_type = db.Column(db.String(30), default="report", nullable=False)
    entity_config = db.Column(db.JSON, nullable=False, comment="Stored report request payload")
    mode = db.Column(
        db.String(30), default="AUTHENTICATED", nullable=False,
        comment="PUBLIC | PASSWORD_PROTECTED | AUTHENTICATED",
    )
    password_hash = db.Column(db.String(255), nullable=True)
    title = db.Column(db.String(300), default="")
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    anonymize_users = db.Column(
        db.Boolean, default=False, nullable=False,
        comment="Replace user names with User 1, User 2 … in non-authenticated views",
    )
    is_revoked = db.Column(db.Boolean, default=False, nullable=False)
    view_count = db.Column(db.Integer, default=0, nullable=False)
    last_viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project")

    def to_dict(self):
        """Metadata view; never includes the password hash."""
        return {
            "id": self.id,
            "shareKey": self.share_key,
            "projectId": self.project_id,
            "projectName": self.project.name if self.project else None,
            "entityType": self.entity_type,
            "entityConfig": self.entity_config,
            "mode": self.mode,
            "title": self.title,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "anonymizeUsers": self.anonymize_users,
            "isRevoked": self.is_revoked,
            "viewCount": self.view_count,
            "lastViewedAt": self.last_viewed_at.isoformat() if self.last_viewed_at else None,
            "createdById": self.created_by_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ShareLink {self.share_key} {self.mode}>"
