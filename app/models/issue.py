"""
Test Reporting Service
Issue model — defects linked from an external tracker.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin


class Issue(SoftDeleteMixin, db.Model):
    __tablename__ = "issues"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False, comment="External key, e.g. QA-142")
    title = db.Column(db.String(500), default="")
    issue_type = db.Column(db.String(50), nullable=True, comment="Bug | Task | Story …")
    status = db.Column(db.String(50), nullable=True)
    priority = db.Column(db.String(30), nullable=True)
    external_url = db.Column(db.String(1000), nullable=True)
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    created_by = db.relationship("User")
    project = db.relationship("Project")

    def __repr__(self):
        return f"<Issue {self.name}>"
