"""
Soft Delete Mixin.

Reporting never physically removes operational records: a deleted
milestone, run or case is flagged and excluded from every calculation.

Usage:
    class Milestone(SoftDeleteMixin, db.Model):
        ...

    milestone.soft_delete()
    db.session.commit()

    Milestone.query_active().all()
"""

from datetime import datetime, timezone

from app.models import db


class SoftDeleteMixin:
    """Adds ``is_deleted`` / ``deleted_at`` and query helpers to a model."""

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.is_deleted = True
        self.deleted_at = datetime.now(timezone.utc)

    def restore(self):
        self.is_deleted = False
        self.deleted_at = None

    @classmethod
    def not_deleted(cls):
        """Filter expression matching live rows; usable inside joins."""
        return cls.is_deleted.is_(False)

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.not_deleted())
