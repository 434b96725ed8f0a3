"""
Test Reporting Service
Exploratory session models.

Models:
    - TestSession: a time-boxed exploratory testing session
    - SessionResult: one finding / outcome recorded during a session
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

SESSION_STATES = {"new", "in_progress", "paused", "done"}


class TestSession(SoftDeleteMixin, db.Model):
    __tablename__ = "test_sessions"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    state = db.Column(db.String(30), default="new", comment="new | in_progress | paused | done")
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    elapsed = db.Column(db.Integer, nullable=True, comment="Session duration in seconds")
    milestone_id = db.Column(
        db.Integer, db.ForeignKey("milestones.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    assigned_to_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    milestone = db.relationship("Milestone")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def __repr__(self):
        return f"<TestSession {self.id}: {self.name}>"


class SessionResult(SoftDeleteMixin, db.Model):
    __tablename__ = "session_results"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("test_sessions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="SET NULL"), nullable=True,
    )
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    elapsed = db.Column(db.Integer, nullable=True, comment="Seconds spent on this result")
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    session = db.relationship("TestSession")

    def __repr__(self):
        return f"<SessionResult {self.id} session={self.session_id}>"
