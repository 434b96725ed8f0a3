"""
Test Reporting Service
Test repository & execution models.

Models:
    - Status: outcome a result can carry (passed, failed, blocked, untested …)
    - Configuration: environment / platform a run is executed against
    - RepositoryCase: a test case in the project repository
    - TestRun: a run grouping executions, optionally under a milestone
    - TestExecution: one result of one case within one run

Only ``is_success`` / ``is_failure`` decide whether an outcome is
definitive; every other status (blocked, skipped, retest, untested)
is non-definitive for flakiness and pass-rate purposes.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

AUTOMATED_SOURCES = frozenset({"JUNIT", "TESTNG", "XUNIT", "NUNIT", "MSTEST", "MOCHA", "CUCUMBER"})
MANUAL_SOURCES = frozenset({"MANUAL", "API"})
CASE_SOURCES = AUTOMATED_SOURCES | MANUAL_SOURCES
CASE_STATES = {"draft", "ready", "approved", "deprecated"}
UNTESTED_SYSTEM_NAME = "untested"


class Status(db.Model):
    """Result status shared across projects."""

    __tablename__ = "statuses"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    system_name = db.Column(
        db.String(50), nullable=False, unique=True,
        comment="Stable key, e.g. passed | failed | blocked | untested",
    )
    color = db.Column(db.String(20), default="#9ca3af", comment="Hex colour for charts")
    is_success = db.Column(db.Boolean, default=False, nullable=False)
    is_failure = db.Column(db.Boolean, default=False, nullable=False)
    is_completed = db.Column(
        db.Boolean, default=True, nullable=False,
        comment="False for statuses that still need a decision (untested, retest)",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "systemName": self.system_name,
            "color": self.color,
            "isSuccess": self.is_success,
            "isFailure": self.is_failure,
            "isCompleted": self.is_completed,
        }

    def __repr__(self):
        return f"<Status {self.system_name}>"


class Configuration(db.Model):
    __tablename__ = "configurations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, comment="e.g. Chrome / Windows 11")

    def __repr__(self):
        return f"<Configuration {self.id}: {self.name}>"


class RepositoryCase(SoftDeleteMixin, db.Model):
    """A test case stored in a project's repository."""

    __tablename__ = "repository_cases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(500), nullable=False)
    source = db.Column(
        db.String(20), default="MANUAL",
        comment="MANUAL | API | JUNIT | TESTNG | XUNIT | NUNIT | MSTEST | MOCHA | CUCUMBER",
    )
    automated = db.Column(db.Boolean, default=False, nullable=False)
    state = db.Column(db.String(30), default="draft", comment="draft | ready | approved | deprecated")
    steps_count = db.Column(db.Integer, default=0, nullable=False)
    creator_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )

    creator = db.relationship("User")
    project = db.relationship("Project")

    def __repr__(self):
        return f"<RepositoryCase {self.id}: {self.name[:40]}>"


class TestRun(SoftDeleteMixin, db.Model):
    """A run of test cases, optionally bound to a milestone and configuration."""

    __tablename__ = "test_runs"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    milestone_id = db.Column(
        db.Integer, db.ForeignKey("milestones.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    configuration_id = db.Column(
        db.Integer, db.ForeignKey("configurations.id", ondelete="SET NULL"), nullable=True,
    )
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    milestone = db.relationship("Milestone")
    configuration = db.relationship("Configuration")
    project = db.relationship("Project")

    def __repr__(self):
        return f"<TestRun {self.id}: {self.name}>"


class TestExecution(SoftDeleteMixin, db.Model):
    """One recorded result of a repository case inside a test run."""

    __tablename__ = "test_executions"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    test_run_id = db.Column(
        db.Integer, db.ForeignKey("test_runs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    repository_case_id = db.Column(
        db.Integer, db.ForeignKey("repository_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status_id = db.Column(
        db.Integer, db.ForeignKey("statuses.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    executed_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    executed_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True,
    )
    elapsed = db.Column(db.Integer, nullable=True, comment="Execution time in seconds")
    notes = db.Column(db.Text, default="")

    test_run = db.relationship("TestRun")
    repository_case = db.relationship("RepositoryCase")
    status = db.relationship("Status")
    executed_by = db.relationship("User")

    def __repr__(self):
        return f"<TestExecution {self.id} run={self.test_run_id} case={self.repository_case_id}>"
