"""
Scoped read access to operational records.

The reporting engine never queries models directly; it asks this data
source for the record universe of a report kind, already restricted to:
  - the project (or every live project when cross-project)
  - the requested date range on the kind's date field
  - live rows (soft-deleted runs, cases, executions … excluded)

Detail queries (``*_query``) return SQLAlchemy queries so the drill-down
resolver can add dimension filters and paginate in SQL. Record loaders
(``*_records``) return plain dicts keyed by dimension id, which is the
shape AggregationEngine groups on.

SQLAlchemy failures surface as UpstreamError; nothing is retried here.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from app.core.exceptions import NotFoundError, UpstreamError
from app.models import db
from app.models.issue import Issue
from app.models.milestone import Milestone
from app.models.project import Project, User
from app.models.session import SessionResult, TestSession
from app.models.testing import (
    UNTESTED_SYSTEM_NAME,
    Configuration,
    RepositoryCase,
    Status,
    TestExecution,
    TestRun,
)
from app.utils.helpers import as_utc

logger = logging.getLogger(__name__)

NONE_VALUE = {"id": None, "name": "None"}


@dataclass(frozen=True)
class ReportScope:
    project_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


def dimension_value(id_, name) -> dict:
    """DimensionValue for a related entity; ``None`` ids map to the None bucket."""
    if id_ is None:
        return dict(NONE_VALUE)
    return {"id": id_, "name": name if name is not None else str(id_)}


def label_value(value) -> dict:
    """DimensionValue for a plain string attribute (state, source, priority …)."""
    if value is None or value == "":
        return dict(NONE_VALUE)
    return {"id": value, "name": value}


def user_ref(user) -> dict | None:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


class ReportDataSource:
    """Read-only, scoped queries over the reporting models."""

    def __init__(self, session=None):
        self.session = session or db.session

    # ── Plumbing ─────────────────────────────────────────────────────────

    def fetch(self, query, operation: str) -> list:
        try:
            return query.all()
        except SQLAlchemyError as exc:
            logger.error("Data source read failed during %s: %s", operation, exc)
            self.session.rollback()
            raise UpstreamError(operation, exc) from exc

    def count(self, query, operation: str) -> int:
        try:
            return query.order_by(None).count()
        except SQLAlchemyError as exc:
            logger.error("Data source count failed during %s: %s", operation, exc)
            self.session.rollback()
            raise UpstreamError(operation, exc) from exc

    def get_project(self, project_id: int) -> Project:
        try:
            project = self.session.get(Project, project_id)
        except SQLAlchemyError as exc:
            raise UpstreamError("project lookup", exc) from exc
        if project is None or project.is_deleted:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    @staticmethod
    def _scope(query, scope: ReportScope, project_column, date_column):
        """Apply project and date-range scoping to a query."""
        if scope.project_id is not None:
            query = query.filter(project_column == scope.project_id)
        else:
            query = query.join(Project, Project.id == project_column).filter(Project.not_deleted())
        if scope.start_date is not None:
            query = query.filter(date_column >= scope.start_date)
        if scope.end_date is not None:
            query = query.filter(date_column <= scope.end_date)
        return query

    # ── Detail queries ───────────────────────────────────────────────────

    def executions_query(self, scope: ReportScope, *, include_untested: bool = False):
        query = (
            self.session.query(TestExecution)
            .join(TestRun, TestRun.id == TestExecution.test_run_id)
            .join(RepositoryCase, RepositoryCase.id == TestExecution.repository_case_id)
            .join(Status, Status.id == TestExecution.status_id)
            .filter(
                TestExecution.not_deleted(),
                TestRun.not_deleted(),
                RepositoryCase.not_deleted(),
            )
        )
        if not include_untested:
            query = query.filter(Status.system_name != UNTESTED_SYSTEM_NAME)
        return self._scope(query, scope, TestRun.project_id, TestExecution.executed_at)

    def runs_query(self, scope: ReportScope):
        query = self.session.query(TestRun).filter(TestRun.not_deleted())
        return self._scope(query, scope, TestRun.project_id, TestRun.created_at)

    def cases_query(self, scope: ReportScope):
        query = self.session.query(RepositoryCase).filter(RepositoryCase.not_deleted())
        return self._scope(query, scope, RepositoryCase.project_id, RepositoryCase.created_at)

    def sessions_query(self, scope: ReportScope):
        query = self.session.query(TestSession).filter(TestSession.not_deleted())
        return self._scope(query, scope, TestSession.project_id, TestSession.created_at)

    def session_results_query(self, scope: ReportScope):
        query = (
            self.session.query(SessionResult)
            .join(TestSession, TestSession.id == SessionResult.session_id)
            .filter(SessionResult.not_deleted(), TestSession.not_deleted())
        )
        return self._scope(query, scope, TestSession.project_id, SessionResult.created_at)

    def issues_query(self, scope: ReportScope):
        query = self.session.query(Issue).filter(Issue.not_deleted())
        return self._scope(query, scope, Issue.project_id, Issue.created_at)

    def milestones_query(self, scope: ReportScope, *, include_deleted: bool = False):
        query = self.session.query(Milestone)
        if not include_deleted:
            query = query.filter(Milestone.not_deleted())
        return self._scope(query, scope, Milestone.project_id, Milestone.created_at)

    # ── Aggregation records ──────────────────────────────────────────────

    def execution_records(self, scope: ReportScope) -> list[dict]:
        executor = aliased(User)
        query = (
            self.executions_query(scope)
            .outerjoin(executor, executor.id == TestExecution.executed_by_id)
            .outerjoin(
                Milestone,
                (Milestone.id == TestRun.milestone_id) & Milestone.not_deleted(),
            )
            .outerjoin(Configuration, Configuration.id == TestRun.configuration_id)
            .with_entities(
                TestExecution.id, TestExecution.executed_at, TestExecution.elapsed,
                TestExecution.executed_by_id, executor.name,
                Status.id, Status.name, Status.color, Status.is_success, Status.is_failure,
                TestRun.id, TestRun.name, TestRun.project_id,
                RepositoryCase.id, RepositoryCase.name,
                Milestone.id, Milestone.name,
                Configuration.id, Configuration.name,
            )
        )
        project_names = self._project_names(scope)
        records = []
        for (
            exec_id, executed_at, elapsed, user_id, user_name,
            status_id, status_name, status_color, is_success, is_failure,
            run_id, run_name, project_id, case_id, case_name,
            milestone_id, milestone_name, config_id, config_name,
        ) in self.fetch(query, "test-execution records"):
            status = dimension_value(status_id, status_name)
            status["color"] = status_color
            records.append({
                "id": exec_id,
                "at": as_utc(executed_at),
                "elapsed": elapsed,
                "isSuccess": bool(is_success),
                "isFailure": bool(is_failure),
                "testRunId": run_id,
                "testCaseId": case_id,
                "user": dimension_value(user_id, user_name),
                "status": status,
                "testRun": dimension_value(run_id, run_name),
                "testCase": dimension_value(case_id, case_name),
                "milestone": dimension_value(milestone_id, milestone_name),
                "configuration": dimension_value(config_id, config_name),
                "project": dimension_value(project_id, project_names.get(project_id)),
            })
        return records

    def engagement_records(self, scope: ReportScope) -> list[dict]:
        """One record per user activity: executions, created cases, session results."""
        users = {u.id: u for u in self.fetch(self.session.query(User), "user lookup")}
        project_names = self._project_names(scope)
        records = []

        def _record(kind, user_id, at, project_id, elapsed=None):
            user = users.get(user_id)
            return {
                "kind": kind,
                "at": as_utc(at),
                "elapsed": elapsed,
                "user": dimension_value(user_id, user.name if user else None),
                "role": dimension_value(user.role, user.role) if user and user.role else dict(NONE_VALUE),
                "project": dimension_value(project_id, project_names.get(project_id)),
            }

        executions = self.executions_query(scope).with_entities(
            TestExecution.executed_by_id, TestExecution.executed_at,
            TestRun.project_id, TestExecution.elapsed,
        )
        for user_id, at, project_id, elapsed in self.fetch(executions, "engagement executions"):
            records.append(_record("execution", user_id, at, project_id, elapsed))

        cases = self.cases_query(scope).with_entities(
            RepositoryCase.creator_id, RepositoryCase.created_at, RepositoryCase.project_id,
        )
        for user_id, at, project_id in self.fetch(cases, "engagement cases"):
            records.append(_record("case", user_id, at, project_id))

        results = self.session_results_query(scope).with_entities(
            SessionResult.created_by_id, SessionResult.created_at, TestSession.project_id,
        )
        for user_id, at, project_id in self.fetch(results, "engagement session results"):
            records.append(_record("sessionResult", user_id, at, project_id))

        return records

    def milestone_records(self, scope: ReportScope) -> list[dict]:
        """Milestones including deleted ones; calculators exclude those."""
        query = self.milestones_query(scope, include_deleted=True)
        records = []
        for m in self.fetch(query, "milestone records"):
            records.append({
                "id": m.id,
                "at": as_utc(m.created_at),
                "isStarted": m.is_started,
                "isCompleted": m.is_completed,
                "isDeleted": m.is_deleted,
                "milestone": dimension_value(m.id, m.name),
                "creator": dimension_value(m.created_by_id, m.creator.name if m.creator else None),
            })
        return records

    def session_records(self, scope: ReportScope) -> list[dict]:
        records = []
        for s in self.fetch(self.sessions_query(scope), "session records"):
            records.append({
                "id": s.id,
                "at": as_utc(s.created_at),
                "elapsed": s.elapsed,
                "isCompleted": s.is_completed,
                "session": dimension_value(s.id, s.name),
                "assignedTo": dimension_value(
                    s.assigned_to_id, s.assigned_to.name if s.assigned_to else None,
                ),
                "milestone": dimension_value(
                    s.milestone_id if s.milestone and not s.milestone.is_deleted else None,
                    s.milestone.name if s.milestone else None,
                ),
                "state": label_value(s.state),
                "creator": dimension_value(
                    s.created_by_id, s.created_by.name if s.created_by else None,
                ),
            })
        return records

    def issue_records(self, scope: ReportScope) -> list[dict]:
        records = []
        for i in self.fetch(self.issues_query(scope), "issue records"):
            records.append({
                "id": i.id,
                "at": as_utc(i.created_at),
                "creator": dimension_value(
                    i.created_by_id, i.created_by.name if i.created_by else None,
                ),
                "issueType": label_value(i.issue_type),
                "status": label_value(i.status),
                "priority": label_value(i.priority),
                "project": dimension_value(i.project_id, i.project.name if i.project else None),
            })
        return records

    def case_records(self, scope: ReportScope) -> list[dict]:
        records = []
        for c in self.fetch(self.cases_query(scope), "repository records"):
            records.append({
                "id": c.id,
                "at": as_utc(c.created_at),
                "automated": c.automated,
                "steps": c.steps_count,
                "creator": dimension_value(c.creator_id, c.creator.name if c.creator else None),
                "source": label_value(c.source),
                "state": label_value(c.state),
                "project": dimension_value(c.project_id, c.project.name if c.project else None),
            })
        return records

    # ── Flaky-test history ───────────────────────────────────────────────

    def recent_executions(
        self, scope: ReportScope, *, limit: int, sources=None,
    ) -> list[tuple[dict, list[dict]]]:
        """Last ``limit`` executions per test case inside ``scope``, newest first.

        ``sources`` restricts the cases to those repository sources. Only
        cases with at least two executions are returned; a single result
        can never flip.
        """
        base = self.executions_query(scope)
        if sources is not None:
            base = base.filter(RepositoryCase.source.in_(sorted(sources)))
        cases = base.with_entities(
            RepositoryCase.id, RepositoryCase.name, RepositoryCase.source,
            RepositoryCase.project_id,
        ).distinct()
        project_names = self._project_names(scope)
        history = []
        for case_id, case_name, source, project_id in self.fetch(cases, "flaky candidates"):
            query = (
                self.executions_query(scope)
                .filter(TestExecution.repository_case_id == case_id)
                .order_by(TestExecution.executed_at.desc(), TestExecution.id.desc())
                .limit(limit)
            )
            executions = self.fetch(query, "flaky history")
            if len(executions) < 2:
                continue
            history.append((
                {
                    "id": case_id,
                    "name": case_name,
                    "source": source,
                    "project": dimension_value(project_id, project_names.get(project_id)),
                },
                [
                    {
                        "id": e.id,
                        "testRunId": e.test_run_id,
                        "executedAt": as_utc(e.executed_at),
                        "status": e.status.to_dict(),
                        "configuration": (
                            {"id": e.test_run.configuration.id, "name": e.test_run.configuration.name}
                            if e.test_run.configuration else None
                        ),
                    }
                    for e in executions
                ],
            ))
        return history

    def _project_names(self, scope: ReportScope) -> dict:
        query = self.session.query(Project.id, Project.name)
        if scope.project_id is not None:
            query = query.filter(Project.id == scope.project_id)
        return OrderedDict(self.fetch(query, "project names"))

