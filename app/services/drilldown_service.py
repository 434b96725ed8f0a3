"""
Drill-down resolver — from one aggregate cell back to its detail records.

Rules:
  - every dimension in the context becomes a constraint on the detail
    query: equality on the matching column, IS NULL for the "None"
    bucket, a [start, end) range for the date bucket
  - the context's start/end date and project (absent ⇒ cross-project)
    are applied through the same ReportDataSource scoping the aggregate
    used, so the drilled total matches the aggregate count
  - the record variant follows the report family and metric
    (execution, run, case, session, issue)
  - execution drill-downs hide untested results unless a status is
    part of the context, newest first
  - rate metrics add a status breakdown and pass rate over the whole
    drilled set (not just the current page)

Record variants are plain dicts; ``is_execution_record`` and friends
tell them apart by their fields.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from app.core.exceptions import ValidationError
from app.models.milestone import Milestone
from app.models.project import User
from app.models.session import SessionResult, TestSession
from app.models.testing import RepositoryCase, Status, TestExecution, TestRun
from app.models.issue import Issue
from app.services.date_buckets import bucket_range
from app.services.report_catalog import get_report_kind
from app.services.report_data_source import ReportDataSource, ReportScope, user_ref
from app.services.report_metrics import percentage
from app.utils.helpers import parse_iso_datetime, to_iso

logger = logging.getLogger(__name__)

MODES = ("project", "cross-project")
RATE_METRICS = frozenset({"passRate"})
DEFAULT_LIMIT = 50
MAX_LIMIT = 100


@dataclass
class DrillDownContext:
    metric_id: str
    report_type: str
    mode: str = "project"
    metric_label: str | None = None
    metric_value: object = None
    project_id: int | None = None
    dimensions: dict = field(default_factory=dict)
    start_date: datetime | None = None
    end_date: datetime | None = None
    date_grouping: str | None = None

    @classmethod
    def from_dict(cls, payload) -> "DrillDownContext":
        """Parse the wire context, collecting every problem before raising."""
        if not isinstance(payload, dict):
            raise ValidationError.from_errors([("context", "Drill-down context must be a JSON object")])

        errors = []
        metric_id = payload.get("metricId")
        report_type = payload.get("reportType")
        mode = payload.get("mode") or ("project" if payload.get("projectId") else "cross-project")
        dimensions = payload.get("dimensions") or {}

        if not metric_id:
            errors.append(("metricId", "metricId is required"))
        if not report_type:
            errors.append(("reportType", "reportType is required"))
        elif get_report_kind(report_type) is None:
            errors.append(("reportType", f"Unsupported report type: {report_type}"))
        if mode not in MODES:
            errors.append(("mode", "mode must be 'project' or 'cross-project'"))
        if mode == "project" and payload.get("projectId") in (None, ""):
            errors.append(("projectId", "projectId is required in project mode"))
        if not isinstance(dimensions, dict):
            errors.append(("dimensions", "dimensions must be an object"))
            dimensions = {}

        start_date = end_date = None
        try:
            start_date = parse_iso_datetime(payload.get("startDate"))
        except ValueError:
            errors.append(("startDate", "startDate must be an ISO 8601 date"))
        try:
            end_date = parse_iso_datetime(payload.get("endDate"), end_of_day=True)
        except ValueError:
            errors.append(("endDate", "endDate must be an ISO 8601 date"))

        project_id = None
        if mode == "project" and payload.get("projectId") not in (None, ""):
            try:
                project_id = int(payload["projectId"])
            except (TypeError, ValueError):
                errors.append(("projectId", "projectId must be a positive integer"))

        if errors:
            raise ValidationError.from_errors(errors)

        return cls(
            metric_id=metric_id,
            report_type=report_type,
            mode=mode,
            metric_label=payload.get("metricLabel"),
            metric_value=payload.get("metricValue"),
            project_id=project_id,
            dimensions={k: _as_dimension_value(v) for k, v in dimensions.items()},
            start_date=start_date,
            end_date=end_date,
            date_grouping=payload.get("dateGrouping"),
        )

    def to_dict(self) -> dict:
        return {
            "metricId": self.metric_id,
            "metricLabel": self.metric_label,
            "metricValue": self.metric_value,
            "reportType": self.report_type,
            "mode": self.mode,
            "projectId": self.project_id,
            "dimensions": self.dimensions,
            "startDate": to_iso(self.start_date),
            "endDate": to_iso(self.end_date),
            "dateGrouping": self.date_grouping,
        }


def _as_dimension_value(value) -> dict:
    if isinstance(value, dict):
        return value
    return {"id": value}


# ── Record discriminators ───────────────────────────────────────────────


def is_execution_record(record: dict) -> bool:
    return "testRunId" in record and "executedAt" in record


def is_run_record(record: dict) -> bool:
    return "configuration" in record and "isCompleted" in record and "executedAt" not in record


def is_case_record(record: dict) -> bool:
    return "source" in record and "automated" in record


def is_session_record(record: dict) -> bool:
    return "assignedTo" in record and "state" in record


def is_issue_record(record: dict) -> bool:
    return "issueType" in record and "externalUrl" in record


# ── Filter builders ─────────────────────────────────────────────────────


def _eq(column):
    def apply(query, value):
        return query.filter(column.is_(None) if value is None else column == value)
    return apply


def _live_milestone(fk_column):
    """Deleted milestones fall into the None bucket, as in the aggregate."""
    def apply(query, value):
        live = aliased(Milestone)
        query = query.outerjoin(live, (live.id == fk_column) & live.is_deleted.is_(False))
        return query.filter(live.id.is_(None) if value is None else live.id == value)
    return apply


def _user_role(fk_column):
    def apply(query, value):
        member = aliased(User)
        query = query.outerjoin(member, member.id == fk_column)
        return query.filter(member.role.is_(None) if value is None else member.role == value)
    return apply


EXECUTION_FILTERS = {
    "user": _eq(TestExecution.executed_by_id),
    "status": _eq(TestExecution.status_id),
    "testRun": _eq(TestExecution.test_run_id),
    "testCase": _eq(TestExecution.repository_case_id),
    "milestone": _live_milestone(TestRun.milestone_id),
    "configuration": _eq(TestRun.configuration_id),
    "project": _eq(TestRun.project_id),
    "role": _user_role(TestExecution.executed_by_id),
}
CASE_FILTERS = {
    "creator": _eq(RepositoryCase.creator_id),
    "user": _eq(RepositoryCase.creator_id),
    "role": _user_role(RepositoryCase.creator_id),
    "source": _eq(RepositoryCase.source),
    "state": _eq(RepositoryCase.state),
    "project": _eq(RepositoryCase.project_id),
}
SESSION_FILTERS = {
    "session": _eq(TestSession.id),
    "assignedTo": _eq(TestSession.assigned_to_id),
    "milestone": _live_milestone(TestSession.milestone_id),
    "state": _eq(TestSession.state),
    "creator": _eq(TestSession.created_by_id),
    "project": _eq(TestSession.project_id),
}
SESSION_RESULT_FILTERS = {
    "user": _eq(SessionResult.created_by_id),
    "role": _user_role(SessionResult.created_by_id),
    "project": _eq(TestSession.project_id),
}
ISSUE_FILTERS = {
    "creator": _eq(Issue.created_by_id),
    "issueType": _eq(Issue.issue_type),
    "status": _eq(Issue.status),
    "priority": _eq(Issue.priority),
    "project": _eq(Issue.project_id),
}


# ── Serializers ─────────────────────────────────────────────────────────


def _ref(obj):
    return {"id": obj.id, "name": obj.name} if obj is not None else None


def _live_ref(milestone):
    return _ref(milestone) if milestone is not None and not milestone.is_deleted else None


def serialize_execution(e: TestExecution) -> dict:
    return {
        "id": e.id,
        "name": e.repository_case.name,
        "testRunId": e.test_run_id,
        "testRunName": e.test_run.name,
        "testCaseId": e.repository_case_id,
        "projectId": e.test_run.project_id,
        "executedAt": to_iso(e.executed_at),
        "elapsed": e.elapsed,
        "notes": e.notes,
        "status": e.status.to_dict(),
        "executedBy": user_ref(e.executed_by),
        "configuration": _ref(e.test_run.configuration),
        "milestone": _live_ref(e.test_run.milestone),
    }


def serialize_run(r: TestRun) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "projectId": r.project_id,
        "isCompleted": r.is_completed,
        "createdAt": to_iso(r.created_at),
        "completedAt": to_iso(r.completed_at),
        "configuration": _ref(r.configuration),
        "milestone": _live_ref(r.milestone),
    }


def serialize_case(c: RepositoryCase) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "projectId": c.project_id,
        "source": c.source,
        "automated": c.automated,
        "state": c.state,
        "stepsCount": c.steps_count,
        "createdAt": to_iso(c.created_at),
        "creator": user_ref(c.creator),
    }


def serialize_session(s: TestSession) -> dict:
    return {
        "id": s.id,
        "name": s.name,
        "projectId": s.project_id,
        "state": s.state,
        "isCompleted": s.is_completed,
        "elapsed": s.elapsed,
        "createdAt": to_iso(s.created_at),
        "assignedTo": user_ref(s.assigned_to),
        "createdBy": user_ref(s.created_by),
        "milestone": _live_ref(s.milestone),
    }


def serialize_issue(i: Issue) -> dict:
    return {
        "id": i.id,
        "name": i.name,
        "title": i.title,
        "projectId": i.project_id,
        "issueType": i.issue_type,
        "status": i.status,
        "priority": i.priority,
        "externalUrl": i.external_url,
        "createdAt": to_iso(i.created_at),
        "createdBy": user_ref(i.created_by),
    }


# ═════════════════════════════════════════════════════════════════════════════
# RESOLVER
# ═════════════════════════════════════════════════════════════════════════════

class DrillDownResolver:
    """Rebuilds the filter behind one aggregate cell and pages through its records."""

    def __init__(self, data_source: ReportDataSource | None = None):
        self.source = data_source or ReportDataSource()

    def resolve(self, context: DrillDownContext, offset: int = 0, limit: int = DEFAULT_LIMIT) -> dict:
        offset = max(int(offset or 0), 0)
        limit = max(1, min(int(limit or DEFAULT_LIMIT), MAX_LIMIT))

        kind = get_report_kind(context.report_type)
        if kind is None:
            raise ValidationError.from_errors(
                [("reportType", f"Unsupported report type: {context.report_type}")]
            )
        if context.project_id is not None:
            self.source.get_project(context.project_id)

        scope = ReportScope(
            project_id=context.project_id,
            start_date=context.start_date,
            end_date=context.end_date,
        )
        entity, query, serialize = self._build_query(kind.family, context, scope)

        total = self.source.count(query, f"{entity} drill-down count")
        items = self.source.fetch(query.offset(offset).limit(limit), f"{entity} drill-down")
        data = [serialize(item) for item in items]

        result = {
            "data": data,
            "total": total,
            "hasMore": offset + len(data) < total,
            "context": context.to_dict(),
        }
        if entity == "execution" and context.metric_id in RATE_METRICS:
            result["aggregates"] = self._status_aggregates(query, total)

        logger.info(
            "Drill-down %s/%s entity=%s total=%d offset=%d limit=%d",
            context.report_type, context.metric_id, entity, total, offset, limit,
        )
        return result

    # ── Query construction ──────────────────────────────────────────────

    def _build_query(self, family: str, context: DrillDownContext, scope: ReportScope):
        metric = context.metric_id

        if family == "test-execution":
            executions = self._executions(context, scope)
            if metric == "testRunCount":
                run_ids = (
                    executions.with_entities(TestExecution.test_run_id.label("id"))
                    .order_by(None).subquery()
                )
                query = (
                    self.source.session.query(TestRun)
                    .filter(TestRun.id.in_(select(run_ids.c.id)))
                    .order_by(TestRun.created_at.desc(), TestRun.id.desc())
                )
                return "run", query, serialize_run
            if metric == "testCaseCount":
                case_ids = (
                    executions.with_entities(TestExecution.repository_case_id.label("id"))
                    .order_by(None).subquery()
                )
                query = (
                    self.source.session.query(RepositoryCase)
                    .filter(RepositoryCase.id.in_(select(case_ids.c.id)))
                    .order_by(RepositoryCase.created_at.desc(), RepositoryCase.id.desc())
                )
                return "case", query, serialize_case
            return "execution", executions, serialize_execution

        if family == "user-engagement":
            if metric == "createdCaseCount":
                query = self._apply(
                    self.source.cases_query(scope), context, CASE_FILTERS,
                    RepositoryCase.created_at, "case",
                )
                return "case", query.order_by(
                    RepositoryCase.created_at.desc(), RepositoryCase.id.desc()
                ), serialize_case
            if metric == "sessionResultCount":
                results = self._apply(
                    self.source.session_results_query(scope), context, SESSION_RESULT_FILTERS,
                    SessionResult.created_at, "session",
                )
                session_ids = (
                    results.with_entities(SessionResult.session_id.label("id"))
                    .order_by(None).subquery()
                )
                query = (
                    self.source.session.query(TestSession)
                    .filter(TestSession.id.in_(select(session_ids.c.id)))
                    .order_by(TestSession.created_at.desc(), TestSession.id.desc())
                )
                return "session", query, serialize_session
            return "execution", self._executions(context, scope), serialize_execution

        if family == "session-analysis":
            query = self._apply(
                self.source.sessions_query(scope), context, SESSION_FILTERS,
                TestSession.created_at, "session",
            )
            return "session", query.order_by(
                TestSession.created_at.desc(), TestSession.id.desc()
            ), serialize_session

        if family == "issue-tracking":
            query = self._apply(
                self.source.issues_query(scope), context, ISSUE_FILTERS,
                Issue.created_at, "issue",
            )
            return "issue", query.order_by(Issue.created_at.desc(), Issue.id.desc()), serialize_issue

        if family == "repository-stats":
            query = self._apply(
                self.source.cases_query(scope), context, CASE_FILTERS,
                RepositoryCase.created_at, "case",
            )
            return "case", query.order_by(
                RepositoryCase.created_at.desc(), RepositoryCase.id.desc()
            ), serialize_case

        raise ValidationError.from_errors(
            [("reportType", f"Drill-down is not available for {context.report_type} reports")]
        )

    def _executions(self, context: DrillDownContext, scope: ReportScope):
        include_untested = "status" in context.dimensions
        query = self.source.executions_query(scope, include_untested=include_untested)
        query = self._apply(query, context, EXECUTION_FILTERS, TestExecution.executed_at, "execution")
        return query.order_by(TestExecution.executed_at.desc(), TestExecution.id.desc())

    @staticmethod
    def _apply(query, context: DrillDownContext, filters: dict, date_column, entity: str):
        errors = []
        for dimension, value in context.dimensions.items():
            value_id = value.get("id")
            if dimension == "date":
                query = DrillDownResolver._apply_date(query, date_column, value, context)
            elif dimension in filters:
                query = filters[dimension](query, value_id)
            else:
                errors.append((
                    f"dimensions.{dimension}",
                    f"Cannot drill into {entity} records by '{dimension}'",
                ))
        if errors:
            raise ValidationError.from_errors(errors)
        return query

    @staticmethod
    def _apply_date(query, column, value: dict, context: DrillDownContext):
        raw = value.get("id") or value.get("executedAt") or value.get("createdAt")
        if raw is None:
            return query.filter(column.is_(None))
        try:
            instant = parse_iso_datetime(raw)
        except ValueError as exc:
            raise ValidationError.from_errors(
                [("dimensions.date", "Date dimension value must be an ISO 8601 date")]
            ) from exc
        grouping = value.get("grouping") or context.date_grouping or "daily"
        start, end = bucket_range(instant, grouping)
        return query.filter(column >= start, column < end)

    # ── Aggregates ──────────────────────────────────────────────────────

    def _status_aggregates(self, query, total: int) -> dict:
        breakdown = (
            query.order_by(None)
            .with_entities(
                Status.id, Status.name, Status.color, Status.is_success,
                func.count(TestExecution.id),
            )
            .group_by(Status.id, Status.name, Status.color, Status.is_success)
            .order_by(Status.id)
        )
        status_counts = []
        passed = 0
        for status_id, name, color, is_success, count in self.source.fetch(breakdown, "status breakdown"):
            status_counts.append({
                "statusId": status_id,
                "statusName": name,
                "color": color,
                "count": count,
            })
            if is_success:
                passed += count
        return {"statusCounts": status_counts, "passRate": percentage(passed, total)}
