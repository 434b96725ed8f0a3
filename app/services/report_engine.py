"""
Aggregation Engine.

Turns a validated ReportRequest into dimensioned, aggregated report rows:

  1. Resolve the record universe through ReportDataSource
     (project or cross-project scope, date range, live rows only)
  2. Group records by the combination of requested dimension values that
     actually occur; the date dimension is bucketed by ``dateGrouping``
  3. Compute every requested metric per group with the calculators
     registered for the report family
  4. Sort (requested column, else date ascending, else first dimension)
     with null values last, then paginate (``pageSize="All"`` disables it)

Each row carries its DimensionValues next to the metric labels so a
client can hand the row back for drill-down unchanged.
"""

import logging
import math
from collections import OrderedDict

from app.core.exceptions import ValidationError
from app.services.date_buckets import bucket_label, bucket_start
from app.services.flaky_detector import FlakyTestDetector
from app.services.report_catalog import get_report_kind, list_report_kinds
from app.services.report_data_source import ReportDataSource, ReportScope
from app.services.report_metrics import (
    ExecutionOutcome,
    MilestoneSnapshot,
    active_milestones,
    average,
    completion_rate,
    milestone_progress,
    pass_rate,
    percentage,
    total,
    total_milestones,
)
from app.services.report_validator import PAGE_SIZE_ALL
from app.utils.helpers import to_iso

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# AGGREGATION ENGINE
# ═════════════════════════════════════════════════════════════════════════════

class AggregationEngine:
    """Runs report requests and returns paginated report rows."""

    # ── Registry of record loaders per report family ─────────────────────
    _RUNNERS: dict = {}

    @classmethod
    def register(cls, family: str, *, metrics: dict, drop_empty_rows: bool = False):
        """Decorator to register a family's record loader and its metric calculators."""
        def decorator(fn):
            cls._RUNNERS[family] = {
                "load": fn,
                "metrics": metrics,
                "drop_empty_rows": drop_empty_rows,
            }
            return fn
        return decorator

    @classmethod
    def list_report_types(cls) -> list[dict]:
        return list_report_kinds()

    @classmethod
    def run(cls, request, data_source: ReportDataSource | None = None) -> dict:
        """Execute a validated report request.

        Returns:
            {"results": [...], "totalCount": int, "pageCount": int,
             "page": int, "pageSize": int | "All"}

        Data-source failures propagate as UpstreamError; nothing is
        swallowed here.
        """
        source = data_source or ReportDataSource()
        kind = get_report_kind(request.report_type)
        if kind is None:
            raise ValidationError.from_errors(
                [("reportType", f"Unsupported report type: {request.report_type}")]
            )

        if request.project_id is not None:
            source.get_project(request.project_id)
        scope = ReportScope(
            project_id=request.project_id,
            start_date=request.start_date,
            end_date=request.end_date,
        )

        if kind.pre_aggregated:
            return FlakyTestDetector(source).analyze(scope)

        runner = cls._RUNNERS[kind.family]
        records = runner["load"](source, scope)

        rows = cls._aggregate(
            records,
            dimensions=request.dimensions,
            metrics=[(m, kind.metrics[m], runner["metrics"][m]) for m in request.metrics],
            grouping=request.date_grouping,
            date_field=kind.date_field,
        )
        if runner["drop_empty_rows"]:
            labels = [kind.metrics[m] for m in request.metrics]
            rows = [row for row in rows if any(row[label] for label in labels)]

        cls._sort(rows, request, kind)
        result = cls._paginate(rows, request.page, request.page_size)

        logger.info(
            "Report %s project=%s records=%d rows=%d",
            request.report_type, request.project_id, len(records), len(rows),
        )
        return result

    # ── Grouping ─────────────────────────────────────────────────────────

    @staticmethod
    def _dimension_value(record: dict, dimension: str, grouping: str, date_field: str) -> dict:
        if dimension != "date":
            return record[dimension]
        if record["at"] is None:
            return {"id": None, "name": "None", date_field: None, "grouping": grouping}
        start = bucket_start(record["at"], grouping)
        iso = to_iso(start)
        return {"id": iso, "name": bucket_label(start, grouping), date_field: iso, "grouping": grouping}

    @classmethod
    def _aggregate(cls, records, *, dimensions, metrics, grouping, date_field) -> list[dict]:
        groups: OrderedDict = OrderedDict()
        for record in records:
            values = [cls._dimension_value(record, d, grouping, date_field) for d in dimensions]
            key = tuple(v["id"] for v in values)
            if key not in groups:
                groups[key] = (values, [])
            groups[key][1].append(record)

        rows = []
        for values, members in groups.values():
            row = {dim: value for dim, value in zip(dimensions, values)}
            for _, label, _ in metrics:
                row[label] = 0
            for _, label, calculator in metrics:
                row[label] = calculator(members)
            rows.append(row)
        return rows

    # ── Sorting & paging ─────────────────────────────────────────────────

    @staticmethod
    def _sort_key(row: dict, column: str, dimensions: list):
        value = row.get(column)
        if column in dimensions:
            if value is None or value.get("id") is None:
                return None
            if column == "date":
                return value["id"]
            return (str(value.get("name") or "").lower(), str(value["id"]))
        if isinstance(value, str):
            return value.lower()
        return value

    @classmethod
    def _sort(cls, rows: list, request, kind) -> None:
        column = request.sort_column
        descending = request.sort_direction == "desc"
        if column in kind.metrics:
            column = kind.metrics[column]

        known = set(request.dimensions) | {kind.metrics[m] for m in request.metrics}
        if column not in known:
            if "date" in request.dimensions:
                column, descending = "date", False
            elif request.dimensions:
                column, descending = request.dimensions[0], False
            else:
                return

        keyed = [(cls._sort_key(row, column, request.dimensions), row) for row in rows]
        present = [item for item in keyed if item[0] is not None]
        missing = [row for key, row in keyed if key is None]
        present.sort(key=lambda item: item[0], reverse=descending)
        rows[:] = [row for _, row in present] + missing

    @staticmethod
    def _paginate(rows: list, page: int, page_size) -> dict:
        total_count = len(rows)
        if page_size == PAGE_SIZE_ALL:
            results = rows
            page_count = 1 if rows else 0
        else:
            start = (page - 1) * page_size
            results = rows[start:start + page_size]
            page_count = math.ceil(total_count / page_size)
        return {
            "results": results,
            "totalCount": total_count,
            "pageCount": page_count,
            "page": page,
            "pageSize": page_size,
        }


# ═════════════════════════════════════════════════════════════════════════════
# METRIC TABLES PER REPORT FAMILY
# ═════════════════════════════════════════════════════════════════════════════

def _outcomes(records):
    return [ExecutionOutcome(r["isSuccess"], r["isFailure"], r["at"]) for r in records]


def _snapshots(records):
    return [MilestoneSnapshot(r["isStarted"], r["isCompleted"], r["isDeleted"]) for r in records]


def _of_kind(records, kind):
    return [r for r in records if r["kind"] == kind]


def _last_active(records):
    stamps = [r["at"] for r in records if r["at"] is not None]
    return to_iso(max(stamps)) if stamps else None


EXECUTION_METRICS = {
    "testResults": len,
    "passRate": lambda rs: pass_rate(_outcomes(rs)),
    "avgElapsedTime": lambda rs: average(r["elapsed"] for r in rs),
    "totalElapsedTime": lambda rs: total(r["elapsed"] for r in rs),
    "testRunCount": lambda rs: len({r["testRunId"] for r in rs}),
    "testCaseCount": lambda rs: len({r["testCaseId"] for r in rs}),
}

ENGAGEMENT_METRICS = {
    "executionCount": lambda rs: len(_of_kind(rs, "execution")),
    "createdCaseCount": lambda rs: len(_of_kind(rs, "case")),
    "sessionResultCount": lambda rs: len(_of_kind(rs, "sessionResult")),
    "averageElapsed": lambda rs: average(r["elapsed"] for r in _of_kind(rs, "execution")),
    "lastActiveDate": _last_active,
}

HEALTH_METRICS = {
    "totalMilestones": lambda rs: total_milestones(_snapshots(rs)),
    "activeMilestones": lambda rs: active_milestones(_snapshots(rs)),
    "milestoneProgress": lambda rs: milestone_progress(_snapshots(rs)),
    "completionRate": lambda rs: completion_rate(_snapshots(rs)),
}

SESSION_METRICS = {
    "sessionCount": len,
    "activeSessions": lambda rs: sum(1 for r in rs if not r["isCompleted"]),
    "completionRate": lambda rs: percentage(sum(1 for r in rs if r["isCompleted"]), len(rs)),
    "totalDuration": lambda rs: total(r["elapsed"] for r in rs),
    "averageDuration": lambda rs: average(r["elapsed"] for r in rs),
}

ISSUE_METRICS = {
    "issueCount": len,
}

REPOSITORY_METRICS = {
    "testCaseCount": len,
    "automatedCount": lambda rs: sum(1 for r in rs if r["automated"]),
    "manualCount": lambda rs: sum(1 for r in rs if not r["automated"]),
    "automationRate": lambda rs: percentage(sum(1 for r in rs if r["automated"]), len(rs)),
    "totalSteps": lambda rs: total(r["steps"] for r in rs),
    "averageSteps": lambda rs: average(r["steps"] for r in rs),
}


# ═════════════════════════════════════════════════════════════════════════════
# RECORD LOADERS
# ═════════════════════════════════════════════════════════════════════════════

@AggregationEngine.register("test-execution", metrics=EXECUTION_METRICS)
def _load_executions(source, scope):
    return source.execution_records(scope)


@AggregationEngine.register("user-engagement", metrics=ENGAGEMENT_METRICS)
def _load_engagement(source, scope):
    return source.engagement_records(scope)


@AggregationEngine.register("project-health", metrics=HEALTH_METRICS, drop_empty_rows=True)
def _load_milestones(source, scope):
    return source.milestone_records(scope)


@AggregationEngine.register("session-analysis", metrics=SESSION_METRICS)
def _load_sessions(source, scope):
    return source.session_records(scope)


@AggregationEngine.register("issue-tracking", metrics=ISSUE_METRICS)
def _load_issues(source, scope):
    return source.issue_records(scope)


@AggregationEngine.register("repository-stats", metrics=REPOSITORY_METRICS)
def _load_cases(source, scope):
    return source.case_records(scope)
