"""
Test Reporting Service
Reporting blueprint — report catalogue, aggregation, drill-down, flaky tests, export.

Endpoints:
    GET  /api/v1/reports/types                      — report kinds
    GET  /api/v1/reports/<report_type>/metadata     — dimensions & metrics of one kind
    POST /api/v1/reports/run                        — validate + aggregate
    POST /api/v1/reports/run/export?format=xlsx     — aggregate, all rows, as a file
    POST /api/v1/reports/drill-down                 — detail records behind one cell
    POST /api/v1/reports/drill-down/export          — drilled records as a file
    GET  /api/v1/reports/flaky-tests                — flaky test detection (date range, source filter)

Cross-project requests (no projectId) require the admin role.
"""

import logging
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from app.auth import has_role
from app.core.exceptions import (
    AccessDeniedError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.services.drilldown_service import MAX_LIMIT, DrillDownContext, DrillDownResolver
from app.services.export_service import (
    EXPORT_FORMATS,
    export_csv,
    export_xlsx,
    flatten_rows,
    report_columns,
)
from app.services.flaky_detector import FlakyTestDetector
from app.services.report_catalog import get_report_kind
from app.services.report_data_source import ReportDataSource, ReportScope
from app.services.report_engine import AggregationEngine
from app.services.report_validator import PAGE_SIZE_ALL, validate_date_range, validate_or_raise
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

reporting_bp = Blueprint("reporting", __name__, url_prefix="/api/v1/reports")

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ── Error handlers ──────────────────────────────────────────────────────

@reporting_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@reporting_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@reporting_bp.errorhandler(AccessDeniedError)
def _handle_forbidden(error: AccessDeniedError):
    return api_error(E.FORBIDDEN, str(error))


@reporting_bp.errorhandler(UpstreamError)
def _handle_upstream(error: UpstreamError):
    logger.error("Upstream failure during %s: %s", error.operation, error.cause)
    return api_error(E.UPSTREAM, "Report data is temporarily unavailable")


@reporting_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in reporting_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _require_cross_project_access(project_id) -> None:
    if project_id is None and not has_role("admin"):
        raise AccessDeniedError("Cross-project reports require the admin role")


def _send(buf, fmt: str, stem: str):
    filename = f"{stem}_{datetime.now().strftime('%Y%m%d')}.{fmt}"
    mimetype = XLSX_MIMETYPE if fmt == "xlsx" else "text/csv"
    return send_file(buf, download_name=filename, mimetype=mimetype, as_attachment=True)


def _export_format() -> str:
    fmt = (request.args.get("format") or "xlsx").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError.from_errors([("format", "format must be 'xlsx' or 'csv'")])
    return fmt


# ═════════════════════════════════════════════════════════════════════════
# Catalogue
# ═════════════════════════════════════════════════════════════════════════

@reporting_bp.route("/types", methods=["GET"])
def list_report_types():
    """GET /api/v1/reports/types — every report kind with its dimensions and metrics."""
    return jsonify({"reportTypes": AggregationEngine.list_report_types()}), 200


@reporting_bp.route("/<report_type>/metadata", methods=["GET"])
def report_metadata(report_type):
    """GET /api/v1/reports/<report_type>/metadata — dimensions and metrics of one kind."""
    kind = get_report_kind(report_type)
    if kind is None:
        raise NotFoundError(resource="Report type", resource_id=report_type)
    return jsonify(kind.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Aggregation
# ═════════════════════════════════════════════════════════════════════════

@reporting_bp.route("/run", methods=["POST"])
def run_report():
    """
    POST /api/v1/reports/run
    Body: ReportRequest (reportType, dimensions, metrics, projectId, …)
    Returns {results, totalCount, pageCount, page, pageSize}.
    """
    report_request = validate_or_raise(request.get_json(silent=True) or {})
    _require_cross_project_access(report_request.project_id)
    return jsonify(AggregationEngine.run(report_request)), 200


@reporting_bp.route("/run/export", methods=["POST"])
def export_report():
    """POST /api/v1/reports/run/export?format=xlsx|csv — every row of a report as a file."""
    fmt = _export_format()
    payload = dict(request.get_json(silent=True) or {})
    payload["pageSize"] = PAGE_SIZE_ALL
    payload["page"] = 1
    report_request = validate_or_raise(payload)
    _require_cross_project_access(report_request.project_id)

    kind = get_report_kind(report_request.report_type)
    if kind.pre_aggregated:
        raise ValidationError.from_errors(
            [("reportType", f"{kind.report_type} reports cannot be exported")]
        )
    report = AggregationEngine.run(report_request)
    columns = report_columns(kind, report_request.dimensions, report_request.metrics)
    headers, values = flatten_rows(report["results"], columns)

    if fmt == "xlsx":
        buf = export_xlsx(kind.label, headers, values)
    else:
        buf = export_csv(headers, values)
    return _send(buf, fmt, report_request.report_type)


# ═════════════════════════════════════════════════════════════════════════
# Drill-down
# ═════════════════════════════════════════════════════════════════════════

def _drill_payload():
    body = request.get_json(silent=True) or {}
    context = DrillDownContext.from_dict(body.get("context", body))
    _require_cross_project_access(context.project_id)
    return body, context


@reporting_bp.route("/drill-down", methods=["POST"])
def drill_down():
    """
    POST /api/v1/reports/drill-down
    Body: {"context": DrillDownContext, "offset": 0, "limit": 50}
    Returns {data, total, hasMore, context, aggregates?}.
    """
    body, context = _drill_payload()
    default_limit = current_app.config.get("DRILLDOWN_DEFAULT_LIMIT", 50)
    try:
        offset = int(body.get("offset", 0))
        limit = int(body.get("limit", default_limit))
    except (TypeError, ValueError) as exc:
        raise ValidationError.from_errors(
            [("offset", "offset and limit must be integers")]
        ) from exc
    limit = min(limit, current_app.config.get("DRILLDOWN_MAX_LIMIT", MAX_LIMIT))
    return jsonify(DrillDownResolver().resolve(context, offset, limit)), 200


@reporting_bp.route("/drill-down/export", methods=["POST"])
def export_drill_down():
    """POST /api/v1/reports/drill-down/export?format=xlsx|csv — every drilled record as a file."""
    fmt = _export_format()
    _, context = _drill_payload()
    resolver = DrillDownResolver()
    max_rows = current_app.config.get("EXPORT_MAX_ROWS", 10000)

    records, offset = [], 0
    while len(records) < max_rows:
        page = resolver.resolve(context, offset, MAX_LIMIT)
        records.extend(page["data"])
        if not page["hasMore"]:
            break
        offset += len(page["data"])

    headers, values = flatten_rows(records[:max_rows])
    title = context.metric_label or context.metric_id
    if fmt == "xlsx":
        buf = export_xlsx(f"Drill-down {title}", headers, values)
    else:
        buf = export_csv(headers, values)
    return _send(buf, fmt, f"{context.report_type}_drilldown")


# ═════════════════════════════════════════════════════════════════════════
# Flaky tests
# ═════════════════════════════════════════════════════════════════════════

@reporting_bp.route("/flaky-tests", methods=["GET"])
def flaky_tests():
    """
    GET /api/v1/reports/flaky-tests?projectId=&consecutiveRuns=&flipThreshold=
                                    &startDate=&endDate=&automatedFilter=all|automated|manual
    Returns {data, total, consecutiveRuns, flipThreshold}.
    """
    project_id = request.args.get("projectId", type=int)
    _require_cross_project_access(project_id)
    start_date, end_date = validate_date_range(request.args)

    source = ReportDataSource()
    if project_id is not None:
        source.get_project(project_id)

    result = FlakyTestDetector(source).analyze(
        ReportScope(project_id=project_id, start_date=start_date, end_date=end_date),
        consecutive_runs=request.args.get(
            "consecutiveRuns", current_app.config.get("FLAKY_DEFAULT_RUNS", 10)
        ),
        flip_threshold=request.args.get(
            "flipThreshold", current_app.config.get("FLAKY_DEFAULT_THRESHOLD", 5)
        ),
        automated_filter=request.args.get("automatedFilter", "all"),
    )
    return jsonify(result), 200
