"""
Report request validation.

Rejects requests that would produce meaningless or misleading aggregates
before any query runs. Every rule is evaluated; the caller gets the full
list of ``(field path, message)`` pairs in one round trip.

Rules:
  - endDate requires startDate, and startDate <= endDate
  - at least one metric (pre-aggregated kinds excepted)
  - more than one metric needs at least one dimension (same exception)
  - user-engagement: lastActiveDate cannot be grouped by date
  - lastActiveDate only with the user dimension alone
  - test-execution: forbidden dimension pairs (FORBIDDEN_DIMENSION_PAIRS)
  - dimensions / metrics must belong to the report kind, no duplicates
  - page, pageSize, sortDirection and dateGrouping shape checks
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.core.exceptions import ValidationError
from app.services.report_catalog import (
    DATE_GROUPINGS,
    DEFAULT_DATE_GROUPING,
    EXEMPT_REPORT_TYPES,
    SORT_DIRECTIONS,
    get_report_kind,
)
from app.utils.helpers import parse_iso_datetime

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
PAGE_SIZE_ALL = "All"

EXECUTION_REPORT_TYPES = frozenset({"test-execution", "cross-project-test-execution"})
USER_ENGAGEMENT_REPORT_TYPES = frozenset({"user-engagement", "cross-project-user-engagement"})

# Each pair is checked as a subset of the requested dimension set, so a
# pair is rejected however many other dimensions accompany it. Order
# inside a pair only affects the wording of the message.
FORBIDDEN_DIMENSION_PAIRS = [
    ("testRun", "testCase"),
    ("status", "testCase"),
    ("status", "testRun"),
    ("status", "milestone"),
    ("user", "testRun"),
    ("user", "milestone"),
    ("user", "testCase"),
    ("configuration", "testRun"),
    ("configuration", "testCase"),
    ("configuration", "milestone"),
    ("date", "testRun"),
    ("date", "testCase"),
    ("date", "milestone"),
    ("testRun", "milestone"),
    ("testCase", "milestone"),
]


@dataclass
class ReportRequest:
    report_type: str
    dimensions: list = field(default_factory=list)
    metrics: list = field(default_factory=list)
    project_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = 1
    page_size: int | str = DEFAULT_PAGE_SIZE
    sort_column: str | None = None
    sort_direction: str = "asc"
    date_grouping: str = DEFAULT_DATE_GROUPING

    @property
    def is_cross_project(self) -> bool:
        return self.project_id is None

    @classmethod
    def from_dict(cls, payload: dict) -> "ReportRequest":
        """Build from an already validated wire payload."""
        page_size = payload.get("pageSize", DEFAULT_PAGE_SIZE)
        return cls(
            report_type=payload["reportType"],
            dimensions=list(payload.get("dimensions") or []),
            metrics=list(payload.get("metrics") or []),
            project_id=_to_int(payload.get("projectId")),
            start_date=parse_iso_datetime(payload.get("startDate")),
            end_date=parse_iso_datetime(payload.get("endDate"), end_of_day=True),
            page=int(payload.get("page") or 1),
            page_size=PAGE_SIZE_ALL if page_size == PAGE_SIZE_ALL else int(page_size),
            sort_column=payload.get("sortColumn") or None,
            sort_direction=(payload.get("sortDirection") or "asc").lower(),
            date_grouping=payload.get("dateGrouping") or DEFAULT_DATE_GROUPING,
        )

    def to_dict(self) -> dict:
        return {
            "reportType": self.report_type,
            "dimensions": list(self.dimensions),
            "metrics": list(self.metrics),
            "projectId": self.project_id,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "page": self.page,
            "pageSize": self.page_size,
            "sortColumn": self.sort_column,
            "sortDirection": self.sort_direction,
            "dateGrouping": self.date_grouping,
        }


def _to_int(value):
    if value is None or value == "":
        return None
    return int(value)


def _is_positive_int(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 1
    if isinstance(value, str) and value.isdigit():
        return int(value) >= 1
    return False


def dimension_pair_message(first: str, second: str) -> str:
    return f"The '{first}' and '{second}' dimensions cannot be used together"


# ── Rule groups ──────────────────────────────────────────────────────────


def _check_dates(payload: dict, errors: list) -> None:
    start_raw, end_raw = payload.get("startDate"), payload.get("endDate")
    start = end = None
    try:
        start = parse_iso_datetime(start_raw)
    except ValueError:
        errors.append(("startDate", "startDate must be an ISO 8601 date"))
    try:
        end = parse_iso_datetime(end_raw, end_of_day=True)
    except ValueError:
        errors.append(("endDate", "endDate must be an ISO 8601 date"))

    if end_raw and not start_raw:
        errors.append(("startDate", "startDate is required when endDate is set"))
    elif start and end and start > end:
        errors.append(("startDate", "startDate must be on or before endDate"))


def _check_paging(payload: dict, errors: list) -> None:
    if "page" in payload and not _is_positive_int(payload["page"]):
        errors.append(("page", "page must be a positive integer"))

    page_size = payload.get("pageSize", DEFAULT_PAGE_SIZE)
    if page_size != PAGE_SIZE_ALL and not _is_positive_int(page_size):
        errors.append(("pageSize", "pageSize must be a positive integer or 'All'"))

    direction = payload.get("sortDirection")
    if direction and str(direction).lower() not in SORT_DIRECTIONS:
        errors.append(("sortDirection", "sortDirection must be 'asc' or 'desc'"))

    grouping = payload.get("dateGrouping")
    if grouping and grouping not in DATE_GROUPINGS:
        errors.append((
            "dateGrouping",
            f"dateGrouping must be one of: {', '.join(DATE_GROUPINGS)}",
        ))

    project_id = payload.get("projectId")
    if project_id not in (None, "") and not _is_positive_int(project_id):
        errors.append(("projectId", "projectId must be a positive integer"))


def _check_catalog(kind, dimensions: list, metrics: list, errors: list) -> None:
    seen = set()
    for index, dim in enumerate(dimensions):
        if dim in seen:
            errors.append((f"dimensions[{index}]", f"Dimension '{dim}' is listed more than once"))
        seen.add(dim)
        if dim not in kind.dimensions:
            errors.append((f"dimensions[{index}]", f"Unsupported dimension: {dim}"))

    for index, metric in enumerate(metrics):
        if metric not in kind.metrics:
            errors.append((f"metrics[{index}]", f"Unsupported metric: {metric}"))


def _check_combinations(report_type: str, dimensions: list, metrics: list, errors: list) -> None:
    exempt = report_type in EXEMPT_REPORT_TYPES
    dim_set = set(dimensions)

    if not exempt and not metrics:
        errors.append(("metrics", "At least one metric is required"))

    if not exempt and len(metrics) > 1 and not dimensions:
        errors.append((
            "dimensions",
            "At least one dimension is required when more than one metric is selected",
        ))

    if "lastActiveDate" in metrics:
        if report_type in USER_ENGAGEMENT_REPORT_TYPES and "date" in dim_set:
            errors.append((
                "metrics",
                "The 'lastActiveDate' metric cannot be used with the 'date' dimension",
            ))
        if dim_set != {"user"}:
            errors.append((
                "dimensions",
                "The 'lastActiveDate' metric can only be used with the 'user' dimension alone",
            ))

    if report_type in EXECUTION_REPORT_TYPES:
        for first, second in FORBIDDEN_DIMENSION_PAIRS:
            if {first, second} <= dim_set:
                errors.append(("dimensions", dimension_pair_message(first, second)))


# ── Public API ───────────────────────────────────────────────────────────


def validate(payload) -> list[tuple[str, str]]:
    """Return every violation in a raw report request; empty when valid."""
    if not isinstance(payload, dict):
        return [("", "Report request must be a JSON object")]

    errors: list[tuple[str, str]] = []
    report_type = payload.get("reportType")
    kind = get_report_kind(report_type) if isinstance(report_type, str) else None
    if not report_type:
        errors.append(("reportType", "reportType is required"))
    elif kind is None:
        errors.append(("reportType", f"Unsupported report type: {report_type}"))

    dimensions = payload.get("dimensions") or []
    metrics = payload.get("metrics") or []
    if not isinstance(dimensions, list):
        errors.append(("dimensions", "dimensions must be a list"))
        dimensions = []
    if not isinstance(metrics, list):
        errors.append(("metrics", "metrics must be a list"))
        metrics = []
    for name, values in (("dimensions", dimensions), ("metrics", metrics)):
        for index, value in enumerate(values):
            if not isinstance(value, str):
                errors.append((f"{name}[{index}]", f"{name} entries must be strings"))
    dimensions = [d for d in dimensions if isinstance(d, str)]
    metrics = [m for m in metrics if isinstance(m, str)]

    _check_dates(payload, errors)
    _check_paging(payload, errors)

    if kind is not None:
        _check_catalog(kind, dimensions, metrics, errors)
        _check_combinations(kind.report_type, dimensions, metrics, errors)
        if kind.requires_project and payload.get("projectId") in (None, ""):
            errors.append(("projectId", f"projectId is required for {kind.report_type} reports"))

    return errors


def validate_or_raise(payload) -> ReportRequest:
    """Validate a raw request and build a ReportRequest, or raise ValidationError."""
    errors = validate(payload)
    if errors:
        logger.info(
            "Rejected report request type=%s errors=%d",
            payload.get("reportType") if isinstance(payload, dict) else None, len(errors),
        )
        raise ValidationError.from_errors(errors)
    return ReportRequest.from_dict(payload)


def validate_date_range(payload) -> tuple[datetime | None, datetime | None]:
    """Check an optional ``startDate``/``endDate`` pair and return it parsed.

    ``endDate`` covers its whole day. Raises ValidationError with every
    date violation found.
    """
    errors = []
    _check_dates(payload, errors)
    if errors:
        raise ValidationError.from_errors(errors)
    return (
        parse_iso_datetime(payload.get("startDate")),
        parse_iso_datetime(payload.get("endDate"), end_of_day=True),
    )
