"""
Report catalogue — the report kinds the engine can run.

Each kind lists the dimensions it can group by and the metrics it can
compute, keyed by their wire identifiers. Labels are stable, human-facing
strings: metric labels are the keys of every report row.

Cross-project variants share a ``family`` with their project-scoped
counterpart and add the ``project`` dimension.
"""

from dataclasses import dataclass, field

DATE_GROUPINGS = ("daily", "weekly", "monthly", "quarterly", "annually")
DEFAULT_DATE_GROUPING = "weekly"
SORT_DIRECTIONS = ("asc", "desc")


@dataclass(frozen=True)
class ReportKind:
    report_type: str
    family: str
    label: str
    dimensions: dict = field(default_factory=dict)
    metrics: dict = field(default_factory=dict)
    cross_project: bool = False
    date_field: str = "createdAt"
    requires_project: bool = False
    pre_aggregated: bool = False

    def to_dict(self) -> dict:
        return {
            "reportType": self.report_type,
            "label": self.label,
            "crossProject": self.cross_project,
            "requiresProject": self.requires_project,
            "preAggregated": self.pre_aggregated,
            "dateField": self.date_field,
            "dimensions": [{"id": k, "label": v} for k, v in self.dimensions.items()],
            "metrics": [{"id": k, "label": v} for k, v in self.metrics.items()],
        }


# ── Dimension & metric tables per family ─────────────────────────────────

_EXECUTION_DIMENSIONS = {
    "user": "User",
    "status": "Status",
    "testRun": "Test Run",
    "testCase": "Test Case",
    "milestone": "Milestone",
    "configuration": "Configuration",
    "date": "Execution Date",
}
_EXECUTION_METRICS = {
    "testResults": "Test Results Count",
    "passRate": "Pass Rate (%)",
    "avgElapsedTime": "Avg. Elapsed Time",
    "totalElapsedTime": "Total Elapsed Time",
    "testRunCount": "Test Runs Count",
    "testCaseCount": "Test Cases Count",
}

_ENGAGEMENT_DIMENSIONS = {
    "user": "User",
    "role": "Role",
    "date": "Activity Date",
}
_ENGAGEMENT_METRICS = {
    "executionCount": "Test Executions",
    "createdCaseCount": "Created Test Case Count",
    "sessionResultCount": "Session Result Count",
    "averageElapsed": "Average Time per Execution (seconds)",
    "lastActiveDate": "Last Active Date",
}

_HEALTH_DIMENSIONS = {
    "milestone": "Milestone",
    "creator": "Creator",
    "date": "Activity Date",
}
_HEALTH_METRICS = {
    "totalMilestones": "Total Milestones",
    "activeMilestones": "Active Milestones",
    "milestoneProgress": "Milestone Progress (%)",
    "completionRate": "Completion Rate (%)",
}

_SESSION_DIMENSIONS = {
    "session": "Session",
    "assignedTo": "Assigned To",
    "milestone": "Milestone",
    "state": "State",
    "creator": "Creator",
    "date": "Creation Date",
}
_SESSION_METRICS = {
    "sessionCount": "Session Count",
    "activeSessions": "Active Sessions",
    "completionRate": "Completion Rate (%)",
    "totalDuration": "Total Duration",
    "averageDuration": "Average Duration",
}

_ISSUE_DIMENSIONS = {
    "creator": "Creator",
    "issueType": "Issue Type",
    "status": "Status",
    "priority": "Priority",
    "date": "Creation Date",
}
_ISSUE_METRICS = {
    "issueCount": "Issue Count",
}

_REPOSITORY_DIMENSIONS = {
    "creator": "Creator",
    "source": "Source",
    "state": "State",
    "date": "Creation Date",
}
_REPOSITORY_METRICS = {
    "testCaseCount": "Test Case Count",
    "automatedCount": "Automated Cases",
    "manualCount": "Manual Cases",
    "automationRate": "Automation Rate (%)",
    "totalSteps": "Total Steps",
    "averageSteps": "Average Steps per Case",
}

_PROJECT_DIMENSION = {"project": "Project"}


def _pair(report_type, family, label, dimensions, metrics, **kwargs):
    """Project-scoped kind plus its cross-project variant."""
    return [
        ReportKind(report_type, family, label, dict(dimensions), dict(metrics), **kwargs),
        ReportKind(
            f"cross-project-{report_type}", family, f"{label} (Cross-Project)",
            {**dimensions, **_PROJECT_DIMENSION}, dict(metrics), cross_project=True, **kwargs,
        ),
    ]


REPORT_KINDS: dict[str, ReportKind] = {
    kind.report_type: kind
    for kind in [
        *_pair("test-execution", "test-execution", "Test Execution",
               _EXECUTION_DIMENSIONS, _EXECUTION_METRICS, date_field="executedAt"),
        *_pair("user-engagement", "user-engagement", "User Engagement",
               _ENGAGEMENT_DIMENSIONS, _ENGAGEMENT_METRICS),
        ReportKind("project-health", "project-health", "Project Health",
                   dict(_HEALTH_DIMENSIONS), dict(_HEALTH_METRICS), requires_project=True),
        ReportKind("session-analysis", "session-analysis", "Session Analysis",
                   dict(_SESSION_DIMENSIONS), dict(_SESSION_METRICS), requires_project=True),
        *_pair("issue-tracking", "issue-tracking", "Issue Tracking",
               _ISSUE_DIMENSIONS, _ISSUE_METRICS),
        *_pair("repository-stats", "repository-stats", "Repository Statistics",
               _REPOSITORY_DIMENSIONS, _REPOSITORY_METRICS),
        *_pair("flaky-tests", "flaky-tests", "Flaky Tests", {}, {},
               date_field="executedAt", pre_aggregated=True),
    ]
}

# Pre-aggregated kinds always return a single total and take no
# dimensions or metrics.
EXEMPT_REPORT_TYPES = frozenset(
    k.report_type for k in REPORT_KINDS.values() if k.pre_aggregated
)


def get_report_kind(report_type: str) -> ReportKind | None:
    return REPORT_KINDS.get(report_type)


def list_report_kinds() -> list[dict]:
    return [kind.to_dict() for kind in REPORT_KINDS.values()]
