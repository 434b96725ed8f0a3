"""
Report request validation — unit tests.

Covers:
  - forbidden dimension pairs for test-execution (every pair of the table)
  - date range rules (endDate without startDate, inverted range)
  - lastActiveDate restrictions for user-engagement
  - metric / dimension presence rules and the pre-aggregated exemption
  - catalogue membership (unknown dimension, metric, report type)
  - all violations reported together
  - ValidationError wiring (details keyed by field)
"""

import pytest

from app.core.exceptions import ValidationError
from app.services.report_validator import (
    FORBIDDEN_DIMENSION_PAIRS,
    PAGE_SIZE_ALL,
    ReportRequest,
    validate,
    validate_or_raise,
)


def _execution(dimensions, metrics, **extra):
    return {"reportType": "test-execution", "projectId": 1,
            "dimensions": dimensions, "metrics": metrics, **extra}


def _messages(errors):
    return [msg for _, msg in errors]


# ── Dimension incompatibilities ──────────────────────────────────────────


class TestForbiddenDimensionPairs:
    def test_status_and_test_case_rejected_naming_both(self):
        errors = validate(_execution(["status", "testCase"], ["testResults", "passRate"]))
        assert errors
        assert any("'status'" in m and "'testCase'" in m for m in _messages(errors))

    def test_user_status_date_accepted(self):
        assert validate(_execution(["user", "status", "date"], ["testResults"])) == []

    @pytest.mark.parametrize("first,second", FORBIDDEN_DIMENSION_PAIRS)
    def test_every_pair_in_table_rejected(self, first, second):
        errors = validate(_execution([first, second], ["testResults"]))
        assert any(
            f"'{first}'" in m and f"'{second}'" in m for m in _messages(errors)
        ), errors

    @pytest.mark.parametrize("first,second", FORBIDDEN_DIMENSION_PAIRS)
    def test_pair_rejected_regardless_of_order(self, first, second):
        assert validate(_execution([second, first], ["testResults"]))

    def test_pair_rejected_with_extra_dimensions(self):
        errors = validate(_execution(["configuration", "user", "testRun"], ["testResults"]))
        msgs = _messages(errors)
        assert "The 'user' and 'testRun' dimensions cannot be used together" in msgs
        assert "The 'configuration' and 'testRun' dimensions cannot be used together" in msgs

    def test_cross_project_execution_applies_same_table(self):
        payload = _execution(["project", "user", "milestone"], ["testResults"])
        payload["reportType"] = "cross-project-test-execution"
        payload.pop("projectId")
        assert "The 'user' and 'milestone' dimensions cannot be used together" in _messages(
            validate(payload)
        )

    def test_pairs_only_apply_to_execution_reports(self):
        payload = {"reportType": "session-analysis", "projectId": 1,
                   "dimensions": ["milestone", "state"], "metrics": ["sessionCount"]}
        assert validate(payload) == []


# ── Dates ────────────────────────────────────────────────────────────────


class TestDateRange:
    def test_end_date_without_start_date_rejected(self):
        errors = validate(_execution(["user"], ["testResults"], endDate="2024-03-31"))
        assert ("startDate", "startDate is required when endDate is set") in errors

    def test_start_after_end_rejected(self):
        errors = validate(_execution(
            ["user"], ["testResults"], startDate="2024-04-01", endDate="2024-03-01",
        ))
        assert ("startDate", "startDate must be on or before endDate") in errors

    def test_same_day_range_accepted(self):
        assert validate(_execution(
            ["user"], ["testResults"], startDate="2024-03-01", endDate="2024-03-01",
        )) == []

    def test_start_date_alone_accepted(self):
        assert validate(_execution(["user"], ["testResults"], startDate="2024-03-01")) == []

    def test_malformed_date_rejected(self):
        errors = validate(_execution(["user"], ["testResults"], startDate="March 1st"))
        assert ("startDate", "startDate must be an ISO 8601 date") in errors


# ── lastActiveDate ───────────────────────────────────────────────────────


def _engagement(dimensions, metrics):
    return {"reportType": "user-engagement", "projectId": 1,
            "dimensions": dimensions, "metrics": metrics}


class TestLastActiveDate:
    def test_with_date_dimension_rejected(self):
        errors = validate(_engagement(["date"], ["lastActiveDate"]))
        assert "The 'lastActiveDate' metric cannot be used with the 'date' dimension" in _messages(errors)

    def test_with_user_and_other_dimension_rejected(self):
        errors = validate(_engagement(["user", "status"], ["lastActiveDate"]))
        assert (
            "The 'lastActiveDate' metric can only be used with the 'user' dimension alone"
            in _messages(errors)
        )

    def test_with_user_and_role_rejected(self):
        assert validate(_engagement(["user", "role"], ["lastActiveDate"]))

    def test_with_user_alone_accepted(self):
        assert validate(_engagement(["user"], ["lastActiveDate"])) == []


# ── Metric / dimension presence ──────────────────────────────────────────


class TestPresenceRules:
    def test_no_metric_rejected(self):
        errors = validate(_execution(["user"], []))
        assert ("metrics", "At least one metric is required") in errors

    def test_several_metrics_need_a_dimension(self):
        errors = validate(_execution([], ["testResults", "passRate"]))
        assert (
            "dimensions",
            "At least one dimension is required when more than one metric is selected",
        ) in errors

    def test_single_metric_without_dimension_accepted(self):
        assert validate(_execution([], ["testResults"])) == []

    @pytest.mark.parametrize("report_type", ["flaky-tests", "cross-project-flaky-tests"])
    def test_pre_aggregated_kinds_need_no_metric(self, report_type):
        assert validate({"reportType": report_type, "projectId": 1}) == []

    @pytest.mark.parametrize("report_type", ["project-health", "session-analysis"])
    def test_project_only_kinds_need_project(self, report_type):
        errors = validate({"reportType": report_type, "dimensions": [],
                           "metrics": ["completionRate"]})
        assert ("projectId", f"projectId is required for {report_type} reports") in errors


# ── Catalogue membership ─────────────────────────────────────────────────


class TestCatalogue:
    def test_unknown_report_type(self):
        errors = validate({"reportType": "velocity", "metrics": ["x"]})
        assert ("reportType", "Unsupported report type: velocity") in errors

    def test_missing_report_type(self):
        assert ("reportType", "reportType is required") in validate({"metrics": ["x"]})

    def test_unknown_dimension_and_metric(self):
        errors = validate(_execution(["browser"], ["flakiness"]))
        assert ("dimensions[0]", "Unsupported dimension: browser") in errors
        assert ("metrics[0]", "Unsupported metric: flakiness") in errors

    def test_project_dimension_only_for_cross_project(self):
        errors = validate(_execution(["project"], ["testResults"]))
        assert ("dimensions[0]", "Unsupported dimension: project") in errors

    def test_duplicate_dimension(self):
        errors = validate(_execution(["user", "user"], ["testResults"]))
        assert ("dimensions[1]", "Dimension 'user' is listed more than once") in errors

    def test_non_object_payload(self):
        assert validate(["test-execution"]) == [("", "Report request must be a JSON object")]


# ── Paging & sorting shape ───────────────────────────────────────────────


class TestPagingShape:
    def test_page_size_all_accepted(self):
        assert validate(_execution(["user"], ["testResults"], pageSize="All")) == []

    @pytest.mark.parametrize("page_size", [0, -5, "ten", 2.5])
    def test_bad_page_size_rejected(self, page_size):
        errors = validate(_execution(["user"], ["testResults"], pageSize=page_size))
        assert ("pageSize", "pageSize must be a positive integer or 'All'") in errors

    def test_bad_sort_direction_and_grouping(self):
        errors = validate(_execution(
            ["date"], ["testResults"], sortDirection="sideways", dateGrouping="hourly",
        ))
        fields = {f for f, _ in errors}
        assert {"sortDirection", "dateGrouping"} <= fields


# ── Aggregated reporting of violations ───────────────────────────────────


class TestAllViolationsReported:
    def test_every_rule_reported_in_one_pass(self):
        errors = validate({
            "reportType": "test-execution",
            "projectId": 1,
            "dimensions": ["status", "testCase"],
            "metrics": [],
            "endDate": "2024-03-01",
            "pageSize": 0,
        })
        fields = {f for f, _ in errors}
        assert {"dimensions", "metrics", "startDate", "pageSize"} <= fields

    def test_validate_or_raise_carries_details(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_or_raise(_execution(["status", "testRun"], ["testResults"],
                                         endDate="2024-03-01"))
        details = exc_info.value.details
        assert details["dimensions"] == [
            "The 'status' and 'testRun' dimensions cannot be used together"
        ]
        assert details["startDate"] == ["startDate is required when endDate is set"]
        assert "cannot be used together" in str(exc_info.value)

    def test_validate_or_raise_builds_request(self):
        request = validate_or_raise(_execution(
            ["user", "date"], ["testResults"],
            startDate="2024-03-01", endDate="2024-03-31",
            pageSize="All", sortDirection="DESC", dateGrouping="monthly",
        ))
        assert isinstance(request, ReportRequest)
        assert request.project_id == 1
        assert request.page_size == PAGE_SIZE_ALL
        assert request.sort_direction == "desc"
        assert request.date_grouping == "monthly"
        assert request.start_date.isoformat() == "2024-03-01T00:00:00+00:00"
        assert request.end_date.date().isoformat() == "2024-03-31"
        assert request.end_date.hour == 23
        assert not request.is_cross_project

    def test_request_defaults(self):
        request = validate_or_raise({"reportType": "cross-project-issue-tracking",
                                     "metrics": ["issueCount"]})
        assert request.is_cross_project
        assert request.page == 1
        assert request.page_size == 10
        assert request.date_grouping == "weekly"
