"""
Flaky test detection — unit and integration tests.

Covers:
  - status flip counting (non-definitive outcomes skipped)
  - window / threshold clamping
  - detector output against an in-memory history
  - configuration correlation
  - end-to-end detection over stored executions and the HTTP endpoint,
    including date-range and automated/manual source filtering
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ValidationError
from app.models import db
from app.models.testing import RepositoryCase, TestExecution, TestRun
from app.services.flaky_detector import (
    FlakyTestDetector,
    clamp_parameters,
    count_status_flips,
    has_required_flakiness,
)
from app.services.report_data_source import ReportDataSource, ReportScope
from app.services.report_engine import AggregationEngine
from app.services.report_metrics import ExecutionOutcome
from app.services.report_validator import validate_or_raise

PASS = ExecutionOutcome(is_success=True, is_failure=False)
FAIL = ExecutionOutcome(is_success=False, is_failure=True)
BLOCKED = ExecutionOutcome(is_success=False, is_failure=False)


class TestCountStatusFlips:
    @pytest.mark.parametrize("outcomes,expected", [
        ([], 0),
        ([PASS], 0),
        ([PASS, FAIL], 1),
        ([PASS, FAIL, PASS, FAIL], 3),
        ([PASS, PASS, PASS], 0),
        ([PASS, BLOCKED, PASS], 0),
        ([PASS, BLOCKED, BLOCKED, FAIL], 1),
        ([BLOCKED, BLOCKED], 0),
        ([BLOCKED, FAIL, BLOCKED, PASS, BLOCKED], 1),
    ])
    def test_flip_count(self, outcomes, expected):
        assert count_status_flips(outcomes) == expected

    def test_single_direction_trend_is_one_flip(self):
        assert count_status_flips([FAIL, FAIL, FAIL, PASS, PASS, PASS]) == 1

    def test_accepts_any_iterable(self):
        assert count_status_flips(iter([FAIL, PASS, FAIL])) == 2


class TestRequiredFlakiness:
    def test_needs_success_and_failure(self):
        assert has_required_flakiness([PASS, BLOCKED, FAIL])
        assert not has_required_flakiness([PASS, BLOCKED, PASS])
        assert not has_required_flakiness([])


class TestClampParameters:
    @pytest.mark.parametrize("runs,threshold,expected", [
        (None, None, (10, 5)),
        (2, 1, (5, 2)),
        (100, 50, (30, 29)),
        (10, 20, (10, 9)),
        ("abc", "xyz", (10, 5)),
        ("8", "3", (8, 3)),
    ])
    def test_clamping(self, runs, threshold, expected):
        assert clamp_parameters(runs, threshold) == expected


# ── Detector over an in-memory history ───────────────────────────────────


def _execution(idx, outcome, config="Chrome"):
    name = "Passed" if outcome.is_success else "Failed" if outcome.is_failure else "Blocked"
    return {
        "id": idx,
        "testRunId": 100 + idx,
        "executedAt": datetime(2024, 3, 1, tzinfo=timezone.utc) + timedelta(days=idx),
        "status": {
            "name": name,
            "color": "#000000",
            "isSuccess": outcome.is_success,
            "isFailure": outcome.is_failure,
        },
        "configuration": {"id": 1, "name": config} if config else None,
    }


class _StaticHistory:
    """Data source stub returning a fixed newest-first history."""

    def __init__(self, history):
        self.history = history
        self.limits = []
        self.sources = []

    def recent_executions(self, scope, *, limit, sources=None):
        self.limits.append(limit)
        self.sources.append(sources)
        return [(case, list(reversed(executions[-limit:]))) for case, executions in self.history]


def _case(case_id, name):
    return {"id": case_id, "name": name, "source": "JUNIT",
            "project": {"id": 1, "name": "Checkout"}}


class TestFlakyTestDetector:
    def test_flags_case_at_threshold(self):
        alternating = [_execution(i, PASS if i % 2 else FAIL) for i in range(6)]
        stable = [_execution(i, PASS) for i in range(6)]
        source = _StaticHistory([(_case(1, "Login"), alternating), (_case(2, "Cart"), stable)])

        result = FlakyTestDetector(source).analyze(ReportScope(project_id=1))

        assert result["total"] == 1
        assert result["consecutiveRuns"] == 10
        assert result["flipThreshold"] == 5
        flagged = result["data"][0]
        assert flagged["testCaseId"] == 1
        assert flagged["flipCount"] == 5
        assert flagged["executionCount"] == 6
        executed = [e["executedAt"] for e in flagged["executions"]]
        assert executed == sorted(executed)

    def test_blocked_noise_is_not_flaky(self):
        noisy = [_execution(i, PASS if i % 2 else BLOCKED) for i in range(10)]
        source = _StaticHistory([(_case(1, "Login"), noisy)])
        result = FlakyTestDetector(source).analyze(ReportScope(), flip_threshold=2)
        assert result["data"] == []

    def test_window_limits_history(self):
        history = [_execution(i, FAIL if i < 10 else PASS if i % 2 else FAIL) for i in range(15)]
        source = _StaticHistory([(_case(1, "Login"), history)])
        result = FlakyTestDetector(source).analyze(
            ReportScope(), consecutive_runs=5, flip_threshold=4,
        )
        assert source.limits == [5]
        assert result["data"][0]["executionCount"] == 5
        assert result["data"][0]["flipCount"] == 4

    def test_ranked_by_flip_count(self):
        few = [_execution(i, PASS if i < 3 else FAIL if i < 5 else PASS) for i in range(7)]
        many = [_execution(i, PASS if i % 2 else FAIL) for i in range(7)]
        source = _StaticHistory([(_case(1, "Few"), few), (_case(2, "Many"), many)])
        result = FlakyTestDetector(source).analyze(ReportScope(), flip_threshold=2)
        assert [row["testCaseName"] for row in result["data"]] == ["Many", "Few"]

    def test_configuration_correlation(self):
        history = []
        for i in range(8):
            failing = i % 2 == 0
            history.append(_execution(i, FAIL if failing else PASS,
                                      config="Firefox" if failing else "Chrome"))
        source = _StaticHistory([(_case(1, "Login"), history)])
        flagged = FlakyTestDetector(source).analyze(ReportScope())["data"][0]
        assert flagged["configurationCorrelation"] == {
            "configuration": "Firefox", "failureRatio": 1.0,
        }

    def test_no_correlation_on_single_configuration(self):
        history = [_execution(i, PASS if i % 2 else FAIL) for i in range(8)]
        source = _StaticHistory([(_case(1, "Login"), history)])
        flagged = FlakyTestDetector(source).analyze(ReportScope())["data"][0]
        assert flagged["configurationCorrelation"] is None

    def test_source_filter_passed_to_history(self):
        source = _StaticHistory([])
        detector = FlakyTestDetector(source)
        detector.analyze(ReportScope(), automated_filter="automated")
        detector.analyze(ReportScope(), automated_filter="manual")
        detector.analyze(ReportScope())
        assert "JUNIT" in source.sources[0] and "MANUAL" not in source.sources[0]
        assert source.sources[1] == {"MANUAL", "API"}
        assert source.sources[2] is None


# ── Stored executions ────────────────────────────────────────────────────


@pytest.fixture()
def flaky_history(seed):
    """Login alternates pass/fail across eight runs; Cart passes every time."""
    base = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)
    for i in range(8):
        run = TestRun(project_id=seed.project.id, name=f"Nightly {i}",
                      configuration_id=seed.firefox.id if i % 2 else seed.chrome.id)
        db.session.add(run)
        db.session.flush()
        login_status = seed.statuses.failed if i % 2 else seed.statuses.passed
        for case, status in ((seed.login, login_status), (seed.cart, seed.statuses.passed)):
            db.session.add(TestExecution(
                test_run_id=run.id, repository_case_id=case.id,
                status_id=status.id, executed_at=base + timedelta(days=i),
            ))
    db.session.commit()
    return seed


class TestStoredHistory:
    def test_detects_alternating_case(self, flaky_history):
        result = FlakyTestDetector(ReportDataSource()).analyze(
            ReportScope(project_id=flaky_history.project.id),
        )
        assert [row["testCaseName"] for row in result["data"]] == ["Login works"]
        flagged = result["data"][0]
        assert flagged["executionCount"] == 10
        assert flagged["project"] == {"id": flaky_history.project.id, "name": "Checkout"}
        assert flagged["configurationCorrelation"]["configuration"] == "Firefox"

    def test_deleted_case_is_ignored(self, flaky_history):
        case = db.session.get(RepositoryCase, flaky_history.login.id)
        case.soft_delete()
        db.session.commit()
        result = FlakyTestDetector(ReportDataSource()).analyze(
            ReportScope(project_id=flaky_history.project.id),
        )
        assert result["total"] == 0

    def test_endpoint(self, client, flaky_history):
        res = client.get(
            f"/api/v1/reports/flaky-tests?projectId={flaky_history.project.id}"
            "&consecutiveRuns=6&flipThreshold=3"
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["consecutiveRuns"] == 6
        assert body["flipThreshold"] == 3
        assert body["total"] == 1
        assert body["data"][0]["executionCount"] == 6


    def test_date_range_excludes_outside_history(self, flaky_history):
        march = ReportScope(
            project_id=flaky_history.project.id,
            start_date=datetime(2024, 3, 1, tzinfo=timezone.utc),
            end_date=datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc),
        )
        assert FlakyTestDetector(ReportDataSource()).analyze(march)["total"] == 0

    def test_date_range_limits_window(self, flaky_history):
        april = ReportScope(
            project_id=flaky_history.project.id,
            start_date=datetime(2024, 4, 1, tzinfo=timezone.utc),
        )
        result = FlakyTestDetector(ReportDataSource()).analyze(april)
        assert [row["testCaseName"] for row in result["data"]] == ["Login works"]
        assert result["data"][0]["executionCount"] == 8

    @pytest.mark.parametrize("automated_filter,expected", [
        ("all", ["Login works"]),
        ("automated", ["Login works"]),
        ("manual", []),
        (None, ["Login works"]),
    ])
    def test_automated_filter(self, flaky_history, automated_filter, expected):
        result = FlakyTestDetector(ReportDataSource()).analyze(
            ReportScope(project_id=flaky_history.project.id),
            automated_filter=automated_filter,
        )
        assert [row["testCaseName"] for row in result["data"]] == expected

    def test_unknown_automated_filter(self, flaky_history):
        with pytest.raises(ValidationError) as exc:
            FlakyTestDetector(ReportDataSource()).analyze(
                ReportScope(project_id=flaky_history.project.id), automated_filter="robots",
            )
        assert "automatedFilter" in exc.value.details

    def test_engine_honours_request_dates(self, flaky_history):
        result = AggregationEngine.run(validate_or_raise({
            "reportType": "flaky-tests", "projectId": flaky_history.project.id,
            "startDate": "2024-03-01", "endDate": "2024-03-31",
        }))
        assert result["total"] == 0

    def test_endpoint_date_range(self, client, flaky_history):
        url = f"/api/v1/reports/flaky-tests?projectId={flaky_history.project.id}"
        march = client.get(url + "&startDate=2024-03-01&endDate=2024-03-31").get_json()
        april = client.get(url + "&startDate=2024-04-01&endDate=2024-04-30").get_json()
        assert march["total"] == 0
        assert april["total"] == 1
        assert april["data"][0]["executionCount"] == 8

    def test_endpoint_automated_filter(self, client, flaky_history):
        url = f"/api/v1/reports/flaky-tests?projectId={flaky_history.project.id}"
        assert client.get(url + "&automatedFilter=manual").get_json()["total"] == 0
        assert client.get(url + "&automatedFilter=automated").get_json()["total"] == 1

    def test_endpoint_rejects_bad_parameters(self, client, flaky_history):
        url = f"/api/v1/reports/flaky-tests?projectId={flaky_history.project.id}"
        assert client.get(url + "&automatedFilter=robots").status_code == 422
        res = client.get(url + "&startDate=2024-04-30&endDate=2024-04-01")
        assert res.status_code == 422
        assert "startDate" in res.get_json()["details"]

    def test_endpoint_unknown_project(self, client, seed):
        res = client.get("/api/v1/reports/flaky-tests?projectId=9999")
        assert res.status_code == 404
