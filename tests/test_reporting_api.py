"""
Reporting API — HTTP tests.

Covers:
  - catalogue endpoints
  - POST /reports/run: success, 422 with field details, 404, 503
  - cross-project access by role (auth enabled)
  - drill-down endpoint and its validation
  - XLSX / CSV export of reports and drill-downs
  - health check and auth bypass
"""

import io

from openpyxl import load_workbook

from app.core.exceptions import UpstreamError
from app.services.report_data_source import ReportDataSource


def _run_payload(seed, **overrides):
    payload = {
        "reportType": "test-execution",
        "projectId": seed.project.id,
        "dimensions": ["status"],
        "metrics": ["testResults"],
    }
    payload.update(overrides)
    return payload


# ── Catalogue ────────────────────────────────────────────────────────────


class TestCatalogueEndpoints:
    def test_list_types(self, client):
        res = client.get("/api/v1/reports/types")
        assert res.status_code == 200
        types = {t["reportType"] for t in res.get_json()["reportTypes"]}
        assert "test-execution" in types
        assert "cross-project-repository-stats" in types

    def test_metadata(self, client):
        res = client.get("/api/v1/reports/test-execution/metadata")
        assert res.status_code == 200
        body = res.get_json()
        assert {"id": "passRate", "label": "Pass Rate (%)"} in body["metrics"]
        assert {"id": "date", "label": "Execution Date"} in body["dimensions"]
        assert body["dateField"] == "executedAt"

    def test_metadata_unknown(self, client):
        res = client.get("/api/v1/reports/velocity/metadata")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ── Run ──────────────────────────────────────────────────────────────────


class TestRunReport:
    def test_run(self, client, seed):
        res = client.post("/api/v1/reports/run", json=_run_payload(seed))
        assert res.status_code == 200
        body = res.get_json()
        assert body["totalCount"] == 3
        assert body["pageCount"] == 1
        assert [r["status"]["name"] for r in body["results"]] == ["Blocked", "Failed", "Passed"]

    def test_invalid_request_lists_every_problem(self, client, seed):
        res = client.post("/api/v1/reports/run", json=_run_payload(
            seed, dimensions=["status", "testCase"], metrics=[], endDate="2024-03-01",
        ))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert set(body["details"]) >= {"dimensions", "metrics", "startDate"}
        assert "'status' and 'testCase'" in body["details"]["dimensions"][0]

    def test_empty_body(self, client):
        res = client.post("/api/v1/reports/run", json={})
        assert res.status_code == 422
        assert "reportType" in res.get_json()["details"]

    def test_unknown_project(self, client, seed):
        res = client.post("/api/v1/reports/run", json=_run_payload(seed, projectId=9999))
        assert res.status_code == 404
        assert res.get_json()["error"] == "Project not found"

    def test_upstream_failure_is_503(self, client, seed, monkeypatch):
        def _broken(self, scope):
            raise UpstreamError("test-execution records", RuntimeError("timeout"))

        monkeypatch.setattr(ReportDataSource, "execution_records", _broken)
        res = client.post("/api/v1/reports/run", json=_run_payload(seed))
        assert res.status_code == 503
        body = res.get_json()
        assert body["code"] == "ERR_UPSTREAM"
        assert "timeout" not in body["error"]

    def test_form_body_rejected(self, client, seed):
        res = client.post("/api/v1/reports/run", data="reportType=test-execution",
                          content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415


# ── Auth & cross-project access ──────────────────────────────────────────


class TestAccessControl:
    def test_missing_key_rejected(self, client, seed, auth_enabled):
        res = client.post("/api/v1/reports/run", json=_run_payload(seed))
        assert res.status_code == 401

    def test_invalid_key_rejected(self, client, seed, auth_enabled):
        res = client.post("/api/v1/reports/run", json=_run_payload(seed),
                          headers={"X-API-Key": "nope"})
        assert res.status_code == 401

    def test_viewer_can_run_project_report(self, client, seed, auth_enabled):
        res = client.post("/api/v1/reports/run", json=_run_payload(seed),
                          headers={"X-API-Key": "viewer-key"})
        assert res.status_code == 200

    def test_cross_project_needs_admin(self, client, seed, auth_enabled):
        payload = {"reportType": "cross-project-test-execution",
                   "dimensions": ["project"], "metrics": ["testResults"]}
        res = client.post("/api/v1/reports/run", json=payload,
                          headers={"X-API-Key": "editor-key"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

        res = client.post("/api/v1/reports/run", json=payload,
                          headers={"X-API-Key": "admin-key"})
        assert res.status_code == 200
        assert res.get_json()["results"][0]["project"]["name"] == "Checkout"

    def test_cross_project_flaky_needs_admin(self, client, seed, auth_enabled):
        res = client.get("/api/v1/reports/flaky-tests", headers={"X-API-Key": "viewer-key"})
        assert res.status_code == 403

    def test_health_needs_no_key(self, client, auth_enabled):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"


# ── Drill-down ───────────────────────────────────────────────────────────


class TestDrillDownEndpoint:
    def test_drill_down(self, client, seed):
        res = client.post("/api/v1/reports/drill-down", json={
            "context": {
                "metricId": "testResults",
                "reportType": "test-execution",
                "projectId": seed.project.id,
                "dimensions": {"user": {"id": "u1", "name": "Alice Tester"}},
            },
            "offset": 0,
            "limit": 1,
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 2
        assert len(body["data"]) == 1
        assert body["hasMore"] is True
        assert body["context"]["dimensions"]["user"]["id"] == "u1"

    def test_bare_context_body(self, client, seed):
        res = client.post("/api/v1/reports/drill-down", json={
            "metricId": "passRate",
            "reportType": "test-execution",
            "projectId": seed.project.id,
        })
        assert res.status_code == 200
        assert res.get_json()["aggregates"]["passRate"] == 50.0

    def test_invalid_context(self, client, seed):
        res = client.post("/api/v1/reports/drill-down", json={"context": {"reportType": "test-execution"}})
        assert res.status_code == 422
        assert "metricId" in res.get_json()["details"]

    def test_bad_offset(self, client, seed):
        res = client.post("/api/v1/reports/drill-down", json={
            "context": {"metricId": "testResults", "reportType": "test-execution",
                        "projectId": seed.project.id},
            "offset": "first",
        })
        assert res.status_code == 422

    def test_unsupported_dimension(self, client, seed):
        res = client.post("/api/v1/reports/drill-down", json={
            "context": {"metricId": "testResults", "reportType": "test-execution",
                        "projectId": seed.project.id,
                        "dimensions": {"priority": {"id": "High"}}},
        })
        assert res.status_code == 422
        assert "dimensions.priority" in res.get_json()["details"]


# ── Export ───────────────────────────────────────────────────────────────


class TestExportEndpoints:
    def test_report_xlsx(self, client, seed):
        res = client.post("/api/v1/reports/run/export?format=xlsx",
                          json=_run_payload(seed, dimensions=["user"],
                                            metrics=["testResults", "passRate"], pageSize=1))
        assert res.status_code == 200
        assert "spreadsheetml" in res.mimetype
        ws = load_workbook(io.BytesIO(res.data)).active
        assert ws["A1"].value == "Test Execution"
        assert [c.value for c in ws[4]] == ["User", "Test Results Count", "Pass Rate (%)"]
        names = {ws.cell(row=r, column=1).value for r in (5, 6)}
        assert names == {"Alice Tester", "Bob Lead"}

    def test_report_csv(self, client, seed):
        res = client.post("/api/v1/reports/run/export?format=csv", json=_run_payload(seed))
        assert res.status_code == 200
        text = res.data.decode("utf-8-sig")
        lines = text.strip().splitlines()
        assert lines[0] == "Status,Test Results Count"
        assert "Passed,2" in lines

    def test_unknown_format(self, client, seed):
        res = client.post("/api/v1/reports/run/export?format=pdf", json=_run_payload(seed))
        assert res.status_code == 422
        assert "format" in res.get_json()["details"]

    def test_flaky_report_not_exportable(self, client, seed):
        res = client.post("/api/v1/reports/run/export",
                          json={"reportType": "flaky-tests", "projectId": seed.project.id})
        assert res.status_code == 422

    def test_drill_down_csv(self, client, seed):
        res = client.post("/api/v1/reports/drill-down/export?format=csv", json={
            "context": {"metricId": "testResults", "reportType": "test-execution",
                        "projectId": seed.project.id,
                        "dimensions": {"status": {"id": seed.statuses.passed.id}}},
        })
        assert res.status_code == 200
        lines = res.data.decode("utf-8-sig").strip().splitlines()
        assert lines[0].startswith("id,name,testRunId")
        assert len(lines) == 3

    def test_drill_down_xlsx(self, client, seed):
        res = client.post("/api/v1/reports/drill-down/export", json={
            "context": {"metricId": "testResults", "metricLabel": "Test Results Count",
                        "reportType": "test-execution", "projectId": seed.project.id},
        })
        assert res.status_code == 200
        ws = load_workbook(io.BytesIO(res.data)).active
        assert ws["A1"].value == "Drill-down Test Results Count"
        assert ws.max_row == 4 + 4
