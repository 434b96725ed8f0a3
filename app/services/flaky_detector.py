"""
Flaky Test Detector.

Algorithm:
  1. For each test case in scope (project, date range, source filter),
     take its last N executions (default 10)
  2. Put them back into chronological order
  3. Count status flips: transitions between definitive outcomes
     (success ↔ failure); blocked / skipped / retest entries are skipped
     and do not reset the last tracked outcome
  4. Flag the case when flips >= threshold AND the window holds at least
     one success and one failure
  5. Configuration correlation check on the flagged window
  6. Return the flagged cases ranked by flip count
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence

from app.core.exceptions import ValidationError
from app.models.testing import AUTOMATED_SOURCES, MANUAL_SOURCES
from app.services.report_metrics import ExecutionOutcome

logger = logging.getLogger(__name__)

DEFAULT_RUNS = 10
MIN_RUNS = 5
MAX_RUNS = 30
DEFAULT_FLIP_THRESHOLD = 5
MIN_FLIP_THRESHOLD = 2

SOURCE_FILTERS = {
    "all": None,
    "automated": AUTOMATED_SOURCES,
    "manual": MANUAL_SOURCES,
}


def count_status_flips(executions: Iterable[ExecutionOutcome]) -> int:
    """Count success/failure transitions in a chronological sequence.

    Non-definitive outcomes are ignored entirely: pass, blocked, pass is
    zero flips and pass, blocked, fail is one.
    """
    flips = 0
    last_success = None
    for outcome in executions:
        if not outcome.is_success and not outcome.is_failure:
            continue
        if last_success is not None and outcome.is_success != last_success:
            flips += 1
        last_success = outcome.is_success
    return flips


def has_required_flakiness(executions: Iterable[ExecutionOutcome]) -> bool:
    """True when the window holds both a success and a failure."""
    seen_success = seen_failure = False
    for outcome in executions:
        seen_success = seen_success or outcome.is_success
        seen_failure = seen_failure or outcome.is_failure
    return seen_success and seen_failure


def clamp_parameters(consecutive_runs=None, flip_threshold=None) -> tuple[int, int]:
    """Clamp the window to [5, 30] and the threshold to [2, runs - 1]."""
    try:
        runs = int(consecutive_runs) if consecutive_runs is not None else DEFAULT_RUNS
    except (TypeError, ValueError):
        runs = DEFAULT_RUNS
    runs = max(MIN_RUNS, min(MAX_RUNS, runs))

    try:
        threshold = int(flip_threshold) if flip_threshold is not None else DEFAULT_FLIP_THRESHOLD
    except (TypeError, ValueError):
        threshold = DEFAULT_FLIP_THRESHOLD
    threshold = max(MIN_FLIP_THRESHOLD, min(runs - 1, threshold))
    return runs, threshold


class FlakyTestDetector:
    """Detects flaky tests by counting status flips in recent execution history."""

    def __init__(self, data_source):
        self.data_source = data_source

    def analyze(
        self,
        scope,
        *,
        consecutive_runs: int = DEFAULT_RUNS,
        flip_threshold: int = DEFAULT_FLIP_THRESHOLD,
        automated_filter: str | None = "all",
    ) -> dict:
        """Analyze every test case in scope.

        ``automated_filter`` is "all", "automated" or "manual" and selects
        cases by repository source.

        Returns:
            dict with data (flagged cases), total, consecutiveRuns, flipThreshold
        """
        filter_key = automated_filter or "all"
        if filter_key not in SOURCE_FILTERS:
            raise ValidationError.from_errors([
                ("automatedFilter", f"automatedFilter must be one of: {', '.join(SOURCE_FILTERS)}"),
            ])
        runs, threshold = clamp_parameters(consecutive_runs, flip_threshold)
        history = self.data_source.recent_executions(
            scope, limit=runs, sources=SOURCE_FILTERS[filter_key],
        )

        flaky = []
        for case, executions in history:
            chronological = list(reversed(executions))
            outcomes = [
                ExecutionOutcome(
                    is_success=e["status"]["isSuccess"],
                    is_failure=e["status"]["isFailure"],
                    executed_at=e["executedAt"],
                )
                for e in chronological
            ]
            flips = count_status_flips(outcomes)
            if flips < threshold or not has_required_flakiness(outcomes):
                continue

            flaky.append({
                "testCaseId": case["id"],
                "testCaseName": case["name"],
                "testCaseSource": case["source"],
                "project": case["project"],
                "flipCount": flips,
                "executionCount": len(chronological),
                "executions": [self._serialize_execution(e) for e in chronological],
                "configurationCorrelation": self._configuration_correlation(chronological),
            })

        flaky.sort(key=lambda x: x["flipCount"], reverse=True)
        logger.info(
            "Flaky analysis project=%s filter=%s analyzed=%d flagged=%d runs=%d threshold=%d",
            scope.project_id, filter_key, len(history), len(flaky), runs, threshold,
        )

        return {
            "data": flaky,
            "total": len(flaky),
            "consecutiveRuns": runs,
            "flipThreshold": threshold,
        }

    @staticmethod
    def _serialize_execution(execution: dict) -> dict:
        executed_at = execution["executedAt"]
        return {
            "resultId": execution["id"],
            "testRunId": execution["testRunId"],
            "statusName": execution["status"]["name"],
            "statusColor": execution["status"]["color"],
            "isSuccess": execution["status"]["isSuccess"],
            "isFailure": execution["status"]["isFailure"],
            "executedAt": executed_at.isoformat() if executed_at else None,
        }

    @staticmethod
    def _configuration_correlation(executions: Sequence[dict]) -> dict | None:
        """Check if failures concentrate on one configuration."""
        per_config = defaultdict(lambda: {"success": 0, "failure": 0})
        for e in executions:
            config_name = e["configuration"]["name"] if e["configuration"] else "None"
            if e["status"]["isSuccess"]:
                per_config[config_name]["success"] += 1
            elif e["status"]["isFailure"]:
                per_config[config_name]["failure"] += 1

        if len(per_config) < 2:
            return None

        worst = None
        worst_ratio = 0
        for config_name, counts in per_config.items():
            definitive = counts["success"] + counts["failure"]
            if definitive == 0:
                continue
            ratio = counts["failure"] / definitive
            if ratio > worst_ratio:
                worst_ratio = ratio
                worst = config_name

        if worst and worst_ratio > 0.5:
            return {"configuration": worst, "failureRatio": round(worst_ratio, 2)}
        return None
