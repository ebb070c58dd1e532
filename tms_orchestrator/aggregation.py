"""Aggregation of shard results into a single execution result."""

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tms_orchestrator.models.results import (
    AggregatedResult,
    FailedTest,
    OverallStatus,
    ResultCounts,
    ShardResult,
    ShardSummary,
    shard_sort_key,
)

log = logging.getLogger(__name__)

EXIT_CODES: Mapping[OverallStatus, int] = {
    "passed": 0,
    "failed": 1,
    "error": 2,
}


def expected_shard_ids(total_shards: int) -> Sequence[str]:
    """Shard ids a run split into ``total_shards`` parts reports under."""
    return [str(index) for index in range(1, total_shards + 1)]


def aggregate_shards(
    shards: Mapping[str, ShardResult],
    total_shards: int | None = None,
) -> AggregatedResult:
    """Combine shard results into an overall result.

    Args:
        shards: Shard results keyed by shard id
        total_shards: Number of shards the run was split into; expected shards
            that have not reported are counted as errors

    Returns:
        Aggregated result. The status is ``failed`` when any test failed,
        ``error`` when no tests ran or any shard errored or is missing, and
        ``passed`` otherwise.

    """
    expected = expected_shard_ids(total_shards) if total_shards else []
    missing = [shard_id for shard_id in expected if shard_id not in shards]
    ordered = sorted(shards.values(), key=lambda shard: shard_sort_key(shard.shard_id))

    counts = sum((shard.results for shard in ordered), ResultCounts())
    failed_tests = [test for shard in ordered for test in shard.failed_tests]

    status: OverallStatus
    if counts.failed > 0:
        status = "failed"
    elif counts.total == 0:
        status = "error"
    elif missing or any(shard.status == "error" for shard in ordered):
        status = "error"
    else:
        status = "passed"

    return AggregatedResult(
        status=status,
        results=counts,
        failed_tests=failed_tests,
        total_shards=total_shards or len(shards),
        shards_received=len(shards),
        missing_shards=missing,
        source="shards",
    )


def summary_path(results_dir: Path, shard_id: str) -> Path:
    """Path of the summary file for a shard."""
    return results_dir / f"summary-shard-{shard_id}.json"


def failed_tests_path(results_dir: Path, shard_id: str) -> Path:
    """Path of the failed tests file for a shard."""
    return results_dir / f"failed-tests-shard-{shard_id}.json"


def marker_path(results_dir: Path, shard_id: str) -> Path:
    """Path of the marker file signalling a shard is complete."""
    return results_dir / f"shard-{shard_id}.complete"


def write_shard_result(
    results_dir: Path,
    shard: ShardResult,
    timestamp: datetime | None = None,
) -> None:
    """Write a shard's summary and failed tests, then mark it complete.

    The marker is written last so a waiting aggregator never sees a complete
    shard without its summary.
    """
    results_dir.mkdir(parents=True, exist_ok=True)

    summary = ShardSummary(
        shard=shard.shard_id,
        status=shard.status,
        results=shard.results,
        timestamp=timestamp or datetime.now(timezone.utc),
        error=shard.error,
    )
    summary_path(results_dir, shard.shard_id).write_text(
        summary.model_dump_json(by_alias=True, exclude_none=True, indent=2)
    )

    failed_tests = [
        test.model_dump(mode="json", by_alias=True, exclude_none=True)
        for test in shard.failed_tests
    ]
    failed_tests_path(results_dir, shard.shard_id).write_text(
        json.dumps(failed_tests, indent=2)
    )

    marker_path(results_dir, shard.shard_id).touch()


def count_completed_shards(results_dir: Path, total_shards: int) -> int:
    """Count shards whose completion marker exists."""
    return sum(
        1
        for shard_id in expected_shard_ids(total_shards)
        if marker_path(results_dir, shard_id).exists()
    )


async def wait_for_shards(
    results_dir: Path,
    total_shards: int,
    max_wait: float = 1800,
    poll_interval: float = 10,
) -> int:
    """Wait until every shard has written its completion marker.

    Args:
        results_dir: Directory shards write their results to
        total_shards: Number of shards to wait for
        max_wait: Maximum wait time in seconds (default: 30 minutes)
        poll_interval: Seconds between checks (default: 10)

    Returns:
        Number of completed shards, which is less than ``total_shards`` when
        the wait timed out

    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait

    while True:
        completed = count_completed_shards(results_dir, total_shards)
        log.info("Progress: %d/%d shards completed", completed, total_shards)

        if completed >= total_shards:
            return completed

        if loop.time() >= deadline:
            log.warning(
                "Timed out after %ss: only %d/%d shards completed",
                max_wait,
                completed,
                total_shards,
            )
            return completed

        await asyncio.sleep(poll_interval)


def _decode_json_stream(text: str) -> list[Any]:
    """Decode a document holding one JSON value or several concatenated ones."""
    decoder = json.JSONDecoder()
    values: list[Any] = []
    index = 0
    text = text.strip()
    while index < len(text):
        value, index = decoder.raw_decode(text, index)
        values.append(value)
        while index < len(text) and text[index].isspace():
            index += 1
    return values


def load_failed_tests(results_dir: Path, shard_id: str) -> Sequence[FailedTest]:
    """Load a shard's failed tests.

    Accepts a JSON array or a stream of JSON objects, as written by ``jq -r``.
    """
    path = failed_tests_path(results_dir, shard_id)
    if not path.exists():
        return []

    try:
        values = _decode_json_stream(path.read_text())
        items = [
            item
            for value in values
            for item in (value if isinstance(value, list) else [value])
        ]
        return [FailedTest.model_validate(item) for item in items]
    except (json.JSONDecodeError, ValidationError) as e:
        log.warning("Ignoring unreadable failed tests file %s: %s", path, e)
        return []


def load_shard_results(
    results_dir: Path, total_shards: int
) -> Mapping[str, ShardResult]:
    """Load the results of every shard that wrote a summary file.

    Shards without a summary are left out, so aggregation counts them as
    missing.
    """
    shards: dict[str, ShardResult] = {}
    for shard_id in expected_shard_ids(total_shards):
        path = summary_path(results_dir, shard_id)
        if not path.exists():
            log.warning("Summary file not found for shard %s, treating as error", shard_id)
            continue

        try:
            summary = ShardSummary.model_validate_json(path.read_text())
        except ValidationError as e:
            log.error("Invalid summary file for shard %s, treating as error: %s", shard_id, e)
            continue

        shards[shard_id] = ShardResult(
            shard_id=shard_id,
            status=summary.status,
            results=summary.results,
            failed_tests=load_failed_tests(results_dir, shard_id),
            error=summary.error,
        )
        log.info(
            "Shard %s: total=%d passed=%d failed=%d skipped=%d status=%s",
            shard_id,
            summary.results.total,
            summary.results.passed,
            summary.results.failed,
            summary.results.skipped,
            summary.status,
        )
    return shards


def parse_playwright_report(
    shard_id: str, report: Mapping[str, Any]
) -> ShardResult:
    """Build a shard result from a Playwright JSON report.

    Reports carrying ``stats.total`` are read as-is; otherwise counts are
    derived from Playwright's ``expected``/``unexpected``/``flaky``/``skipped``.
    """
    stats = report.get("stats") or {}
    if "total" in stats:
        counts = ResultCounts(
            total=stats.get("total", 0),
            passed=stats.get("passed", 0),
            failed=stats.get("failed", 0),
            skipped=stats.get("skipped", 0),
        )
    else:
        expected = stats.get("expected", 0)
        unexpected = stats.get("unexpected", 0)
        flaky = stats.get("flaky", 0)
        skipped = stats.get("skipped", 0)
        counts = ResultCounts(
            total=expected + unexpected + flaky + skipped,
            passed=expected + flaky,
            failed=unexpected,
            skipped=skipped,
        )

    failed_tests = [
        FailedTest(
            title=test.get("title", "<untitled>"),
            file=test.get("file"),
            error=test.get("error"),
        )
        for test in report.get("tests", [])
        if test.get("status") == "failed"
    ]

    return ShardResult(
        shard_id=shard_id,
        status="failed" if counts.failed > 0 else "passed",
        results=counts,
        failed_tests=failed_tests,
    )


def load_playwright_report(shard_id: str, path: Path) -> ShardResult:
    """Read a Playwright JSON report, producing an error result if unusable."""
    if not path.exists():
        log.error("Test results file not found: %s", path)
        return ShardResult(
            shard_id=shard_id,
            status="error",
            error="Test results file not generated",
        )

    try:
        report = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        log.error("Test results file %s is not valid JSON: %s", path, e)
        return ShardResult(
            shard_id=shard_id,
            status="error",
            error=f"Invalid test results file: {e}",
        )

    return parse_playwright_report(shard_id, report)
