"""Tests for CLI module."""

import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from tms_orchestrator.aggregation import (
    aggregate_shards,
    marker_path,
    summary_path,
    write_shard_result,
)
from tms_orchestrator.cli import (
    aggregate,
    build_parser,
    container_artifacts,
    log_aggregated_summary,
    main,
    report_shard,
    report_start,
    run,
)
from tms_orchestrator.reporter import ReporterConfig
from tms_orchestrator.testing.factories import (
    FailedTestFactory,
    ResultCountsFactory,
    ShardResultFactory,
)
from tms_orchestrator.testing.payloads import EXECUTION_ID, playwright_report

UNCONFIGURED = ReporterConfig()


class TestBuildParser:
    """Tests for build_parser."""

    def test_defaults_from_runner_environment(self) -> None:
        """Takes option defaults from the runner's environment variables."""
        environ = {
            "EXECUTION_ID": EXECUTION_ID,
            "SHARD_INDEX": "3",
            "TOTAL_SHARDS": "4",
            "TEST_RESULTS_DIR": "/tmp/results",
            "HOSTNAME": "runner-3",
            "WEBHOOK_URL": "http://tms.test/hook",
        }

        args = build_parser(environ).parse_args(["report-shard"])

        assert args.execution_id == EXECUTION_ID
        assert args.shard_index == "3"
        assert args.total_shards == 4
        assert args.results_dir == Path("/tmp/results")
        assert args.run_id == "runner-3"
        assert args.webhook_url == "http://tms.test/hook"
        assert args.provider == "docker"

    def test_max_wait_from_environment(self) -> None:
        """Reads the aggregator wait limit from MAX_WAIT_TIME."""
        environ = {"EXECUTION_ID": EXECUTION_ID, "MAX_WAIT_TIME": "60"}

        args = build_parser(environ).parse_args(["aggregate"])

        assert args.max_wait == 60
        assert args.results_dir == Path("/app/test-results")

    def test_execution_id_required_without_environment(self) -> None:
        """Requires --execution-id when EXECUTION_ID is not set."""
        with pytest.raises(SystemExit):
            build_parser({}).parse_args(["report-start"])


class TestReportShard:
    """Tests for report_shard."""

    async def test_records_passing_shard(self, tmp_path: Path) -> None:
        """Writes summary files and exits 0 when all tests passed."""
        (tmp_path / "test-results-shard-1.json").write_text(
            json.dumps(playwright_report(expected=4))
        )

        exit_code = await report_shard(
            UNCONFIGURED,
            execution_id=EXECUTION_ID,
            shard_id="1",
            total_shards=2,
            results_dir=tmp_path,
        )

        assert exit_code == 0
        assert marker_path(tmp_path, "1").exists()
        summary = json.loads(summary_path(tmp_path, "1").read_text())
        assert summary["status"] == "passed"
        assert summary["results"]["total"] == 4

    async def test_failed_tests_exit_1(self, tmp_path: Path) -> None:
        """Exits 1 when the shard had failures."""
        results_file = tmp_path / "custom.json"
        results_file.write_text(
            json.dumps(playwright_report(expected=2, unexpected=1, failed_titles=["x"]))
        )

        exit_code = await report_shard(
            UNCONFIGURED,
            execution_id=EXECUTION_ID,
            shard_id="1",
            total_shards=1,
            results_dir=tmp_path,
            results_file=results_file,
        )

        assert exit_code == 1

    async def test_missing_report_exit_1(self, tmp_path: Path) -> None:
        """Records an error summary and exits 1 without a report."""
        exit_code = await report_shard(
            UNCONFIGURED,
            execution_id=EXECUTION_ID,
            shard_id="2",
            total_shards=2,
            results_dir=tmp_path,
        )

        assert exit_code == 1
        summary = json.loads(summary_path(tmp_path, "2").read_text())
        assert summary["status"] == "error"
        assert summary["error"] == "Test results file not generated"

    async def test_sends_shard_payload(self, tmp_path: Path) -> None:
        """Sends the shard-complete webhook."""
        (tmp_path / "test-results-shard-1.json").write_text(
            json.dumps(playwright_report(expected=1))
        )

        with patch(
            "tms_orchestrator.cli.WebhookClient.send", new_callable=AsyncMock
        ) as send:
            send.return_value = True
            await report_shard(
                UNCONFIGURED,
                execution_id=EXECUTION_ID,
                shard_id="1",
                total_shards=1,
                results_dir=tmp_path,
                run_id="runner-1",
            )

        payload, description = send.call_args.args
        assert description == "Shard 1 completion"
        assert payload["status"] == "shard-complete"
        assert payload["artifacts"] == {
            "reportUrl": "docker://runner-1/reports/shard-1",
            "resultsFile": "test-results-shard-1.json",
        }

    async def test_undelivered_report_exit_1(self, tmp_path: Path) -> None:
        """Exits 1 when the webhook could not be delivered."""
        (tmp_path / "test-results-shard-1.json").write_text(
            json.dumps(playwright_report(expected=1))
        )

        with patch(
            "tms_orchestrator.cli.WebhookClient.send",
            new_callable=AsyncMock,
            return_value=False,
        ):
            exit_code = await report_shard(
                UNCONFIGURED,
                execution_id=EXECUTION_ID,
                shard_id="1",
                total_shards=1,
                results_dir=tmp_path,
            )

        assert exit_code == 1


async def test_report_start_skips_unconfigured_webhook() -> None:
    """Succeeds without sending when no webhook is configured."""
    exit_code = await report_start(
        UNCONFIGURED,
        execution_id=EXECUTION_ID,
        shard_id="1",
        total_shards=2,
        provider="docker",
    )

    assert exit_code == 0


class TestAggregate:
    """Tests for aggregate."""

    @pytest.mark.parametrize(
        ("failed", "expected_exit"),
        [(0, 0), (1, 1)],
    )
    async def test_exit_code_follows_status(
        self, tmp_path: Path, failed: int, expected_exit: int
    ) -> None:
        """Exits 0 for passed and 1 for failed results."""
        write_shard_result(tmp_path, ShardResultFactory.build(shard_id="1"))
        write_shard_result(
            tmp_path,
            ShardResultFactory.build(
                shard_id="2",
                status="failed" if failed else "passed",
                results=ResultCountsFactory.build(total=5, passed=5 - failed, failed=failed),
            ),
        )

        exit_code = await aggregate(
            UNCONFIGURED,
            execution_id=EXECUTION_ID,
            total_shards=2,
            results_dir=tmp_path,
            max_wait=1,
            poll_interval=0.01,
            run_id="aggregator",
        )

        assert exit_code == expected_exit
        aggregated = json.loads((tmp_path / "aggregated-results.json").read_text())
        assert aggregated["results"]["total"] == 15
        final = json.loads((tmp_path / "final-report.json").read_text())
        assert final["executionId"] == EXECUTION_ID
        assert final["metadata"] == {
            "totalShards": 2,
            "containerName": "aggregator",
            "aggregator": True,
        }
        assert final["artifacts"]["logsUrl"] == "docker://aggregator/logs"

    async def test_missing_shard_exit_2(self, tmp_path: Path) -> None:
        """Exits 2 when a shard never completed."""
        write_shard_result(tmp_path, ShardResultFactory.build(shard_id="1"))

        exit_code = await aggregate(
            UNCONFIGURED,
            execution_id=EXECUTION_ID,
            total_shards=2,
            results_dir=tmp_path,
            max_wait=0.05,
            poll_interval=0.01,
        )

        assert exit_code == 2
        aggregated = json.loads((tmp_path / "aggregated-results.json").read_text())
        assert aggregated["missingShards"] == ["2"]

    async def test_no_shards_directory(self, tmp_path: Path) -> None:
        """Reports an error result when no shard ever wrote its results."""
        results_dir = tmp_path / "missing"

        with patch(
            "tms_orchestrator.cli.WebhookClient.send",
            new_callable=AsyncMock,
            return_value=True,
        ) as send:
            exit_code = await aggregate(
                UNCONFIGURED,
                execution_id=EXECUTION_ID,
                total_shards=2,
                results_dir=results_dir,
                max_wait=0.02,
                poll_interval=0.01,
            )

        assert exit_code == 2
        final = json.loads((results_dir / "final-report.json").read_text())
        assert final["status"] == "error"
        payload, _ = send.call_args.args
        assert payload["status"] == "error"


def test_container_artifacts() -> None:
    """Builds docker links only when the container is known."""
    artifacts = container_artifacts("runner-1")

    assert artifacts is not None
    assert artifacts.report_url == "docker://runner-1/reports"
    assert container_artifacts(None) is None


def test_log_aggregated_summary(caplog: pytest.LogCaptureFixture) -> None:
    """Logs the status, counts and failed tests."""
    result = aggregate_shards(
        {
            "1": ShardResultFactory.build(
                shard_id="1",
                status="failed",
                results=ResultCountsFactory.build(total=2, passed=1, failed=1),
                failed_tests=[FailedTestFactory.build(title="login", file="a.spec.ts")],
            )
        },
        total_shards=2,
    )

    with caplog.at_level(logging.INFO):
        log_aggregated_summary(result)

    assert "❌ failed: total=2 passed=1 failed=1 skipped=0 (1/2 shards)" in caplog.text
    assert "Missing shards: 2" in caplog.text
    assert "Failed: login (a.spec.ts)" in caplog.text


async def test_serve_requires_environment(caplog: pytest.LogCaptureFixture) -> None:
    """Refuses to start without PORT and TMS_ENV."""
    args = build_parser({}).parse_args(["serve"])

    exit_code = await run(args, {})

    assert exit_code == 1
    assert "TMS_ENV, PORT" in caplog.text


def test_main_takes_log_level_from_environment() -> None:
    """Configures logging from LOG_LEVEL for every command."""
    with (
        patch.dict("os.environ", {"LOG_LEVEL": "debug"}),
        patch("tms_orchestrator.cli.logging.basicConfig") as basic_config,
        patch("tms_orchestrator.cli.run", new_callable=AsyncMock, return_value=0),
        pytest.raises(SystemExit) as exit_info,
    ):
        main(["serve"])

    assert exit_info.value.code == 0
    assert basic_config.call_args.kwargs["level"] == "DEBUG"
