"""CLI entry point for the orchestrator server and the runner-side reporting tools."""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from aiohttp import web

from tms_orchestrator.aggregation import (
    EXIT_CODES,
    aggregate_shards,
    load_playwright_report,
    load_shard_results,
    wait_for_shards,
    write_shard_result,
)
from tms_orchestrator.config import ConfigurationError, ServerConfig, load_server_config
from tms_orchestrator.models.results import AggregatedResult, Artifacts
from tms_orchestrator.orchestrator import ExecutionOrchestrator
from tms_orchestrator.providers.loading import open_providers
from tms_orchestrator.reporter import (
    ReporterConfig,
    WebhookClient,
    build_final_payload,
    build_shard_payload,
    build_start_payload,
)
from tms_orchestrator.server.app import create_app, log_execution_event
from tms_orchestrator.tracker import ExecutionTracker

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

STATUS_SYMBOLS = {
    "passed": "✅",
    "failed": "❌",
    "error": "❗",
}

log = logging.getLogger("tms_orchestrator")


def container_artifacts(container_name: str | None, suffix: str = "") -> Artifacts | None:
    """Artifact links for results kept inside a runner container."""
    if not container_name:
        return None
    return Artifacts(
        report_url=f"docker://{container_name}/reports{suffix}",
        results_url=f"docker://{container_name}/results{suffix}",
        logs_url=f"docker://{container_name}/logs{suffix}",
    )


def log_aggregated_summary(result: AggregatedResult) -> None:
    """Log a formatted summary of an aggregated result."""
    log.info("=" * 80)
    log.info("Aggregated Test Results:")
    log.info("=" * 80)
    log.info(
        "%s %s: total=%d passed=%d failed=%d skipped=%d (%d/%s shards)",
        STATUS_SYMBOLS.get(result.status, "?"),
        result.status,
        result.results.total,
        result.results.passed,
        result.results.failed,
        result.results.skipped,
        result.shards_received or 0,
        result.total_shards or "?",
    )
    if result.missing_shards:
        log.info("  Missing shards: %s", ", ".join(result.missing_shards))
    for test in result.failed_tests:
        log.info("  Failed: %s%s", test.title, f" ({test.file})" if test.file else "")


async def serve(config: ServerConfig) -> int:
    """Run the HTTP server until interrupted."""
    tracker = ExecutionTracker(
        history_size=config.history_size,
        auto_register=config.auto_register,
    )
    tracker.add_listener(log_execution_event)

    async with open_providers(config.providers) as providers:
        orchestrator = ExecutionOrchestrator(
            tracker=tracker,
            providers=providers,
            webhook_url=config.webhook_url,
        )
        runner = web.AppRunner(create_app(config, orchestrator))
        await runner.setup()
        try:
            site = web.TCPSite(runner, config.host, config.port)
            await site.start()
            log.info(
                "TMS orchestrator listening on http://%s:%d (environment=%s, runners=%s)",
                config.host,
                config.port,
                config.environment,
                ", ".join(sorted(providers)) or "none",
            )

            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop.set)
            await stop.wait()
            log.info("Shutting down")
        finally:
            await runner.cleanup()

    return 0


async def report_start(
    client_config: ReporterConfig,
    execution_id: str,
    shard_id: str,
    total_shards: int,
    provider: str,
    run_id: str | None = None,
    run_url: str | None = None,
    test_suite: str | None = None,
    environment: str | None = None,
) -> int:
    """Announce that a shard started running."""
    payload = build_start_payload(
        execution_id=execution_id,
        shard_id=shard_id,
        total_shards=total_shards,
        provider=provider,
        run_id=run_id,
        run_url=run_url,
        test_suite=test_suite,
        environment=environment,
    )
    async with WebhookClient.from_config(client_config) as client:
        sent = await client.send(payload, f"Shard {shard_id} start")
    return 0 if sent else 1


async def report_shard(
    client_config: ReporterConfig,
    execution_id: str,
    shard_id: str,
    total_shards: int,
    results_dir: Path,
    results_file: Path | None = None,
    provider: str = "docker",
    run_id: str | None = None,
) -> int:
    """Record a shard's Playwright results and report them.

    Returns:
        0 when every test passed and the report was delivered, 1 otherwise

    """
    results_file = results_file or results_dir / f"test-results-shard-{shard_id}.json"
    shard = load_playwright_report(shard_id, results_file)
    write_shard_result(results_dir, shard)

    log.info(
        "Shard %s: total=%d passed=%d failed=%d skipped=%d",
        shard_id,
        shard.results.total,
        shard.results.passed,
        shard.results.failed,
        shard.results.skipped,
    )

    artifacts = None
    if shard.error is None:
        artifacts = Artifacts(
            results_file=results_file.name,
            report_url=f"docker://{run_id}/reports/shard-{shard_id}" if run_id else None,
        )
    payload = build_shard_payload(
        execution_id=execution_id,
        shard=shard,
        total_shards=total_shards,
        provider=provider,
        run_id=run_id,
        artifacts=artifacts,
    )
    async with WebhookClient.from_config(client_config) as client:
        sent = await client.send(payload, f"Shard {shard_id} completion")

    return 0 if sent and shard.status == "passed" else 1


async def aggregate(
    client_config: ReporterConfig,
    execution_id: str,
    total_shards: int,
    results_dir: Path,
    max_wait: float = 1800,
    poll_interval: float = 10,
    provider: str = "docker",
    run_id: str | None = None,
    test_suite: str | None = None,
    environment: str | None = None,
) -> int:
    """Wait for every shard, aggregate their results and send the final report.

    Returns:
        Exit code for the overall status: 0 passed, 1 failed, 2 error

    """
    log.info("Waiting for %d shard(s) in %s", total_shards, results_dir)
    await wait_for_shards(results_dir, total_shards, max_wait, poll_interval)

    result = aggregate_shards(load_shard_results(results_dir, total_shards), total_shards)
    log_aggregated_summary(result)

    results_dir.mkdir(parents=True, exist_ok=True)
    (results_dir / "aggregated-results.json").write_text(
        result.model_dump_json(by_alias=True, exclude_none=True, indent=2)
    )

    payload = build_final_payload(
        execution_id=execution_id,
        result=result,
        provider=provider,
        run_id=run_id,
        test_suite=test_suite,
        environment=environment,
        artifacts=container_artifacts(run_id),
        metadata={"containerName": run_id, "aggregator": True},
    )
    (results_dir / "final-report.json").write_text(json.dumps(payload, indent=2))
    print(json.dumps(payload, indent=2))

    async with WebhookClient.from_config(client_config) as client:
        await client.send(payload, "Final aggregated results")

    return EXIT_CODES[result.status]


def add_reporter_arguments(
    parser: argparse.ArgumentParser, environ: Mapping[str, str]
) -> None:
    parser.add_argument(
        "--webhook-url",
        default=environ.get("WEBHOOK_URL"),
        help="Orchestrator webhook URL (default: $WEBHOOK_URL)",
    )
    parser.add_argument(
        "--execution-id",
        default=environ.get("EXECUTION_ID"),
        required="EXECUTION_ID" not in environ,
        help="Execution ID (default: $EXECUTION_ID)",
    )
    parser.add_argument(
        "--total-shards",
        type=int,
        default=int(environ.get("TOTAL_SHARDS", "1")),
        help="Number of shards (default: $TOTAL_SHARDS or 1)",
    )
    parser.add_argument(
        "--provider",
        default="docker",
        help="Provider name reported to the orchestrator",
    )
    parser.add_argument(
        "--run-id",
        default=environ.get("HOSTNAME"),
        help="Run or container identifier (default: $HOSTNAME)",
    )


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    """Build the argument parser, taking defaults from ``environ``."""
    parser = argparse.ArgumentParser(
        description="Orchestrate sharded test executions on CI/CD runners"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("serve", help="Run the orchestrator HTTP server")

    results_dir = Path(environ.get("TEST_RESULTS_DIR", "/app/test-results"))
    shard_default = environ.get("SHARD_INDEX", "1")

    start = commands.add_parser("report-start", help="Report that a shard started")
    add_reporter_arguments(start, environ)
    start.add_argument("--shard-index", default=shard_default)
    start.add_argument("--run-url")
    start.add_argument("--test-suite", default=environ.get("TEST_SUITE"))
    start.add_argument("--environment", default=environ.get("TEST_ENVIRONMENT"))

    shard = commands.add_parser("report-shard", help="Record and report shard results")
    add_reporter_arguments(shard, environ)
    shard.add_argument("--shard-index", default=shard_default)
    shard.add_argument("--results-dir", type=Path, default=results_dir)
    shard.add_argument(
        "--results-file",
        type=Path,
        help="Playwright JSON report (default: <results-dir>/test-results-shard-N.json)",
    )

    agg = commands.add_parser("aggregate", help="Aggregate shard results")
    add_reporter_arguments(agg, environ)
    agg.add_argument("--results-dir", type=Path, default=results_dir)
    agg.add_argument(
        "--max-wait",
        type=float,
        default=float(environ.get("MAX_WAIT_TIME", "1800")),
        help="Seconds to wait for shards (default: $MAX_WAIT_TIME or 1800)",
    )
    agg.add_argument("--poll-interval", type=float, default=10)
    agg.add_argument("--test-suite", default=environ.get("TEST_SUITE"))
    agg.add_argument("--environment", default=environ.get("TEST_ENVIRONMENT"))

    return parser


async def run(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    """Run the selected command and return its exit code."""
    if args.command == "serve":
        try:
            config = load_server_config(environ)
        except ConfigurationError as e:
            log.error("%s", e)
            return 1
        return await serve(config)

    client_config = ReporterConfig(
        webhook_url=args.webhook_url,
        token=environ.get("TMS_WEBHOOK_TOKEN") or None,
    )
    common: dict[str, Any] = {
        "client_config": client_config,
        "execution_id": args.execution_id,
        "total_shards": args.total_shards,
        "provider": args.provider,
        "run_id": args.run_id,
    }

    if args.command == "report-start":
        return await report_start(
            shard_id=args.shard_index,
            run_url=args.run_url,
            test_suite=args.test_suite,
            environment=args.environment,
            **common,
        )
    if args.command == "report-shard":
        return await report_shard(
            shard_id=args.shard_index,
            results_dir=args.results_dir,
            results_file=args.results_file,
            **common,
        )
    return await aggregate(
        results_dir=args.results_dir,
        max_wait=args.max_wait,
        poll_interval=args.poll_interval,
        test_suite=args.test_suite,
        environment=args.environment,
        **common,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    environ = dict(os.environ)
    args = build_parser(environ).parse_args(argv)

    logging.basicConfig(
        level=environ.get("LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    sys.exit(asyncio.run(run(args, environ)))


if __name__ == "__main__":  # pragma: no cover
    main()
