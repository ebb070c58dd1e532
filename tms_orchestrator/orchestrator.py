"""Orchestrator dispatching test executions to CI runners."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import aiohttp

from tms_orchestrator.models.execution import Execution, ExecutionRequest
from tms_orchestrator.providers.base import RunnerProvider
from tms_orchestrator.tracker import ExecutionTracker, InvalidTransitionError

log = logging.getLogger(__name__)

# Suites up to this many test files go to GitHub Actions when picking a runner
SMALL_SUITE_MAX_FILES = 10


class UnsupportedRunnerError(Exception):
    """Raised when a request targets a runner that is not configured."""


class DispatchError(Exception):
    """Raised when a runner could not start an execution."""

    def __init__(self, message: str, execution: Execution) -> None:
        super().__init__(message)
        self.execution = execution


@dataclass(frozen=True, kw_only=True)
class ExecutionOrchestrator:
    """Queues executions and starts them on the configured runners."""

    tracker: ExecutionTracker
    providers: Mapping[str, RunnerProvider]
    webhook_url: str | None = None

    def select_runner(self, request: ExecutionRequest) -> str:
        """Pick the provider key to run a request on.

        ``auto`` prefers GitHub Actions for small suites and Azure DevOps for
        larger ones, falling back to whichever runner is configured.

        Raises:
            UnsupportedRunnerError: If the requested runner is not configured

        """
        if request.target_runner != "auto":
            if request.target_runner not in self.providers:
                raise UnsupportedRunnerError(
                    f"Unsupported runner: {request.target_runner}. "
                    f"Configured runners: {sorted(self.providers)}"
                )
            return request.target_runner

        if not self.providers:
            raise UnsupportedRunnerError("No runners configured")

        if len(request.test_files) <= SMALL_SUITE_MAX_FILES:
            preferred = "github-actions"
        else:
            preferred = "azure-devops"
        if preferred in self.providers:
            return preferred
        return next(iter(self.providers))

    async def submit(self, request: ExecutionRequest) -> Execution:
        """Queue an execution and dispatch it to a runner.

        Args:
            request: What to run and where

        Returns:
            The execution, running on the selected runner

        Raises:
            UnsupportedRunnerError: If no suitable runner is configured; no
                execution is created
            DispatchError: If the runner rejected the run; the execution is
                recorded as failed

        """
        runner = self.select_runner(request)
        execution = self.tracker.queue(request)
        execution = self.tracker.mark_triggering(execution.id, runner)

        log.info("Triggering test execution %s on %s", execution.id, runner)
        try:
            dispatch = await self.providers[runner].dispatch_execution(
                execution, request.webhook_url or self.webhook_url
            )
        except Exception as e:
            log.error("Failed to trigger %s: %s", execution.id, e, exc_info=e)
            failed = self.tracker.mark_trigger_failed(execution.id, str(e))
            raise DispatchError(
                f"Failed to trigger {execution.id} on {runner}: {e}", failed
            ) from e

        return self.tracker.mark_dispatched(
            execution.id, dispatch.run_id, dispatch.run_url
        )

    async def cancel(self, execution_id: str) -> Execution:
        """Cancel an execution and its external run, if one is known.

        Failure to cancel the external run is logged; the execution is
        cancelled regardless.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
            InvalidTransitionError: If the execution already finished

        """
        execution = self.tracker.require(execution_id)
        if execution.is_terminal:
            raise InvalidTransitionError(f"Cannot cancel {execution.status} execution")

        provider = self.providers.get(execution.target_runner)
        if provider is not None and execution.external_run_id is not None:
            try:
                await provider.cancel_run(execution.external_run_id)
            except (aiohttp.ClientError, RuntimeError, TimeoutError) as e:
                log.warning(
                    "Failed to cancel run %s of %s: %s",
                    execution.external_run_id,
                    execution_id,
                    e,
                )

        return self.tracker.cancel(execution_id)
