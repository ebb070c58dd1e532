"""Tests for execution orchestrator."""

from unittest.mock import Mock

import aiohttp
import pytest

from tms_orchestrator.orchestrator import (
    DispatchError,
    ExecutionOrchestrator,
    UnsupportedRunnerError,
)
from tms_orchestrator.providers.base import RunnerProvider
from tms_orchestrator.testing.factories import (
    DispatchResultFactory,
    ExecutionRequestFactory,
)
from tms_orchestrator.tracker import ExecutionTracker, InvalidTransitionError

WEBHOOK_URL = "https://tms.example.com/api/webhooks/test-results"


@pytest.fixture
def github_mock() -> Mock:
    """Create mock GitHub Actions provider."""
    provider = Mock(spec=RunnerProvider)
    provider.dispatch_execution.return_value = DispatchResultFactory.build()
    return provider


@pytest.fixture
def azure_mock() -> Mock:
    """Create mock Azure DevOps provider."""
    provider = Mock(spec=RunnerProvider)
    provider.dispatch_execution.return_value = DispatchResultFactory.build(
        run_id="777", run_url="https://dev.azure.com/runs/777"
    )
    return provider


@pytest.fixture
def tracker() -> ExecutionTracker:
    return ExecutionTracker()


@pytest.fixture
def orchestrator(
    tracker: ExecutionTracker, github_mock: Mock, azure_mock: Mock
) -> ExecutionOrchestrator:
    """Create orchestrator with both mock providers."""
    return ExecutionOrchestrator(
        tracker=tracker,
        providers={"github-actions": github_mock, "azure-devops": azure_mock},
        webhook_url=WEBHOOK_URL,
    )


class TestSelectRunner:
    """Tests for select_runner."""

    def test_small_suite_goes_to_github(self, orchestrator: ExecutionOrchestrator) -> None:
        """Picks GitHub Actions for up to ten test files."""
        request = ExecutionRequestFactory.build(test_files=[f"t{i}" for i in range(10)])

        assert orchestrator.select_runner(request) == "github-actions"

    def test_large_suite_goes_to_azure(self, orchestrator: ExecutionOrchestrator) -> None:
        """Picks Azure DevOps for more than ten test files."""
        request = ExecutionRequestFactory.build(test_files=[f"t{i}" for i in range(11)])

        assert orchestrator.select_runner(request) == "azure-devops"

    def test_falls_back_to_configured_runner(
        self, tracker: ExecutionTracker, azure_mock: Mock
    ) -> None:
        """Uses whichever runner is configured when the preferred one is not."""
        orchestrator = ExecutionOrchestrator(
            tracker=tracker, providers={"azure-devops": azure_mock}
        )

        assert orchestrator.select_runner(ExecutionRequestFactory.build()) == "azure-devops"

    def test_explicit_runner(self, orchestrator: ExecutionOrchestrator) -> None:
        """Honours an explicitly requested runner."""
        request = ExecutionRequestFactory.build(target_runner="azure-devops")

        assert orchestrator.select_runner(request) == "azure-devops"

    def test_unsupported_runner(self, orchestrator: ExecutionOrchestrator) -> None:
        """Rejects runners that are not configured."""
        request = ExecutionRequestFactory.build(target_runner="jenkins")

        with pytest.raises(UnsupportedRunnerError, match="jenkins"):
            orchestrator.select_runner(request)

    def test_no_runners(self, tracker: ExecutionTracker) -> None:
        """Rejects requests when nothing is configured."""
        orchestrator = ExecutionOrchestrator(tracker=tracker, providers={})

        with pytest.raises(UnsupportedRunnerError):
            orchestrator.select_runner(ExecutionRequestFactory.build())


class TestSubmit:
    """Tests for submit."""

    async def test_dispatches_to_selected_runner(
        self,
        orchestrator: ExecutionOrchestrator,
        github_mock: Mock,
        azure_mock: Mock,
    ) -> None:
        """Dispatches the execution and records the external run."""
        execution = await orchestrator.submit(ExecutionRequestFactory.build())

        assert execution.status == "running"
        assert execution.target_runner == "github-actions"
        assert execution.external_run_id == "12345"
        assert execution.external_run_url == "https://ci.example.com/runs/12345"

        github_mock.dispatch_execution.assert_called_once()
        dispatched, webhook_url = github_mock.dispatch_execution.call_args.args
        assert dispatched.id == execution.id
        assert dispatched.status == "triggering"
        assert webhook_url == WEBHOOK_URL
        azure_mock.dispatch_execution.assert_not_called()

    async def test_request_webhook_url_takes_precedence(
        self, orchestrator: ExecutionOrchestrator, github_mock: Mock
    ) -> None:
        """Passes the request's own webhook URL to the runner."""
        await orchestrator.submit(
            ExecutionRequestFactory.build(webhook_url="https://other.example.com/hook")
        )

        _, webhook_url = github_mock.dispatch_execution.call_args.args
        assert webhook_url == "https://other.example.com/hook"

    async def test_dispatch_failure_marks_execution_failed(
        self,
        orchestrator: ExecutionOrchestrator,
        tracker: ExecutionTracker,
        github_mock: Mock,
    ) -> None:
        """Records the failure and raises DispatchError."""
        github_mock.dispatch_execution.side_effect = RuntimeError(
            "Failed to dispatch workflow: 422"
        )

        with pytest.raises(DispatchError) as exc_info:
            await orchestrator.submit(ExecutionRequestFactory.build())

        execution = exc_info.value.execution
        assert execution.status == "failed"
        assert execution.error == "Failed to dispatch workflow: 422"
        assert tracker.history == [execution]

    async def test_unsupported_runner_creates_nothing(
        self, orchestrator: ExecutionOrchestrator, tracker: ExecutionTracker
    ) -> None:
        """Does not queue an execution for an unsupported runner."""
        with pytest.raises(UnsupportedRunnerError):
            await orchestrator.submit(ExecutionRequestFactory.build(target_runner="nope"))

        assert tracker.queue_status().total == 0
        assert tracker.history == []


class TestCancel:
    """Tests for cancel."""

    async def test_cancels_external_run(
        self, orchestrator: ExecutionOrchestrator, github_mock: Mock
    ) -> None:
        """Cancels the runner's run and the execution."""
        execution = await orchestrator.submit(ExecutionRequestFactory.build())

        cancelled = await orchestrator.cancel(execution.id)

        assert cancelled.status == "cancelled"
        github_mock.cancel_run.assert_called_once_with("12345")

    @pytest.mark.parametrize(
        "error",
        [
            aiohttp.ClientError("connection reset"),
            RuntimeError("HTTP 409"),
            TimeoutError(),
        ],
    )
    async def test_provider_error_does_not_prevent_cancel(
        self, orchestrator: ExecutionOrchestrator, github_mock: Mock, error: Exception
    ) -> None:
        """Cancels the execution even when the runner refuses or times out."""
        github_mock.cancel_run.side_effect = error
        execution = await orchestrator.submit(ExecutionRequestFactory.build())

        cancelled = await orchestrator.cancel(execution.id)

        assert cancelled.status == "cancelled"

    async def test_cancel_without_run_id(
        self, orchestrator: ExecutionOrchestrator, github_mock: Mock
    ) -> None:
        """Skips the runner when the run was never located."""
        github_mock.dispatch_execution.return_value = DispatchResultFactory.build(
            run_id=None, run_url=None
        )
        execution = await orchestrator.submit(ExecutionRequestFactory.build())

        await orchestrator.cancel(execution.id)

        github_mock.cancel_run.assert_not_called()

    async def test_cannot_cancel_finished_execution(
        self, orchestrator: ExecutionOrchestrator
    ) -> None:
        """Raises for executions that already finished."""
        execution = await orchestrator.submit(ExecutionRequestFactory.build())
        await orchestrator.cancel(execution.id)

        with pytest.raises(InvalidTransitionError):
            await orchestrator.cancel(execution.id)
