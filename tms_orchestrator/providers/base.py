"""Abstract base class for CI/CD runner providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from tms_orchestrator.models.execution import Execution


@dataclass(frozen=True, kw_only=True)
class DispatchResult:
    """Reference to the external run created for an execution."""

    run_id: str | None = None
    run_url: str | None = None


@dataclass(frozen=True, kw_only=True)
class RunnerProvider(ABC):
    """Abstract base for CI/CD systems that run test executions.

    Runners report progress back through webhooks, so a provider only needs
    to start and stop runs.
    """

    @abstractmethod
    async def dispatch_execution(
        self,
        execution: Execution,
        webhook_url: str | None,
    ) -> DispatchResult:
        """Start a run for the execution.

        Args:
            execution: Execution to run; its id must be passed to the runner
                so that webhooks can be correlated
            webhook_url: URL the runner should post results to

        Returns:
            Reference to the external run

        """

    @abstractmethod
    async def cancel_run(self, run_id: str) -> None:
        """Cancel an external run.

        Args:
            run_id: Run id returned by dispatch_execution

        """
