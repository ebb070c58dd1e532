"""Models for test execution requests and their tracked state."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Literal

from pydantic import Field

from tms_orchestrator.models.base import WireModel
from tms_orchestrator.models.results import AggregatedResult, ShardResult

type ExecutionStatus = Literal[
    "queued",
    "triggering",
    "running",
    "completed",
    "failed",
    "cancelled",
    "timeout",
]

TERMINAL_STATUSES: frozenset[ExecutionStatus] = frozenset(
    ["completed", "failed", "cancelled", "timeout"]
)

STATUS_RANK: Mapping[ExecutionStatus, int] = {
    "queued": 0,
    "triggering": 1,
    "running": 2,
    "completed": 3,
    "failed": 3,
    "cancelled": 3,
    "timeout": 3,
}


class ExecutionRequest(WireModel):
    """Request to run a set of tests on a CI runner."""

    test_files: Sequence[str] = Field(default_factory=list)
    suite: str = "default"
    grep: str | None = None
    environment: str = "default"
    target_runner: str = Field(
        default="auto", description="Provider key, or 'auto' to pick one"
    )
    priority: Literal["low", "normal", "high"] = "normal"
    branch: str = "main"
    commit: str | None = None
    tags: Sequence[str] = Field(default_factory=list)
    requested_by: str | None = None
    total_shards: int = Field(default=1, ge=1)
    webhook_url: str | None = Field(
        default=None, description="Where the runner should post results"
    )


class Execution(WireModel):
    """Tracked state of one test execution."""

    id: str
    status: ExecutionStatus
    request: ExecutionRequest = Field(default_factory=ExecutionRequest)
    created_at: datetime
    updated_at: datetime
    triggered_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    target_runner: str = "auto"
    external_run_id: str | None = None
    external_run_url: str | None = None
    total_shards: int | None = None
    shards: Mapping[str, ShardResult] = Field(default_factory=dict)
    result: AggregatedResult | None = None
    error: str | None = None
    estimated_duration: str | None = None
    external: bool = Field(
        default=False,
        description="Registered from a webhook rather than queued here",
    )

    @property
    def is_terminal(self) -> bool:
        """Whether the execution reached a final state."""
        return self.status in TERMINAL_STATUSES

    @property
    def actual_duration(self) -> float | None:
        """Seconds between the run starting and finishing, when both are known."""
        started = self.triggered_at or self.started_at
        if started is None or self.completed_at is None:
            return None
        return (self.completed_at - started).total_seconds()
