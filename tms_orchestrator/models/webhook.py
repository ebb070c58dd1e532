"""Models for webhook payloads sent by test runners."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from tms_orchestrator.models.base import WireModel
from tms_orchestrator.models.results import (
    AggregatedResult,
    Artifacts,
    FailedTest,
    Identifier,
    ResultCounts,
    ShardResult,
)

FINAL_STATUSES = frozenset(["completed", "passed", "failed", "error"])
FAILURE_STATUSES = frozenset(["failed", "error", "cancelled"])


class InvalidEventError(Exception):
    """Raised when a webhook payload cannot be interpreted."""


class StartMetadata(WireModel):
    """Metadata attached to a start event. Unknown keys are preserved."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    shard_id: Identifier | None = None
    total_shards: int | None = Field(default=None, ge=1)


class ExecutionStarted(WireModel):
    """A runner (or one shard of it) started executing tests."""

    execution_id: str = Field(..., min_length=1)
    status: Literal["running"]
    provider: str | None = None
    run_id: Identifier | None = None
    run_url: str | None = None
    test_suite: str | None = None
    environment: str | None = None
    start_time: datetime | None = None
    results: ResultCounts | None = None
    metadata: StartMetadata = Field(default_factory=StartMetadata)


class ShardCompleted(WireModel):
    """One shard finished and reports its own counts."""

    execution_id: str = Field(..., min_length=1)
    shard_id: Identifier
    status: Literal["shard-complete"]
    provider: str | None = None
    run_id: Identifier | None = None
    total_shards: int | None = Field(default=None, ge=1)
    results: ResultCounts
    failed_tests: Sequence[FailedTest] = Field(default_factory=list)
    artifacts: Artifacts | None = None
    error: str | None = None
    timestamp: datetime | None = None

    def to_shard_result(self) -> ShardResult:
        """Convert the report into the shard outcome stored on an execution."""
        if self.error:
            status: Literal["passed", "failed", "error"] = "error"
        elif self.results.failed > 0:
            status = "failed"
        else:
            status = "passed"
        return ShardResult(
            shard_id=self.shard_id,
            status=status,
            results=self.results,
            failed_tests=self.failed_tests,
            error=self.error,
        )


class FinalResult(WireModel):
    """Aggregated final result of an execution."""

    execution_id: str = Field(..., min_length=1)
    status: Literal["completed", "passed", "failed", "error"]
    provider: str | None = None
    run_id: Identifier | None = None
    run_url: str | None = None
    test_suite: str | None = None
    environment: str | None = None
    results: ResultCounts
    failed_tests: Sequence[FailedTest] = Field(default_factory=list)
    artifacts: Artifacts | None = None
    metadata: Mapping[str, Any] = Field(default_factory=dict)
    end_time: datetime | None = None

    def to_aggregated(self) -> AggregatedResult:
        """Convert the report into the result stored on an execution.

        A plain ``completed`` status is resolved from the counts.
        """
        if self.status == "completed":
            status: Literal["passed", "failed", "error"] = (
                "failed" if self.results.failed > 0 else "passed"
            )
        else:
            status = self.status

        total_shards = self.metadata.get("totalShards")
        try:
            shard_count = int(total_shards) if total_shards is not None else None
        except (TypeError, ValueError):
            shard_count = None

        return AggregatedResult(
            status=status,
            results=self.results,
            failed_tests=self.failed_tests,
            total_shards=shard_count,
            source="final",
        )


class ExecutionFailure(WireModel):
    """The runner could not produce results."""

    execution_id: str = Field(..., min_length=1)
    status: Literal["failed", "error", "cancelled"]
    provider: str | None = None
    error: str = "Unknown error"
    metadata: Mapping[str, Any] = Field(default_factory=dict)


type WebhookEvent = ExecutionStarted | ShardCompleted | FinalResult | ExecutionFailure


def parse_event(payload: Mapping[str, Any]) -> WebhookEvent:
    """Classify and validate a generic test-results payload.

    Args:
        payload: Decoded JSON body of the webhook

    Returns:
        The typed event

    Raises:
        InvalidEventError: If the payload matches no known event shape

    """
    if not isinstance(payload, Mapping):
        raise InvalidEventError("Payload must be a JSON object")

    status = payload.get("status")
    model: type[WireModel]
    if status == "running":
        model = ExecutionStarted
    elif status == "shard-complete":
        model = ShardCompleted
    elif status in FINAL_STATUSES and payload.get("results") is not None:
        model = FinalResult
    elif status in FAILURE_STATUSES:
        model = ExecutionFailure
    else:
        raise InvalidEventError(f"Unsupported status: {status!r}")

    try:
        event: WebhookEvent = model.model_validate(payload)  # type: ignore[assignment]
    except ValidationError as e:
        raise InvalidEventError(str(e)) from e
    return event
