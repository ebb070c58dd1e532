"""Models for test result counts and shard aggregation outcomes."""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

from tms_orchestrator.models.base import WireModel

type ShardStatus = Literal["passed", "failed", "error"]
type OverallStatus = Literal["passed", "failed", "error"]


def coerce_identifier(value: Any) -> Any:
    """Accept integer identifiers where the wire format allows either."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


Identifier = Annotated[str, BeforeValidator(coerce_identifier)]


def shard_sort_key(shard_id: str) -> tuple[int, int | str]:
    """Order numeric shard ids numerically, then everything else by name."""
    if shard_id.isdigit():
        return (0, int(shard_id))
    return (1, shard_id)


class ResultCounts(WireModel):
    """Test counts reported by a runner."""

    total: int = Field(default=0, ge=0)
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    duration: float | str | None = None

    def __add__(self, other: "ResultCounts") -> "ResultCounts":
        return ResultCounts(
            total=self.total + other.total,
            passed=self.passed + other.passed,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
        )


class FailedTest(WireModel):
    """A single failed test as reported by the runner."""

    title: str
    file: str | None = None
    error: str | Mapping[str, Any] | None = None


class Artifacts(WireModel):
    """Links to artifacts produced by a run."""

    report_url: str | None = None
    results_url: str | None = None
    logs_url: str | None = None
    results_file: str | None = None


class ShardResult(WireModel):
    """Outcome of one shard of an execution."""

    shard_id: Identifier
    status: ShardStatus
    results: ResultCounts = Field(default_factory=ResultCounts)
    failed_tests: Sequence[FailedTest] = Field(default_factory=list)
    error: str | None = None


class AggregatedResult(WireModel):
    """Combined result of an execution.

    ``source`` records whether the result was computed from shard reports or
    received as a final report from the runner's aggregator.
    """

    status: OverallStatus
    results: ResultCounts
    failed_tests: Sequence[FailedTest] = Field(default_factory=list)
    total_shards: int | None = None
    shards_received: int | None = None
    missing_shards: Sequence[str] = Field(default_factory=list)
    source: Literal["shards", "final"] = "shards"


class ShardSummary(WireModel):
    """Per-shard summary written to the results directory by a runner."""

    shard: Identifier
    status: ShardStatus
    results: ResultCounts = Field(default_factory=ResultCounts)
    timestamp: datetime | None = None
    error: str | None = None
