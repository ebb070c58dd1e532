"""In-memory tracking of test execution lifecycle.

Executions move through ``queued -> triggering -> running`` and end in one of
the terminal states ``completed``, ``failed``, ``cancelled`` or ``timeout``.
Transitions only move forward. Webhook events are applied idempotently:
repeating a report has no effect, while a report that contradicts an earlier
one for the same shard is rejected.

All methods are synchronous and are meant to be called from a single event
loop, which makes each of them atomic with respect to the others.
"""

import logging
import re
import uuid
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from tms_orchestrator.aggregation import aggregate_shards
from tms_orchestrator.models.execution import (
    STATUS_RANK,
    Execution,
    ExecutionRequest,
    ExecutionStatus,
)
from tms_orchestrator.models.webhook import (
    ExecutionStarted,
    FinalResult,
    ShardCompleted,
)

log = logging.getLogger(__name__)

EXECUTION_ID_PATTERN = re.compile(r"exec_\d+_[a-f0-9]+")

type EventType = Literal[
    "execution-queued",
    "execution-running",
    "execution-progress",
    "shard-completed",
    "execution-completed",
    "execution-failed",
    "execution-cancelled",
    "execution-timeout",
]

type IngestOutcome = Literal["accepted", "duplicate", "ignored"]


class ExecutionNotFoundError(Exception):
    """Raised when an execution id is not known to the tracker."""


class InvalidTransitionError(Exception):
    """Raised when a state change would move an execution backwards."""


class ConflictingReportError(Exception):
    """Raised when a report contradicts results already recorded."""


@dataclass(frozen=True, kw_only=True)
class ExecutionEvent:
    """Notification of a change to an execution."""

    type: EventType
    execution: Execution
    shard_id: str | None = None


type ExecutionListener = Callable[[ExecutionEvent], None]


@dataclass(frozen=True, kw_only=True)
class QueueStatus:
    """Snapshot of executions that have not finished yet."""

    queued: Sequence[Execution]
    running: Sequence[Execution]
    total: int


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def generate_execution_id(now: datetime) -> str:
    """Create an id of the form ``exec_<epoch ms>_<8 hex chars>``."""
    return f"exec_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}"


def find_execution_id(*texts: str | None) -> str | None:
    """Return the first execution id embedded in any of the given texts."""
    for text in texts:
        if text and (match := EXECUTION_ID_PATTERN.search(text)):
            return match.group(0)
    return None


def estimate_duration(test_files: Sequence[str]) -> str:
    """Estimate run time as 30 seconds plus 5 seconds per test file."""
    seconds = 30 + 5 * len(test_files)
    return f"{seconds // 60}m {seconds % 60}s"


@dataclass(kw_only=True)
class ExecutionTracker:
    """Owns the state of every execution, active and recently finished."""

    history_size: int = 100
    auto_register: bool = True
    clock: Callable[[], datetime] = utcnow

    _active: dict[str, Execution] = field(default_factory=dict, init=False, repr=False)
    _history: deque[Execution] = field(init=False, repr=False)
    _listeners: list[ExecutionListener] = field(
        default_factory=list, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self._history = deque(maxlen=self.history_size)

    def add_listener(self, listener: ExecutionListener) -> None:
        """Register a callback invoked for every execution event."""
        self._listeners.append(listener)

    def get(self, execution_id: str) -> Execution | None:
        """Look up an execution among active ones, then in history."""
        if (execution := self._active.get(execution_id)) is not None:
            return execution
        return next((e for e in self._history if e.id == execution_id), None)

    def require(self, execution_id: str) -> Execution:
        """Look up an execution, raising if it is unknown."""
        if (execution := self.get(execution_id)) is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return execution

    @property
    def history(self) -> Sequence[Execution]:
        """Finished executions, most recent first."""
        return list(self._history)

    def queue_status(self) -> QueueStatus:
        """Summarize executions that have not finished."""
        active = list(self._active.values())
        return QueueStatus(
            queued=[e for e in active if e.status == "queued"],
            running=[e for e in active if e.status in ("triggering", "running")],
            total=len(active),
        )

    def queue(self, request: ExecutionRequest) -> Execution:
        """Create a new execution for a request."""
        now = self.clock()
        execution = Execution(
            id=generate_execution_id(now),
            status="queued",
            request=request,
            created_at=now,
            updated_at=now,
            target_runner=request.target_runner,
            total_shards=request.total_shards,
            estimated_duration=estimate_duration(request.test_files),
        )
        self._active[execution.id] = execution

        log.info(
            "Queued test execution %s (tests=%d, priority=%s, target=%s)",
            execution.id,
            len(request.test_files),
            request.priority,
            request.target_runner,
        )
        self._emit("execution-queued", execution)
        return execution

    def mark_triggering(self, execution_id: str, target_runner: str) -> Execution:
        """Record that the execution is being dispatched to a runner."""
        execution = self.require(execution_id)
        now = self.clock()
        return self._transition(
            execution, "triggering", triggered_at=now, target_runner=target_runner
        )

    def mark_dispatched(
        self, execution_id: str, run_id: str | None, run_url: str | None
    ) -> Execution:
        """Record the external run created for the execution.

        Runner webhooks may arrive before dispatch returns, so an execution
        that is already running or finished only gets the run reference.
        """
        execution = self.require(execution_id)
        changes = {
            "external_run_id": run_id or execution.external_run_id,
            "external_run_url": run_url or execution.external_run_url,
        }

        if execution.status in ("queued", "triggering"):
            updated = self._transition(
                execution,
                "running",
                started_at=execution.started_at or self.clock(),
                **changes,
            )
            log.info(
                "Execution %s running on %s (run_id=%s, url=%s)",
                execution_id,
                updated.target_runner,
                run_id,
                run_url,
            )
            self._emit("execution-running", updated)
            return updated

        return self._update(execution, **changes)

    def mark_trigger_failed(self, execution_id: str, error: str) -> Execution:
        """Record that dispatching the execution failed."""
        execution = self.require(execution_id)
        updated = self._transition(execution, "failed", error=error)
        log.error("Failed to trigger %s: %s", execution_id, error)
        self._emit("execution-failed", updated)
        return updated

    def record_start(self, event: ExecutionStarted) -> IngestOutcome:
        """Apply a start (or progress) event from a runner."""
        execution, registered = self._resolve(event.execution_id, event.provider)

        if execution.is_terminal:
            log.info(
                "Ignoring start event for %s execution %s",
                execution.status,
                execution.id,
            )
            return "ignored"

        changes: dict[str, object] = {}
        if event.metadata.total_shards and event.metadata.total_shards != (
            execution.total_shards
        ):
            changes["total_shards"] = event.metadata.total_shards
        if event.run_id and execution.external_run_id is None:
            changes["external_run_id"] = event.run_id
        if event.run_url and execution.external_run_url is None:
            changes["external_run_url"] = event.run_url

        if execution.status != "running":
            updated = self._transition(
                execution,
                "running",
                started_at=event.start_time or self.clock(),
                **changes,
            )
            self._emit("execution-running", updated)
            self._complete_if_all_shards(updated)
            return "accepted"

        if changes:
            execution = self._update(execution, **changes)
            if "total_shards" in changes:
                execution = self._complete_if_all_shards(execution)
        if event.results is not None:
            self._emit("execution-progress", execution, shard_id=event.metadata.shard_id)
        return "accepted" if changes or registered else "duplicate"

    def record_shard(self, event: ShardCompleted) -> IngestOutcome:
        """Apply a shard completion report.

        Raises:
            ConflictingReportError: If the shard already reported different
                results

        """
        execution, _ = self._resolve(event.execution_id, event.provider)
        shard = event.to_shard_result()

        if (existing := execution.shards.get(shard.shard_id)) is not None:
            if existing == shard:
                log.info(
                    "Duplicate report for shard %s of %s", shard.shard_id, execution.id
                )
                return "duplicate"
            raise ConflictingReportError(
                f"Shard {shard.shard_id} of execution {execution.id} "
                "already reported different results"
            )

        if execution.is_terminal:
            log.warning(
                "Ignoring late report for shard %s of %s execution %s",
                shard.shard_id,
                execution.status,
                execution.id,
            )
            return "ignored"

        shards = {**execution.shards, shard.shard_id: shard}
        total_shards = event.total_shards or execution.total_shards
        changes = {"shards": shards, "total_shards": total_shards}

        if execution.status != "running":
            updated = self._transition(
                execution,
                "running",
                started_at=execution.started_at or self.clock(),
                **changes,
            )
            self._emit("execution-running", updated)
        else:
            updated = self._update(execution, **changes)

        log.info(
            "Shard %s of %s complete: total=%d passed=%d failed=%d skipped=%d "
            "(%d/%s shards)",
            shard.shard_id,
            execution.id,
            shard.results.total,
            shard.results.passed,
            shard.results.failed,
            shard.results.skipped,
            len(shards),
            total_shards or "?",
        )
        self._emit("shard-completed", updated, shard_id=shard.shard_id)
        self._complete_if_all_shards(updated)
        return "accepted"

    def record_final(self, event: FinalResult) -> IngestOutcome:
        """Apply a final aggregated result.

        A final result may replace a result computed from shard reports once.

        Raises:
            ConflictingReportError: If a different final result was already
                recorded

        """
        execution, _ = self._resolve(event.execution_id, event.provider)
        reported = event.to_aggregated()
        result = reported.model_copy(
            update={
                "total_shards": reported.total_shards or execution.total_shards,
                "shards_received": len(execution.shards) or None,
            }
        )

        if execution.is_terminal:
            current = execution.result
            if current is not None and current.source == "final":
                if current == result:
                    log.info("Duplicate final result for %s", execution.id)
                    return "duplicate"
                raise ConflictingReportError(
                    f"Execution {execution.id} already has a different final result"
                )
            if execution.status == "completed":
                updated = self._update(execution, result=result)
                log.info(
                    "Final result for %s replaces the shard aggregate", execution.id
                )
                self._emit("execution-completed", updated)
                return "accepted"
            log.warning(
                "Ignoring final result for %s execution %s",
                execution.status,
                execution.id,
            )
            return "ignored"

        changes: dict[str, object] = {"result": result}
        if event.run_url and execution.external_run_url is None:
            changes["external_run_url"] = event.run_url
        if execution.started_at is None:
            changes["started_at"] = execution.triggered_at or execution.created_at

        updated = self._transition(execution, "completed", **changes)
        self._log_completion(updated)
        self._emit("execution-completed", updated)
        return "accepted"

    def record_failure(
        self, execution_id: str, error: str, provider: str | None = None
    ) -> IngestOutcome:
        """Apply a report that the runner failed without producing results."""
        execution, _ = self._resolve(execution_id, provider)

        if execution.is_terminal:
            if execution.status == "failed" and execution.error == error:
                return "duplicate"
            log.warning(
                "Ignoring failure report for %s execution %s",
                execution.status,
                execution.id,
            )
            return "ignored"

        updated = self._transition(execution, "failed", error=error)
        log.error("Test execution %s failed: %s", execution_id, error)
        self._emit("execution-failed", updated)
        return "accepted"

    def cancel(self, execution_id: str) -> Execution:
        """Cancel an execution that has not finished.

        Raises:
            ExecutionNotFoundError: If the execution is unknown
            InvalidTransitionError: If the execution already finished

        """
        execution = self.require(execution_id)
        if execution.is_terminal:
            raise InvalidTransitionError(f"Cannot cancel {execution.status} execution")

        updated = self._transition(execution, "cancelled")
        log.info("Cancelled test execution %s", execution_id)
        self._emit("execution-cancelled", updated)
        return updated

    def expire_stale(self, max_age: float) -> Sequence[Execution]:
        """Time out executions that have been in flight longer than ``max_age``.

        Shards that did report are aggregated; the missing ones count as
        errors.
        """
        now = self.clock()
        expired: list[Execution] = []

        for execution in list(self._active.values()):
            if execution.status not in ("triggering", "running"):
                continue
            started = execution.triggered_at or execution.started_at or execution.created_at
            if (now - started).total_seconds() < max_age:
                continue

            result = (
                aggregate_shards(execution.shards, execution.total_shards)
                if execution.shards
                else None
            )
            updated = self._transition(
                execution,
                "timeout",
                result=result,
                error=f"No final result within {max_age:.0f} seconds",
            )
            log.warning(
                "Execution %s timed out with %d/%s shards reported",
                execution.id,
                len(execution.shards),
                execution.total_shards or "?",
            )
            self._emit("execution-timeout", updated)
            expired.append(updated)

        return expired

    def _complete_if_all_shards(self, execution: Execution) -> Execution:
        """Complete a running execution once every expected shard reported."""
        total_shards = execution.total_shards
        if (
            execution.status != "running"
            or not total_shards
            or len(execution.shards) < total_shards
        ):
            return execution

        result = aggregate_shards(execution.shards, total_shards)
        if result.missing_shards:
            return execution

        updated = self._transition(execution, "completed", result=result)
        self._log_completion(updated)
        self._emit("execution-completed", updated)
        return updated

    def _resolve(
        self, execution_id: str, provider: str | None
    ) -> tuple[Execution, bool]:
        """Find the execution an event refers to, registering it if allowed."""
        if (execution := self.get(execution_id)) is not None:
            return execution, False

        if not self.auto_register:
            log.warning("Webhook received for unknown execution: %s", execution_id)
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")

        now = self.clock()
        execution = Execution(
            id=execution_id,
            status="running",
            created_at=now,
            updated_at=now,
            started_at=now,
            target_runner=provider or "external",
            total_shards=None,
            external=True,
        )
        self._active[execution_id] = execution
        log.info(
            "Registered externally started execution %s (provider=%s)",
            execution_id,
            execution.target_runner,
        )
        self._emit("execution-running", execution)
        return execution, True

    def _transition(
        self, execution: Execution, status: ExecutionStatus, **changes: object
    ) -> Execution:
        if execution.is_terminal:
            raise InvalidTransitionError(
                f"Execution {execution.id} is already {execution.status}"
            )
        if STATUS_RANK[status] < STATUS_RANK[execution.status]:
            raise InvalidTransitionError(
                f"Execution {execution.id} cannot move from "
                f"{execution.status} to {status}"
            )

        now = self.clock()
        updates: dict[str, object] = {"status": status, "updated_at": now, **changes}
        if STATUS_RANK[status] == STATUS_RANK["completed"]:
            updates.setdefault("completed_at", now)
        return self._store(execution.model_copy(update=updates))

    def _update(self, execution: Execution, **changes: object) -> Execution:
        return self._store(
            execution.model_copy(update={"updated_at": self.clock(), **changes})
        )

    def _store(self, execution: Execution) -> Execution:
        if not execution.is_terminal:
            self._active[execution.id] = execution
            return execution

        if self._active.pop(execution.id, None) is not None:
            self._history.appendleft(execution)
            return execution

        for index, existing in enumerate(self._history):
            if existing.id == execution.id:
                self._history[index] = execution
                return execution

        self._history.appendleft(execution)
        return execution

    def _log_completion(self, execution: Execution) -> None:
        result = execution.result
        if result is None:
            return
        log.info(
            "Test execution %s completed: status=%s total=%d passed=%d failed=%d "
            "skipped=%d duration=%s",
            execution.id,
            result.status,
            result.results.total,
            result.results.passed,
            result.results.failed,
            result.results.skipped,
            execution.actual_duration,
        )

    def _emit(
        self, event_type: EventType, execution: Execution, shard_id: str | None = None
    ) -> None:
        event = ExecutionEvent(type=event_type, execution=execution, shard_id=shard_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Execution listener failed for %s", event_type)
