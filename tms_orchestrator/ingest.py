"""Translation of inbound webhooks into execution tracker updates."""

import hashlib
import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from tms_orchestrator.models.jenkins import JenkinsNotification
from tms_orchestrator.models.webhook import (
    ExecutionFailure,
    ExecutionStarted,
    FinalResult,
    InvalidEventError,
    ShardCompleted,
    parse_event,
)
from tms_orchestrator.providers.azure_devops.models import BuildEvent
from tms_orchestrator.providers.github_actions.models import WorkflowRunEvent
from tms_orchestrator.tracker import ExecutionTracker, IngestOutcome, find_execution_id

log = logging.getLogger(__name__)

JENKINS_FINISHED_PHASES = frozenset(["COMPLETED", "FINISHED"])

type WebhookOutcome = IngestOutcome | Literal["skipped"]


def verify_github_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body."""
    if not signature:
        return False
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"sha256={digest}", signature)


@dataclass(frozen=True, kw_only=True)
class IngestResult:
    """What happened to a webhook."""

    outcome: WebhookOutcome
    execution_id: str | None = None
    message: str | None = None


def _validate[ModelT: BaseModel](model: type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidEventError(str(e)) from e


@dataclass(frozen=True, kw_only=True)
class WebhookIngestor:
    """Applies runner and CI webhooks to the execution tracker."""

    tracker: ExecutionTracker

    def ingest_test_results(
        self, payload: Mapping[str, Any], require_provider: bool = False
    ) -> IngestResult:
        """Apply a test results webhook sent by a runner.

        Raises:
            InvalidEventError: If the payload is not a known event
            ExecutionNotFoundError: If the execution is unknown and may not be
                registered
            ConflictingReportError: If the report contradicts recorded results

        """
        event = parse_event(payload)
        if require_provider and not event.provider:
            raise InvalidEventError("Missing required field: provider")

        log.info(
            "Received %s webhook for %s from %s",
            event.status,
            event.execution_id,
            event.provider or "unknown provider",
        )

        match event:
            case ExecutionStarted():
                outcome = self.tracker.record_start(event)
            case ShardCompleted():
                outcome = self.tracker.record_shard(event)
            case FinalResult():
                outcome = self.tracker.record_final(event)
            case ExecutionFailure():
                outcome = self.tracker.record_failure(
                    event.execution_id, event.error, event.provider
                )

        return IngestResult(outcome=outcome, execution_id=event.execution_id)

    def ingest_github(self, payload: Mapping[str, Any]) -> IngestResult:
        """Apply a GitHub ``workflow_run`` webhook.

        Successful runs are left to the runner's own result reports; any
        other conclusion fails the execution.
        """
        event = _validate(WorkflowRunEvent, payload)
        run = event.workflow_run
        if run is None:
            return IngestResult(outcome="skipped", message="Not a workflow run event")

        execution_id = find_execution_id(
            run.name,
            run.display_title,
            run.head_commit.message if run.head_commit else None,
        )
        if execution_id is None:
            log.info("No execution ID found in GitHub workflow run %s", run.id)
            return IngestResult(outcome="skipped", message="No execution ID found")

        if event.action != "completed":
            return IngestResult(outcome="ignored", execution_id=execution_id)

        if run.conclusion == "success":
            log.info(
                "GitHub workflow run %s for %s succeeded, awaiting results",
                run.id,
                execution_id,
            )
            return IngestResult(outcome="ignored", execution_id=execution_id)

        outcome = self.tracker.record_failure(
            execution_id,
            f"GitHub workflow failed: {run.conclusion}",
            provider="github-actions",
        )
        return IngestResult(outcome=outcome, execution_id=execution_id)

    def ingest_azure(self, payload: Mapping[str, Any]) -> IngestResult:
        """Apply an Azure DevOps ``build.complete`` service hook."""
        event = _validate(BuildEvent, payload)
        build = event.resource
        if build is None:
            return IngestResult(outcome="skipped", message="Event has no build")

        execution_id = find_execution_id(
            build.definition.name if build.definition else None,
            build.parameters,
        )
        if execution_id is None:
            log.info("No execution ID found in Azure DevOps build %s", build.id)
            return IngestResult(outcome="skipped", message="No execution ID found")

        if event.event_type != "build.complete" or build.result == "succeeded":
            return IngestResult(outcome="ignored", execution_id=execution_id)

        outcome = self.tracker.record_failure(
            execution_id,
            f"Azure DevOps build failed: {build.result}",
            provider="azure-devops",
        )
        return IngestResult(outcome=outcome, execution_id=execution_id)

    def ingest_jenkins(self, payload: Mapping[str, Any]) -> IngestResult:
        """Apply a Jenkins job notification."""
        notification = _validate(JenkinsNotification, payload)
        parameter = notification.build.parameters.get("EXECUTION_ID")
        execution_id = find_execution_id(
            str(parameter) if parameter is not None else None,
            notification.name,
        )
        if execution_id is None:
            log.info("No execution ID found in Jenkins job %s", notification.name)
            return IngestResult(outcome="skipped", message="No execution ID found")

        if (
            notification.build_phase not in JENKINS_FINISHED_PHASES
            or notification.build_status == "SUCCESS"
        ):
            return IngestResult(outcome="ignored", execution_id=execution_id)

        outcome = self.tracker.record_failure(
            execution_id,
            f"Jenkins build failed: {notification.build_status}",
            provider="jenkins",
        )
        return IngestResult(outcome=outcome, execution_id=execution_id)
