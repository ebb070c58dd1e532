"""Tests for webhook ingestion."""

import hashlib
import hmac

import pytest

from tms_orchestrator.ingest import WebhookIngestor, verify_github_signature
from tms_orchestrator.models.webhook import InvalidEventError
from tms_orchestrator.testing.azure.payloads import build_complete_event
from tms_orchestrator.testing.github.payloads import workflow_run_event
from tms_orchestrator.testing.payloads import (
    EXECUTION_ID,
    failure_payload,
    final_payload,
    jenkins_notification,
    shard_payload,
    start_payload,
)
from tms_orchestrator.tracker import ExecutionTracker


@pytest.fixture
def tracker() -> ExecutionTracker:
    return ExecutionTracker()


@pytest.fixture
def ingestor(tracker: ExecutionTracker) -> WebhookIngestor:
    return WebhookIngestor(tracker=tracker)


class TestGitHubSignature:
    """Tests for verify_github_signature."""

    BODY = b'{"action": "completed"}'

    def sign(self, secret: str) -> str:
        digest = hmac.new(secret.encode(), self.BODY, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def test_valid_signature(self) -> None:
        """Accepts a signature computed with the shared secret."""
        assert verify_github_signature("s3cret", self.BODY, self.sign("s3cret"))

    @pytest.mark.parametrize("signature", [None, "", "sha256=deadbeef"])
    def test_invalid_signature(self, signature: str | None) -> None:
        """Rejects missing and mismatched signatures."""
        assert not verify_github_signature("s3cret", self.BODY, signature)

    def test_signature_with_other_secret(self) -> None:
        """Rejects a signature made with a different secret."""
        assert not verify_github_signature("s3cret", self.BODY, self.sign("other"))


class TestTestResults:
    """Tests for the generic test results webhook."""

    def test_full_sharded_run(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Applies start, shard and final events in order."""
        outcomes = [
            ingestor.ingest_test_results(start_payload(shard_id="1")).outcome,
            ingestor.ingest_test_results(start_payload(shard_id="2")).outcome,
            ingestor.ingest_test_results(shard_payload(shard_id="1")).outcome,
            ingestor.ingest_test_results(shard_payload(shard_id="2")).outcome,
            ingestor.ingest_test_results(final_payload()).outcome,
        ]

        execution = tracker.require(EXECUTION_ID)
        assert outcomes == ["accepted", "duplicate", "accepted", "accepted", "accepted"]
        assert execution.status == "completed"
        assert execution.result is not None
        assert execution.result.source == "final"
        assert execution.result.shards_received == 2

    def test_failure(self, ingestor: WebhookIngestor, tracker: ExecutionTracker) -> None:
        """Fails the execution on a failure event."""
        result = ingestor.ingest_test_results(failure_payload(error="OOM"))

        assert result.outcome == "accepted"
        assert result.execution_id == EXECUTION_ID
        assert tracker.require(EXECUTION_ID).error == "OOM"

    def test_requires_provider_when_asked(self, ingestor: WebhookIngestor) -> None:
        """Rejects CI/CD payloads without a provider."""
        payload = {**start_payload()}
        del payload["provider"]

        with pytest.raises(InvalidEventError, match="provider"):
            ingestor.ingest_test_results(payload, require_provider=True)


class TestGitHub:
    """Tests for GitHub workflow_run webhooks."""

    def test_failed_run_fails_execution(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Fails the execution named in the run title."""
        result = ingestor.ingest_github(
            workflow_run_event(display_title=f"Tests {EXECUTION_ID}", conclusion="failure")
        )

        execution = tracker.require(EXECUTION_ID)
        assert result.outcome == "accepted"
        assert execution.status == "failed"
        assert execution.error == "GitHub workflow failed: failure"
        assert execution.target_runner == "github-actions"

    def test_execution_id_from_commit_message(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Finds the execution id in the head commit message."""
        ingestor.ingest_github(
            workflow_run_event(conclusion="cancelled", commit_message=f"run {EXECUTION_ID}")
        )

        assert tracker.require(EXECUTION_ID).status == "failed"

    def test_successful_run_awaits_results(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Leaves successful runs to the runner's own reports."""
        result = ingestor.ingest_github(
            workflow_run_event(display_title=EXECUTION_ID, conclusion="success")
        )

        assert result.outcome == "ignored"
        assert tracker.get(EXECUTION_ID) is None

    def test_in_progress_run_is_ignored(self, ingestor: WebhookIngestor) -> None:
        """Only acts on completed runs."""
        result = ingestor.ingest_github(
            workflow_run_event(action="in_progress", display_title=EXECUTION_ID)
        )

        assert result.outcome == "ignored"

    def test_run_without_execution_id_is_skipped(
        self, ingestor: WebhookIngestor
    ) -> None:
        """Acknowledges runs that are not test executions."""
        result = ingestor.ingest_github(workflow_run_event())

        assert result.outcome == "skipped"
        assert result.execution_id is None

    def test_invalid_payload(self, ingestor: WebhookIngestor) -> None:
        """Raises InvalidEventError for payloads without an action."""
        with pytest.raises(InvalidEventError):
            ingestor.ingest_github({"workflow_run": {}})


class TestAzureDevOps:
    """Tests for Azure DevOps build.complete service hooks."""

    def test_failed_build_fails_execution(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Fails the execution named in the build parameters."""
        result = ingestor.ingest_azure(build_complete_event(execution_id=EXECUTION_ID))

        assert result.outcome == "accepted"
        assert tracker.require(EXECUTION_ID).error == "Azure DevOps build failed: failed"

    def test_succeeded_build_is_ignored(self, ingestor: WebhookIngestor) -> None:
        """Leaves successful builds to the runner's own reports."""
        result = ingestor.ingest_azure(
            build_complete_event(execution_id=EXECUTION_ID, result="succeeded")
        )

        assert result.outcome == "ignored"

    def test_build_without_execution_id_is_skipped(
        self, ingestor: WebhookIngestor
    ) -> None:
        """Acknowledges builds that are not test executions."""
        result = ingestor.ingest_azure(build_complete_event(execution_id=None))

        assert result.outcome == "skipped"


class TestJenkins:
    """Tests for Jenkins notifications."""

    def test_failed_build_fails_execution(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Fails the execution given by the EXECUTION_ID parameter."""
        result = ingestor.ingest_jenkins(jenkins_notification())

        assert result.outcome == "accepted"
        assert tracker.require(EXECUTION_ID).error == "Jenkins build failed: FAILURE"

    @pytest.mark.parametrize(
        ("phase", "status"),
        [("COMPLETED", "SUCCESS"), ("STARTED", "FAILURE"), ("QUEUED", "")],
    )
    def test_unfinished_or_successful_builds_are_ignored(
        self, ingestor: WebhookIngestor, phase: str, status: str
    ) -> None:
        """Only fails finished, unsuccessful builds."""
        result = ingestor.ingest_jenkins(jenkins_notification(phase=phase, status=status))

        assert result.outcome == "ignored"

    def test_top_level_phase_and_status(
        self, ingestor: WebhookIngestor, tracker: ExecutionTracker
    ) -> None:
        """Reads phase and status from the top level of older notifications."""
        payload = {
            "name": f"tests-{EXECUTION_ID}",
            "phase": "FINISHED",
            "status": "ABORTED",
            "build": {"number": 7},
        }

        ingestor.ingest_jenkins(payload)

        assert tracker.require(EXECUTION_ID).status == "failed"

    def test_build_without_execution_id_is_skipped(
        self, ingestor: WebhookIngestor
    ) -> None:
        """Acknowledges jobs that are not test executions."""
        result = ingestor.ingest_jenkins(jenkins_notification(execution_id=None))

        assert result.outcome == "skipped"
