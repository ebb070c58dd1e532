"""Pydantic models for GitHub Actions API responses and webhook events."""

from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

type WorkflowConclusion = Literal[
    "success",
    "failure",
    "cancelled",
    "timed_out",
    "action_required",
    "neutral",
    "skipped",
    "stale",
]


class WorkflowRun(BaseModel):
    """A workflow run from GitHub Actions API."""

    id: int
    status: str
    conclusion: WorkflowConclusion | None = None
    name: str
    display_title: str
    html_url: str
    created_at: datetime
    updated_at: datetime


class WorkflowRunsResponse(BaseModel):
    """Response from list workflow runs API."""

    workflow_runs: Sequence[WorkflowRun]


class HeadCommit(BaseModel):
    """Commit that triggered a workflow run."""

    message: str | None = None


class WebhookWorkflowRun(BaseModel):
    """Workflow run as embedded in a ``workflow_run`` webhook event."""

    id: int
    name: str | None = None
    display_title: str | None = None
    status: str | None = None
    conclusion: WorkflowConclusion | None = None
    html_url: str | None = None
    head_commit: HeadCommit | None = None


class WorkflowRunEvent(BaseModel):
    """A ``workflow_run`` webhook event."""

    action: str
    workflow_run: WebhookWorkflowRun | None = None
