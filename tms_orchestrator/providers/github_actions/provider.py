"""GitHub Actions provider implementation."""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiohttp

from tms_orchestrator.models.execution import Execution
from tms_orchestrator.providers.base import DispatchResult, RunnerProvider
from tms_orchestrator.providers.github_actions.config import GitHubActionsConfig
from tms_orchestrator.providers.github_actions.models import (
    WorkflowRun,
    WorkflowRunsResponse,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class GitHubActionsProvider(RunnerProvider):
    """GitHub Actions runner provider."""

    config: GitHubActionsConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: GitHubActionsConfig
    ) -> AsyncGenerator["GitHubActionsProvider", None]:
        """Create provider with managed session lifecycle."""
        headers = {
            "Authorization": f"Bearer {config.token.get_secret_value()}",
            "Accept": "application/vnd.github+json",
        }
        async with aiohttp.ClientSession(
            base_url=config.api_base_url,
            headers=headers,
        ) as session:
            yield cls(config=config, session=session)

    async def dispatch_execution(
        self,
        execution: Execution,
        webhook_url: str | None,
    ) -> DispatchResult:
        """Dispatch the workflow and locate the run it created."""
        dispatch_time = datetime.now(timezone.utc).replace(microsecond=0)
        request = execution.request

        inputs = {
            "execution_id": execution.id,
            "test_suite": request.suite,
            "environment": request.environment,
            "total_shards": str(execution.total_shards or request.total_shards),
            "test_files": json.dumps(list(request.test_files)),
            "grep": request.grep,
            "webhook_url": webhook_url,
        }
        payload = {
            "ref": self.config.ref,
            "inputs": {key: value for key, value in inputs.items() if value is not None},
        }

        url = (
            f"/repos/{self.config.owner}/{self.config.repo}"
            f"/actions/workflows/{self.config.workflow_id}/dispatches"
        )
        log.info(
            "Dispatching workflow: url=%s, ref=%s, execution_id=%s, suite=%s",
            url,
            self.config.ref,
            execution.id,
            request.suite,
        )

        async with self.session.post(url, json=payload) as response:
            if response.status not in (200, 204):
                text = await response.text()
                raise RuntimeError(
                    f"Failed to dispatch workflow: {response.status} {text}"
                )

        for attempt in range(self.config.run_lookup_attempts):
            if attempt:
                await asyncio.sleep(self.config.run_lookup_interval)
            run = await self.find_workflow_run(execution.id, dispatch_time)
            if run is not None:
                return DispatchResult(run_id=str(run.id), run_url=run.html_url)

        log.warning(
            "Workflow run for %s not found after %d attempts; "
            "relying on webhooks to correlate it",
            execution.id,
            self.config.run_lookup_attempts,
        )
        return DispatchResult(run_id=None)

    async def cancel_run(self, run_id: str) -> None:
        """Cancel a workflow run."""
        url = (
            f"/repos/{self.config.owner}/{self.config.repo}"
            f"/actions/runs/{run_id}/cancel"
        )
        async with self.session.post(url) as response:
            if response.status != 202:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to cancel workflow run: {response.status} {text}"
                )
        log.info("Cancelled workflow run %s", run_id)

    async def find_workflow_run(
        self, execution_id: str, dispatch_time: datetime
    ) -> WorkflowRun | None:
        """Find workflow run by execution ID in display_title.

        Uses the created filter to narrow search scope and paginates through
        all matching runs to ensure we don't miss the target run.
        """
        url = f"/repos/{self.config.owner}/{self.config.repo}/actions/runs"
        created_filter = f">={dispatch_time.strftime('%Y-%m-%dT%H:%M:%SZ')}"
        page = 1

        while True:
            params = {"per_page": "100", "created": created_filter, "page": str(page)}

            async with self.session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to list workflow runs: {response.status} {text}"
                    )
                data = await response.json()

            runs_response = WorkflowRunsResponse.model_validate(data)

            for run in runs_response.workflow_runs:
                if execution_id in run.display_title:
                    return run

            if len(runs_response.workflow_runs) < 100:
                break

            page += 1

        return None
