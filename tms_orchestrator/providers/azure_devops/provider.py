"""Azure DevOps provider implementation."""

import base64
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import aiohttp

from tms_orchestrator.models.execution import Execution
from tms_orchestrator.providers.azure_devops.config import AzureDevOpsConfig
from tms_orchestrator.providers.azure_devops.models import PipelineRun
from tms_orchestrator.providers.base import DispatchResult, RunnerProvider

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class AzureDevOpsProvider(RunnerProvider):
    """Azure DevOps runner provider."""

    config: AzureDevOpsConfig
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AzureDevOpsConfig
    ) -> AsyncGenerator["AzureDevOpsProvider", None]:
        """Create provider with managed session lifecycle."""
        # Azure DevOps uses Basic Auth with empty username and PAT as password
        auth_string = f":{config.token.get_secret_value()}"
        auth_bytes = base64.b64encode(auth_string.encode("ascii")).decode("ascii")
        headers = {
            "Authorization": f"Basic {auth_bytes}",
            "Content-Type": "application/json",
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
        """Run the pipeline and return the created run."""
        request = execution.request
        template_params = {
            "EXECUTION_ID": execution.id,
            "TEST_SUITE": request.suite,
            "TEST_ENVIRONMENT": request.environment,
            "TOTAL_SHARDS": str(execution.total_shards or request.total_shards),
            "TEST_FILES": json.dumps(list(request.test_files)),
            "GREP": request.grep or "",
            "WEBHOOK_URL": webhook_url or "",
        }

        url = (
            f"/{self.config.organization}/{self.config.project}"
            f"/_apis/pipelines/{self.config.pipeline_id}/runs?api-version=7.1"
        )
        payload = {
            "templateParameters": template_params,
            "resources": {
                "repositories": {"self": {"refName": f"refs/heads/{request.branch}"}}
            },
        }

        async with self.session.post(url, json=payload) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(f"Failed to run pipeline: {response.status} {text}")
            data = await response.json()

        run = PipelineRun.model_validate(data)
        run_url = run.links.web.href if run.links and run.links.web else None

        log.info("Created pipeline run %s for execution %s", run.id, execution.id)
        return DispatchResult(run_id=str(run.id), run_url=run_url)

    async def cancel_run(self, run_id: str) -> None:
        """Cancel the build backing a pipeline run."""
        url = (
            f"/{self.config.organization}/{self.config.project}"
            f"/_apis/build/builds/{run_id}?api-version=7.1"
        )
        async with self.session.patch(url, json={"status": "cancelling"}) as response:
            if response.status != 200:
                text = await response.text()
                raise RuntimeError(
                    f"Failed to cancel pipeline run: {response.status} {text}"
                )
        log.info("Cancelled pipeline run %s", run_id)
