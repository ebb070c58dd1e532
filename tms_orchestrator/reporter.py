"""Client used by test runners to report results to the orchestrator."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import aiohttp
from pydantic import BaseModel, Field, SecretStr

from tms_orchestrator.models.results import AggregatedResult, Artifacts, ShardResult
from tms_orchestrator.models.webhook import (
    ExecutionStarted,
    FinalResult,
    ShardCompleted,
    StartMetadata,
)

log = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset([408, 429, 500, 502, 503, 504])


class ReporterConfig(BaseModel):
    """Where and how runners send their webhooks."""

    webhook_url: str | None = None
    token: SecretStr | None = None
    timeout: float = Field(default=30, gt=0)
    retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=5, ge=0)

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url) and self.token is not None


@dataclass(frozen=True, kw_only=True)
class WebhookClient:
    """Posts webhook payloads, retrying transient failures.

    A client created without a URL or token skips every send.
    """

    config: ReporterConfig
    session: aiohttp.ClientSession | None = field(default=None, repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: ReporterConfig
    ) -> AsyncGenerator["WebhookClient", None]:
        """Create client with managed session lifecycle."""
        if not config.configured or config.token is None:
            yield cls(config=config)
            return

        headers = {"Authorization": f"Bearer {config.token.get_secret_value()}"}
        async with aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=config.timeout),
        ) as session:
            yield cls(config=config, session=session)

    async def send(self, payload: Mapping[str, Any], description: str) -> bool:
        """Send a payload to the webhook URL.

        Args:
            payload: JSON body to post
            description: What is being sent, for log messages

        Returns:
            True if the webhook was delivered or sending is not configured,
            False if every attempt failed

        """
        if self.session is None or not self.config.webhook_url:
            log.warning("Webhook URL or token not configured, skipping: %s", description)
            return True

        attempts = self.config.retries + 1
        log.info("Sending webhook: %s", description)

        for attempt in range(1, attempts + 1):
            try:
                async with self.session.post(
                    self.config.webhook_url, json=payload
                ) as response:
                    if response.status < 400:
                        log.info("Successfully sent webhook: %s", description)
                        return True

                    text = await response.text()
                    if response.status not in RETRYABLE_STATUSES:
                        log.error(
                            "Webhook %s rejected: %s %s",
                            description,
                            response.status,
                            text,
                        )
                        return False

                    log.warning(
                        "Webhook %s attempt %d/%d failed: %s %s",
                        description,
                        attempt,
                        attempts,
                        response.status,
                        text,
                    )
            except (aiohttp.ClientError, TimeoutError) as e:
                log.warning(
                    "Webhook %s attempt %d/%d failed: %s",
                    description,
                    attempt,
                    attempts,
                    e,
                )

            if attempt < attempts:
                await asyncio.sleep(self.config.retry_delay)

        log.error("Failed to send webhook after %d attempts: %s", attempts, description)
        return False


def build_start_payload(
    *,
    execution_id: str,
    shard_id: str,
    total_shards: int,
    provider: str,
    run_id: str | None = None,
    run_url: str | None = None,
    test_suite: str | None = None,
    environment: str | None = None,
) -> Mapping[str, Any]:
    """Payload announcing that a shard started running."""
    event = ExecutionStarted(
        execution_id=execution_id,
        status="running",
        provider=provider,
        run_id=run_id,
        run_url=run_url,
        test_suite=test_suite,
        environment=environment,
        start_time=datetime.now(timezone.utc),
        metadata=StartMetadata(shard_id=shard_id, total_shards=total_shards),
    )
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_shard_payload(
    *,
    execution_id: str,
    shard: ShardResult,
    total_shards: int,
    provider: str,
    run_id: str | None = None,
    artifacts: Artifacts | None = None,
) -> Mapping[str, Any]:
    """Payload reporting one shard's results."""
    event = ShardCompleted(
        execution_id=execution_id,
        shard_id=shard.shard_id,
        status="shard-complete",
        provider=provider,
        run_id=run_id,
        total_shards=total_shards,
        results=shard.results,
        failed_tests=shard.failed_tests,
        artifacts=artifacts,
        error=shard.error,
        timestamp=datetime.now(timezone.utc),
    )
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_final_payload(
    *,
    execution_id: str,
    result: AggregatedResult,
    provider: str,
    run_id: str | None = None,
    run_url: str | None = None,
    test_suite: str | None = None,
    environment: str | None = None,
    artifacts: Artifacts | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> Mapping[str, Any]:
    """Payload carrying the aggregated result of every shard."""
    event = FinalResult(
        execution_id=execution_id,
        status=result.status,
        provider=provider,
        run_id=run_id,
        run_url=run_url,
        test_suite=test_suite,
        environment=environment,
        results=result.results,
        failed_tests=result.failed_tests,
        artifacts=artifacts,
        metadata={"totalShards": result.total_shards, **(metadata or {})},
        end_time=datetime.now(timezone.utc),
    )
    return event.model_dump(mode="json", by_alias=True, exclude_none=True)
