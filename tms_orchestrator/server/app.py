"""aiohttp application serving the orchestrator API."""

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version

from aiohttp import web

from tms_orchestrator.config import ServerConfig
from tms_orchestrator.ingest import WebhookIngestor
from tms_orchestrator.orchestrator import ExecutionOrchestrator
from tms_orchestrator.server import executions, webhooks
from tms_orchestrator.server.keys import (
    CONFIG,
    INGESTOR,
    ORCHESTRATOR,
    STARTED_AT,
    TRACKER,
)
from tms_orchestrator.server.middleware import auth_middleware, error_middleware
from tms_orchestrator.tracker import ExecutionEvent

log = logging.getLogger(__name__)

routes = web.RouteTableDef()


def package_version() -> str:
    try:
        return version("tms-orchestrator")
    except PackageNotFoundError:
        return "unknown"


def log_execution_event(event: ExecutionEvent) -> None:
    """Execution listener that logs every event at debug level."""
    log.debug(
        "%s: %s (status=%s, shard=%s)",
        event.type,
        event.execution.id,
        event.execution.status,
        event.shard_id,
    )


@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    config = request.app[CONFIG]
    tracker = request.app[TRACKER]
    status = tracker.queue_status()
    return web.json_response(
        {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": package_version(),
            "environment": config.environment,
            "uptime": round(time.monotonic() - request.app[STARTED_AT], 1),
            "executions": {
                "queued": len(status.queued),
                "running": len(status.running),
                "active": status.total,
                "history": len(tracker.history),
            },
            "providers": sorted(request.app[ORCHESTRATOR].providers),
        }
    )


async def expire_stale_executions(app: web.Application) -> AsyncIterator[None]:
    """Periodically time out executions that never reported a final result."""
    config = app[CONFIG]
    tracker = app[TRACKER]

    async def expire_loop() -> None:
        while True:
            await asyncio.sleep(config.expiry_interval)
            expired = tracker.expire_stale(config.execution_timeout)
            if expired:
                log.info("Expired %d stale execution(s)", len(expired))

    task = asyncio.create_task(expire_loop())
    yield
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def create_app(config: ServerConfig, orchestrator: ExecutionOrchestrator) -> web.Application:
    """Create the web application.

    Args:
        config: Server configuration
        orchestrator: Orchestrator owning the tracker and runner providers

    Returns:
        The application, ready to be served

    """
    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[CONFIG] = config
    app[ORCHESTRATOR] = orchestrator
    app[TRACKER] = orchestrator.tracker
    app[INGESTOR] = WebhookIngestor(tracker=orchestrator.tracker)
    app[STARTED_AT] = time.monotonic()

    app.add_routes(routes)
    app.add_routes(webhooks.routes)
    app.add_routes(executions.routes)
    app.cleanup_ctx.append(expire_stale_executions)
    return app
