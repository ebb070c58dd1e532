"""Webhook routes for runners and CI/CD platforms."""

import logging

from aiohttp import web

from tms_orchestrator.ingest import IngestResult, verify_github_signature
from tms_orchestrator.server.keys import CONFIG, INGESTOR, ORCHESTRATOR
from tms_orchestrator.server.responses import decode_json, json_error, read_json

log = logging.getLogger(__name__)

routes = web.RouteTableDef()

SUPPORTED_PROVIDERS = ["github-actions", "azure-devops", "jenkins", "docker"]


def ingest_response(result: IngestResult) -> web.Response:
    body = {
        "success": True,
        "outcome": result.outcome,
        "executionId": result.execution_id,
    }
    if result.message:
        body["message"] = result.message
    return web.json_response(body)


@routes.post("/api/webhooks/test-results")
async def test_results(request: web.Request) -> web.Response:
    payload = await read_json(request)
    return ingest_response(request.app[INGESTOR].ingest_test_results(payload))


@routes.post("/api/webhooks/ci-cd")
async def ci_cd(request: web.Request) -> web.Response:
    payload = await read_json(request)
    result = request.app[INGESTOR].ingest_test_results(payload, require_provider=True)
    return ingest_response(result)


@routes.post("/api/webhooks/github-actions")
async def github_actions(request: web.Request) -> web.Response:
    body = await request.read()

    secret = request.app[CONFIG].github_webhook_secret
    if secret is not None and not verify_github_signature(
        secret.get_secret_value(), body, request.headers.get("X-Hub-Signature-256")
    ):
        log.warning("Rejected GitHub webhook with invalid signature")
        return json_error(401, "Invalid signature")

    event = request.headers.get("X-GitHub-Event", "workflow_run")
    if event != "workflow_run":
        return ingest_response(
            IngestResult(outcome="skipped", message=f"Unhandled event: {event}")
        )

    return ingest_response(request.app[INGESTOR].ingest_github(decode_json(body)))


@routes.post("/api/webhooks/azure-devops")
async def azure_devops(request: web.Request) -> web.Response:
    payload = await read_json(request)
    return ingest_response(request.app[INGESTOR].ingest_azure(payload))


@routes.post("/api/webhooks/jenkins")
async def jenkins(request: web.Request) -> web.Response:
    payload = await read_json(request)
    return ingest_response(request.app[INGESTOR].ingest_jenkins(payload))


@routes.get("/api/webhooks/health")
async def webhooks_health(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "success": True,
            "message": "Test webhook endpoints are healthy",
            "supportedProviders": SUPPORTED_PROVIDERS,
            "configuredRunners": sorted(request.app[ORCHESTRATOR].providers),
            "endpoints": [
                "/api/webhooks/test-results",
                "/api/webhooks/github-actions",
                "/api/webhooks/azure-devops",
                "/api/webhooks/jenkins",
                "/api/webhooks/ci-cd",
            ],
        }
    )
