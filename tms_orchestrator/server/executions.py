"""Routes for submitting, inspecting and cancelling executions."""

from aiohttp import web

from tms_orchestrator.models.execution import ExecutionRequest
from tms_orchestrator.server.keys import ORCHESTRATOR, TRACKER
from tms_orchestrator.server.responses import dump_execution, read_json

routes = web.RouteTableDef()


@routes.post("/api/executions")
async def submit_execution(request: web.Request) -> web.Response:
    execution_request = ExecutionRequest.model_validate(await read_json(request))
    execution = await request.app[ORCHESTRATOR].submit(execution_request)
    return web.json_response(
        {"success": True, "execution": dump_execution(execution)}, status=202
    )


@routes.get("/api/executions")
async def list_executions(request: web.Request) -> web.Response:
    tracker = request.app[TRACKER]
    status = tracker.queue_status()
    return web.json_response(
        {
            "queued": [dump_execution(e) for e in status.queued],
            "running": [dump_execution(e) for e in status.running],
            "total": status.total,
            "history": [dump_execution(e) for e in tracker.history],
        }
    )


@routes.get("/api/executions/{execution_id}")
async def get_execution(request: web.Request) -> web.Response:
    execution = request.app[TRACKER].require(request.match_info["execution_id"])
    return web.json_response({"execution": dump_execution(execution)})


@routes.post("/api/executions/{execution_id}/cancel")
async def cancel_execution(request: web.Request) -> web.Response:
    execution = await request.app[ORCHESTRATOR].cancel(
        request.match_info["execution_id"]
    )
    return web.json_response({"success": True, "execution": dump_execution(execution)})
