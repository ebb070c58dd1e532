"""Helpers for reading and writing JSON bodies."""

import json
from collections.abc import Mapping
from typing import Any

from aiohttp import web

from tms_orchestrator.models.execution import Execution
from tms_orchestrator.models.webhook import InvalidEventError


def json_error(status: int, message: str, **extra: Any) -> web.Response:
    """Build a JSON error response."""
    body: Mapping[str, Any] = {"success": False, "error": message, **extra}
    return web.json_response(body, status=status)


def decode_json(body: bytes) -> Any:
    """Decode a request body, rejecting anything that is not JSON.

    Raises:
        InvalidEventError: If the body is empty or not valid JSON

    """
    if not body:
        raise InvalidEventError("Request body is empty")
    try:
        return json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidEventError(f"Request body is not valid JSON: {e}") from e


async def read_json(request: web.Request) -> Any:
    """Read and decode a JSON request body."""
    return decode_json(await request.read())


def dump_execution(execution: Execution) -> Mapping[str, Any]:
    """Serialize an execution for API responses."""
    return {
        **execution.model_dump(mode="json", by_alias=True),
        "actualDuration": execution.actual_duration,
    }
