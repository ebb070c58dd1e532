"""Request middleware: webhook authentication and JSON error responses."""

import hmac
import logging

from aiohttp import web
from aiohttp.typedefs import Handler
from pydantic import ValidationError

from tms_orchestrator.models.webhook import InvalidEventError
from tms_orchestrator.orchestrator import DispatchError, UnsupportedRunnerError
from tms_orchestrator.server.keys import CONFIG
from tms_orchestrator.server.responses import dump_execution, json_error
from tms_orchestrator.tracker import (
    ConflictingReportError,
    ExecutionNotFoundError,
    InvalidTransitionError,
)

log = logging.getLogger(__name__)

# Paths reachable without the bearer token
PUBLIC_PATHS = frozenset(
    [
        "/api/health",
        "/api/webhooks/health",
        "/api/webhooks/github-actions",
    ]
)


@web.middleware
async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Require ``Authorization: Bearer <token>`` on API routes when configured."""
    token = request.app[CONFIG].webhook_token
    if (
        token is None
        or not request.path.startswith("/api/")
        or request.path in PUBLIC_PATHS
    ):
        return await handler(request)

    provided = request.headers.get("Authorization", "")
    expected = f"Bearer {token.get_secret_value()}"
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        log.warning("Rejected unauthenticated request to %s", request.path)
        return json_error(401, "Unauthorized")

    return await handler(request)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map domain errors raised by handlers to JSON error responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (InvalidEventError, ValidationError, UnsupportedRunnerError) as e:
        return json_error(400, str(e))
    except ExecutionNotFoundError as e:
        return json_error(404, str(e))
    except (ConflictingReportError, InvalidTransitionError) as e:
        return json_error(409, str(e))
    except DispatchError as e:
        return json_error(502, str(e), execution=dump_execution(e.execution))
    except Exception:
        log.exception("Error handling %s %s", request.method, request.path)
        return json_error(500, "Internal server error")
