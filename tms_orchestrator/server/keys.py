"""Typed keys for state stored on the aiohttp application."""

from aiohttp import web

from tms_orchestrator.config import ServerConfig
from tms_orchestrator.ingest import WebhookIngestor
from tms_orchestrator.orchestrator import ExecutionOrchestrator
from tms_orchestrator.tracker import ExecutionTracker

CONFIG = web.AppKey("config", ServerConfig)
TRACKER = web.AppKey("tracker", ExecutionTracker)
ORCHESTRATOR = web.AppKey("orchestrator", ExecutionOrchestrator)
INGESTOR = web.AppKey("ingestor", WebhookIngestor)
STARTED_AT = web.AppKey("started_at", float)
