"""Server configuration loaded from environment variables."""

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationError

# Optional variables and the config field each one sets
OPTIONAL_VARIABLES: Mapping[str, str] = {
    "HOST": "host",
    "TMS_PUBLIC_URL": "public_url",
    "TMS_WEBHOOK_TOKEN": "webhook_token",
    "GITHUB_WEBHOOK_SECRET": "github_webhook_secret",
    "TMS_HISTORY_SIZE": "history_size",
    "TMS_EXECUTION_TIMEOUT": "execution_timeout",
    "TMS_EXPIRY_INTERVAL": "expiry_interval",
    "TMS_AUTO_REGISTER": "auto_register",
}


class ConfigurationError(Exception):
    """Raised when the environment does not describe a usable configuration."""


class ServerConfig(BaseModel):
    """Configuration for the orchestrator HTTP server."""

    environment: str
    port: int = Field(..., ge=1, le=65535)
    host: str = "0.0.0.0"
    public_url: str | None = Field(
        default=None, description="Base URL runners use to reach this server"
    )
    webhook_token: SecretStr | None = None
    github_webhook_secret: SecretStr | None = None
    providers: Mapping[str, Mapping[str, Any]] = Field(default_factory=dict)
    history_size: int = Field(default=100, ge=1)
    execution_timeout: float = Field(default=1800, gt=0)
    expiry_interval: float = Field(default=60, gt=0)
    auto_register: bool = True

    @property
    def webhook_url(self) -> str | None:
        """URL runners should post test results to."""
        if self.public_url is None:
            return None
        return f"{self.public_url.rstrip('/')}/api/webhooks/test-results"


def load_server_config(environ: Mapping[str, str]) -> ServerConfig:
    """Build the server configuration from environment variables.

    ``TMS_ENV`` and ``PORT`` are required; ``NODE_ENV`` is accepted in place of
    ``TMS_ENV``. ``TMS_PROVIDERS`` holds a JSON object mapping provider keys to
    their configuration.

    Raises:
        ConfigurationError: If a required variable is missing or a value is
            invalid

    """
    environment = environ.get("TMS_ENV") or environ.get("NODE_ENV")
    missing = [
        name
        for name, value in (("TMS_ENV", environment), ("PORT", environ.get("PORT")))
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Required environment variable(s) not set: {', '.join(missing)}"
        )

    try:
        providers = json.loads(environ.get("TMS_PROVIDERS") or "{}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"TMS_PROVIDERS is not valid JSON: {e}") from e

    values: dict[str, Any] = {
        "environment": environment,
        "port": environ["PORT"],
        "providers": providers,
    }
    for variable, field_name in OPTIONAL_VARIABLES.items():
        if value := environ.get(variable):
            values[field_name] = value

    try:
        return ServerConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
