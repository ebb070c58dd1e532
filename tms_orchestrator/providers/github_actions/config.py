"""Configuration for GitHub Actions provider."""

from pydantic import BaseModel, Field, SecretStr


class GitHubActionsConfig(BaseModel):
    """Configuration for GitHub Actions provider."""

    token: SecretStr
    owner: str
    repo: str
    workflow_id: str
    ref: str = "main"
    api_base_url: str = "https://api.github.com"
    # The workflow's run-name must include the execution_id input
    run_lookup_attempts: int = Field(default=5, ge=1)
    run_lookup_interval: float = Field(default=3.0, ge=0)
