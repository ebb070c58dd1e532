"""GitHub Actions provider module."""

from tms_orchestrator.providers.github_actions.config import GitHubActionsConfig
from tms_orchestrator.providers.github_actions.manifest import github_actions_manifest
from tms_orchestrator.providers.github_actions.provider import GitHubActionsProvider

__all__ = ["GitHubActionsConfig", "GitHubActionsProvider", "github_actions_manifest"]
