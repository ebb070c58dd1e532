"""GitHub Actions provider manifest."""

from tms_orchestrator.providers.github_actions.config import GitHubActionsConfig
from tms_orchestrator.providers.github_actions.provider import GitHubActionsProvider
from tms_orchestrator.providers.manifest import ProviderManifest

github_actions_manifest = ProviderManifest(
    config_cls=GitHubActionsConfig,
    provider_factory=GitHubActionsProvider.from_config,
)
