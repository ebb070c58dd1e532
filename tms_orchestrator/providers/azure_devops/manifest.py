"""Azure DevOps provider manifest."""

from tms_orchestrator.providers.azure_devops.config import AzureDevOpsConfig
from tms_orchestrator.providers.azure_devops.provider import AzureDevOpsProvider
from tms_orchestrator.providers.manifest import ProviderManifest

azure_devops_manifest = ProviderManifest(
    config_cls=AzureDevOpsConfig,
    provider_factory=AzureDevOpsProvider.from_config,
)
