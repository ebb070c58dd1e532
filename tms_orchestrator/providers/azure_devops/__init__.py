"""Azure DevOps provider module."""

from tms_orchestrator.providers.azure_devops.config import AzureDevOpsConfig
from tms_orchestrator.providers.azure_devops.manifest import azure_devops_manifest
from tms_orchestrator.providers.azure_devops.provider import AzureDevOpsProvider

__all__ = ["AzureDevOpsConfig", "AzureDevOpsProvider", "azure_devops_manifest"]
