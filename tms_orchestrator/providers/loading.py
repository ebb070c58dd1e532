"""Loading of providers from entry points."""

from collections.abc import AsyncGenerator, Mapping
from contextlib import AsyncExitStack, asynccontextmanager
from importlib.metadata import entry_points
from typing import Any

from tms_orchestrator.providers.base import RunnerProvider
from tms_orchestrator.providers.manifest import ProviderManifest

ENTRY_POINT_GROUP = "tms_orchestrator.providers"


class ProviderNotFoundError(Exception):
    """Raised when a provider is not found."""


def load_provider_manifest(key: str) -> ProviderManifest[Any]:
    """Load a provider manifest by key.

    Args:
        key: The provider key as registered in pyproject.toml
             (e.g., "github-actions", "azure-devops")

    Returns:
        The provider manifest instance

    Raises:
        ProviderNotFoundError: If no provider with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: ProviderManifest[Any] = entry.load()
            return manifest

    available = [e.name for e in entries]
    raise ProviderNotFoundError(
        f"Provider '{key}' not found. Available providers: {available}"
    )


@asynccontextmanager
async def open_providers(
    configs: Mapping[str, Mapping[str, Any]],
) -> AsyncGenerator[Mapping[str, RunnerProvider], None]:
    """Create every configured provider, keeping their sessions open.

    Args:
        configs: Provider configuration keyed by provider key

    Yields:
        Providers keyed by provider key

    """
    async with AsyncExitStack() as stack:
        providers: dict[str, RunnerProvider] = {}
        for key, config_dict in configs.items():
            manifest = load_provider_manifest(key)
            config = manifest.config_cls(**config_dict)
            providers[key] = await stack.enter_async_context(
                manifest.provider_factory(config)
            )
        yield providers
