"""Cloud providers: resolve scaling-group membership to private IPs."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..config import PROVIDER_AZURE, AppConfig, validate_cloud_provider
from ..errors import ConfigError
from ..models import Upstream


@runtime_checkable
class CloudProvider(Protocol):
    """Contract every provider satisfies; there is no shared base class."""

    def list_upstreams(self) -> list[Upstream]:
        """The configured upstreams, in file order."""
        ...

    def resolve_members(self, scaling_group: str) -> set[str]:
        """Private IPs of the group's members; raises ProviderError, never returns a partial set."""
        ...

    def group_exists(self, scaling_group: str) -> bool:
        ...


def create_provider(config: AppConfig) -> CloudProvider:
    """Instantiate the provider selected by ``cloud_provider``."""
    if not validate_cloud_provider(config.cloud_provider):
        raise ConfigError(f"{config.cloud_provider!r} is not a valid cloud provider")
    # Lazy imports keep each cloud SDK out of the other provider's startup path.
    if config.cloud_provider == PROVIDER_AZURE:
        from .azure import AzureProvider

        return AzureProvider(config.provider)
    from .aws import AWSProvider

    return AWSProvider(config.provider)


__all__ = ["CloudProvider", "create_provider", "validate_cloud_provider"]
