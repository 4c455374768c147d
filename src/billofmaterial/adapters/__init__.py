"""Upstream provider clients."""

from billofmaterial.adapters.base import BaseProvider, PackageNotFoundError, ProviderError
from billofmaterial.adapters.npm import NpmDownloadsProvider, NpmRegistryProvider

__all__ = [
    "BaseProvider",
    "NpmDownloadsProvider",
    "NpmRegistryProvider",
    "PackageNotFoundError",
    "ProviderError",
]
