"""Typed views of upstream provider payloads.

Providers parse raw JSON into these models at the client boundary so the
normalizer never branches on a provider's raw schema. Every field has a
default; a missing field in a payload never raises.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from billofmaterial.models.schemas import Supplier


class RegistryVersion(BaseModel):
    """Per-version data from the registry packument."""

    version: str
    dependencies: dict[str, str] = Field(default_factory=dict)
    peer_dependencies: dict[str, str] = Field(default_factory=dict)
    integrity: str | None = None
    shasum: str | None = None
    deprecated: str | None = None
    supplier: Supplier | None = None
    license: str | None = None


class RegistryMetadata(BaseModel):
    """Package-level data from the registry packument."""

    name: str
    description: str | None = None
    license: str | None = None
    homepage: str | None = None
    repository_url: str | None = None
    latest: str | None = None
    created: datetime | None = None
    modified: datetime | None = None
    versions: dict[str, RegistryVersion] = Field(default_factory=dict)
    supplier: Supplier | None = None

    @property
    def version_count(self) -> int:
        return len(self.versions)

    @property
    def last_publish(self) -> datetime | None:
        """Most recent modification time recorded by the registry."""
        return self.modified or self.created


class BundleSize(BaseModel):
    """Minified and gzipped byte counts for one package version."""

    size: int = 0
    gzip: int = 0


class DownloadStats(BaseModel):
    """Download count for the last week."""

    downloads: int = 0

