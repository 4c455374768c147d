"""Bundle size provider backed by bundlephobia."""

import math

from billofmaterial.adapters.base import BaseProvider, ProviderError
from billofmaterial.models.upstream import BundleSize


class BundlephobiaProvider(BaseProvider):
    """Fetches minified and gzipped bundle sizes.

    Data source: https://bundlephobia.com/api/size?package={name}@{version}
    """

    API_URL = "https://bundlephobia.com/api/size"

    @property
    def name(self) -> str:
        return "bundlephobia"

    async def fetch_bundle_size(self, package: str, version: str) -> BundleSize:
        """Fetch bundle size in bytes for a package version."""
        query = f"{package}@{version}" if version else package
        data = await self._fetch_json(f"{self.API_URL}?package={query}", package)
        size = data.get("size", 0)
        gzip = data.get("gzip", 0)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in (size, gzip)):
            raise ProviderError(self.name, package, "size fields are not numeric")
        return BundleSize(size=int(size), gzip=int(gzip))
