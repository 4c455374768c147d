"""NPM registry and download-count providers."""

from datetime import datetime

from billofmaterial.adapters.base import (
    MALFORMED_PAYLOAD_ERRORS,
    BaseProvider,
    ProviderError,
    encode_package_name,
)
from billofmaterial.models.schemas import Supplier
from billofmaterial.models.upstream import DownloadStats, RegistryMetadata, RegistryVersion


class NpmRegistryProvider(BaseProvider):
    """Fetches package metadata from the npm registry.

    Data source: https://registry.npmjs.org/{package}
    """

    REGISTRY_URL = "https://registry.npmjs.org"

    @property
    def name(self) -> str:
        return "npm-registry"

    async def fetch_metadata(self, package: str) -> RegistryMetadata:
        """Fetch and parse the packument for a package.

        Args:
            package: Package name (supports scoped packages like @org/pkg).

        Returns:
            RegistryMetadata with every field defaulted when absent.

        Raises:
            PackageNotFoundError: If the package doesn't exist.
            ProviderError: On transport failure or a malformed payload.
        """
        url = f"{self.REGISTRY_URL}/{encode_package_name(package)}"
        data = await self._fetch_json(url, package)
        try:
            return parse_packument(data, package)
        except MALFORMED_PAYLOAD_ERRORS as e:
            raise ProviderError(self.name, package, f"malformed packument: {e}") from e


class NpmDownloadsProvider(BaseProvider):
    """Fetches weekly download counts.

    Data source: https://api.npmjs.org/downloads/point/last-week/{package}
    """

    DOWNLOADS_URL = "https://api.npmjs.org/downloads"

    @property
    def name(self) -> str:
        return "npm-downloads"

    async def fetch_weekly_downloads(self, package: str) -> DownloadStats:
        """Fetch last week's download count for a package."""
        url = f"{self.DOWNLOADS_URL}/point/last-week/{encode_package_name(package)}"
        data = await self._fetch_json(url, package)
        downloads = data.get("downloads", 0)
        if not isinstance(downloads, int):
            raise ProviderError(self.name, package, "download count is not an integer")
        return DownloadStats(downloads=downloads)


def parse_packument(data: dict, package: str) -> RegistryMetadata:
    """Parse a raw registry packument into RegistryMetadata."""
    if "error" in data and "versions" not in data:
        raise ProviderError("npm-registry", package, str(data["error"]))

    dist_tags = data.get("dist-tags") or {}
    latest = dist_tags.get("latest") if isinstance(dist_tags, dict) else None

    raw_versions = data.get("versions") or {}
    versions: dict[str, RegistryVersion] = {}
    if isinstance(raw_versions, dict):
        for version, version_data in raw_versions.items():
            if isinstance(version_data, dict):
                versions[version] = _parse_version(version, version_data)

    latest_data = raw_versions.get(latest, {}) if latest and isinstance(raw_versions, dict) else {}
    if not isinstance(latest_data, dict):
        latest_data = {}

    times = data.get("time") or {}
    if not isinstance(times, dict):
        times = {}

    repository = data.get("repository") or latest_data.get("repository")
    description = data.get("description") or latest_data.get("description")

    return RegistryMetadata(
        name=data.get("name") or package,
        description=description if isinstance(description, str) else None,
        license=_extract_license(data, latest_data),
        homepage=_as_str(data.get("homepage") or latest_data.get("homepage")),
        repository_url=_extract_repo_url(repository),
        latest=latest if isinstance(latest, str) else None,
        created=_parse_timestamp(times.get("created")),
        modified=_parse_timestamp(times.get("modified")),
        versions=versions,
        supplier=_extract_supplier(data) or _extract_supplier(latest_data),
    )


def _parse_version(version: str, version_data: dict) -> RegistryVersion:
    dist = version_data.get("dist") or {}
    if not isinstance(dist, dict):
        dist = {}
    deprecated = version_data.get("deprecated")
    return RegistryVersion(
        version=version,
        dependencies=_str_map(version_data.get("dependencies")),
        peer_dependencies=_str_map(version_data.get("peerDependencies")),
        integrity=_as_str(dist.get("integrity")),
        shasum=_as_str(dist.get("shasum")),
        # npm un-deprecates a version by setting the message to ""
        deprecated=deprecated if isinstance(deprecated, str) and deprecated else None,
        supplier=_extract_supplier(version_data),
        license=_extract_license(version_data, {}),
    )


def _extract_repo_url(repository: dict | str | None) -> str | None:
    """Extract repository URL from npm repository field.

    Handles various formats:
    - {"type": "git", "url": "git+https://github.com/owner/repo.git"}
    - "github:owner/repo"
    - "https://github.com/owner/repo"
    """
    if not repository:
        return None

    if isinstance(repository, str):
        url = repository
    elif isinstance(repository, dict):
        url = repository.get("url", "")
    else:
        return None

    if not url or not isinstance(url, str):
        return None

    url = url.replace("git+", "").replace("git://", "https://")
    if url.endswith(".git"):
        url = url[: -len(".git")]

    if url.startswith("github:"):
        url = f"https://github.com/{url[7:]}"

    return url or None


def _extract_license(data: dict, version_data: dict) -> str | None:
    """Extract license from npm package data."""
    license_info = data.get("license") or version_data.get("license")

    if isinstance(license_info, str):
        return license_info
    elif isinstance(license_info, dict):
        return license_info.get("type") or license_info.get("name")
    elif isinstance(license_info, list) and license_info:
        first = license_info[0]
        if isinstance(first, str):
            return first
        elif isinstance(first, dict):
            return first.get("type") or first.get("name")

    return None


def _extract_supplier(data: dict) -> Supplier | None:
    """Extract a supplier from the author field, falling back to the first maintainer.

    Handles both object form and the "Name <email> (url)" string form.
    """
    candidates = [data.get("author")]
    maintainers = data.get("maintainers")
    if isinstance(maintainers, list) and maintainers:
        candidates.append(maintainers[0])

    for candidate in candidates:
        if isinstance(candidate, dict) and candidate.get("name"):
            return Supplier(
                name=str(candidate["name"]),
                email=_as_str(candidate.get("email")),
                url=_as_str(candidate.get("url")),
            )
        if isinstance(candidate, str) and candidate.strip():
            return _parse_person(candidate)
    return None


def _parse_person(value: str) -> Supplier:
    email = url = None
    name = value
    if "<" in name and ">" in name:
        start, end = name.index("<"), name.index(">")
        email = name[start + 1:end].strip() or None
        name = name[:start] + name[end + 1:]
    if "(" in name and ")" in name:
        start, end = name.index("("), name.index(")")
        url = name[start + 1:end].strip() or None
        name = name[:start] + name[end + 1:]
    return Supplier(name=name.strip() or value.strip(), email=email, url=url)


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _str_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items()}


def _as_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None
