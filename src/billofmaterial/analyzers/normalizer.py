"""Turns raw provider outcomes into normalized dependency records."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from billofmaterial.analyzers.scorer import round_half_up
from billofmaterial.models.schemas import (
    PROBLEMATIC_LICENSES,
    DependencyDeclaration,
    DependencyRecord,
    DistHashes,
    KnownUnknown,
    KnownUnknownCategory,
    OutdatedPackage,
    VexStatus,
    VulnerabilityRecord,
)
from billofmaterial.models.upstream import BundleSize, DownloadStats, RegistryMetadata

logger = logging.getLogger(__name__)

RANGE_PREFIX = re.compile(r"^[\^~>=<\s]+")
VERSION_PATTERN = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+\S*)?$")


class _Unavailable:
    """Marker for a provider call that failed after every retry."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNAVAILABLE"


UNAVAILABLE = _Unavailable()


@dataclass
class ProviderResults:
    """Outcome of every upstream call made for one declaration.

    Each field holds the parsed value, ``UNAVAILABLE`` when the call failed
    after every retry, or ``None`` when the call was skipped by config.
    """

    metadata: RegistryMetadata | _Unavailable
    security_score: int | _Unavailable = UNAVAILABLE
    bundle_size: BundleSize | _Unavailable | None = None
    downloads: DownloadStats | _Unavailable = UNAVAILABLE
    vulnerabilities: list[VulnerabilityRecord] | _Unavailable | None = None
    errors: dict[str, str] = field(default_factory=dict)


# --- Version helpers ---


def resolve_version(version_range: str) -> str:
    """Strip range operators to get the concrete version of a declaration.

    ``^4.17.21`` and ``~4.17.21`` resolve to ``4.17.21``; a compound range
    keeps only its first bound.
    """
    stripped = RANGE_PREFIX.sub("", version_range or "").strip()
    return stripped.split()[0] if stripped else stripped


def parse_version(version: str | None) -> tuple[Any, ...] | None:
    """Parse a dotted version into a sortable key, or None if unparsable."""
    if not version:
        return None
    match = VERSION_PATTERN.match(version.strip())
    if not match:
        return None
    major, minor, patch, prerelease = match.groups()
    # A prerelease sorts before the release it precedes
    release_rank = (0, prerelease) if prerelease else (1, "")
    return (int(major), int(minor or 0), int(patch or 0), *release_rank)


def compare_versions(left: str, right: str) -> int | None:
    """Return -1, 0 or 1, or None when either side cannot be parsed."""
    left_key = parse_version(left)
    right_key = parse_version(right)
    if left_key is None or right_key is None:
        return None
    return (left_key > right_key) - (left_key < right_key)


def vex_status_for(current_version: str, fixed_in: str | None) -> VexStatus:
    """Derive the exploitability status of a vulnerability for a version."""
    if parse_version(current_version) is None:
        return VexStatus.UNDER_INVESTIGATION
    if not fixed_in:
        return VexStatus.AFFECTED
    comparison = compare_versions(current_version, fixed_in)
    if comparison is None:
        return VexStatus.UNDER_INVESTIGATION
    return VexStatus.AFFECTED if comparison < 0 else VexStatus.FIXED


# --- Score helpers ---


def maintenance_score(days_since_update: int | None, version_count: int) -> int:
    """Score maintenance activity from publish recency and release count.

    Starts from 100, subtracts an age penalty (20 past a year, 10 past six
    months, 5 past three) and adds a release-count bonus (10 above 50
    versions, 5 above 20). An unknown publish date carries no penalty.
    """
    score = 100
    if days_since_update is not None:
        if days_since_update > 365:
            score -= 20
        elif days_since_update > 180:
            score -= 10
        elif days_since_update > 90:
            score -= 5

    if version_count > 50:
        score += 10
    elif version_count > 20:
        score += 5

    return max(0, min(100, score))


def popularity_from_downloads(weekly_downloads: int) -> int:
    """Map weekly downloads onto a 0-100 popularity step."""
    if weekly_downloads > 1_000_000:
        return 100
    elif weekly_downloads > 100_000:
        return 90
    elif weekly_downloads > 10_000:
        return 70
    elif weekly_downloads > 1_000:
        return 50
    elif weekly_downloads > 100:
        return 30
    return 10


def bytes_to_kb(size: int) -> int:
    return round_half_up(size / 1024)


# --- Normalization ---


def fetch_failed(declaration: DependencyDeclaration, reason: str) -> KnownUnknown:
    """Record a declaration whose registry metadata could not be fetched."""
    return KnownUnknown(
        name=declaration.name,
        version=declaration.version_range,
        reason=reason,
        category=KnownUnknownCategory.FETCH_FAILED,
    )


def normalize(
    declaration: DependencyDeclaration,
    results: ProviderResults,
    include_transitive: bool = False,
    now: datetime | None = None,
) -> DependencyRecord | KnownUnknown:
    """Build the unscored record for one declaration.

    Returns a ``KnownUnknown`` when the registry metadata is unavailable.
    Any other unavailable provider degrades only its own field: an
    unavailable security score becomes ``None``, unavailable downloads give
    a popularity of 0, unavailable sizes and vulnerabilities are empty.
    """
    metadata = results.metadata
    if isinstance(metadata, _Unavailable):
        reason = results.errors.get("registry", "registry metadata unavailable")
        logger.warning(f"No registry metadata for {declaration.name}: {reason}")
        return fetch_failed(declaration, f"Registry metadata unavailable: {reason}")

    now = now or datetime.now(timezone.utc)
    current = resolve_version(declaration.version_range)
    latest = metadata.latest or current

    exact = metadata.versions.get(current)
    version_data = exact or metadata.versions.get(latest)

    last_publish = metadata.last_publish
    days_since_update = None
    last_publish_date = None
    if last_publish is not None:
        if last_publish.tzinfo is None:
            last_publish = last_publish.replace(tzinfo=timezone.utc)
        days_since_update = max(0, round_half_up((now - last_publish).total_seconds() / 86400))
        last_publish_date = last_publish.date().isoformat()

    license_id = metadata.license or (version_data.license if version_data else None) or "Unknown"

    security_score = results.security_score
    if isinstance(security_score, _Unavailable):
        security_score = None

    downloads = results.downloads
    if isinstance(downloads, DownloadStats):
        weekly_downloads = downloads.downloads
        popularity = popularity_from_downloads(weekly_downloads)
    else:
        weekly_downloads = 0
        popularity = 0

    minified_size = gzip_size = 0
    bundle = results.bundle_size
    if isinstance(bundle, BundleSize) and not declaration.name.startswith("@types/"):
        minified_size = bytes_to_kb(bundle.size)
        gzip_size = bytes_to_kb(bundle.gzip)

    vulnerabilities: list[VulnerabilityRecord] = []
    if isinstance(results.vulnerabilities, list):
        vulnerabilities = [
            v.model_copy(update={"vex_status": vex_status_for(current, v.fixed_in)})
            for v in results.vulnerabilities
        ]

    # Digests are only trusted for the exact resolved version
    hashes = DistHashes()
    if exact is not None:
        hashes = DistHashes(integrity=exact.integrity, shasum=exact.shasum)

    supplier = (exact.supplier if exact else None) or metadata.supplier

    dependencies = version_data.dependencies if version_data else {}
    transitive = sorted(dependencies) if include_transitive else None

    return DependencyRecord(
        name=declaration.name,
        version=current,
        version_range=declaration.version_range,
        latest_version=latest,
        is_dev=declaration.is_dev,
        description=metadata.description or "N/A",
        license=license_id,
        license_problematic=license_id in PROBLEMATIC_LICENSES,
        homepage=metadata.homepage or metadata.repository_url or "",
        security_score=security_score,
        maintenance_score=maintenance_score(days_since_update, metadata.version_count),
        popularity_score=popularity,
        weekly_downloads=weekly_downloads,
        days_since_update=days_since_update,
        last_publish_date=last_publish_date,
        minified_size=minified_size,
        gzip_size=gzip_size,
        hashes=hashes,
        supplier=supplier,
        deprecated=version_data.deprecated if version_data else None,
        vulnerabilities=vulnerabilities,
        transitive_dependencies=transitive,
        peer_dependencies=version_data.peer_dependencies if version_data else {},
        dependency_count=len(dependencies),
    )


def outdated_entry(record: DependencyRecord) -> OutdatedPackage | None:
    """Outdated-map entry for a record whose latest tag differs."""
    if not record.latest_version or record.latest_version == record.version:
        return None
    return OutdatedPackage(
        current=record.version,
        wanted=record.version,
        latest=record.latest_version,
    )
