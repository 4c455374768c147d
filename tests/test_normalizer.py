"""Tests for version helpers and record normalization."""

from datetime import datetime, timedelta, timezone

import pytest

from billofmaterial.analyzers.normalizer import (
    UNAVAILABLE,
    ProviderResults,
    bytes_to_kb,
    compare_versions,
    maintenance_score,
    normalize,
    outdated_entry,
    popularity_from_downloads,
    resolve_version,
    vex_status_for,
)
from billofmaterial.models.schemas import (
    DependencyDeclaration,
    DependencyRecord,
    KnownUnknown,
    KnownUnknownCategory,
    Severity,
    Supplier,
    VexStatus,
    VulnerabilityRecord,
)
from billofmaterial.models.upstream import BundleSize, DownloadStats, RegistryMetadata, RegistryVersion

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _metadata(**overrides) -> RegistryMetadata:
    fields = {
        "name": "lodash",
        "description": "Lodash modular utilities.",
        "license": "MIT",
        "homepage": "https://lodash.com/",
        "latest": "4.17.21",
        "modified": NOW - timedelta(days=10),
        "versions": {
            "4.17.20": RegistryVersion(version="4.17.20", integrity="sha512-old", shasum="a" * 40),
            "4.17.21": RegistryVersion(
                version="4.17.21",
                integrity="sha512-new",
                shasum="b" * 40,
                dependencies={"b-dep": "^1.0.0", "a-dep": "^2.0.0"},
            ),
        },
        "supplier": Supplier(name="John-David Dalton"),
    }
    fields.update(overrides)
    return RegistryMetadata(**fields)


def _declaration(version_range: str = "^4.17.21", name: str = "lodash", is_dev: bool = False):
    return DependencyDeclaration(name=name, version_range=version_range, is_dev=is_dev)


class TestVersionHelpers:
    """Tests for range resolution and version comparison."""

    @pytest.mark.parametrize("version_range,expected", [
        ("^4.17.21", "4.17.21"),
        ("~1.2.3", "1.2.3"),
        (">=1.0.0 <2.0.0", "1.0.0"),
        ("1.0.0", "1.0.0"),
        ("latest", "latest"),
        ("", ""),
    ])
    def test_resolve_version(self, version_range, expected):
        """Range operators are stripped and only the first bound is kept."""
        assert resolve_version(version_range) == expected

    def test_compare_versions_numeric_not_lexical(self):
        """Components compare numerically."""
        assert compare_versions("1.10.0", "1.9.0") == 1
        assert compare_versions("1.9.0", "1.10.0") == -1
        assert compare_versions("2.0.0", "2.0") == 0

    def test_prerelease_sorts_before_release(self):
        """A prerelease precedes its release."""
        assert compare_versions("2.0.0-beta.1", "2.0.0") == -1

    def test_unparsable_version_returns_none(self):
        """Garbage on either side gives no ordering."""
        assert compare_versions("latest", "1.0.0") is None


class TestVexStatus:
    """Tests for exploitability status derivation."""

    def test_older_than_fix_is_affected(self):
        """An installed version below the fix is affected."""
        assert vex_status_for("1.9.0", "2.0.0") == VexStatus.AFFECTED

    def test_at_or_above_fix_is_fixed(self):
        """An installed version at or past the fix is fixed."""
        assert vex_status_for("2.0.0", "2.0.0") == VexStatus.FIXED
        assert vex_status_for("2.1.0", "2.0.0") == VexStatus.FIXED

    def test_no_fix_is_affected(self):
        """Without a fixed version the package stays affected."""
        assert vex_status_for("1.0.0", None) == VexStatus.AFFECTED

    def test_unparsable_versions_under_investigation(self):
        """Anything that cannot be compared is under investigation."""
        assert vex_status_for("latest", "2.0.0") == VexStatus.UNDER_INVESTIGATION
        assert vex_status_for("1.0.0", "next") == VexStatus.UNDER_INVESTIGATION


class TestScoreSteps:
    """Tests for maintenance and popularity step functions."""

    @pytest.mark.parametrize("days,versions,expected", [
        (10, 1, 100),
        (91, 1, 95),
        (181, 1, 90),
        (366, 1, 80),
        (366, 21, 85),
        (366, 51, 90),
        (10, 51, 100),
        (None, 1, 100),
    ])
    def test_maintenance_score(self, days, versions, expected):
        """Age penalty and release bonus combine, clamped to 0-100."""
        assert maintenance_score(days, versions) == expected

    @pytest.mark.parametrize("downloads,expected", [
        (5_000_000, 100),
        (1_000_000, 90),
        (200_000, 90),
        (50_000, 70),
        (5_000, 50),
        (500, 30),
        (100, 10),
        (0, 10),
    ])
    def test_popularity_from_downloads(self, downloads, expected):
        """Weekly downloads map onto fixed popularity steps."""
        assert popularity_from_downloads(downloads) == expected

    def test_bytes_to_kb_rounds_half_up(self):
        """Sizes are rounded half-up to whole kilobytes."""
        assert bytes_to_kb(512) == 1
        assert bytes_to_kb(511) == 0
        assert bytes_to_kb(72_000) == 70


class TestNormalize:
    """Tests for building records from provider outcomes."""

    def test_unavailable_metadata_is_known_unknown(self):
        """No registry metadata means no record, only a known unknown."""
        results = ProviderResults(metadata=UNAVAILABLE, errors={"registry": "HTTP 500"})
        outcome = normalize(_declaration(), results, now=NOW)

        assert isinstance(outcome, KnownUnknown)
        assert outcome.category == KnownUnknownCategory.FETCH_FAILED
        assert outcome.version == "^4.17.21"
        assert "HTTP 500" in outcome.reason

    def test_full_record(self):
        """Every provider value lands in its field."""
        results = ProviderResults(
            metadata=_metadata(),
            security_score=95,
            bundle_size=BundleSize(size=72_000, gzip=25_600),
            downloads=DownloadStats(downloads=5_000_000),
            vulnerabilities=[],
        )
        record = normalize(_declaration(), results, now=NOW)

        assert isinstance(record, DependencyRecord)
        assert record.version == "4.17.21"
        assert record.latest_version == "4.17.21"
        assert record.security_score == 95
        assert record.popularity_score == 100
        assert record.weekly_downloads == 5_000_000
        assert record.days_since_update == 10
        assert record.last_publish_date == "2024-05-22"
        assert record.minified_size == 70
        assert record.gzip_size == 25
        assert record.maintenance_score == 100
        assert record.hashes.integrity == "sha512-new"
        assert record.supplier.name == "John-David Dalton"
        assert record.dependency_count == 2
        assert record.transitive_dependencies is None
        assert record.risk is None

    def test_unavailable_providers_degrade_fields(self):
        """Optional providers that failed leave neutral values."""
        results = ProviderResults(metadata=_metadata())
        record = normalize(_declaration(), results, now=NOW)

        assert record.security_score is None
        assert record.popularity_score == 0
        assert record.weekly_downloads == 0
        assert record.minified_size == 0
        assert record.vulnerabilities == []

    def test_types_packages_have_no_size(self):
        """@types packages ship no runtime code."""
        metadata = _metadata(name="@types/node", versions={"20.0.0": RegistryVersion(version="20.0.0")}, latest="20.0.0")
        results = ProviderResults(
            metadata=metadata,
            security_score=90,
            bundle_size=BundleSize(size=50_000, gzip=10_000),
            downloads=DownloadStats(downloads=100),
        )
        record = normalize(_declaration("^20.0.0", name="@types/node"), results, now=NOW)
        assert record.minified_size == 0
        assert record.gzip_size == 0

    def test_hashes_only_from_exact_version(self):
        """A range that resolves to an unpublished version carries no digests."""
        results = ProviderResults(metadata=_metadata(), security_score=90)
        record = normalize(_declaration("^4.0.0"), results, now=NOW)

        assert record.version == "4.0.0"
        assert record.hashes.integrity is None
        assert record.hashes.shasum is None

    def test_vex_status_assigned_from_installed_version(self):
        """Vulnerabilities get a status relative to the resolved version."""
        vulns = [
            VulnerabilityRecord(id="GHSA-1", severity=Severity.HIGH, fixed_in="4.17.21"),
            VulnerabilityRecord(id="GHSA-2", severity=Severity.HIGH, fixed_in="4.17.22"),
        ]
        results = ProviderResults(metadata=_metadata(), vulnerabilities=vulns)
        record = normalize(_declaration("4.17.20"), results, now=NOW)

        statuses = {v.id: v.vex_status for v in record.vulnerabilities}
        assert statuses == {"GHSA-1": VexStatus.AFFECTED, "GHSA-2": VexStatus.AFFECTED}

        record = normalize(_declaration("4.17.21"), results, now=NOW)
        statuses = {v.id: v.vex_status for v in record.vulnerabilities}
        assert statuses == {"GHSA-1": VexStatus.FIXED, "GHSA-2": VexStatus.AFFECTED}

    def test_transitive_dependencies_sorted(self):
        """Transitive names are recorded only when asked for, sorted."""
        results = ProviderResults(metadata=_metadata())
        record = normalize(_declaration(), results, include_transitive=True, now=NOW)
        assert record.transitive_dependencies == ["a-dep", "b-dep"]

    def test_unknown_publish_date(self):
        """No timestamps means no age and no maintenance penalty."""
        results = ProviderResults(metadata=_metadata(modified=None))
        record = normalize(_declaration(), results, now=NOW)

        assert record.days_since_update is None
        assert record.last_publish_date is None
        assert record.maintenance_score == 100

    def test_restrictive_license_flagged(self):
        """Restrictive licenses are marked on the record."""
        results = ProviderResults(metadata=_metadata(license="GPL-3.0"))
        record = normalize(_declaration(), results, now=NOW)
        assert record.license_problematic is True

    def test_missing_license_is_unknown(self):
        """Records without any license report Unknown."""
        results = ProviderResults(metadata=_metadata(license=None))
        record = normalize(_declaration(), results, now=NOW)
        assert record.license == "Unknown"
        assert record.license_problematic is False


class TestOutdatedEntry:
    """Tests for the derived outdated map entry."""

    def test_entry_when_latest_differs(self):
        """Older versions yield current, wanted and latest."""
        record = DependencyRecord(name="lodash", version="4.17.20", latest_version="4.17.21")
        entry = outdated_entry(record)
        assert (entry.current, entry.wanted, entry.latest) == ("4.17.20", "4.17.20", "4.17.21")

    def test_no_entry_when_current(self):
        """Up-to-date records are not outdated."""
        record = DependencyRecord(name="lodash", version="4.17.21", latest_version="4.17.21")
        assert outdated_entry(record) is None
