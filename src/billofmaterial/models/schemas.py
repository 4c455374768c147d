"""Pydantic models for dependency analysis and SBOM documents."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

# Licenses that typically require legal review before shipping.
PROBLEMATIC_LICENSES = frozenset({
    "GPL-2.0",
    "GPL-3.0",
    "AGPL-3.0",
    "LGPL-2.1",
    "LGPL-3.0",
    "CC-BY-SA-4.0",
    "CC-BY-NC-4.0",
})

# License values that assert nothing about the actual terms.
UNASSERTED_LICENSES = frozenset({"", "Unknown", "UNKNOWN", "NOASSERTION", "UNLICENSED"})


class CamelModel(BaseModel):
    """Base model that serializes to camelCase and accepts either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Severity(str, Enum):
    """Vulnerability severity levels."""

    NONE = "NONE"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"


class VexStatus(str, Enum):
    """Vulnerability Exploitability eXchange status."""

    NOT_AFFECTED = "not_affected"
    AFFECTED = "affected"
    FIXED = "fixed"
    UNDER_INVESTIGATION = "under_investigation"


class RiskLevel(str, Enum):
    """Discrete risk level derived from a risk score."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class KnownUnknownCategory(str, Enum):
    """Why a declared dependency is missing from the inventory."""

    UNKNOWN = "unknown"
    REDACTED = "redacted"
    NOT_APPLICABLE = "not_applicable"
    FETCH_FAILED = "fetch_failed"


class CoverageDepth(str, Enum):
    """Declared scope of the dependency analysis."""

    TOP_LEVEL = "top-level"
    TRANSITIVE = "transitive"
    FULL = "full"


class ControlStatus(str, Enum):
    """Verdict for a single compliance control."""

    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class ComplianceVerdict(str, Enum):
    """Overall compliance verdict."""

    COMPLIANT = "compliant"
    PARTIALLY_COMPLIANT = "partially_compliant"
    NON_COMPLIANT = "non_compliant"


# --- Configuration ---


class SBOMConfig(CamelModel):
    """Options recognised by the generator.

    Accepts both camelCase keys (``maxConcurrentRequests``) and attribute
    names (``max_concurrent_requests``). Unknown keys are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    include_dev_deps: bool = True
    include_bundle_size: bool = True
    include_vulnerabilities: bool = True
    include_transitive_deps: bool = False
    max_concurrent_requests: int = Field(default=5, ge=1)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay: int = Field(default=1000, ge=0)  # milliseconds
    security_score_threshold: int = Field(default=70, ge=0, le=100)
    cache_enabled: bool = False
    cache_duration: int = Field(default=300_000, ge=0)  # milliseconds
    request_timeout: float = Field(default=30.0, gt=0)  # seconds


# --- Inputs ---


class DependencyDeclaration(CamelModel):
    """A dependency as written in a manifest."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    version_range: str
    is_dev: bool = False


class ProjectInfo(CamelModel):
    """Identity of the analysed project (taken from the root manifest)."""

    name: str = "project"
    version: str = "1.0.0"
    license: str | None = None
    description: str | None = None
    homepage: str | None = None
    repository_url: str | None = None


# --- Per-dependency records ---


class VulnerabilityRecord(CamelModel):
    """A known vulnerability affecting a dependency."""

    id: str
    aliases: list[str] = Field(default_factory=list)
    summary: str = ""
    severity: Severity = Severity.UNKNOWN
    cvss_score: float | None = None
    cwes: list[str] = Field(default_factory=list)
    fixed_in: str | None = None
    url: str | None = None
    vex_status: VexStatus | None = None


class RiskAssessment(CamelModel):
    """Weighted risk score with its contributing factors."""

    score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    factors: list[str] = Field(default_factory=list)


class Supplier(CamelModel):
    """Best-effort supplier identity from registry metadata."""

    name: str
    email: str | None = None
    url: str | None = None


class DistHashes(CamelModel):
    """Integrity digests published for a package tarball."""

    integrity: str | None = None  # Subresource Integrity, e.g. "sha512-<base64>"
    shasum: str | None = None  # legacy SHA-1 hex digest


class DependencyRecord(CamelModel):
    """Normalized analysis result for one declared dependency."""

    name: str
    version: str
    version_range: str = ""
    latest_version: str | None = None
    is_dev: bool = False
    description: str = "N/A"
    license: str = "Unknown"
    license_problematic: bool = False
    homepage: str = ""
    security_score: int | None = None  # None when the provider was unavailable
    maintenance_score: int = 0
    popularity_score: int = 0
    weekly_downloads: int = 0
    days_since_update: int | None = None
    last_publish_date: str | None = None
    minified_size: int = 0  # KB
    gzip_size: int = 0  # KB
    hashes: DistHashes = Field(default_factory=DistHashes)
    supplier: Supplier | None = None
    deprecated: str | None = None
    vulnerabilities: list[VulnerabilityRecord] = Field(default_factory=list)
    transitive_dependencies: list[str] | None = None
    peer_dependencies: dict[str, str] = Field(default_factory=dict)
    dependency_count: int = 0
    risk: RiskAssessment | None = None

    @computed_field
    @property
    def has_vulnerabilities(self) -> bool:
        return bool(self.vulnerabilities)

    @property
    def purl(self) -> str:
        """Package URL for this dependency."""
        return f"pkg:npm/{self.name}@{self.version}"


class KnownUnknown(CamelModel):
    """A declared dependency that could not be analysed."""

    name: str
    version: str
    reason: str
    category: KnownUnknownCategory = KnownUnknownCategory.UNKNOWN


class PackageAnalysis(CamelModel):
    """Analysed dependencies of one package (a monorepo member or the root)."""

    package_name: str | None = None
    package_version: str | None = None
    package_path: str | None = None
    dependencies: list[DependencyRecord] = Field(default_factory=list)
    dev_dependencies: list[DependencyRecord] = Field(default_factory=list)

    @property
    def all_dependencies(self) -> list[DependencyRecord]:
        return [*self.dependencies, *self.dev_dependencies]


class OutdatedPackage(CamelModel):
    """Current vs. available versions of a dependency."""

    current: str
    wanted: str
    latest: str
    location: str = ""


# --- Audit feed ---


class AuditSummary(CamelModel):
    """Vulnerability counts reported by an audit feed."""

    info: int = 0
    low: int = 0
    moderate: int = 0
    high: int = 0
    critical: int = 0
    total: int = 0


class Advisory(CamelModel):
    """One advisory from an audit feed."""

    model_config = ConfigDict(alias_generator=None, populate_by_name=True, extra="ignore")

    id: int | str
    title: str = ""
    module_name: str
    vulnerable_versions: str = ""
    patched_versions: str = ""
    severity: str = "low"
    overview: str = ""
    recommendation: str = ""
    url: str = ""
    cwe: list[str] | str | None = None


# --- Insights ---


class RiskEntry(CamelModel):
    name: str
    score: int
    factors: list[str] = Field(default_factory=list)


class SizeEntry(CamelModel):
    name: str
    size: int
    gzip_size: int


class QuickWin(CamelModel):
    name: str
    current: str
    latest: str
    security_score: int | None = None


class LicenseIssue(CamelModel):
    name: str
    license: str


class AbandonedPackage(CamelModel):
    name: str
    last_update: str | None = None
    days_since: int


class DeprecatedPackage(CamelModel):
    name: str
    version: str
    message: str


class VulnerabilitySummary(CamelModel):
    """Vulnerability counts by severity across the inventory."""

    critical: int = 0
    high: int = 0
    moderate: int = 0
    low: int = 0
    none: int = 0
    unknown: int = 0
    total: int = 0
    packages_affected: int = 0


class InsightMetrics(CamelModel):
    total_dependencies: int = 0
    production_dependencies: int = 0
    dev_dependencies: int = 0
    average_security_score: int = 0
    vulnerabilities: AuditSummary | None = None


class Insights(CamelModel):
    """Cross-cutting summaries over every analysed dependency."""

    top_risks: list[RiskEntry] = Field(default_factory=list)
    heaviest_dependencies: list[SizeEntry] = Field(default_factory=list)
    quick_wins: list[QuickWin] = Field(default_factory=list)
    total_bundle_size: int = 0
    license_issues: list[LicenseIssue] = Field(default_factory=list)
    abandoned_packages: list[AbandonedPackage] = Field(default_factory=list)
    deprecated_packages: list[DeprecatedPackage] = Field(default_factory=list)
    vulnerability_summary: VulnerabilitySummary = Field(default_factory=VulnerabilitySummary)
    metrics: InsightMetrics = Field(default_factory=InsightMetrics)


# --- Compliance ---


class ComplianceControl(CamelModel):
    id: str
    name: str
    status: ControlStatus
    description: str
    findings: list[str] = Field(default_factory=list)
    recommendation: str | None = None


class ComplianceSummary(CamelModel):
    passed: int = 0
    warnings: int = 0
    failed: int = 0


class ComplianceReport(CamelModel):
    """Self-assessment of the SBOM against a fixed control set."""

    standard: str
    generated_at: datetime
    overall_status: ComplianceVerdict
    controls: list[ComplianceControl] = Field(default_factory=list)
    summary: ComplianceSummary = Field(default_factory=ComplianceSummary)


# --- Aggregate ---


class Coverage(CamelModel):
    """Declared scope of the analysis."""

    depth: CoverageDepth = CoverageDepth.TOP_LEVEL
    tool_name: str = "billofmaterial"
    tool_version: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SBOMAggregate(CamelModel):
    """Everything produced by one analysis run.

    Built once per run; the emitters, the compliance evaluator and the
    integrity hasher only read it.
    """

    is_monorepo: bool = False
    project: ProjectInfo = Field(default_factory=ProjectInfo)
    security_score_threshold: int = Field(default=70, ge=0, le=100)
    packages: list[PackageAnalysis] = Field(default_factory=list)
    total_dependencies: int = 0
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    insights: Insights = Field(default_factory=Insights)
    outdated_packages: dict[str, OutdatedPackage] | None = None
    audit_summary: AuditSummary | None = None
    advisories: list[Advisory] = Field(default_factory=list)
    coverage: Coverage = Field(default_factory=Coverage)
    known_unknowns: list[KnownUnknown] = Field(default_factory=list)
    compliance: ComplianceReport | None = None
    markdown: str = ""
    spdx: dict | None = None
    cyclonedx: dict | None = None
    integrity_hash: str | None = None

    @property
    def all_dependencies(self) -> list[DependencyRecord]:
        """Every record across packages, production first within each package."""
        records: list[DependencyRecord] = []
        for package in self.packages:
            records.extend(package.all_dependencies)
        return records
