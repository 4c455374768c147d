"""ISO/IEC 27001:2022 self-assessment over a finished aggregate."""

from datetime import datetime, timezone

from billofmaterial.analyzers.insights import ABANDONED_DAYS, vulnerability_summary
from billofmaterial.analyzers.scorer import round_half_up
from billofmaterial.models.schemas import (
    UNASSERTED_LICENSES,
    ComplianceControl,
    ComplianceReport,
    ComplianceSummary,
    ComplianceVerdict,
    ControlStatus,
    CoverageDepth,
    DependencyRecord,
    SBOMAggregate,
)

STANDARD = "ISO/IEC 27001:2022"

HASH_COVERAGE_MIN = 0.8
SUPPLIER_COVERAGE_MIN = 0.5


def _percent(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100) if whole else 0


def _has_hash(record: DependencyRecord) -> bool:
    return bool(record.hashes.integrity or record.hashes.shasum)


def check_inventory(records: list[DependencyRecord], declared: int) -> ComplianceControl:
    """A.5.9: every declared component is inventoried with integrity data."""
    findings = [f"{len(records)} of {declared} declared components inventoried"]
    status = ControlStatus.PASS
    recommendation = None

    if declared and not records:
        status = ControlStatus.FAIL
        recommendation = "Resolve registry access so declared dependencies can be inventoried."
    elif records:
        hashed = sum(1 for r in records if _has_hash(r))
        coverage = hashed / len(records)
        findings.append(f"Hash coverage: {_percent(hashed, len(records))}% ({hashed}/{len(records)})")
        if coverage < HASH_COVERAGE_MIN:
            status = ControlStatus.WARNING
            recommendation = "Pin exact versions so published integrity hashes can be recorded."

    return ComplianceControl(
        id="A.5.9",
        name="Inventory of information and other associated assets",
        status=status,
        description="Software components are inventoried with identity and integrity data.",
        findings=findings,
        recommendation=recommendation,
    )


def check_vulnerabilities(records: list[DependencyRecord]) -> ComplianceControl:
    """A.8.8: no critical vulnerabilities, high ones are flagged."""
    summary = vulnerability_summary(records)
    findings = [
        f"{summary.total} known vulnerabilities across {summary.packages_affected} packages",
        f"Critical: {summary.critical}, High: {summary.high}, "
        f"Moderate: {summary.moderate}, Low: {summary.low}",
    ]
    status = ControlStatus.PASS
    recommendation = None
    if summary.critical:
        status = ControlStatus.FAIL
        recommendation = "Upgrade or replace packages with critical vulnerabilities immediately."
    elif summary.high:
        status = ControlStatus.WARNING
        recommendation = "Plan upgrades for packages with high-severity vulnerabilities."

    return ComplianceControl(
        id="A.8.8",
        name="Management of technical vulnerabilities",
        status=status,
        description="Known vulnerabilities in third-party components are identified and addressed.",
        findings=findings,
        recommendation=recommendation,
    )


def check_suppliers(records: list[DependencyRecord]) -> ComplianceControl:
    """A.5.19: suppliers are identified and still maintaining their packages."""
    findings: list[str] = []
    issues = False

    if records:
        with_supplier = sum(1 for r in records if r.supplier is not None)
        findings.append(f"Supplier identified for {_percent(with_supplier, len(records))}% of components")
        if with_supplier / len(records) < SUPPLIER_COVERAGE_MIN:
            issues = True

    deprecated = sum(1 for r in records if r.deprecated)
    abandoned = sum(
        1 for r in records if r.days_since_update is not None and r.days_since_update > ABANDONED_DAYS
    )
    if deprecated:
        findings.append(f"{deprecated} deprecated packages")
        issues = True
    if abandoned:
        findings.append(f"{abandoned} packages not updated in over two years")
        issues = True

    return ComplianceControl(
        id="A.5.19",
        name="Information security in supplier relationships",
        status=ControlStatus.WARNING if issues else ControlStatus.PASS,
        description="Component suppliers are known and actively maintain their packages.",
        findings=findings,
        recommendation=(
            "Review deprecated or unmaintained packages and identify their maintainers."
            if issues
            else None
        ),
    )


def check_licenses(records: list[DependencyRecord]) -> ComplianceControl:
    """A.5.32: licenses are known and compatible."""
    restrictive = [r.name for r in records if r.license_problematic]
    unknown = [r.name for r in records if r.license in UNASSERTED_LICENSES]
    findings = []
    if restrictive:
        findings.append(f"{len(restrictive)} packages with restrictive licenses: {', '.join(restrictive)}")
    if unknown:
        findings.append(f"{len(unknown)} packages with unknown licenses: {', '.join(unknown)}")
    if not findings:
        findings.append("All component licenses identified and permissive")

    issues = bool(restrictive or unknown)
    return ComplianceControl(
        id="A.5.32",
        name="Intellectual property rights",
        status=ControlStatus.WARNING if issues else ControlStatus.PASS,
        description="Component licenses are identified and reviewed for obligations.",
        findings=findings,
        recommendation="Have restrictive and unknown licenses reviewed by legal." if issues else None,
    )


def check_completeness(aggregate: SBOMAggregate, declared: int) -> ComplianceControl:
    """A.5.21: the SBOM states what it could not cover."""
    unknowns = len(aggregate.known_unknowns)
    depth = aggregate.coverage.depth
    findings = [f"Coverage depth: {depth.value}"]
    if depth == CoverageDepth.TOP_LEVEL:
        findings.append("Transitive dependencies are not analysed")

    status = ControlStatus.PASS
    recommendation = None
    if unknowns:
        findings.append(f"{unknowns} declared dependencies could not be analysed")
        if declared and unknowns * 2 >= declared:
            status = ControlStatus.FAIL
        else:
            status = ControlStatus.WARNING
        recommendation = "Re-run the analysis once upstream registries are reachable."

    return ComplianceControl(
        id="A.5.21",
        name="Managing information security in the ICT supply chain",
        status=status,
        description="The SBOM is complete or explicitly records what is unknown.",
        findings=findings,
        recommendation=recommendation,
    )


def overall_verdict(controls: list[ComplianceControl]) -> ComplianceVerdict:
    statuses = {c.status for c in controls}
    if ControlStatus.FAIL in statuses:
        return ComplianceVerdict.NON_COMPLIANT
    if ControlStatus.WARNING in statuses:
        return ComplianceVerdict.PARTIALLY_COMPLIANT
    return ComplianceVerdict.COMPLIANT


def evaluate_compliance(aggregate: SBOMAggregate, now: datetime | None = None) -> ComplianceReport:
    """Run the five controls and tally the verdicts."""
    records = aggregate.all_dependencies
    declared = len(records) + len(aggregate.known_unknowns)

    controls = [
        check_inventory(records, declared),
        check_vulnerabilities(records),
        check_suppliers(records),
        check_licenses(records),
        check_completeness(aggregate, declared),
    ]

    summary = ComplianceSummary(
        passed=sum(1 for c in controls if c.status == ControlStatus.PASS),
        warnings=sum(1 for c in controls if c.status == ControlStatus.WARNING),
        failed=sum(1 for c in controls if c.status == ControlStatus.FAIL),
    )

    return ComplianceReport(
        standard=STANDARD,
        generated_at=now or datetime.now(timezone.utc),
        overall_status=overall_verdict(controls),
        controls=controls,
        summary=summary,
    )
