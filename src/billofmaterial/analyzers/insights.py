"""Cross-cutting summaries over every analysed dependency."""

from billofmaterial.analyzers.scorer import round_half_up
from billofmaterial.models.schemas import (
    AbandonedPackage,
    AuditSummary,
    DependencyRecord,
    DeprecatedPackage,
    InsightMetrics,
    Insights,
    LicenseIssue,
    OutdatedPackage,
    PackageAnalysis,
    QuickWin,
    RiskEntry,
    Severity,
    SizeEntry,
    VulnerabilitySummary,
)

TOP_N = 10
DEFAULT_RISK_THRESHOLD = 70
ABANDONED_DAYS = 730


def _risk_score(record: DependencyRecord) -> int:
    return record.risk.score if record.risk else 100


def top_risks(records: list[DependencyRecord], threshold: int = DEFAULT_RISK_THRESHOLD) -> list[RiskEntry]:
    """Records scoring below the threshold, riskiest first."""
    risky = [r for r in records if r.risk and r.risk.score < threshold]
    risky.sort(key=_risk_score)
    return [RiskEntry(name=r.name, score=r.risk.score, factors=r.risk.factors) for r in risky[:TOP_N]]


def heaviest_dependencies(records: list[DependencyRecord]) -> list[SizeEntry]:
    sized = sorted((r for r in records if r.minified_size > 0), key=lambda r: -r.minified_size)
    return [SizeEntry(name=r.name, size=r.minified_size, gzip_size=r.gzip_size) for r in sized[:TOP_N]]


def quick_wins(
    records: list[DependencyRecord], outdated: dict[str, OutdatedPackage] | None
) -> list[QuickWin]:
    """Outdated records ordered by security score, then risk score.

    Each outdated entry is matched to the first record with that name. An
    unavailable security score sorts as 0.
    """
    if not outdated:
        return []

    by_name: dict[str, DependencyRecord] = {}
    for record in records:
        by_name.setdefault(record.name, record)

    candidates = []
    for name, info in outdated.items():
        record = by_name.get(name)
        if record is None:
            continue
        candidates.append((record.security_score or 0, _risk_score(record), name, info, record))

    candidates.sort(key=lambda c: (c[0], c[1]))
    return [
        QuickWin(name=name, current=info.current, latest=info.latest, security_score=record.security_score)
        for _, _, name, info, record in candidates[:TOP_N]
    ]


def abandoned_packages(records: list[DependencyRecord]) -> list[AbandonedPackage]:
    stale = [r for r in records if r.days_since_update is not None and r.days_since_update > ABANDONED_DAYS]
    stale.sort(key=lambda r: -r.days_since_update)
    return [
        AbandonedPackage(name=r.name, last_update=r.last_publish_date, days_since=r.days_since_update)
        for r in stale[:TOP_N]
    ]


def deprecated_packages(records: list[DependencyRecord]) -> list[DeprecatedPackage]:
    return [
        DeprecatedPackage(name=r.name, version=r.version, message=r.deprecated)
        for r in records
        if r.deprecated
    ]


def vulnerability_summary(records: list[DependencyRecord]) -> VulnerabilitySummary:
    """Count vulnerabilities by severity and the packages they touch."""
    summary = VulnerabilitySummary()
    for record in records:
        if not record.vulnerabilities:
            continue
        summary.packages_affected += 1
        for vuln in record.vulnerabilities:
            summary.total += 1
            if vuln.severity == Severity.CRITICAL:
                summary.critical += 1
            elif vuln.severity == Severity.HIGH:
                summary.high += 1
            elif vuln.severity == Severity.MODERATE:
                summary.moderate += 1
            elif vuln.severity == Severity.LOW:
                summary.low += 1
            elif vuln.severity == Severity.NONE:
                summary.none += 1
            else:
                summary.unknown += 1
    return summary


def generate_insights(
    packages: list[PackageAnalysis],
    outdated: dict[str, OutdatedPackage] | None = None,
    audit_summary: AuditSummary | None = None,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> Insights:
    """Compute every insight over the flattened records of all packages.

    Pure and idempotent: calling it again with the same inputs (for
    instance after an audit feed arrives) gives the same result.
    """
    records: list[DependencyRecord] = []
    for package in packages:
        records.extend(package.all_dependencies)

    total = len(records)
    # An unavailable security score counts as 0
    security_total = sum(r.security_score or 0 for r in records)

    metrics = InsightMetrics(
        total_dependencies=total,
        production_dependencies=sum(len(p.dependencies) for p in packages),
        dev_dependencies=sum(len(p.dev_dependencies) for p in packages),
        average_security_score=round_half_up(security_total / total) if total else 0,
        vulnerabilities=audit_summary,
    )

    return Insights(
        top_risks=top_risks(records, threshold),
        heaviest_dependencies=heaviest_dependencies(records),
        quick_wins=quick_wins(records, outdated),
        total_bundle_size=sum(r.minified_size for r in records),
        license_issues=[LicenseIssue(name=r.name, license=r.license) for r in records if r.license_problematic],
        abandoned_packages=abandoned_packages(records),
        deprecated_packages=deprecated_packages(records),
        vulnerability_summary=vulnerability_summary(records),
        metrics=metrics,
    )
