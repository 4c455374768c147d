"""Human-readable Markdown report."""

from urllib.parse import quote, urlsplit

from billofmaterial.analyzers.scorer import risk_level_for
from billofmaterial.exporters.serialization import iso_timestamp
from billofmaterial.models.schemas import (
    ComplianceReport,
    ControlStatus,
    DependencyRecord,
    Insights,
    SBOMAggregate,
)

# Order matters: "&" must be replaced first
_HTML_ESCAPES = [
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#39;"),
    ("/", "&#x2F;"),
    ("\\", "&#x5C;"),
    ("|", "&#124;"),
]

BADGE_COLORS = {"Low": "green", "Medium": "yellow", "High": "red"}
STATUS_ICONS = {ControlStatus.PASS: "PASS", ControlStatus.WARNING: "WARNING", ControlStatus.FAIL: "FAIL"}

DEPENDENCY_HEADER = [
    "| Name | Version | Description | License | Security | Risk | Size | Last Update |",
    "| ---- | ------- | ----------- | ------- | -------- | ---- | ---- | ----------- |",
]


def escape_html(text: object) -> str:
    """Entity-escape a user-controlled value for a table cell or list item."""
    value = "" if text is None else str(text)
    for char, entity in _HTML_ESCAPES:
        value = value.replace(char, entity)
    return " ".join(value.split())


def link_path(value: object) -> str:
    """Percent-encode a value for use inside a link target path."""
    return quote("" if value is None else str(value), safe="@/")


def link_url(url: str | None) -> str | None:
    """Return an http(s) URL made safe for a link target, or None."""
    url = (url or "").strip()
    if urlsplit(url).scheme.lower() not in ("http", "https"):
        return None
    return quote(url, safe=":/?#[]@!$&*+,;=%~")


def risk_badge(score: int) -> str:
    level = risk_level_for(score).value
    return f"![Risk: {level}](https://img.shields.io/badge/Risk-{level}-{BADGE_COLORS[level]})"


def _dependency_row(record: DependencyRecord) -> str:
    license_cell = f"Warning: {record.license}" if record.license_problematic else record.license
    security = record.security_score if record.security_score is not None else "N/A"
    badge = risk_badge(record.risk.score) if record.risk else ""
    name = link_path(record.name)
    return (
        f"| [{escape_html(record.name)}](https://www.npmjs.com/package/{name}) "
        f"| {escape_html(record.version)} "
        f"| {escape_html(record.description)} "
        f"| {escape_html(license_cell)} "
        f"| [{security}](https://snyk.io/advisor/npm-package/{name}) "
        f"| {badge} "
        f"| [{record.minified_size} KB](https://bundlephobia.com/package/{name}@{link_path(record.version)}) "
        f"| {escape_html(record.last_publish_date or 'Unknown')} |"
    )


def _dependency_table(records: list[DependencyRecord]) -> list[str]:
    if not records:
        return ["No dependencies found."]
    return [*DEPENDENCY_HEADER, *(_dependency_row(r) for r in records)]


def _summary_section(aggregate: SBOMAggregate) -> list[str]:
    insights = aggregate.insights
    metrics = insights.metrics
    lines = [
        "## Executive Summary",
        "",
        f"- **Total Dependencies:** {metrics.total_dependencies} "
        f"({metrics.production_dependencies} production, {metrics.dev_dependencies} dev)",
        f"- **Average Security Score:** {metrics.average_security_score}/100",
        f"- **Total Bundle Size:** {round(insights.total_bundle_size / 1024, 2)} MB",
        f"- **High Risk Packages:** {len(insights.top_risks)}",
        f"- **License Issues:** {len(insights.license_issues)}",
        f"- **Known Vulnerabilities:** {insights.vulnerability_summary.total}",
    ]
    if metrics.vulnerabilities is not None:
        audit = metrics.vulnerabilities
        lines.append(
            f"- **Audit Findings:** {audit.total} total ({audit.critical} critical, "
            f"{audit.high} high, {audit.moderate} moderate)"
        )
    if aggregate.known_unknowns:
        lines.append(f"- **Not Analysed:** {len(aggregate.known_unknowns)}")
    if aggregate.integrity_hash:
        lines.append(f"- **Integrity:** `{aggregate.integrity_hash}`")
    lines.append("")
    return lines


def _insights_section(insights: Insights) -> list[str]:
    lines = ["## Key Insights & Actions", ""]

    if insights.top_risks:
        lines += ["### Top Security Risks", "", "| Package | Risk Score | Factors |", "| ------- | ---------- | ------- |"]
        for risk in insights.top_risks:
            factors = " • ".join(escape_html(f) for f in risk.factors)
            lines.append(f"| {escape_html(risk.name)} | {risk.score}/100 | {factors} |")
        lines.append("")

    if insights.heaviest_dependencies:
        lines += ["### Largest Dependencies", "", "| Package | Size | Gzipped |", "| ------- | ---- | ------- |"]
        for dep in insights.heaviest_dependencies:
            lines.append(f"| {escape_html(dep.name)} | {dep.size} KB | {dep.gzip_size} KB |")
        lines.append("")

    if insights.quick_wins:
        lines += [
            "### Quick Wins (Easy Updates)",
            "",
            "These packages can be easily updated to improve security:",
            "",
            "| Package | Current | Latest | Security Score |",
            "| ------- | ------- | ------ | -------------- |",
        ]
        for win in insights.quick_wins:
            score = win.security_score if win.security_score is not None else "N/A"
            lines.append(
                f"| {escape_html(win.name)} | {escape_html(win.current)} | {escape_html(win.latest)} | {score} |"
            )
        lines.append("")

    if insights.license_issues:
        lines += ["### License Concerns", "", "The following packages use licenses that may require special attention:", ""]
        for issue in insights.license_issues:
            lines.append(f"- **{escape_html(issue.name)}**: {escape_html(issue.license)}")
        lines.append("")

    if insights.abandoned_packages:
        lines += ["### Potentially Abandoned Packages", "", "These packages haven't been updated in over 2 years:", ""]
        for pkg in insights.abandoned_packages:
            lines.append(
                f"- **{escape_html(pkg.name)}**: Last updated {escape_html(pkg.last_update or 'Unknown')} "
                f"({pkg.days_since} days ago)"
            )
        lines.append("")

    if insights.deprecated_packages:
        lines += ["### Deprecated Packages", ""]
        for pkg in insights.deprecated_packages:
            lines.append(f"- **{escape_html(pkg.name)}@{escape_html(pkg.version)}**: {escape_html(pkg.message)}")
        lines.append("")

    summary = insights.vulnerability_summary
    if summary.total:
        lines += [
            "### Vulnerability Summary",
            "",
            "| Severity | Count |",
            "| -------- | ----- |",
            f"| Critical | {summary.critical} |",
            f"| High | {summary.high} |",
            f"| Moderate | {summary.moderate} |",
            f"| Low | {summary.low} |",
            f"| Unknown | {summary.unknown + summary.none} |",
            "",
            f"{summary.total} vulnerabilities affect {summary.packages_affected} packages.",
            "",
        ]

    return lines


def _audit_section(aggregate: SBOMAggregate) -> list[str]:
    if not aggregate.advisories:
        return []
    lines = ["## Security Audit", ""]
    audit = aggregate.audit_summary
    if audit is not None:
        lines += [
            "### Summary",
            "",
            "| Severity | Count |",
            "| -------- | ----- |",
            f"| Info | {audit.info} |",
            f"| Low | {audit.low} |",
            f"| Moderate | {audit.moderate} |",
            f"| High | {audit.high} |",
            f"| Critical | {audit.critical} |",
            "",
        ]
    lines += ["### Advisories", ""]
    for advisory in aggregate.advisories[:10]:
        lines += [f"#### {escape_html(advisory.module_name)}", "", f"**Severity:** {escape_html(advisory.severity.upper())}", ""]
        if advisory.title:
            lines += [f"**{escape_html(advisory.title)}**", ""]
        if advisory.overview:
            lines += [escape_html(advisory.overview), ""]
        lines += [
            "| Range | Patched Version | Recommendation |",
            "| ----- | --------------- | -------------- |",
            f"| {escape_html(advisory.vulnerable_versions)} "
            f"| {escape_html(advisory.patched_versions or 'N/A')} "
            f"| {escape_html(advisory.recommendation or 'Update to latest version')} |",
            "",
        ]
        advisory_url = link_url(advisory.url)
        if advisory_url:
            lines += [f"[View Advisory]({advisory_url})", ""]
        lines += ["---", ""]
    return lines


def _outdated_section(aggregate: SBOMAggregate) -> list[str]:
    if not aggregate.outdated_packages:
        return []
    lines = [
        "## Outdated Packages",
        "",
        "The following packages have newer versions available:",
        "",
        "| Package | Current | Wanted | Latest |",
        "| ------- | ------- | ------ | ------ |",
    ]
    for name, info in list(aggregate.outdated_packages.items())[:20]:
        lines.append(
            f"| {escape_html(name)} | {escape_html(info.current)} "
            f"| {escape_html(info.wanted)} | {escape_html(info.latest)} |"
        )
    lines.append("")
    return lines


def _packages_section(aggregate: SBOMAggregate) -> list[str]:
    lines: list[str] = []
    for package in aggregate.packages:
        if aggregate.is_monorepo:
            lines += [
                "---",
                "",
                f"## Package: {escape_html(package.package_name or 'Root')}",
                "",
                f"**Path:** `{escape_html(package.package_path or '/')}`",
                "",
            ]
        lines += ["### Production Dependencies", "", *_dependency_table(package.dependencies), ""]
        if package.dev_dependencies:
            lines += ["### Development Dependencies", "", *_dependency_table(package.dev_dependencies), ""]
    return lines


def _known_unknowns_section(aggregate: SBOMAggregate) -> list[str]:
    if not aggregate.known_unknowns:
        return []
    lines = [
        "## Known Unknowns",
        "",
        "These declared dependencies could not be analysed and are missing from the inventory:",
        "",
        "| Package | Declared Version | Category | Reason |",
        "| ------- | ---------------- | -------- | ------ |",
    ]
    for unknown in aggregate.known_unknowns:
        lines.append(
            f"| {escape_html(unknown.name)} | {escape_html(unknown.version)} "
            f"| {unknown.category.value} | {escape_html(unknown.reason)} |"
        )
    lines.append("")
    return lines


def _compliance_section(report: ComplianceReport | None) -> list[str]:
    if report is None:
        return []
    lines = [
        "## Compliance",
        "",
        f"**Standard:** {escape_html(report.standard)}",
        "",
        f"**Overall Status:** {report.overall_status.value.replace('_', ' ').upper()} "
        f"({report.summary.passed} passed, {report.summary.warnings} warnings, {report.summary.failed} failed)",
        "",
        "| Control | Name | Status | Findings |",
        "| ------- | ---- | ------ | -------- |",
    ]
    for control in report.controls:
        findings = "<br>".join(escape_html(f) for f in control.findings)
        lines.append(
            f"| {control.id} | {escape_html(control.name)} | {STATUS_ICONS[control.status]} | {findings} |"
        )
    lines.append("")
    recommendations = [c for c in report.controls if c.recommendation]
    if recommendations:
        lines += ["### Recommendations", ""]
        for control in recommendations:
            lines.append(f"- **{control.id}**: {escape_html(control.recommendation)}")
        lines.append("")
    return lines


def generate_markdown(aggregate: SBOMAggregate) -> str:
    """Render the full report for an aggregate."""
    lines = [
        "# Software Bill of Materials (SBOM)",
        "",
        f"Last updated: {iso_timestamp(aggregate.generated_at)}",
        "",
        "**Monorepo Project**" if aggregate.is_monorepo else "**Single Package Project**",
        "",
        f"Coverage: {aggregate.coverage.depth.value} dependencies",
        "",
        "> This documentation is auto-generated by [Bill of Material](https://billofmaterial.dev)",
        "",
    ]
    lines += _summary_section(aggregate)
    lines += _insights_section(aggregate.insights)
    lines += _audit_section(aggregate)
    lines += _outdated_section(aggregate)
    lines += _packages_section(aggregate)
    lines += _known_unknowns_section(aggregate)
    lines += _compliance_section(aggregate.compliance)
    lines += ["---", "", "*Generated by [Bill of Material](https://billofmaterial.dev)*", ""]
    return "\n".join(lines)
