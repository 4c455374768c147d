"""Engine entry point: manifest in, finished SBOM aggregate out."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

import httpx

from billofmaterial import __version__
from billofmaterial.analyzers.compliance import evaluate_compliance
from billofmaterial.analyzers.insights import generate_insights
from billofmaterial.analyzers.normalizer import resolve_version, vex_status_for
from billofmaterial.analyzers.osv import severity_from_label
from billofmaterial.analyzers.pipeline import FetchOrchestrator
from billofmaterial.analyzers.scorer import Scorer
from billofmaterial.exporters.cyclonedx import generate_cyclonedx
from billofmaterial.exporters.integrity import compute_integrity_hash
from billofmaterial.exporters.markdown import generate_markdown
from billofmaterial.exporters.spdx import generate_spdx
from billofmaterial.manifest import (
    ROOT_MANIFEST,
    ManifestError,
    SourceFile,
    declarations_for,
    detect_monorepo,
    find_member_manifests,
    parse_manifest,
    workspace_descriptor,
    workspace_patterns,
)
from billofmaterial.models.schemas import (
    Advisory,
    AuditSummary,
    Coverage,
    CoverageDepth,
    DependencyRecord,
    OutdatedPackage,
    PackageAnalysis,
    SBOMAggregate,
    SBOMConfig,
    VulnerabilityRecord,
)
from billofmaterial.monitoring.progress import ProgressChannel

logger = logging.getLogger(__name__)


def _coerce_config(config: SBOMConfig | dict | None) -> SBOMConfig:
    if isinstance(config, SBOMConfig):
        return config
    return SBOMConfig.model_validate(config or {})


def _coerce_files(files: Iterable[Any] | None) -> list[SourceFile]:
    coerced = []
    for file in files or []:
        if isinstance(file, SourceFile):
            coerced.append(file)
        elif isinstance(file, dict):
            coerced.append(SourceFile(path=file["path"], content=file["content"]))
        else:
            coerced.append(SourceFile(*file))
    return coerced


def finalize(aggregate: SBOMAggregate, now: datetime | None = None) -> SBOMAggregate:
    """Recompute every derived view of an aggregate in place.

    Runs insights, compliance, the integrity hash and the three emitters.
    Safe to call again after records, audit or outdated data change.
    """
    aggregate.total_dependencies = sum(
        len(p.dependencies) + len(p.dev_dependencies) for p in aggregate.packages
    )
    aggregate.insights = generate_insights(
        aggregate.packages,
        aggregate.outdated_packages,
        aggregate.audit_summary,
        threshold=aggregate.security_score_threshold,
    )
    aggregate.compliance = evaluate_compliance(aggregate, now=now or aggregate.generated_at)
    aggregate.integrity_hash = compute_integrity_hash(aggregate)
    aggregate.markdown = generate_markdown(aggregate)
    aggregate.spdx = generate_spdx(aggregate)
    aggregate.cyclonedx = generate_cyclonedx(aggregate)
    return aggregate


async def generate_sbom(
    manifest: str | bytes | dict | None,
    files: Iterable[Any] | None = None,
    config: SBOMConfig | dict | None = None,
    progress: ProgressChannel | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
    orchestrator: FetchOrchestrator | None = None,
    now: datetime | None = None,
) -> SBOMAggregate:
    """Analyze a project and build its SBOM aggregate.

    Args:
        manifest: Root package.json as text or a decoded object.
        files: Auxiliary files as ``SourceFile``, ``(path, content)`` pairs
            or ``{"path", "content"}`` dicts (workspace members and
            descriptors).
        config: ``SBOMConfig`` or a dict of camelCase/snake_case options.
        progress: Channel receiving progress events. Closed on return.
        client: Optional shared httpx client for the default providers.
        timeout: Optional wall-clock budget for the fetch phase in seconds.
        orchestrator: Pre-built orchestrator, mainly for tests.
        now: Generation time. Defaults to the current UTC time.

    Returns:
        The finished aggregate, with every emitted document attached.

    Raises:
        ManifestError: If the root manifest is missing or unparsable.
    """
    def emit(message: str, current: int | None = None, total: int | None = None) -> None:
        if progress is not None and not progress.closed:
            progress.emit(message, current, total)

    try:
        config = _coerce_config(config)
        root = parse_manifest(manifest)
        files = _coerce_files(files)
        generated_at = now or datetime.now(timezone.utc)

        emit("Detecting project structure...")
        workspace_yaml = workspace_descriptor(files)
        members: list[tuple[str, Any]] = []
        if detect_monorepo(root, workspace_yaml):
            emit("Analyzing monorepo structure...")
            members = find_member_manifests(files, workspace_patterns(root, workspace_yaml))
            emit(f"Found {len(members)} packages in monorepo")
            if not members:
                logger.warning("Workspaces declared but no member manifests matched; analysing root")
        is_monorepo = bool(members)
        if not is_monorepo:
            emit("Analyzing single package project...")
            members = [(ROOT_MANIFEST, root)]

        groups = [(path, member, declarations_for(member, config.include_dev_deps)) for path, member in members]
        # Members sharing a declaration are analysed once
        unique = list(dict.fromkeys(d for _, _, decls in groups for d in decls))
        logger.info(f"Analyzing {len(unique)} unique declarations across {len(groups)} packages")

        if orchestrator is None:
            orchestrator = FetchOrchestrator(config, client=client, now=generated_at)
        async with orchestrator:
            result = await orchestrator.analyze(unique, timeout=timeout, progress=progress)

        rank = {(r.name, r.version_range, r.is_dev): i for i, r in enumerate(result.records)}
        by_key = {(r.name, r.version_range, r.is_dev): r for r in result.records}

        def records_for(declarations) -> list[DependencyRecord]:
            keys = [(d.name, d.version_range, d.is_dev) for d in declarations]
            return [by_key[k] for k in sorted((k for k in keys if k in by_key), key=rank.__getitem__)]

        packages = []
        for path, member, declarations in groups:
            packages.append(
                PackageAnalysis(
                    package_name=member.name,
                    package_version=member.version,
                    package_path=path if is_monorepo else None,
                    dependencies=records_for([d for d in declarations if not d.is_dev]),
                    dev_dependencies=records_for([d for d in declarations if d.is_dev]),
                )
            )

        emit("Generating insights...")
        aggregate = SBOMAggregate(
            is_monorepo=is_monorepo,
            project=root.project_info(),
            security_score_threshold=config.security_score_threshold,
            packages=packages,
            generated_at=generated_at,
            outdated_packages=result.outdated or None,
            coverage=Coverage(
                depth=(
                    CoverageDepth.TRANSITIVE
                    if config.include_transitive_deps
                    else CoverageDepth.TOP_LEVEL
                ),
                tool_version=__version__,
                timestamp=generated_at,
            ),
            known_unknowns=result.known_unknowns,
        )

        emit("Generating documents...")
        finalize(aggregate)
        emit(f"Completed: {aggregate.total_dependencies} dependencies analyzed")
        return aggregate
    finally:
        if progress is not None:
            progress.close()


# npm audit severities onto ours; "info" has no counterpart and maps to LOW
AUDIT_SEVERITIES = {"info": "LOW", "low": "LOW", "moderate": "MODERATE", "high": "HIGH", "critical": "CRITICAL"}


def parse_audit(audit: str | bytes | dict) -> tuple[list[Advisory], AuditSummary | None]:
    """Read advisories and severity counts from ``npm audit --json`` output."""
    if isinstance(audit, (str, bytes)):
        try:
            audit = json.loads(audit)
        except ValueError as e:
            raise ValueError(f"audit report is not valid JSON: {e}") from e
    if not isinstance(audit, dict):
        raise ValueError("audit report must be a JSON object")

    raw_advisories = audit.get("advisories") or {}
    if isinstance(raw_advisories, dict):
        raw_advisories = list(raw_advisories.values())
    advisories = [Advisory.model_validate(a) for a in raw_advisories if isinstance(a, dict)]

    summary = None
    counts = (audit.get("metadata") or {}).get("vulnerabilities")
    if isinstance(counts, dict):
        levels = {k: int(counts.get(k) or 0) for k in ("info", "low", "moderate", "high", "critical")}
        summary = AuditSummary(**levels, total=sum(levels.values()))
    return advisories, summary


def _fixed_version(patched_versions: str) -> str | None:
    # npm marks "no fix" as "<0.0.0"
    if not patched_versions or patched_versions.strip().startswith("<"):
        return None
    return resolve_version(patched_versions) or None


def advisory_vulnerability(advisory: Advisory, current_version: str) -> VulnerabilityRecord:
    """Convert an audit advisory into a vulnerability for one installed version."""
    fixed_in = _fixed_version(advisory.patched_versions)
    cwes = advisory.cwe if isinstance(advisory.cwe, list) else [advisory.cwe] if advisory.cwe else []
    return VulnerabilityRecord(
        id=f"NPM-{advisory.id}",
        summary=advisory.title or advisory.overview[:200],
        severity=severity_from_label(AUDIT_SEVERITIES.get(advisory.severity.lower(), advisory.severity)),
        cwes=cwes,
        fixed_in=fixed_in,
        url=advisory.url or None,
        vex_status=vex_status_for(current_version, fixed_in),
    )


def apply_extras(
    aggregate: SBOMAggregate,
    audit: str | bytes | dict | None = None,
    outdated: dict[str, Any] | None = None,
    scorer: Scorer | None = None,
) -> SBOMAggregate:
    """Merge an audit report and/or an outdated map into a finished aggregate.

    Returns a new aggregate; the input is left untouched. No upstream call
    is repeated: affected records are re-scored and every derived view is
    recomputed.
    """
    if audit is None and outdated is None:
        return aggregate

    updated = aggregate.model_copy(deep=True)
    scorer = scorer or Scorer(security_threshold=updated.security_score_threshold)

    if audit is not None:
        advisories, summary = parse_audit(audit)
        updated.advisories = advisories
        updated.audit_summary = summary
        by_module: dict[str, list[Advisory]] = {}
        for advisory in advisories:
            by_module.setdefault(advisory.module_name, []).append(advisory)

        for package in updated.packages:
            for group in (package.dependencies, package.dev_dependencies):
                for index, record in enumerate(group):
                    matches = by_module.get(record.name)
                    if not matches:
                        continue
                    known = {v.id for v in record.vulnerabilities}
                    added = [
                        advisory_vulnerability(a, record.version)
                        for a in matches
                        if f"NPM-{a.id}" not in known
                    ]
                    if added:
                        record = record.model_copy(update={"vulnerabilities": [*record.vulnerabilities, *added]})
                        group[index] = scorer.score_record(record)
                group.sort(key=lambda r: r.risk.score if r.risk else 100)
        logger.info(f"Merged {len(advisories)} audit advisories")

    if outdated is not None:
        updated.outdated_packages = {
            name: info if isinstance(info, OutdatedPackage) else OutdatedPackage.model_validate(info)
            for name, info in outdated.items()
        }

    return finalize(updated)


async def generate_sbom_with_extras(
    manifest: str | bytes | dict | None,
    files: Iterable[Any] | None = None,
    config: SBOMConfig | dict | None = None,
    audit: str | bytes | dict | None = None,
    outdated: dict[str, Any] | None = None,
    **kwargs: Any,
) -> SBOMAggregate:
    """``generate_sbom`` followed by ``apply_extras``."""
    config = _coerce_config(config)
    aggregate = await generate_sbom(manifest, files, config, **kwargs)
    return apply_extras(aggregate, audit=audit, outdated=outdated)


__all__ = [
    "ManifestError",
    "apply_extras",
    "finalize",
    "generate_sbom",
    "generate_sbom_with_extras",
    "parse_audit",
]
