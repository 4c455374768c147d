"""CycloneDX 1.5 BOM emitter."""

import re
import uuid
from datetime import datetime

from billofmaterial import __version__
from billofmaterial.exporters.serialization import checksums, iso_timestamp, license_kind
from billofmaterial.models.schemas import (
    DependencyRecord,
    SBOMAggregate,
    Severity,
    VexStatus,
    VulnerabilityRecord,
)

# Digest names in CycloneDX's hash-alg enum
HASH_ALGORITHMS = {
    "SHA1": "SHA-1",
    "SHA256": "SHA-256",
    "SHA384": "SHA-384",
    "SHA512": "SHA-512",
}

SEVERITY_RATINGS = {
    Severity.CRITICAL: "critical",
    Severity.HIGH: "high",
    Severity.MODERATE: "medium",
    Severity.LOW: "low",
    Severity.NONE: "none",
    Severity.UNKNOWN: "unknown",
}

# When one vulnerability touches several components, the most urgent state wins
VEX_PRIORITY = {
    VexStatus.AFFECTED: 0,
    VexStatus.UNDER_INVESTIGATION: 1,
    VexStatus.FIXED: 2,
    VexStatus.NOT_AFFECTED: 3,
}

_CWE_NUMBER = re.compile(r"(\d+)")


def _licenses(license_id: str | None) -> list[dict]:
    kind, value = license_kind(license_id)
    if kind is None:
        return []
    if kind == "expression":
        return [{"expression": value}]
    return [{"license": {kind: value}}]


def _hashes(record: DependencyRecord) -> list[dict]:
    return [
        {"alg": HASH_ALGORITHMS[algorithm], "content": value}
        for algorithm, value in checksums(record.hashes)
        if algorithm in HASH_ALGORITHMS
    ]


def cwe_ids(cwes: list[str]) -> list[int]:
    """Numeric ids from ``CWE-79`` style strings; unparsable entries are dropped."""
    ids: list[int] = []
    for cwe in cwes:
        match = _CWE_NUMBER.search(cwe)
        if match and int(match.group(1)) not in ids:
            ids.append(int(match.group(1)))
    return ids


def component_for(record: DependencyRecord) -> dict:
    component = {
        "type": "library",
        "bom-ref": record.purl,
        "name": record.name,
        "version": record.version,
        "purl": record.purl,
        "scope": "optional" if record.is_dev else "required",
    }
    if record.description and record.description != "N/A":
        component["description"] = record.description

    licenses = _licenses(record.license)
    if licenses:
        component["licenses"] = licenses

    hashes = _hashes(record)
    if hashes:
        component["hashes"] = hashes

    if record.supplier is not None:
        supplier: dict = {"name": record.supplier.name}
        if record.supplier.url:
            supplier["url"] = [record.supplier.url]
        if record.supplier.email:
            supplier["contact"] = [{"name": record.supplier.name, "email": record.supplier.email}]
        component["supplier"] = supplier

    if record.homepage:
        component["externalReferences"] = [{"type": "website", "url": record.homepage}]

    properties = []
    if record.risk is not None:
        properties.append({"name": "billofmaterial:riskScore", "value": str(record.risk.score)})
        properties.append({"name": "billofmaterial:riskLevel", "value": record.risk.risk_level.value})
    if record.security_score is not None:
        properties.append({"name": "billofmaterial:securityScore", "value": str(record.security_score)})
    if record.deprecated:
        properties.append({"name": "billofmaterial:deprecated", "value": record.deprecated})
    if properties:
        component["properties"] = properties

    return component


def _vulnerability(vuln: VulnerabilityRecord) -> dict:
    rating: dict = {"severity": SEVERITY_RATINGS.get(vuln.severity, "unknown")}
    if vuln.cvss_score is not None:
        rating["score"] = vuln.cvss_score
        rating["method"] = "CVSSv31"

    source_name = "npm audit" if vuln.id.startswith("NPM-") else "OSV"
    entry: dict = {
        "bom-ref": f"vuln-{vuln.id}",
        "id": vuln.id,
        "source": {"name": source_name},
        "ratings": [rating],
        "affects": [],
    }
    if vuln.url:
        entry["source"]["url"] = vuln.url
        entry["advisories"] = [{"url": vuln.url}]
    cwes = cwe_ids(vuln.cwes)
    if cwes:
        entry["cwes"] = cwes
    if vuln.summary:
        entry["description"] = vuln.summary
    if vuln.fixed_in:
        entry["recommendation"] = f"Upgrade to version {vuln.fixed_in} or later"
    if vuln.aliases:
        entry["references"] = [{"id": alias, "source": {"name": "alias"}} for alias in vuln.aliases]
    return entry


def generate_cyclonedx(aggregate: SBOMAggregate, created: datetime | None = None) -> dict:
    """Build a CycloneDX 1.5 JSON BOM for the aggregate.

    Components are deduplicated on name and version with ``bom-ref`` set to
    the purl. The root application depends on every direct dependency;
    edges between components are only added when transitive analysis was
    enabled and the target is itself in the BOM. Vulnerabilities are
    deduplicated by id, with ``affects`` merged across components.
    """
    project = aggregate.project
    timestamp = iso_timestamp(created or aggregate.generated_at)
    root_ref = f"pkg:npm/{project.name}@{project.version}"

    root_component = {
        "type": "application",
        "bom-ref": root_ref,
        "name": project.name,
        "version": project.version,
        "purl": root_ref,
    }
    if project.description:
        root_component["description"] = project.description
    root_licenses = _licenses(project.license)
    if root_licenses:
        root_component["licenses"] = root_licenses

    components: list[dict] = []
    seen: dict[tuple[str, str], DependencyRecord] = {}
    ref_by_name: dict[str, str] = {}
    for record in aggregate.all_dependencies:
        key = (record.name, record.version)
        if key in seen:
            continue
        seen[key] = record
        ref_by_name.setdefault(record.name, record.purl)
        components.append(component_for(record))

    direct_refs = [record.purl for record in seen.values()]
    dependencies = [{"ref": root_ref, "dependsOn": direct_refs}]
    for record in seen.values():
        depends_on: list[str] = []
        for name in record.transitive_dependencies or []:
            target = ref_by_name.get(name)
            if target and target != record.purl and target not in depends_on:
                depends_on.append(target)
        dependencies.append({"ref": record.purl, "dependsOn": depends_on})

    vulnerabilities: dict[str, dict] = {}
    states: dict[str, VexStatus] = {}
    for record in seen.values():
        for vuln in record.vulnerabilities:
            entry = vulnerabilities.get(vuln.id)
            if entry is None:
                entry = vulnerabilities[vuln.id] = _vulnerability(vuln)
            if not any(a["ref"] == record.purl for a in entry["affects"]):
                entry["affects"].append({"ref": record.purl})
            status = vuln.vex_status
            if status is not None:
                current = states.get(vuln.id)
                if current is None or VEX_PRIORITY[status] < VEX_PRIORITY[current]:
                    states[vuln.id] = status

    for vuln_id, status in states.items():
        vulnerabilities[vuln_id]["analysis"] = {"state": status.value}

    serial = uuid.uuid5(uuid.NAMESPACE_URL, f"billofmaterial:{root_ref}:{timestamp}")
    bom = {
        "bomFormat": "CycloneDX",
        "specVersion": "1.5",
        "serialNumber": f"urn:uuid:{serial}",
        "version": 1,
        "metadata": {
            "timestamp": timestamp,
            "tools": {
                "components": [
                    {"type": "application", "name": "billofmaterial", "version": __version__}
                ]
            },
            "component": root_component,
        },
        "components": components,
        "dependencies": dependencies,
    }
    if vulnerabilities:
        bom["vulnerabilities"] = list(vulnerabilities.values())
    return bom
