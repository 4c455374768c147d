"""SPDX 2.3 document emitter."""

import re
from datetime import datetime
from urllib.parse import quote

from billofmaterial import __version__
from billofmaterial.exporters.serialization import checksums, iso_timestamp, spdx_license
from billofmaterial.models.schemas import DependencyRecord, PackageAnalysis, SBOMAggregate, Supplier

NOASSERTION = "NOASSERTION"
ROOT_ID = "SPDXRef-Package-Root"
DOCUMENT_ID = "SPDXRef-DOCUMENT"
NAMESPACE_BASE = "https://sbom.billofmaterial.dev"
LICENSE_LIST_VERSION = "3.21"

_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")


def spdx_id(name: str, prefix: str = "SPDXRef-Package-") -> str:
    """Build an SPDX element id; characters outside ``[a-zA-Z0-9.-]`` become ``-``."""
    return f"{prefix}{_ID_UNSAFE.sub('-', name)}"


def tarball_url(name: str, version: str) -> str:
    """Registry download location for a package version."""
    basename = name.rsplit("/", 1)[-1]
    return f"https://registry.npmjs.org/{name}/-/{basename}-{version}.tgz"


def _supplier(supplier: Supplier | None) -> str:
    if supplier is None:
        return NOASSERTION
    if supplier.email:
        return f"Person: {supplier.name} ({supplier.email})"
    return f"Person: {supplier.name}"


def _relationship(source: str, kind: str, target: str) -> dict:
    return {"spdxElementId": source, "relationshipType": kind, "relatedSpdxElement": target}


def _dependency_package(record: DependencyRecord, element_id: str) -> dict:
    package = {
        "SPDXID": element_id,
        "name": record.name,
        "versionInfo": record.version or NOASSERTION,
        "downloadLocation": tarball_url(record.name, record.version) if record.version else NOASSERTION,
        "filesAnalyzed": False,
        "supplier": _supplier(record.supplier),
        "homepage": record.homepage or NOASSERTION,
        "licenseConcluded": spdx_license(record.license),
        "licenseDeclared": spdx_license(record.license),
        "copyrightText": NOASSERTION,
        "primaryPackagePurpose": "LIBRARY",
        "externalRefs": [
            {
                "referenceCategory": "PACKAGE-MANAGER",
                "referenceType": "purl",
                "referenceLocator": record.purl,
            }
        ],
    }
    if record.description and record.description != "N/A":
        package["description"] = record.description

    digests = checksums(record.hashes)
    if digests:
        package["checksums"] = [
            {"algorithm": algorithm, "checksumValue": value} for algorithm, value in digests
        ]
    return package


def _member_package(member: PackageAnalysis, element_id: str) -> dict:
    return {
        "SPDXID": element_id,
        "name": member.package_name or member.package_path or "workspace",
        "versionInfo": member.package_version or NOASSERTION,
        "downloadLocation": NOASSERTION,
        "filesAnalyzed": False,
        "supplier": NOASSERTION,
        "licenseConcluded": NOASSERTION,
        "licenseDeclared": NOASSERTION,
        "copyrightText": NOASSERTION,
        "primaryPackagePurpose": "APPLICATION",
    }


def generate_spdx(aggregate: SBOMAggregate, created: datetime | None = None) -> dict:
    """Build an SPDX 2.3 JSON document for the aggregate.

    One package per unique dependency name; the first occurrence wins. In a
    monorepo the root CONTAINS one node per workspace member, and each
    member DEPENDS_ON its own dependencies. Otherwise the root DEPENDS_ON
    every dependency directly.
    """
    project = aggregate.project
    timestamp = iso_timestamp(created or aggregate.generated_at)

    root = {
        "SPDXID": ROOT_ID,
        "name": project.name,
        "versionInfo": project.version,
        "downloadLocation": project.repository_url or project.homepage or NOASSERTION,
        "filesAnalyzed": False,
        "supplier": NOASSERTION,
        "homepage": project.homepage or NOASSERTION,
        "licenseConcluded": spdx_license(project.license),
        "licenseDeclared": spdx_license(project.license),
        "copyrightText": NOASSERTION,
        "primaryPackagePurpose": "APPLICATION",
    }
    if project.description:
        root["description"] = project.description

    packages = [root]
    relationships = [_relationship(DOCUMENT_ID, "DESCRIBES", ROOT_ID)]
    seen_ids = {ROOT_ID}
    seen_relationships: set[tuple[str, str, str]] = set()

    def relate(source: str, kind: str, target: str) -> None:
        key = (source, kind, target)
        if key not in seen_relationships:
            seen_relationships.add(key)
            relationships.append(_relationship(source, kind, target))

    for index, member in enumerate(aggregate.packages):
        owner = ROOT_ID
        if aggregate.is_monorepo:
            owner = spdx_id(member.package_name or member.package_path or str(index), "SPDXRef-Workspace-")
            if owner in seen_ids:
                owner = f"{owner}-{index}"
            seen_ids.add(owner)
            packages.append(_member_package(member, owner))
            relate(ROOT_ID, "CONTAINS", owner)

        for record in member.all_dependencies:
            element_id = spdx_id(record.name)
            if element_id not in seen_ids:
                seen_ids.add(element_id)
                packages.append(_dependency_package(record, element_id))
            relate(owner, "DEPENDS_ON", element_id)

    return {
        "spdxVersion": "SPDX-2.3",
        "dataLicense": "CC0-1.0",
        "SPDXID": DOCUMENT_ID,
        "name": f"{project.name}-{project.version}",
        "documentNamespace": (
            f"{NAMESPACE_BASE}/{quote(project.name, safe='')}/{quote(project.version, safe='')}/{timestamp}"
        ),
        "creationInfo": {
            "created": timestamp,
            "creators": [
                f"Tool: billofmaterial-{__version__}",
                "Organization: Bill of Material (https://billofmaterial.dev)",
            ],
            "licenseListVersion": LICENSE_LIST_VERSION,
        },
        "packages": packages,
        "relationships": relationships,
    }
