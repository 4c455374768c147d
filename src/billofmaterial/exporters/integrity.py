"""Tamper-evidence digest over the stable projection of an aggregate."""

import hashlib
import hmac
import json

from billofmaterial.exporters.serialization import iso_timestamp, to_jsonable
from billofmaterial.models.schemas import DependencyRecord, PackageAnalysis, SBOMAggregate

PREFIX = "sha256:"


def _records(records: list[DependencyRecord]) -> list:
    ordered = sorted(records, key=lambda r: (r.name, r.version, r.is_dev))
    return [to_jsonable(r) for r in ordered]


def _package(package: PackageAnalysis) -> dict:
    return {
        "packageName": package.package_name,
        "packagePath": package.package_path,
        "dependencies": _records(package.dependencies),
        "devDependencies": _records(package.dev_dependencies),
    }


def canonical_projection(aggregate: SBOMAggregate) -> str:
    """Canonical JSON of packages, generation time and total count.

    Package and record order do not affect the result.
    """
    packages = sorted(
        (_package(p) for p in aggregate.packages),
        key=lambda p: (p["packageName"] or "", p["packagePath"] or ""),
    )
    payload = {
        "packages": packages,
        "generatedAt": iso_timestamp(aggregate.generated_at),
        "totalDependencies": aggregate.total_dependencies,
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_integrity_hash(aggregate: SBOMAggregate) -> str:
    """Return ``"sha256:" + hex digest`` of the canonical projection."""
    digest = hashlib.sha256(canonical_projection(aggregate).encode("utf-8")).hexdigest()
    return f"{PREFIX}{digest}"


def verify_integrity(aggregate: SBOMAggregate, expected: str) -> bool:
    """Check an aggregate against a previously computed digest."""
    return hmac.compare_digest(compute_integrity_hash(aggregate), expected)
