"""OSV (Open Source Vulnerabilities) provider for per-version vulnerability data."""

import httpx

from billofmaterial.adapters.base import MALFORMED_PAYLOAD_ERRORS, BaseProvider, ProviderError
from billofmaterial.models.schemas import Severity, VulnerabilityRecord


class OSVProvider(BaseProvider):
    """Fetches vulnerability data from OSV (Open Source Vulnerabilities) database.

    OSV is a distributed vulnerability database for open source:
    https://osv.dev/

    No authentication required.
    """

    BASE_URL = "https://api.osv.dev/v1"

    # Map our ecosystem names to OSV ecosystem names
    ECOSYSTEM_MAP = {
        "npm": "npm",
        "pypi": "PyPI",
        "crates": "crates.io",
    }

    @property
    def name(self) -> str:
        return "osv"

    async def fetch_vulnerabilities(
        self,
        package: str,
        version: str,
        ecosystem: str = "npm",
    ) -> list[VulnerabilityRecord]:
        """Fetch vulnerabilities affecting one version of a package.

        Args:
            package: Package name.
            version: Exact version to query.
            ecosystem: Our ecosystem name (npm, pypi, crates).

        Returns:
            List of VulnerabilityRecords; empty when none are known.
        """
        osv_ecosystem = self.ECOSYSTEM_MAP.get(ecosystem)
        if not osv_ecosystem:
            return []

        body: dict = {"package": {"name": package, "ecosystem": osv_ecosystem}}
        if version:
            body["version"] = version

        client = await self._get_client()
        try:
            response = await client.post(f"{self.BASE_URL}/query", json=body)
            response.raise_for_status()
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, package, "invalid JSON payload") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, package, f"query failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if not isinstance(data, dict):
            raise ProviderError(self.name, package, "unexpected JSON payload")
        vulns = data.get("vulns") or []
        if not isinstance(vulns, list):
            raise ProviderError(self.name, package, "vulns is not a list")
        try:
            return [parse_vulnerability(v) for v in vulns if isinstance(v, dict)]
        except MALFORMED_PAYLOAD_ERRORS as e:
            raise ProviderError(self.name, package, f"malformed vulnerability record: {e}") from e


def parse_vulnerability(vuln: dict) -> VulnerabilityRecord:
    """Convert one OSV record into a VulnerabilityRecord.

    The VEX status is left unset; it depends on the installed version and
    is assigned during normalization.
    """
    vuln_id = vuln.get("id") or "UNKNOWN"
    summary = _as_str(vuln.get("summary")) or _as_str(vuln.get("details"))[:200]
    severity, cvss_score = _parse_severity(vuln)
    db_specific = _as_dict(vuln.get("database_specific"))
    cwes = db_specific.get("cwe_ids") or []

    return VulnerabilityRecord(
        id=vuln_id,
        aliases=[a for a in _as_list(vuln.get("aliases")) if isinstance(a, str)],
        summary=summary[:500],
        severity=severity,
        cvss_score=cvss_score,
        cwes=[c for c in _as_list(cwes) if isinstance(c, str)],
        fixed_in=_parse_fixed_version(vuln),
        url=_parse_advisory_url(vuln),
    )


def severity_from_label(label: str | None) -> Severity:
    """Map a free-form severity label onto the Severity enum."""
    if not label:
        return Severity.UNKNOWN
    label = label.upper()
    if label == "MEDIUM":
        return Severity.MODERATE
    if label == "INFO":
        return Severity.LOW
    try:
        return Severity(label)
    except ValueError:
        return Severity.UNKNOWN


def severity_from_cvss(score: float) -> Severity:
    """Derive a severity band from a CVSS base score."""
    if score >= 9.0:
        return Severity.CRITICAL
    elif score >= 7.0:
        return Severity.HIGH
    elif score >= 4.0:
        return Severity.MODERATE
    elif score > 0:
        return Severity.LOW
    return Severity.NONE


def _parse_severity(vuln: dict) -> tuple[Severity, float | None]:
    """Extract severity and CVSS score from OSV record.

    Args:
        vuln: OSV vulnerability record.

    Returns:
        Tuple of (severity, cvss_score).
    """
    severity = Severity.UNKNOWN
    cvss_score = None

    for sev in _as_list(vuln.get("severity")):
        score = sev.get("score") if isinstance(sev, dict) else None
        if isinstance(score, (int, float)):
            cvss_score = float(score)

    db_specific = _as_dict(vuln.get("database_specific"))
    cvss_data = db_specific.get("cvss")
    if isinstance(cvss_data, dict) and isinstance(cvss_data.get("score"), (int, float)):
        cvss_score = float(cvss_data["score"])
    elif isinstance(cvss_data, (int, float)):
        cvss_score = float(cvss_data)

    if isinstance(db_specific.get("severity"), str):
        severity = severity_from_label(db_specific["severity"])

    # Ecosystem-specific severity takes precedence when present
    for affected in _affected(vuln):
        eco_specific = _as_dict(affected.get("ecosystem_specific"))
        if isinstance(eco_specific.get("severity"), str):
            severity = severity_from_label(eco_specific["severity"])
            break

    if severity == Severity.UNKNOWN and cvss_score is not None:
        severity = severity_from_cvss(cvss_score)

    return severity, cvss_score


def _parse_fixed_version(vuln: dict) -> str | None:
    """Extract the first fixed version from OSV record."""
    for affected in _affected(vuln):
        for rng in _as_list(affected.get("ranges")):
            for event in _as_list(_as_dict(rng).get("events")):
                fixed = _as_dict(event).get("fixed")
                if isinstance(fixed, str) and fixed:
                    return fixed
    return None


def _parse_advisory_url(vuln: dict) -> str:
    """Pick the advisory reference, falling back to the OSV page."""
    references = [
        r for r in _as_list(vuln.get("references")) if isinstance(r, dict) and isinstance(r.get("url"), str)
    ]
    for ref in references:
        if ref.get("type") == "ADVISORY":
            return ref["url"]
    if references:
        return references[0]["url"]
    return f"https://osv.dev/vulnerability/{vuln.get('id', '')}"


def _affected(vuln: dict) -> list[dict]:
    return [a for a in _as_list(vuln.get("affected")) if isinstance(a, dict)]


def _as_dict(value: object) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value: object) -> list:
    return value if isinstance(value, list) else []


def _as_str(value: object) -> str:
    return value if isinstance(value, str) else ""
