"""Risk scorer for normalized dependency records."""

import math

from billofmaterial.models.schemas import (
    PROBLEMATIC_LICENSES,
    DependencyRecord,
    RiskAssessment,
    RiskLevel,
    Severity,
    VulnerabilityRecord,
)

# Risk level thresholds on the integer score. Every consumer that derives a
# level or badge from a score must go through risk_level_for().
LOW_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40

SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MODERATE: 2,
    Severity.LOW: 3,
    Severity.UNKNOWN: 4,
    Severity.NONE: 5,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def risk_level_for(score: int) -> RiskLevel:
    """Map an integer risk score to its risk level."""
    if score > LOW_RISK_THRESHOLD:
        return RiskLevel.LOW
    elif score > MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def highest_severity(vulnerabilities: list[VulnerabilityRecord]) -> Severity | None:
    """Return the most severe level among vulnerabilities, if any."""
    if not vulnerabilities:
        return None
    return min((v.severity for v in vulnerabilities), key=lambda s: SEVERITY_ORDER[s])


class Scorer:
    """Calculates a 0-100 risk score from a normalized record.

    Higher is safer. Scoring weights (total 100%):
    - Security: 35%
    - Maintenance: 25%
    - Popularity: 15%
    - License: 10%
    - Vulnerability exposure: 15%

    A deprecated package has its weighted sum halved.
    """

    # Score weights
    WEIGHTS = {
        "security": 35,
        "maintenance": 25,
        "popularity": 15,
        "license": 10,
        "vulnerability": 15,
    }

    # Vulnerability exposure component by worst severity present
    VULNERABILITY_FACTORS = {
        Severity.CRITICAL: 0.0,
        Severity.HIGH: 0.3,
    }
    VULNERABILITY_FACTOR_OTHER = 0.6
    VULNERABILITY_FACTOR_NONE = 1.0

    RESTRICTED_LICENSE_FACTOR = 0.5
    POPULARITY_FLOOR = 30
    STALE_DAYS = 365

    def __init__(self, security_threshold: int = 70) -> None:
        """Initialize the scorer.

        Args:
            security_threshold: Security scores below this add a risk factor.
        """
        self.security_threshold = security_threshold

    def score(self, record: DependencyRecord) -> RiskAssessment:
        """Calculate the risk assessment for a record.

        Pure function of the record: re-scoring the same record always
        yields the same assessment.
        """
        factors: list[str] = []

        security = record.security_score
        if security is None:
            factors.append("Security score unavailable")
        elif security < self.security_threshold:
            factors.append(f"Low security score: {security}/100")

        days = record.days_since_update
        if days is not None and days > self.STALE_DAYS:
            factors.append(f"Not updated in {round_half_up(days / 30)} months")

        if record.popularity_score < self.POPULARITY_FLOOR:
            factors.append("Low popularity/downloads")

        license_restricted = record.license in PROBLEMATIC_LICENSES
        if license_restricted:
            factors.append(f"Restrictive license: {record.license}")

        if record.vulnerabilities:
            count = len(record.vulnerabilities)
            noun = "vulnerability" if count == 1 else "vulnerabilities"
            worst = highest_severity(record.vulnerabilities)
            factors.append(f"{count} known {noun} (highest severity: {worst.value})")

        if record.deprecated:
            factors.append(f"Deprecated: {record.deprecated}")

        components = {
            "security": (security or 0) / 100,
            "maintenance": record.maintenance_score / 100,
            "popularity": record.popularity_score / 100,
            "license": self.RESTRICTED_LICENSE_FACTOR if license_restricted else 1.0,
            "vulnerability": self.vulnerability_component(record.vulnerabilities),
        }
        total = sum(components[key] * weight for key, weight in self.WEIGHTS.items())

        if record.deprecated:
            total *= 0.5

        score = max(0, min(100, round_half_up(total)))
        return RiskAssessment(score=score, risk_level=risk_level_for(score), factors=factors)

    def score_record(self, record: DependencyRecord) -> DependencyRecord:
        """Return a copy of the record with its risk assessment attached."""
        return record.model_copy(update={"risk": self.score(record)})

    def vulnerability_component(self, vulnerabilities: list[VulnerabilityRecord]) -> float:
        """Vulnerability exposure in [0, 1]; 1.0 means no known vulnerabilities."""
        worst = highest_severity(vulnerabilities)
        if worst is None:
            return self.VULNERABILITY_FACTOR_NONE
        return self.VULNERABILITY_FACTORS.get(worst, self.VULNERABILITY_FACTOR_OTHER)
