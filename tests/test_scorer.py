"""Tests for the risk scorer."""

import pytest

from billofmaterial.analyzers.scorer import Scorer, highest_severity, risk_level_for, round_half_up
from billofmaterial.models.schemas import RiskLevel, Severity, VulnerabilityRecord


def _vuln(severity: Severity, vuln_id: str = "GHSA-x") -> VulnerabilityRecord:
    return VulnerabilityRecord(id=vuln_id, severity=severity)


class TestRounding:
    """Tests for half-up rounding and level thresholds."""

    def test_round_half_up(self):
        """Halves round up, unlike Python's banker's rounding."""
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    @pytest.mark.parametrize("score,level", [
        (100, RiskLevel.LOW),
        (71, RiskLevel.LOW),
        (70, RiskLevel.MEDIUM),
        (41, RiskLevel.MEDIUM),
        (40, RiskLevel.HIGH),
        (0, RiskLevel.HIGH),
    ])
    def test_risk_level_for(self, score, level):
        """Levels come from strict thresholds on the integer score."""
        assert risk_level_for(score) == level

    def test_highest_severity(self):
        """The worst severity wins regardless of order."""
        vulns = [_vuln(Severity.LOW), _vuln(Severity.CRITICAL), _vuln(Severity.HIGH)]
        assert highest_severity(vulns) == Severity.CRITICAL
        assert highest_severity([]) is None


class TestScorer:
    """Tests for Scorer."""

    def test_perfect_record(self, make_record):
        """A healthy record scores 100 with no factors."""
        risk = Scorer().score(make_record(security_score=100))
        assert risk.score == 100
        assert risk.risk_level == RiskLevel.LOW
        assert risk.factors == []

    def test_deprecated_halves_total(self, make_record):
        """Deprecation halves the weighted sum."""
        risk = Scorer().score(make_record(security_score=100, deprecated="Use something else"))
        assert risk.score == 50
        assert risk.risk_level == RiskLevel.MEDIUM
        assert risk.factors == ["Deprecated: Use something else"]

    def test_weighted_sum(self, make_record):
        """Components are weighted 35/25/15/10/15."""
        record = make_record(security_score=95, maintenance_score=100, popularity_score=100)
        # 33.25 + 25 + 15 + 10 + 15
        assert Scorer().score(record).score == 98

    def test_unavailable_security(self, make_record):
        """A missing security score contributes nothing and is called out."""
        risk = Scorer().score(make_record(security_score=None))
        assert risk.score == 65
        assert risk.factors == ["Security score unavailable"]

    def test_low_security_factor(self, make_record):
        """Scores under the threshold add a factor."""
        risk = Scorer().score(make_record(security_score=50))
        assert "Low security score: 50/100" in risk.factors

    def test_custom_threshold(self, make_record):
        """The threshold is configurable."""
        record = make_record(security_score=60)
        assert Scorer(security_threshold=50).score(record).factors == []
        assert Scorer(security_threshold=70).score(record).factors == ["Low security score: 60/100"]

    def test_stale_factor_in_months(self, make_record):
        """Packages older than a year report their age in months."""
        risk = Scorer().score(make_record(days_since_update=800))
        assert "Not updated in 27 months" in risk.factors

    def test_low_popularity_factor(self, make_record):
        """Popularity under 30 adds a factor."""
        assert "Low popularity/downloads" in Scorer().score(make_record(popularity_score=10)).factors
        assert "Low popularity/downloads" not in Scorer().score(make_record(popularity_score=30)).factors

    def test_restrictive_license(self, make_record):
        """Restrictive licenses halve the license component."""
        risk = Scorer().score(make_record(security_score=100, license="GPL-3.0"))
        assert risk.score == 95
        assert risk.factors == ["Restrictive license: GPL-3.0"]

    def test_vulnerability_factor(self, make_record):
        """Vulnerabilities are counted with their worst severity."""
        record = make_record(
            security_score=100,
            vulnerabilities=[_vuln(Severity.HIGH, "A"), _vuln(Severity.CRITICAL, "B")],
        )
        risk = Scorer().score(record)
        assert risk.factors == ["2 known vulnerabilities (highest severity: CRITICAL)"]
        assert risk.score == 85

        single = Scorer().score(make_record(vulnerabilities=[_vuln(Severity.LOW)]))
        assert single.factors == ["1 known vulnerability (highest severity: LOW)"]

    @pytest.mark.parametrize("severity,component", [
        (Severity.CRITICAL, 0.0),
        (Severity.HIGH, 0.3),
        (Severity.MODERATE, 0.6),
        (Severity.LOW, 0.6),
        (Severity.UNKNOWN, 0.6),
    ])
    def test_vulnerability_component(self, severity, component):
        """Exposure drops with the worst severity present."""
        assert Scorer().vulnerability_component([_vuln(severity)]) == component

    def test_factor_order(self, make_record):
        """Factors always appear in a fixed order."""
        record = make_record(
            security_score=10,
            days_since_update=400,
            popularity_score=10,
            license="AGPL-3.0",
            vulnerabilities=[_vuln(Severity.MODERATE)],
            deprecated="gone",
        )
        factors = Scorer().score(record).factors
        assert [f.split(":")[0].split(" ")[0] for f in factors] == [
            "Low", "Not", "Low", "Restrictive", "1", "Deprecated",
        ]

    def test_score_record_is_pure(self, make_record):
        """Scoring returns a copy and is repeatable."""
        record = make_record(security_score=80)
        scored = Scorer().score_record(record)
        assert record.risk is None
        assert scored.risk == Scorer().score_record(scored).risk
