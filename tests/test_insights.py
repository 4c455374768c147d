"""Tests for the insights aggregator."""

from billofmaterial.analyzers.insights import (
    abandoned_packages,
    generate_insights,
    heaviest_dependencies,
    quick_wins,
    top_risks,
    vulnerability_summary,
)
from billofmaterial.models.schemas import (
    AuditSummary,
    OutdatedPackage,
    PackageAnalysis,
    Severity,
    VulnerabilityRecord,
)


class TestTopRisks:
    """Tests for top risk selection."""

    def test_only_scores_below_seventy(self, make_record):
        """Records at 70 or above are not risks."""
        records = [make_record("a", score=70), make_record("b", score=69), make_record("c", score=90)]
        assert [r.name for r in top_risks(records)] == ["b"]

    def test_sorted_and_capped(self, make_record):
        """Riskiest first, ten at most, ties keep input order."""
        records = [make_record(f"pkg-{i}", score=50 - (i % 3)) for i in range(15)]
        risks = top_risks(records)

        assert len(risks) == 10
        scores = [r.score for r in risks]
        assert scores == sorted(scores)
        assert [r.name for r in risks[:5]] == ["pkg-2", "pkg-5", "pkg-8", "pkg-11", "pkg-14"]

    def test_threshold_is_configurable(self, make_record):
        """A lower threshold excludes records that the default would include."""
        records = [make_record("mid", score=55), make_record("low", score=30)]
        assert [r.name for r in top_risks(records)] == ["low", "mid"]
        assert [r.name for r in top_risks(records, threshold=50)] == ["low"]

        packages = [PackageAnalysis(dependencies=records)]
        assert [r.name for r in generate_insights(packages, threshold=50).top_risks] == ["low"]


class TestSizesAndAge:
    """Tests for heaviest and abandoned package lists."""

    def test_heaviest_skips_unsized(self, make_record):
        """Only sized records are listed, biggest first."""
        records = [
            make_record("small", minified_size=10, gzip_size=3),
            make_record("none"),
            make_record("big", minified_size=500, gzip_size=120),
        ]
        assert [(e.name, e.size, e.gzip_size) for e in heaviest_dependencies(records)] == [
            ("big", 500, 120),
            ("small", 10, 3),
        ]

    def test_abandoned_after_two_years(self, make_record):
        """Records untouched for more than 730 days are abandoned."""
        records = [
            make_record("old", days_since_update=731, last_publish_date="2022-05-31"),
            make_record("edge", days_since_update=730),
            make_record("unknown", days_since_update=None),
        ]
        abandoned = abandoned_packages(records)
        assert [(a.name, a.days_since, a.last_update) for a in abandoned] == [("old", 731, "2022-05-31")]


class TestQuickWins:
    """Tests for outdated upgrade suggestions."""

    def test_ordered_by_security_then_risk(self, make_record):
        """Lower security scores come first; unavailable counts as zero."""
        records = [
            make_record("a", score=80, security_score=60),
            make_record("b", score=90, security_score=None),
            make_record("c", score=50, security_score=60),
            make_record("fresh", score=95),
        ]
        outdated = {
            name: OutdatedPackage(current="1.0.0", wanted="1.0.0", latest="2.0.0")
            for name in ("a", "b", "c", "missing")
        }
        wins = quick_wins(records, outdated)

        assert [w.name for w in wins] == ["b", "c", "a"]
        assert wins[0].security_score is None
        assert wins[0].latest == "2.0.0"

    def test_no_outdated_map(self, make_record):
        """Without outdated data there are no quick wins."""
        assert quick_wins([make_record()], None) == []


class TestGenerateInsights:
    """Tests for the combined insights."""

    def test_metrics_across_packages(self, make_record):
        """Counts and averages cover every package and group."""
        packages = [
            PackageAnalysis(
                package_name="a",
                dependencies=[make_record("x", security_score=80)],
                dev_dependencies=[make_record("y", is_dev=True, security_score=None)],
            ),
            PackageAnalysis(package_name="b", dependencies=[make_record("z", security_score=95)]),
        ]
        insights = generate_insights(packages)

        assert insights.metrics.total_dependencies == 3
        assert insights.metrics.production_dependencies == 2
        assert insights.metrics.dev_dependencies == 1
        # (80 + 0 + 95) / 3 = 58.33
        assert insights.metrics.average_security_score == 58
        assert insights.metrics.vulnerabilities is None

    def test_empty_inventory(self):
        """No records gives zeroed metrics without dividing by zero."""
        insights = generate_insights([PackageAnalysis(package_name="root")])
        assert insights.metrics.total_dependencies == 0
        assert insights.metrics.average_security_score == 0
        assert insights.top_risks == []

    def test_license_and_deprecation(self, make_record):
        """Restrictive licenses and deprecations are listed."""
        packages = [
            PackageAnalysis(
                dependencies=[
                    make_record("gpl", license="GPL-3.0", license_problematic=True),
                    make_record("old", deprecated="use new"),
                ]
            )
        ]
        insights = generate_insights(packages)

        assert [(i.name, i.license) for i in insights.license_issues] == [("gpl", "GPL-3.0")]
        assert [(d.name, d.version, d.message) for d in insights.deprecated_packages] == [
            ("old", "1.0.0", "use new")
        ]

    def test_audit_summary_passed_through(self, make_record):
        """An audit summary is exposed in the metrics."""
        summary = AuditSummary(high=2, total=2)
        insights = generate_insights([PackageAnalysis(dependencies=[make_record()])], audit_summary=summary)
        assert insights.metrics.vulnerabilities.high == 2

    def test_total_bundle_size(self, make_record):
        """Bundle sizes add up."""
        packages = [PackageAnalysis(dependencies=[make_record("a", minified_size=10), make_record("b", minified_size=5)])]
        assert generate_insights(packages).total_bundle_size == 15

    def test_idempotent(self, make_record):
        """Recomputing gives equal insights."""
        packages = [PackageAnalysis(dependencies=[make_record("a", score=30), make_record("b", score=90)])]
        assert generate_insights(packages) == generate_insights(packages)


class TestVulnerabilitySummary:
    """Tests for severity counting."""

    def test_counts_by_severity(self, make_record):
        """Each vulnerability is counted once under its severity."""
        records = [
            make_record("a", vulnerabilities=[
                VulnerabilityRecord(id="1", severity=Severity.CRITICAL),
                VulnerabilityRecord(id="2", severity=Severity.MODERATE),
            ]),
            make_record("b", vulnerabilities=[VulnerabilityRecord(id="3", severity=Severity.UNKNOWN)]),
            make_record("c"),
        ]
        summary = vulnerability_summary(records)

        assert (summary.critical, summary.moderate, summary.unknown) == (1, 1, 1)
        assert summary.total == 3
        assert summary.packages_affected == 2
