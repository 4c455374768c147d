"""Tests for the command line interface."""

import json

import pytest
from typer.testing import CliRunner

from billofmaterial import __version__
from billofmaterial.cli import _print_metrics, app, collect_project_files
from billofmaterial.monitoring.metrics import FetchMetrics

runner = CliRunner()


class TestCollectProjectFiles:
    """Tests for collect_project_files."""

    def test_collects_members_and_descriptor(self, tmp_path):
        """Member manifests and the pnpm file are gathered; node_modules is skipped."""
        (tmp_path / "package.json").write_text(json.dumps({"name": "root"}))
        (tmp_path / "pnpm-workspace.yaml").write_text("packages:\n  - 'packages/*'\n")
        member = tmp_path / "packages" / "a"
        member.mkdir(parents=True)
        (member / "package.json").write_text(json.dumps({"name": "a"}))
        vendored = tmp_path / "node_modules" / "lodash"
        vendored.mkdir(parents=True)
        (vendored / "package.json").write_text("{}")

        files = collect_project_files(tmp_path)

        assert [f.path for f in files] == ["pnpm-workspace.yaml", "packages/a/package.json"]
        assert json.loads(files[1].content)["name"] == "a"


class TestCommands:
    """Tests for CLI commands."""

    def test_version(self):
        """The version command prints the package version."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_generate_without_manifest(self, tmp_path):
        """A directory with no package.json is an error."""
        result = runner.invoke(app, ["generate", str(tmp_path)])
        assert result.exit_code == 1
        assert "No package.json" in result.output

    def test_generate_rejects_bad_config(self, tmp_path):
        """Out-of-range options are reported before any work starts."""
        (tmp_path / "package.json").write_text("{}")
        result = runner.invoke(app, ["generate", str(tmp_path), "--max-concurrent", "0"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    @pytest.mark.parametrize(
        "env",
        [
            {"BOM_SECURITY_SCORE_THRESHOLD": "101"},
            {"BOM_CACHE_DURATION": "-1"},
            {"BOM_REQUEST_TIMEOUT": "0"},
        ],
    )
    def test_generate_reads_config_from_env(self, tmp_path, env):
        """Every tuning option can be supplied through the environment."""
        (tmp_path / "package.json").write_text("{}")
        result = runner.invoke(app, ["generate", str(tmp_path)], env=env)
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestRunMetrics:
    """Tests for the verbose run metrics table."""

    def test_prints_counters_and_errors(self, capsys):
        """Counters, per-provider failures and recent errors are shown."""
        metrics = FetchMetrics(retries=2, cache_hits=1, total_declarations=3, completed_declarations=3)
        metrics.acquire()
        metrics.release()
        metrics.record_failure("left-pad", "registry", "HTTP 500")

        _print_metrics(metrics)

        output = capsys.readouterr().out
        assert "Run metrics" in output
        assert "registry: 1" in output
        assert "3/3" in output
        assert "left-pad" in output
        assert "HTTP 500" in output
