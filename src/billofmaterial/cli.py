"""CLI entry point for billofmaterial."""

import asyncio
import json
import logging
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from billofmaterial.analyzers.pipeline import FetchOrchestrator
from billofmaterial.exporters.serialization import dumps
from billofmaterial.exporters.tabular import to_csv, to_json
from billofmaterial.generator import generate_sbom_with_extras
from billofmaterial.manifest import ROOT_MANIFEST, WORKSPACE_DESCRIPTORS, ManifestError, SourceFile
from billofmaterial.models.schemas import ComplianceVerdict, SBOMAggregate, SBOMConfig
from billofmaterial.monitoring.metrics import FetchMetrics
from billofmaterial.monitoring.progress import ProgressChannel

app = typer.Typer(help="Software Bill of Materials generator for npm projects.")

console = Console()
err_console = Console(stderr=True)

VERDICT_COLORS = {
    ComplianceVerdict.COMPLIANT: "green",
    ComplianceVerdict.PARTIALLY_COMPLIANT: "yellow",
    ComplianceVerdict.NON_COMPLIANT: "red",
}


def _configure_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=debug)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def collect_project_files(project_dir: Path) -> list[SourceFile]:
    """Gather workspace descriptors and nested package.json files.

    ``node_modules`` directories are skipped.
    """
    files = []
    for name in WORKSPACE_DESCRIPTORS:
        descriptor = project_dir / name
        if descriptor.is_file():
            files.append(SourceFile(name, descriptor.read_text(encoding="utf-8")))

    for manifest in sorted(project_dir.rglob(ROOT_MANIFEST)):
        relative = manifest.relative_to(project_dir)
        if "node_modules" in relative.parts or relative == Path(ROOT_MANIFEST):
            continue
        try:
            files.append(SourceFile(relative.as_posix(), manifest.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as e:
            logging.getLogger(__name__).warning(f"Cannot read {relative}: {e}")
    return files


def _read_json(path: Path | None, label: str) -> dict | None:
    if path is None:
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot read {label} file {path}: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def generate(
    project_dir: Path = typer.Argument(Path("."), help="Directory containing package.json"),
    output_dir: Path | None = typer.Option(None, "--output", "-o", help="Output directory (defaults to the project directory)"),
    include_dev: bool = typer.Option(True, "--dev/--no-dev", envvar="BOM_INCLUDE_DEV_DEPS", help="Include devDependencies"),
    bundle_size: bool = typer.Option(True, "--bundle-size/--no-bundle-size", envvar="BOM_INCLUDE_BUNDLE_SIZE", help="Fetch bundle sizes"),
    vulnerabilities: bool = typer.Option(True, "--vulnerabilities/--no-vulnerabilities", envvar="BOM_INCLUDE_VULNERABILITIES", help="Query the vulnerability database"),
    transitive: bool = typer.Option(False, "--transitive/--no-transitive", envvar="BOM_INCLUDE_TRANSITIVE_DEPS", help="Record first-level transitive dependencies"),
    max_concurrent: int = typer.Option(5, "--max-concurrent", envvar="BOM_MAX_CONCURRENT_REQUESTS", help="Concurrent upstream requests"),
    retry_attempts: int = typer.Option(3, "--retries", envvar="BOM_RETRY_ATTEMPTS", help="Attempts per upstream call"),
    retry_delay: int = typer.Option(1000, "--retry-delay", envvar="BOM_RETRY_DELAY", help="Base retry backoff in milliseconds"),
    security_threshold: int = typer.Option(70, "--security-threshold", envvar="BOM_SECURITY_SCORE_THRESHOLD", help="Scores below this are flagged as low security and top risks"),
    cache: bool = typer.Option(False, "--cache/--no-cache", envvar="BOM_CACHE_ENABLED", help="Cache upstream responses for this run"),
    cache_duration: int = typer.Option(300_000, "--cache-duration", envvar="BOM_CACHE_DURATION", help="Cache entry lifetime in milliseconds"),
    request_timeout: float = typer.Option(30.0, "--request-timeout", envvar="BOM_REQUEST_TIMEOUT", help="Per-request timeout in seconds"),
    timeout: float | None = typer.Option(None, "--timeout", envvar="BOM_TIMEOUT", help="Wall-clock budget for fetching, in seconds"),
    audit: Path | None = typer.Option(None, "--audit", help="Output of `npm audit --json` to merge"),
    outdated: Path | None = typer.Option(None, "--outdated", help="Output of `npm outdated --json` to merge"),
    json_output: bool = typer.Option(False, "--json", help="Also write SBOM.json"),
    csv_output: bool = typer.Option(False, "--csv", help="Also write SBOM.csv"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress details"),
    debug: bool = typer.Option(False, "--debug", help="Log every upstream call"),
) -> None:
    """Generate SBOM.md, SPDX and CycloneDX documents for a project."""
    _configure_logging(verbose, debug)

    manifest_path = project_dir / ROOT_MANIFEST
    if not manifest_path.is_file():
        console.print(f"[red]No {ROOT_MANIFEST} found in {project_dir}[/red]")
        raise typer.Exit(1)

    try:
        config = SBOMConfig(
            include_dev_deps=include_dev,
            include_bundle_size=bundle_size,
            include_vulnerabilities=vulnerabilities,
            include_transitive_deps=transitive,
            max_concurrent_requests=max_concurrent,
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
            security_score_threshold=security_threshold,
            cache_enabled=cache,
            cache_duration=cache_duration,
            request_timeout=request_timeout,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{e}")
        raise typer.Exit(1)

    orchestrator = FetchOrchestrator(config)
    aggregate = asyncio.run(
        _generate(
            manifest_path.read_text(encoding="utf-8"),
            collect_project_files(project_dir),
            config,
            orchestrator,
            timeout,
            _read_json(audit, "audit"),
            _read_json(outdated, "outdated"),
        )
    )

    output_dir = output_dir or project_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    written = [
        _write(output_dir / "SBOM.md", aggregate.markdown),
        _write(output_dir / "SBOM-spdx.json", dumps(aggregate.spdx)),
        _write(output_dir / "SBOM-cyclonedx.json", dumps(aggregate.cyclonedx)),
    ]
    if json_output:
        written.append(_write(output_dir / "SBOM.json", to_json(aggregate)))
    if csv_output:
        written.append(_write(output_dir / "SBOM.csv", to_csv(aggregate)))

    _print_summary(aggregate)
    if verbose or debug:
        _print_metrics(orchestrator.metrics)
    console.print()
    for path in written:
        console.print(f"[green]Saved to {path}[/green]")


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


async def _generate(
    manifest: str,
    files: list[SourceFile],
    config: SBOMConfig,
    orchestrator: FetchOrchestrator,
    timeout: float | None,
    audit: dict | None,
    outdated: dict | None,
) -> SBOMAggregate:
    """Async implementation of generate."""
    channel = ProgressChannel()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=None)

        async def drain() -> None:
            async for event in channel:
                progress.update(task, description=event.message, completed=event.current, total=event.total)

        drainer = asyncio.create_task(drain())
        try:
            aggregate = await generate_sbom_with_extras(
                manifest,
                files,
                config,
                audit=audit,
                outdated=outdated,
                progress=channel,
                timeout=timeout,
                orchestrator=orchestrator,
            )
        except ManifestError as e:
            console.print(f"[red]Invalid {ROOT_MANIFEST}: {e}[/red]")
            raise typer.Exit(1)
        except ValueError as e:
            console.print(f"[red]Error generating SBOM: {e}[/red]")
            raise typer.Exit(1)
        finally:
            channel.close()
            await drainer

    return aggregate


def _print_summary(aggregate: SBOMAggregate) -> None:
    insights = aggregate.insights
    metrics = insights.metrics

    console.print()
    console.print(f"[bold cyan]{aggregate.project.name}[/bold cyan] v{aggregate.project.version}")
    kind = "Monorepo" if aggregate.is_monorepo else "Single package"
    console.print(f"[dim]{kind}, {aggregate.coverage.depth.value} coverage[/dim]")
    console.print()

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row(
        "Dependencies",
        f"{metrics.total_dependencies} ({metrics.production_dependencies} prod, {metrics.dev_dependencies} dev)",
    )
    table.add_row("Avg security score", f"{metrics.average_security_score}/100")
    summary = insights.vulnerability_summary
    table.add_row(
        "Vulnerabilities",
        f"{summary.total} ([red]{summary.critical} critical[/red], [yellow]{summary.high} high[/yellow])",
    )
    table.add_row("License issues", str(len(insights.license_issues)))
    if aggregate.known_unknowns:
        table.add_row("Not analysed", f"[yellow]{len(aggregate.known_unknowns)}[/yellow]")
    if aggregate.compliance is not None:
        verdict = aggregate.compliance.overall_status
        color = VERDICT_COLORS[verdict]
        table.add_row(aggregate.compliance.standard, f"[{color}]{verdict.value.replace('_', ' ').upper()}[/{color}]")
    table.add_row("Integrity", f"[dim]{aggregate.integrity_hash}[/dim]")
    console.print(table)

    if insights.top_risks:
        console.print()
        console.print("[bold]Top risks:[/bold]")
        for risk in insights.top_risks[:5]:
            factors = "; ".join(risk.factors) or "-"
            console.print(f"  {risk.score:3d}  {risk.name}  [dim]{factors}[/dim]")

    for unknown in aggregate.known_unknowns[:10]:
        console.print(f"  [yellow]?[/yellow] {unknown.name}: [dim]{unknown.reason}[/dim]")


def _print_metrics(metrics: FetchMetrics) -> None:
    stats = metrics.to_dict()
    console.print()
    table = Table(title="Run metrics", show_header=False, box=None, title_justify="left")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Requests", str(stats["requests"]))
    table.add_row("Retries", str(stats["retries"]))
    table.add_row("Cache hits", str(stats["cache_hits"]))
    table.add_row("Peak in flight", str(stats["peak_in_flight"]))
    table.add_row("Declarations", f"{stats['completed_declarations']}/{stats['total_declarations']}")
    failures = ", ".join(f"{k}: {v}" for k, v in sorted(stats["failures"].items())) or "none"
    table.add_row("Failures", failures)
    console.print(table)

    for error in stats["recent_errors"]:
        console.print(f"  [red]x[/red] {error['package']} ({error['provider']}): [dim]{error['message']}[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from billofmaterial import __version__

    console.print(f"billofmaterial v{__version__}")


if __name__ == "__main__":
    app()
