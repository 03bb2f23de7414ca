"""CLI entry point for pkgwatch."""

import asyncio
import json
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from pkgwatch import config
from pkgwatch.adapters.base import normalize_repository_url
from pkgwatch.analyzers.anomaly import AnomalyScorer
from pkgwatch.analyzers.baseline import build_contributor_profiles
from pkgwatch.analyzers.pipeline import WatchPipeline
from pkgwatch.analyzers.remote import RemoteChecker
from pkgwatch.log import configure_logging
from pkgwatch.models.schemas import (
    AnomalyResult,
    CommitDetails,
    ContributorProfile,
    ProcessedVulnerability,
    Severity,
)

app = typer.Typer(help="Supply-chain risk monitor for npm packages.")

console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


@app.callback()
def main(
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="Logging level (default: PKGWATCH_LOG_LEVEL or INFO)"
    ),
) -> None:
    """Supply-chain risk monitor for npm packages."""
    settings = config.Settings.from_env()
    configure_logging(log_level or settings.log_level)


def _spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


@app.command()
def head(
    url: str = typer.Argument(..., help="Repository URL (any npm repository format)"),
    last_sha: str | None = typer.Option(None, "--last-sha", help="Last known commit sha"),
) -> None:
    """Show the remote HEAD of a repository and whether it moved."""
    asyncio.run(_head(url, last_sha))


async def _head(url: str, last_sha: str | None) -> None:
    """Async implementation of head."""
    clone_url = normalize_repository_url(url)
    if clone_url is None:
        console.print(f"[red]Unsupported repository URL: {escape(url)}[/red]")
        raise typer.Exit(1)

    with _spinner() as progress:
        progress.add_task(f"Checking {clone_url}...", total=None)
        check = await RemoteChecker().has_new_commits(clone_url, last_sha)

    if check.error:
        console.print(f"[red]{escape(check.error)}[/red]")
        raise typer.Exit(1)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Repository", clone_url)
    table.add_row("HEAD", check.current_sha or "-")
    table.add_row("Branch", check.branch or "-")
    table.add_row("New commits", "[green]yes[/green]" if check.has_changes else "no")
    console.print(table)


@app.command()
def vulns(
    package: str = typer.Argument(..., help="npm package name"),
    last_version: str | None = typer.Option(
        None, "--last-version", help="Last known version, to detect a new release"
    ),
    known_id: list[str] = typer.Option(
        [], "--known-id", help="Advisory id already on record (repeatable)"
    ),
    npm_advisories: bool = typer.Option(
        False, "--npm-advisories", help="Also merge npm bulk advisories for the latest version"
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
) -> None:
    """Refresh vulnerabilities of an npm package."""
    asyncio.run(_vulns(package, last_version, set(known_id), npm_advisories, output))


async def _vulns(
    package: str,
    last_version: str | None,
    known_ids: set[str],
    npm_advisories: bool,
    output: Path | None,
) -> None:
    """Async implementation of vulns."""
    settings = config.Settings.from_env()
    settings.include_npm_advisories = npm_advisories or settings.include_npm_advisories

    with _spinner() as progress:
        progress.add_task(f"Checking vulnerabilities for {package}...", total=None)
        async with WatchPipeline(settings=settings) as pipeline:
            result = await pipeline.aggregator.refresh(package, last_version, known_ids)

    if result.error:
        console.print(f"[red]Vulnerability check failed: {escape(result.error)}[/red]")
        raise typer.Exit(1)

    console.print()
    latest = result.latest_version or "unknown"
    marker = " [green](new)[/green]" if result.is_new_version else ""
    console.print(f"[bold cyan]{package}[/bold cyan] latest stable: {latest}{marker}")

    new_ids = {v.osv_id for v in result.new_vulnerabilities}
    console.print(_vulnerability_table(result.all_vulnerabilities, new_ids))

    if output:
        output.write_text(result.model_dump_json(indent=2))
        console.print(f"\n[green]Saved to {output}[/green]")


@app.command()
def affects(
    package: str = typer.Argument(..., help="npm package name"),
    version: str = typer.Argument(..., help="Version to test"),
) -> None:
    """List vulnerabilities that affect a specific version."""
    asyncio.run(_affects(package, version))


async def _affects(package: str, version: str) -> None:
    """Async implementation of affects."""
    with _spinner() as progress:
        progress.add_task(f"Fetching vulnerabilities for {package}...", total=None)
        async with WatchPipeline() as pipeline:
            result = await pipeline.aggregator.refresh(package, None, set())
            affected = pipeline.aggregator.affected_for_version(
                result.all_vulnerabilities, version
            )

    if result.error:
        console.print(f"[red]Vulnerability check failed: {escape(result.error)}[/red]")
        raise typer.Exit(1)

    if not affected:
        console.print(f"[green]{package}@{version}: no known vulnerabilities[/green]")
        return

    console.print(
        f"[bold]{package}@{version}[/bold] is affected by {len(affected)} "
        f"of {len(result.all_vulnerabilities)} known vulnerabilities"
    )
    console.print(_vulnerability_table(affected, set()))


def _vulnerability_table(
    vulns: list[ProcessedVulnerability], new_ids: set[str]
) -> Table:
    table = Table(title=f"{len(vulns)} vulnerabilities")
    table.add_column("ID", style="cyan")
    table.add_column("Severity")
    table.add_column("Fixed in", style="green")
    table.add_column("Summary", max_width=60)

    for vuln in vulns:
        style = SEVERITY_STYLES[vuln.severity]
        vuln_id = f"{vuln.osv_id} [bold yellow]NEW[/bold yellow]" if vuln.osv_id in new_ids else vuln.osv_id
        table.add_row(
            vuln_id,
            f"[{style}]{vuln.severity.value}[/{style}]",
            ", ".join(vuln.fixed_versions) or "-",
            escape((vuln.summary or "")[:60]),
        )
    return table


@app.command()
def score(
    commits_file: Path = typer.Argument(..., help="JSON file with a list of commits"),
    profiles_file: Path | None = typer.Option(
        None, "--profiles", "-p", help="JSON file with contributor profiles"
    ),
    min_score: int = typer.Option(1, "--min-score", "-m", help="Only show commits at or above this score"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
) -> None:
    """Score commits against contributor baselines.

    Without --profiles, baselines are built from the commit file itself.
    """
    try:
        commits = [CommitDetails.model_validate(c) for c in _load_json(commits_file)]
        if profiles_file:
            profiles = _load_profiles(_load_json(profiles_file))
        else:
            profiles = build_contributor_profiles(commits)
    except (OSError, ValueError, ValidationError) as e:
        console.print(f"[red]Could not load input: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    results = AnomalyScorer().score_all(commits, profiles)
    results = [r for r in results if r.total_score >= min_score]
    results.sort(key=lambda r: r.total_score, reverse=True)

    if not results:
        console.print(f"[green]No commits scored {min_score} or more ({len(commits)} checked)[/green]")
    else:
        console.print(_anomaly_table(results))

    if output:
        data = [r.model_dump(mode="json") for r in results]
        output.write_text(json.dumps(data, indent=2))
        console.print(f"\n[green]Saved to {output}[/green]")


def _load_json(path: Path):
    return json.loads(path.read_text())


def _load_profiles(data) -> dict[str, ContributorProfile]:
    """Accept either a list of profiles or a mapping of email to profile."""
    if isinstance(data, dict):
        data = list(data.values())
    profiles = [ContributorProfile.model_validate(p) for p in data]
    return {p.author_email.lower(): p for p in profiles}


def _anomaly_table(results: list[AnomalyResult]) -> Table:
    table = Table(title=f"{len(results)} anomalous commits")
    table.add_column("Commit", style="cyan", width=10)
    table.add_column("Author")
    table.add_column("Score", justify="right")
    table.add_column("Factors", max_width=70)

    for result in results:
        color = "red" if result.total_score >= 30 else "yellow" if result.total_score >= 15 else "white"
        factors = "\n".join(f"+{b.points} {b.factor.value}" for b in result.breakdown)
        table.add_row(
            result.commit_sha[:8],
            result.contributor_email,
            f"[{color}]{result.total_score}[/{color}]",
            factors,
        )
    return table


@app.command()
def version() -> None:
    """Show version information."""
    from pkgwatch import __version__

    console.print(f"pkgwatch v{__version__}")


if __name__ == "__main__":
    app()
