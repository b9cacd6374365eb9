"""CLI entry point for depaudit."""

import asyncio
import json
import logging
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from depaudit.analyzers.pipeline import AnalysisPipeline
from depaudit.config import Settings
from depaudit.models.schemas import BUILTIN_UNSAFE_PACKAGES, AnalysisResult, PackageIdentity, ScanStrategy
from depaudit.monitoring import MetricsCollector

app = typer.Typer(help="Dependency security analysis for npm packages.")

console = Console()


def setup_logging(verbose: bool) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def load_settings(strategy: ScanStrategy | None = None) -> Settings:
    """Load settings, exiting with a readable message if they are invalid."""
    try:
        return Settings.from_env(scan_strategy=strategy)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1)


def _verdict(result: AnalysisResult) -> str:
    if result.error:
        return "[yellow]unknown[/yellow]"
    if result.is_insecure:
        return "[bold red]insecure[/bold red]"
    return "[green]ok[/green]"


@app.command()
def analyze(
    package: str = typer.Argument(..., help="Package name to analyze"),
    version: str = typer.Argument("latest", help="Version or dist-tag"),
    strategy: ScanStrategy | None = typer.Option(None, "--strategy", "-s", help="Scan strategy"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Analyze a package and its dependencies for insecure packages."""
    setup_logging(verbose)
    settings = load_settings(strategy)
    try:
        identity = PackageIdentity(name=package, version=version)
    except ValueError as e:
        console.print(f"[red]Invalid package {package!r}@{version!r}: {e}[/red]")
        raise typer.Exit(1)
    asyncio.run(_analyze_package(identity, settings, output))


async def _analyze_package(identity: PackageIdentity, settings: Settings, output: Path | None) -> None:
    """Async implementation of analyze."""
    async with AnalysisPipeline.from_settings(settings) as pipeline:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Analyzing {identity} ({settings.scan_strategy.value})...", total=None)
            result = await pipeline.analyze(identity)

    console.print()
    console.print(f"[bold cyan]{identity.name}[/bold cyan] {identity.version}  {_verdict(result)}")

    info_table = Table(show_header=False, box=None)
    info_table.add_column("Key", style="bold")
    info_table.add_column("Value")
    info_table.add_row("Strategy", result.strategy.value if result.strategy else "-")
    info_table.add_row("Analyzed At", result.analyzed_at.isoformat())
    info_table.add_row("Insecure Packages", ", ".join(result.insecure_packages) or "-")
    if result.error:
        info_table.add_row("Error", f"[yellow]{result.error}[/yellow]")
    console.print(info_table)

    if output:
        record = result.to_record().model_dump(by_alias=True)
        output.write_text(json.dumps({identity.key: record}, indent=2))
        console.print(f"\n[green]Saved to {output}[/green]")

    if result.is_insecure:
        raise typer.Exit(2)


@app.command()
def analyze_batch(
    input_file: Path = typer.Argument(..., help="File with one name@version per line"),
    strategy: ScanStrategy | None = typer.Option(None, "--strategy", "-s", help="Scan strategy"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", help="Concurrent scans"),
    metrics_file: Path | None = typer.Option(None, "--metrics-file", help="Write scan metrics here"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Analyze many packages read from a file."""
    setup_logging(verbose)
    settings = load_settings(strategy)
    if concurrency is not None:
        settings = settings.model_copy(update={"max_concurrent_scans": max(concurrency, 1)})

    try:
        identities = read_identities(input_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not read {input_file}: {e}[/red]")
        raise typer.Exit(1)

    asyncio.run(_analyze_batch(identities, settings, output, metrics_file))


def read_identities(path: Path) -> list[PackageIdentity]:
    """Read ``name@version`` lines, skipping blanks and ``#`` comments."""
    identities = []
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        identities.append(PackageIdentity.parse(line))
    return identities


async def _analyze_batch(
    identities: list[PackageIdentity],
    settings: Settings,
    output: Path | None,
    metrics_file: Path | None,
) -> None:
    """Async implementation of analyze_batch."""
    metrics = MetricsCollector(metrics_file)

    console.print(f"[bold]Analyzing {len(identities)} packages ({settings.scan_strategy.value})...[/bold]")
    console.print()

    async with AnalysisPipeline.from_settings(settings, metrics=metrics) as pipeline:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Analyzing...", total=len(identities))
            pairs = await pipeline.analyze_many(
                identities,
                on_result=lambda identity, result: progress.advance(task),
            )

    metrics.save()
    insecure = [(i, r) for i, r in pairs if r.is_insecure]
    errored = [(i, r) for i, r in pairs if r.error]

    console.print()
    console.print(f"[bold green]Completed:[/bold green] {len(pairs)} packages analyzed")
    console.print(f"  [red]{len(insecure)}[/red] insecure, [yellow]{len(errored)}[/yellow] with errors")

    if insecure:
        table = Table(title="Insecure Packages")
        table.add_column("Package", style="cyan")
        table.add_column("Matched", style="red")
        for identity, result in insecure:
            table.add_row(identity.key, ", ".join(result.insecure_packages))
        console.print()
        console.print(table)

    if errored:
        console.print()
        console.print("[bold yellow]Errors:[/bold yellow]")
        for identity, result in errored[:10]:
            console.print(f"  [yellow]![/yellow] {identity.key}: {result.error}")
        if len(errored) > 10:
            console.print(f"  [dim]... and {len(errored) - 10} more[/dim]")

    snapshot = metrics.get_metrics()
    console.print()
    console.print(
        f"[dim]Cache hits: {snapshot.cache_hits}, scans: {snapshot.scans_completed}[/dim]"
    )

    if output:
        records = {i.key: r.to_record().model_dump(by_alias=True) for i, r in pairs}
        output.write_text(json.dumps(records, indent=2))
        console.print(f"[green]Saved to {output}[/green]")


@app.command()
def deny_list(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Show the deny-list currently in effect."""
    setup_logging(verbose)
    settings = load_settings()
    asyncio.run(_deny_list(settings))


async def _deny_list(settings: Settings) -> None:
    """Async implementation of deny_list."""
    async with AnalysisPipeline.from_settings(settings) as pipeline:
        snapshot = await pipeline.deny_list.load()

    if settings.deny_list_url is None:
        console.print("[yellow]No deny-list URL configured (INSECURE_PACKAGES_URL).[/yellow]")
    elif not snapshot.source_available:
        console.print(f"[yellow]Deny-list at {settings.deny_list_url} is unavailable.[/yellow]")

    table = Table(title=f"Deny-list ({len(snapshot)} packages)")
    table.add_column("Package", style="cyan")
    table.add_column("Source", style="dim")
    for name in sorted(BUILTIN_UNSAFE_PACKAGES):
        table.add_row(name, "built-in")
    for name in sorted(snapshot.external - BUILTIN_UNSAFE_PACKAGES):
        table.add_row(name, "external")
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from depaudit import __version__

    console.print(f"depaudit v{__version__}")


if __name__ == "__main__":
    app()
