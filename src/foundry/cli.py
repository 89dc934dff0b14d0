"""
Foundry CLI - command-line interface.

Scan and validate candidate sources, submit artifact definitions, inspect
the artifact store and work with the learning engine from the terminal.
"""

import asyncio
import json
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from foundry import __version__
from foundry.core.config import FoundryConfig, get_config
from foundry.core.exceptions import ConfigurationError, InvalidTransitionError, format_exception
from foundry.core.models import ArtifactKind, SubmissionOutcome, ValidationVerdict
from foundry.forge import CapabilityForge
from foundry.generator.models import ArtifactDefinition, HookSpec, ToolSpec
from foundry.generator.renderer import ENTRY_FILES
from foundry.learning.engine import LearningEngine
from foundry.learning.maintenance import LearningMaintenance
from foundry.learning.models import FailureEntry, PatternEntry
from foundry.security.scanner import SecurityScanner, get_scanner
from foundry.store.manifest import ArtifactStore
from foundry.validation.pipeline import ValidationPipeline

app = typer.Typer(
    name="foundry",
    help="Foundry - validated self-extension for autonomous agents",
    no_args_is_help=True,
)
learn_app = typer.Typer(help="Record and query learning entries", no_args_is_help=True)
app.add_typer(learn_app, name="learn")

console = Console()


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Foundry command group."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@contextmanager
def _config_errors() -> Iterator[None]:
    """Turn configuration and policy errors into a clean exit."""
    try:
        yield
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {escape(format_exception(e))}[/red]")
        raise typer.Exit(2)


def _config() -> FoundryConfig:
    with _config_errors():
        return get_config()


def _scanner() -> SecurityScanner:
    with _config_errors():
        return get_scanner()


def _pipeline(config: FoundryConfig) -> ValidationPipeline:
    with _config_errors():
        return ValidationPipeline.from_config(config)


def _forge(config: FoundryConfig) -> CapabilityForge:
    with _config_errors():
        return CapabilityForge.from_config(config)


def _read_text(path: Path) -> str:
    if not path.is_file():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _load_document(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON mapping from a file."""
    text = _read_text(path)
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot parse {path}: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(data, dict):
        console.print(f"[red]{path} must contain a mapping[/red]")
        raise typer.Exit(1)
    return data


def _print_verdict(verdict: ValidationVerdict) -> None:
    for error in verdict.errors:
        console.print(f"  [red]✗ {error}[/red]")
    for warning in verdict.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    for flag in verdict.security_flags:
        console.print(f"  [magenta]⚑ {flag}[/magenta]")


def _print_outcome(outcome: SubmissionOutcome) -> None:
    color = "green" if outcome.accepted else "red"
    path = " → ".join(state.value for state in outcome.transitions)
    lines = [
        f"[bold]{outcome.artifact_id or 'candidate'}[/bold]",
        f"State: [{color}]{outcome.state.value}[/{color}]",
        f"Path: {path}",
    ]
    if outcome.location:
        lines.append(f"Location: {outcome.location}")
    if outcome.sandbox is not None:
        lines.append(f"Sandbox: {outcome.sandbox.duration_ms}ms")
    console.print(Panel.fit("\n".join(lines)))
    _print_verdict(outcome.verdict)


def _finish(outcome: SubmissionOutcome) -> None:
    _print_outcome(outcome)
    if not outcome.accepted:
        raise typer.Exit(1)


@app.command()
def scan(
    path: Path = typer.Argument(..., help="Source file to scan"),
):
    """Run the security policy scan on a source file."""
    report = _scanner().scan(_read_text(path))

    table = Table(title=f"Security Scan: {path.name}")
    table.add_column("Action", style="cyan")
    table.add_column("Reason")
    for reason in report.blocked:
        table.add_row("[red]block[/red]", reason)
    for reason in report.flagged:
        table.add_row("[yellow]flag[/yellow]", reason)
    console.print(table)

    if report.is_blocked:
        raise typer.Exit(1)
    if report.is_clean:
        console.print("[green]No findings[/green]")


@app.command()
def validate(
    path: Path = typer.Argument(..., help="Candidate source file"),
    kind: ArtifactKind = typer.Option(ArtifactKind.EXTENSION, "--kind", "-k", help="Artifact kind"),
    sandbox: bool = typer.Option(False, "--sandbox", "-s", help="Also execute in the sandbox"),
):
    """Validate a candidate source file without storing it."""
    config = _config()
    source = _read_text(path)
    pipeline = _pipeline(config)

    if not sandbox:
        verdict = pipeline.validate(source, kind)
        status = "[green]valid[/green]" if verdict.valid else "[red]invalid[/red]"
        console.print(f"{path.name}: {status}")
        _print_verdict(verdict)
        if not verdict.valid:
            raise typer.Exit(1)
        return

    outcome = asyncio.run(pipeline.evaluate(source, kind, config.sandbox_dir, artifact_id=path.stem))
    _print_outcome(outcome)
    if outcome.verdict.errors:
        raise typer.Exit(1)


@app.command()
def write(
    path: Path = typer.Argument(..., help="YAML or JSON artifact definition"),
):
    """Render, validate and store an artifact definition."""
    data = _load_document(path)
    try:
        definition = ArtifactDefinition(**data)
    except ValidationError as e:
        console.print(f"[red]Invalid definition: {e}[/red]")
        raise typer.Exit(1)

    forge = _forge(_config())
    _finish(asyncio.run(forge.write(definition)))


@app.command("add-tool")
def add_tool(
    extension_id: str = typer.Argument(..., help="Extension to extend"),
    path: Path = typer.Argument(..., help="YAML or JSON tool spec"),
):
    """Add a tool to an extension (revalidates the whole extension)."""
    try:
        tool = ToolSpec(**_load_document(path))
    except ValidationError as e:
        console.print(f"[red]Invalid tool spec: {e}[/red]")
        raise typer.Exit(1)

    forge = _forge(_config())
    _finish(asyncio.run(forge.add_tool(extension_id, tool)))


@app.command("add-hook")
def add_hook(
    extension_id: str = typer.Argument(..., help="Extension to extend"),
    path: Path = typer.Argument(..., help="YAML or JSON hook spec"),
):
    """Add a hook to an extension (revalidates the whole extension)."""
    try:
        hook = HookSpec(**_load_document(path))
    except ValidationError as e:
        console.print(f"[red]Invalid hook spec: {e}[/red]")
        raise typer.Exit(1)

    forge = _forge(_config())
    _finish(asyncio.run(forge.add_hook(extension_id, hook)))


@app.command("list")
def list_artifacts(
    kind: Optional[ArtifactKind] = typer.Option(None, "--kind", "-k", help="Filter by kind"),
):
    """List stored artifacts."""
    store = ArtifactStore.from_config(_config())
    artifacts = store.list(kind)

    table = Table(title=f"Artifacts ({len(artifacts)})")
    table.add_column("ID", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Name")
    table.add_column("Capabilities", style="green")
    table.add_column("Updated")

    for artifact in artifacts:
        capabilities = [*artifact.tool_names(), *(f"on:{e}" for e in artifact.hook_events())]
        if artifact.kind == ArtifactKind.SKILL:
            capabilities = [f"{e.method} {e.path}" for e in artifact.endpoints]
        table.add_row(
            artifact.id,
            artifact.kind.value,
            artifact.name,
            "\n".join(capabilities) or "-",
            artifact.updated_at[:19],
        )

    console.print(table)


@app.command()
def show(
    artifact_id: str = typer.Argument(..., help="Artifact ID"),
    source: bool = typer.Option(False, "--source", help="Print the entry point source"),
):
    """Show a stored artifact."""
    store = ArtifactStore.from_config(_config())
    artifact = store.get(artifact_id)
    if artifact is None:
        console.print(f"[red]Artifact not found: {artifact_id}[/red]")
        raise typer.Exit(1)

    console.print_json(artifact.model_dump_json())
    console.print(f"Files: {', '.join(store.files(artifact_id)) or '-'}")
    if source:
        text = store.load_source(artifact_id, ENTRY_FILES[artifact.kind])
        console.print(text or "[yellow]entry point missing[/yellow]", markup=False, highlight=False)


@app.command()
def remove(
    artifact_id: str = typer.Argument(..., help="Artifact ID"),
):
    """Remove an artifact from the store."""
    store = ArtifactStore.from_config(_config())
    if not store.delete(artifact_id):
        console.print(f"[red]Artifact not found: {artifact_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Removed {artifact_id}[/green]")


@app.command()
def learnings(
    entry_type: Optional[str] = typer.Option(
        None, "--type", "-t", help="failure, pattern, success or insight"
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Most recent entries to show"),
):
    """Show learning entries and a summary."""
    engine = LearningEngine.from_config(_config())
    entries = engine.entries()
    if entry_type:
        entries = [e for e in entries if e.type == entry_type]
    shown = list(reversed(entries))[:limit]

    table = Table(title=f"Learnings ({len(shown)} of {len(entries)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Subject")
    table.add_column("Detail")
    table.add_column("Uses", justify="right")

    for entry in shown:
        subject = getattr(entry, "subject", None) or "-"
        if isinstance(entry, PatternEntry):
            detail = f"{entry.error[:60]}\n→ {entry.resolution[:60]}"
            if entry.crystallized:
                detail += f"\n[green]crystallized: {entry.crystallized_artifact_id}[/green]"
        elif isinstance(entry, FailureEntry):
            detail = entry.error[:80]
        else:
            detail = (entry.context or "")[:80]
        table.add_row(entry.id, entry.type, subject, detail, str(entry.use_count))

    console.print(table)
    console.print(f"Summary: {engine.summary()}")


@learn_app.command("failure")
def learn_failure(
    subject: str = typer.Argument(..., help="Tool or artifact that failed"),
    error: str = typer.Argument(..., help="Error message"),
    context: Optional[str] = typer.Option(None, "--context", "-c"),
):
    """Record a failure."""
    engine = LearningEngine.from_config(_config())
    console.print(engine.record_failure(subject, error, context))


@learn_app.command("resolve")
def learn_resolve(
    entry_id: str = typer.Argument(..., help="Failure or pattern ID"),
    resolution: str = typer.Argument(..., help="How it was fixed"),
):
    """Attach a resolution to a failure or pattern."""
    engine = LearningEngine.from_config(_config())
    try:
        pattern = engine.record_resolution(entry_id, resolution)
    except InvalidTransitionError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    if pattern is None:
        console.print(f"[red]Entry not found: {entry_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{pattern.id} is now a pattern[/green]")


@learn_app.command("success")
def learn_success(
    subject: str = typer.Argument(..., help="Tool or artifact that succeeded"),
    context: Optional[str] = typer.Option(None, "--context", "-c"),
):
    """Record a success."""
    engine = LearningEngine.from_config(_config())
    console.print(engine.record_success(subject, context))


@learn_app.command("insight")
def learn_insight(
    text: str = typer.Argument(..., help="Insight text"),
    context: Optional[str] = typer.Option(None, "--context", "-c"),
):
    """Record an insight."""
    engine = LearningEngine.from_config(_config())
    console.print(engine.record_insight(text, context))


@learn_app.command("relevant")
def learn_relevant(
    subject: Optional[str] = typer.Option(None, "--subject", "-s"),
    error: Optional[str] = typer.Option(None, "--error", "-e", help="Error substring"),
):
    """Find patterns and insights relevant to a subject or error."""
    engine = LearningEngine.from_config(_config())
    matches = engine.find_relevant(subject, error)
    if not matches:
        console.print("[yellow]No relevant learnings[/yellow]")
        return
    for entry in matches:
        if isinstance(entry, PatternEntry):
            console.print(f"[cyan]{entry.id}[/cyan] {entry.subject}: {entry.error} → {entry.resolution}")
        else:
            console.print(f"[cyan]{entry.id}[/cyan] {entry.context}")


@app.command()
def maintain(
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep running on the configured interval"),
):
    """Run learning maintenance (auto-link, crystallize, prune)."""
    config = _config()
    engine = LearningEngine.from_config(config)
    maintenance = LearningMaintenance(
        engine,
        promoter=_forge(config),
        interval_seconds=config.maintenance_interval_seconds,
    )

    if watch:
        maintenance.start()
        console.print(f"[blue]Maintenance running every {config.maintenance_interval_seconds:g}s (Ctrl+C to stop)[/blue]")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            maintenance.stop()
        return

    report = asyncio.run(maintenance.run_cycle())
    table = Table(title="Maintenance Cycle")
    table.add_column("Step", style="cyan")
    table.add_column("Result")
    table.add_row("Auto-linked", str(len(report.linked)))
    table.add_row(
        "Crystallized",
        "\n".join(f"{p} → {a}" for p, a in report.crystallized.items()) or "0",
    )
    table.add_row(
        "Crystallization failures",
        "\n".join(f"{p}: {err[:60]}" for p, err in report.crystallization_failures.items()) or "0",
    )
    table.add_row("Pruned", str(len(report.pruned)))
    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"foundry version {__version__}")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
