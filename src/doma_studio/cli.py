"""CLI interface for doma-studio."""

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config.logging import get_logger, setup_logging
from .config.settings import get_settings
from .exceptions import ConfigurationError, StorageError
from .templates import Quality, SearchParams, TemplateDraft, TemplateStore, validate_template

app = typer.Typer(
    name="doma-studio",
    help="Manage a local library of reusable image-prompt templates.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

console = Console()
logger = get_logger(__name__)

QUALITY_STYLE = {Quality.GREEN: "green", Quality.AMBER: "yellow", Quality.RED: "red"}


def _open_store() -> TemplateStore:
    """Build the file-backed store from settings."""
    try:
        settings = get_settings()
    except ValidationError as e:
        raise ConfigurationError("Invalid doma-studio settings", str(e)) from e
    return TemplateStore.from_settings(settings)


def _store_or_exit() -> TemplateStore:
    try:
        return _open_store()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _quality_label(q: Quality | None) -> str:
    if q is None:
        return "-"
    return f"[{QUALITY_STYLE[q]}]{q.value}[/{QUALITY_STYLE[q]}]"


@app.command("list")
def list_templates(
    pinned: bool = typer.Option(False, "--pinned", "-p", help="Only pinned templates"),
) -> None:
    """List stored templates."""
    store = _store_or_exit()
    templates = store.get_pinned() if pinned else store.get_all()
    if not templates:
        console.print("[dim]No templates stored.[/dim]")
        return
    table = Table(title="Templates", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Category")
    table.add_column("Quality")
    table.add_column("Uses", justify="right")
    table.add_column("Id", style="dim")
    for t in templates:
        name = f"{escape(t.name)} [yellow]*[/yellow]" if t.pinned else escape(t.name)
        table.add_row(name, escape(t.category), _quality_label(t.quality), str(t.usage_count), t.id)
    console.print(table)


@app.command()
def search(
    query: str = typer.Argument("", help="Free-text query (all terms must match)"),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Required tag (repeatable)"),
    category: str = typer.Option(None, "--category", "-c", help="Category filter"),
    min_quality: Quality = typer.Option(None, "--min-quality", "-q", help="Quality floor"),
    limit: int = typer.Option(None, "--limit", "-n", min=1, help="Maximum results"),
) -> None:
    """Search templates by text, tags, category and quality."""
    store = _store_or_exit()
    params = SearchParams(
        q=query, tags=tag, category=category, min_quality=min_quality, limit=limit
    )
    results = store.search(params)
    if not results:
        console.print("[dim]No matching templates.[/dim]")
        return
    title = f"Results for '{escape(query)}'" if query else "Results"
    table = Table(title=title, header_style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Quality")
    table.add_column("Tags", style="dim")
    for r in results:
        table.add_row(
            f"{r.score:.2f}", escape(r.name), _quality_label(r.quality), escape(", ".join(r.tags))
        )
    console.print(table)


@app.command("best-of")
def best_of(
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Maximum results"),
    min_uses: int = typer.Option(1, "--min-uses", min=0, help="Minimum usage count"),
) -> None:
    """Show the best performing templates."""
    store = _store_or_exit()
    ranked = store.get_best_of(limit=limit, min_uses=min_uses)
    if not ranked:
        console.print("[dim]No templates have been used yet.[/dim]")
        return
    table = Table(title="Best templates", header_style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Successes", justify="right")
    table.add_column("Uses", justify="right")
    table.add_column("Quality")
    for r in ranked:
        t = r.template
        table.add_row(
            f"{r.score:.2f}",
            escape(t.name),
            str(t.render_success_count),
            str(t.usage_count),
            _quality_label(t.quality),
        )
    console.print(table)


@app.command()
def validate(
    name: str = typer.Option("", "--name", help="Template name"),
    subject: str = typer.Option("", "--subject", help="Main subject"),
    action: str = typer.Option("", "--action", help="What the subject is doing"),
    environment: str = typer.Option("", "--environment", help="Setting"),
    style: str = typer.Option("", "--style", help="Visual style"),
    lighting: str = typer.Option("", "--lighting", help="Lighting description"),
    camera: str = typer.Option("", "--camera", help="Camera and framing"),
) -> None:
    """Lint a template draft and print its quality grade.

    Exits with status 1 when the draft is graded Red.
    """
    draft = TemplateDraft(
        name=name,
        subject=subject,
        action=action,
        environment=environment,
        style=style,
        lighting=lighting,
        camera=camera,
    )
    result = validate_template(draft)
    console.print(f"Quality: {_quality_label(result.quality)}")
    for issue in result.issues:
        console.print(f"  - {issue}", markup=False)
    if result.quality == Quality.RED:
        raise typer.Exit(1)


@app.command()
def export(
    output: Path = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
    ids: list[str] = typer.Option([], "--id", help="Export only these ids (repeatable)"),
) -> None:
    """Export templates as JSON."""
    store = _store_or_exit()
    payload = store.export_all(ids or None)
    if output is None:
        typer.echo(payload)
        return
    try:
        output.write_text(payload, encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Failed to write {output}:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    console.print(f"[green]Exported templates to {output}[/green]")


@app.command("import")
def import_templates(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file to import"),
) -> None:
    """Import templates from a JSON export, skipping duplicates."""
    store = _store_or_exit()
    result = store.import_all(path.read_text(encoding="utf-8"))
    if not result.success:
        console.print(f"[red]{escape(result.message)}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{result.message}[/green]")
    if store.last_persist_error:
        console.print(
            "[yellow]Warning:[/yellow] changes may not be saved: "
            + escape(store.last_persist_error)
        )


@app.command()
def delete(
    ids: list[str] = typer.Argument(..., help="Template ids to delete"),
) -> None:
    """Delete templates by id."""
    store = _store_or_exit()
    removed = store.delete_many(ids)
    if removed == 0:
        console.print("[red]No matching templates found.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Deleted {removed} template(s).[/green]")


def main() -> None:
    """Entry point for the CLI."""
    try:
        log_level = get_settings().doma_log_level
    except ValidationError:
        # Fall back to the default level; commands report the bad settings
        log_level = "INFO"
    setup_logging(level=log_level)
    try:
        app()
    except StorageError as e:
        logger.error("Storage failure: %s", e)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
