"""Aster CLI - find and remove unused Android resources."""
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import click
import typer
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from aster.analyzer.cache import IndexStore, changed_files
from aster.analyzer.discovery import ProjectLayout, discover_inputs
from aster.analyzer.indexer import Indexer, ScanInput
from aster.analyzer.models import Index
from aster.analyzer.query import QueryEngine
from aster.config import STALE_POLICIES, Config, __version__, get_config
from aster.errors import IndexCorruptError, IndexVersionError, TrashError
from aster.reaper.resource_remover import ResourceRemover, restore
from aster.reaper.safe_delete import SafeDeleter
from aster.utils.safe_console import SafeConsole

app = typer.Typer(
    name="aster",
    help="Find, list and remove unused Android resources",
    add_completion=False,
)
console = SafeConsole()

# Cache management sub-command
cache_app = typer.Typer(name="cache", help="Manage the persisted resource index")

LANGUAGES = ('java', 'kotlin', 'all')


@dataclass
class Session:
    """Options shared by every command."""
    layout: ProjectLayout
    language: str
    config: Config
    cache_dir: Optional[str]
    stale_policy: str
    rebuild: bool

    @property
    def scan_root(self) -> Path:
        return self.layout.scan_root

    @property
    def store(self) -> IndexStore:
        return IndexStore(self.scan_root, self.cache_dir)

    @property
    def trash_dir(self) -> Path:
        return self.scan_root / self.config.trash_dir

    def discover(self) -> List[ScanInput]:
        excluded = {Path(self.config.trash_dir).name}
        if self.cache_dir:
            excluded.add(Path(self.cache_dir).name)
        return discover_inputs(self.layout, self.language, excluded)


def fail(message: str):
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


def build_index(session: Session, previous: Optional[Index] = None) -> Index:
    """Scan the project, persist the index and return it.

    Files unchanged since ``previous`` are not extracted again.
    """
    inputs = session.discover()
    indexer = Indexer(session.scan_root, session.language, session.config.workers)

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("[cyan]Indexing resources...", total=len(inputs))
        index = indexer.build(inputs, previous=previous,
                              progress=lambda _path: progress.advance(task))

    try:
        session.store.save(index)
    except OSError as e:
        fail(f"Cannot write index to {escape(str(session.store.index_file))}: {escape(str(e))}")
    return index


def load_index(session: Session, for_mutation: bool = False) -> Index:
    """Load the persisted index, rebuilding it when it is missing, broken or stale.

    Args:
        session: Shared options
        for_mutation: The index must match the files on disk (rm-unused)
    """
    store = session.store
    if not store.exists():
        if not session.rebuild:
            fail("No index found. Run [bold]aster index[/bold] first.")
        console.print("[dim]No index yet, building one...[/dim]")
        return build_index(session)

    try:
        index = store.load()
    except IndexVersionError as e:
        kind = "corrupt" if isinstance(e, IndexCorruptError) else "incompatible"
        if not session.rebuild:
            fail(f"Index is {kind}: {escape(str(e))}")
        console.print(f"[yellow]⚠ Index is {kind}, rebuilding...[/yellow]")
        return build_index(session)

    inputs = session.discover()
    reasons = []
    if Path(index.scan_root) != session.scan_root or index.language != session.language:
        reasons.append("it was built for other roots or another language")
    elif store.is_stale(index, [i.path for i in inputs]):
        changed = changed_files(index)
        reasons.append(f"{len(changed)} indexed file(s) changed" if changed else "the file set changed")
    if not reasons:
        return index

    message = f"Index is stale: {reasons[0]}."
    policy = 'rebuild' if for_mutation else session.stale_policy
    if policy == 'fail' or (policy == 'rebuild' and not session.rebuild):
        fail(f"{message} Run [bold]aster index[/bold].")
    if policy == 'warn':
        console.print(f"[yellow]⚠ {message} Results may be out of date.[/yellow]")
        return index

    console.print(f"[dim]{message} Rebuilding...[/dim]")
    return build_index(session, previous=index)


def _format_seconds(elapsed: float) -> str:
    return f"{elapsed:.2f}s"


def version_callback(value: bool):
    if value:
        console.print(f"aster {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    source_root: str = typer.Option(".", "--source-root", "-s", help="Root of the Java/Kotlin sources"),
    res_root: Optional[str] = typer.Option(None, "--res-root", "-r", help="Root of the resource directories (default: source root)"),
    manifest: Optional[str] = typer.Option(None, "--manifest", "-m", help="AndroidManifest.xml, or a directory to search for manifests"),
    language: str = typer.Option("all", "--language", "-l", click_type=click.Choice(LANGUAGES), help="Source language to scan"),
    cache_dir: Optional[str] = typer.Option(None, "--cache-dir", help="Directory for the index database (default: <root>/.aster_cache)"),
    stale: Optional[str] = typer.Option(None, "--stale", click_type=click.Choice(STALE_POLICIES), help="What to do when the index is stale (default: warn)"),
    no_rebuild: bool = typer.Option(False, "--no-rebuild", help="Fail instead of rebuilding a missing, broken or stale index"),
    version: bool = typer.Option(False, "--version", callback=version_callback, is_eager=True, help="Show version and exit"),
):
    """Aster - index Android resource definitions and usages, remove unused ones."""
    try:
        config = get_config()
    except ValueError as e:
        fail(escape(str(e)))

    layout = ProjectLayout.resolve(source_root, res_root, manifest)
    if not layout.source_root.is_dir():
        fail(f"Source root does not exist: {escape(str(layout.source_root))}")
    if not layout.res_root.is_dir():
        fail(f"Resource root does not exist: {escape(str(layout.res_root))}")
    if layout.manifest is not None and not layout.manifest.exists():
        fail(f"Manifest does not exist: {escape(str(layout.manifest))}")

    ctx.obj = Session(
        layout=layout,
        language=language,
        config=config,
        cache_dir=cache_dir or config.cache_dir,
        stale_policy=stale or config.stale_policy,
        rebuild=not no_rebuild,
    )


@app.command()
def index(ctx: typer.Context):
    """Build and persist the resource index."""
    session: Session = ctx.obj
    previous = None
    if session.store.exists():
        try:
            previous = session.store.load()
        except IndexVersionError:
            previous = None

    start_time = time.time()
    built = build_index(session, previous=previous)
    elapsed = time.time() - start_time

    console.print(
        f"[green]✓ Indexed {len(built.files)} files, {len(built.entries)} resources "
        f"in {_format_seconds(elapsed)}[/green]"
    )
    console.print(f"[dim]Saved to {escape(str(session.store.index_file))}[/dim]")
    console.print_diagnostics(built.diagnostics)


@app.command()
def counts(ctx: typer.Context):
    """Show how many resources are defined, used, unused and undeclared."""
    session: Session = ctx.obj
    loaded = load_index(session)
    result = QueryEngine(loaded, ignore=session.config.ignore_patterns).counts()

    table = Table(title="Resources", show_header=True, header_style="bold cyan")
    table.add_column("State", style="cyan")
    table.add_column("Count", justify="right", style="green")
    table.add_row("Defined", str(result.defined))
    table.add_row("Used", str(result.used))
    table.add_row("Unused", str(result.unused))
    table.add_row("Undeclared", str(result.undeclared))
    console.print(table)


@app.command("ls-unused")
def ls_unused(
    ctx: typer.Context,
    show_location: bool = typer.Option(False, "--show-location", "-s", help="Print where each resource is defined"),
    prefix: Optional[str] = typer.Option(None, "--prefix", "-p", help="Only names starting with this prefix"),
    resource_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only this resource type (string, color, ...)"),
):
    """List resources that are defined but never used, one per line."""
    session: Session = ctx.obj
    loaded = load_index(session)
    query = QueryEngine(loaded, ignore=session.config.ignore_patterns)

    for entry in query.list_unused_with_sites(prefix, resource_type):
        console.print(escape(str(entry.identifier)), highlight=False)
        if show_location:
            for definition in entry.definitions:
                console.print(f"  {escape(definition.location)}", highlight=False)


@app.command("ls-undeclared")
def ls_undeclared(
    ctx: typer.Context,
    prefix: Optional[str] = typer.Option(None, "--prefix", "-p", help="Only names starting with this prefix"),
    resource_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only this resource type"),
):
    """List resources that are used but not defined in the scanned files."""
    session: Session = ctx.obj
    loaded = load_index(session)
    entries = QueryEngine(loaded).list_undeclared(prefix, resource_type)

    if not entries:
        console.print("[bold green]No undeclared resources found![/bold green]")
        return

    table = Table(title="Undeclared Resources")
    table.add_column("Resource", style="cyan")
    table.add_column("Used at", style="magenta", no_wrap=False)
    for entry in entries:
        table.add_row(escape(str(entry.identifier)),
                      escape("\n".join(usage.location for usage in entry.usages)))
    console.print(table)


@app.command("rm-unused")
def rm_unused(
    ctx: typer.Context,
    prefix: Optional[str] = typer.Option(None, "--prefix", "-p", help="Only names starting with this prefix"),
    resource_type: Optional[str] = typer.Option(None, "--type", "-t", help="Only this resource type"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be removed without changing files"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
):
    """Remove unused resource definitions from the project files."""
    session: Session = ctx.obj
    loaded = load_index(session, for_mutation=True)

    try:
        deleter = None if dry_run else SafeDeleter(session.trash_dir)
    except (TrashError, OSError) as e:
        fail(f"Cannot use the trash: {escape(str(e))}")

    remover = ResourceRemover(
        loaded,
        store=session.store,
        safe_deleter=deleter,
        workers=session.config.workers,
        ignore=session.config.ignore_patterns,
    )
    targets, held = remover.hold_back(
        remover.select_unused(prefix, resource_type, session.config.protected_types)
    )
    if not targets:
        console.print("[bold green]No unused resources to remove![/bold green]")
        console.print_diagnostics(held)
        return

    plans = remover.plan(targets)
    table = Table(title="Resources to Remove")
    table.add_column("Resource", style="cyan")
    table.add_column("Defined at", style="magenta", no_wrap=False)
    for identifier in targets:
        entry = remover.query.resolve(identifier)
        table.add_row(escape(str(identifier)),
                      escape("\n".join(d.location for d in entry.definitions)))
    console.print(table)

    files_to_delete = sum(1 for plan in plans.values() if plan.removes_file)
    console.print(
        f"\n[bold yellow]{len(targets)} resource(s) in {len(plans)} file(s)"
        f" ({files_to_delete} to move to the trash)[/bold yellow]"
    )

    if dry_run:
        console.print("[dim]Dry run: no files were changed.[/dim]")
        console.print_diagnostics(held)
        return

    if not yes and not typer.confirm("Remove these resources?", default=False):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(0)

    try:
        report = remover.remove(targets)
    except OSError as e:
        fail(f"Cannot save the updated index: {escape(str(e))}. It was marked stale.")

    console.print(
        f"[green]✓ Removed {len(report.identifiers_removed)} resource(s): "
        f"{report.files_modified} file(s) edited, {report.files_deleted} moved to the trash[/green]"
    )
    if report.skipped_files:
        console.print(
            f"[yellow]⚠ Skipped {len(report.skipped_files)} file(s)"
            f" ({report.skipped_stale} changed since indexing)[/yellow]"
        )
    for backup_id in report.backup_ids:
        console.print(f"[dim]Undo with: aster restore {backup_id}[/dim]")
    console.print_diagnostics(held + list(report.diagnostics))


@app.command("restore")
def restore_command(
    ctx: typer.Context,
    backup_ids: List[str] = typer.Argument(..., help="Run ids printed by rm-unused"),
):
    """Put back the files changed or removed by rm-unused runs."""
    session: Session = ctx.obj
    try:
        deleter = SafeDeleter(session.trash_dir)
        restored = restore(backup_ids, deleter, session.store)
    except TrashError as e:
        fail(f"Cannot use the trash: {escape(str(e))}")
    except ValueError as e:
        fail(escape(str(e)))
    except IOError as e:
        fail(f"Restore incomplete: {escape(str(e))}")

    console.print(f"[green]✓ Restored {len(restored)} file(s)[/green]")
    for path in restored:
        console.print(f"  {escape(path)}", highlight=False)


# =========================================================================
# CACHE MANAGEMENT COMMANDS
# =========================================================================

@cache_app.command("clear")
def cache_clear(ctx: typer.Context):
    """Delete the persisted index; the next command rebuilds it."""
    session: Session = ctx.obj
    if session.store.clear():
        console.print(f"[green]✓ Index cleared for {escape(str(session.scan_root))}[/green]")
    else:
        console.print("[dim]No index to clear.[/dim]")


@cache_app.command("stats")
def cache_stats(ctx: typer.Context):
    """Show what the persisted index contains."""
    session: Session = ctx.obj
    try:
        stats = session.store.stats()
    except sqlite3.Error as e:
        fail(f"Cannot read index: {escape(str(e))}")

    table = Table(title=f"Index Statistics: {escape(str(session.scan_root))}",
                  show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right", style="green")
    table.add_row("Schema Version", str(stats['schema_version']))
    table.add_row("Files Indexed", str(stats['files']))
    table.add_row("Resources", str(stats['identifiers']))
    table.add_row("Definitions", str(stats['definitions']))
    table.add_row("Usages", str(stats['usages']))
    table.add_row("Problems", str(stats['diagnostics']))
    console.print(table)


# Register cache sub-command
app.add_typer(cache_app)


if __name__ == "__main__":
    app()
