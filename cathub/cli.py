"""cathub CLI: serve the catalog API and inspect configured registries."""

import logging
from contextlib import contextmanager

import click
from rich.console import Console
from rich.table import Table

from cathub import __version__
from cathub.config import load_config
from cathub.errors import CatalogError
from cathub.registry.models import SyncPhase, format_time
from cathub.registry.options import (
    with_cursor,
    with_limit,
    with_name,
    with_namespace,
    with_registry_name,
    with_search,
    with_status,
    with_version,
)
from cathub.storage.factory import new_storage_factory

console = Console()

_PHASE_STYLE = {
    SyncPhase.COMPLETE: "green",
    SyncPhase.SYNCING: "yellow",
    SyncPhase.FAILED: "red",
}


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path",
    default="config.yaml", envvar="CATHUB_CONFIG", show_default=True,
    help="Path to the YAML configuration file",
)
@click.option(
    "--log-level", default="WARNING", show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.pass_context
def main(ctx: click.Context, config_path: str, log_level: str):
    """cathub: one paginated catalog over many server and skill registries."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config_path": config_path}


@contextmanager
def _components(ctx: click.Context):
    """Load config, build the storage components, and release them on exit."""
    try:
        cfg = load_config(ctx.obj["config_path"])
        factory = new_storage_factory(cfg)
    except CatalogError as exc:
        raise click.ClickException(str(exc)) from exc

    with factory:
        try:
            yield factory.build()
        except CatalogError as exc:
            raise click.ClickException(str(exc)) from exc


def _scope_options(registry, search, status, limit, cursor) -> list:
    options = []
    if registry:
        options.append(with_registry_name(registry))
    if search:
        options.append(with_search(search))
    if status:
        options.append(with_status(status))
    if limit is not None:
        options.append(with_limit(limit))
    if cursor:
        options.append(with_cursor(cursor))
    return options


def _print_next(next_cursor: str) -> None:
    if next_cursor:
        console.print(f"\n  Next page: [dim]--cursor {next_cursor}[/]")


# ── Serve ────────────────────────────────────────────────────────────


@main.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
@click.pass_context
def serve(ctx: click.Context, host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    from web.backend.app.main import create_app

    try:
        cfg = load_config(ctx.obj["config_path"])
    except CatalogError as exc:
        raise click.ClickException(str(exc)) from exc

    console.print(f"\n[bold blue]cathub[/] serving {len(cfg.registries)} registries on {host}:{port}\n")
    uvicorn.run(create_app(config=cfg), host=host, port=port)


# ── Servers ──────────────────────────────────────────────────────────


@main.command()
@click.option("--registry", "-r", default=None, help="Only this registry (unprefixed names)")
@click.option("--search", "-s", default=None, help="Substring of name, title or description")
@click.option("--version", "version", default=None, help="A version, or 'latest'")
@click.option("--status", default=None, help="Comma-separated statuses")
@click.option("--limit", "-n", default=None, type=int)
@click.option("--cursor", default=None)
@click.pass_context
def servers(ctx, registry, search, version, status, limit, cursor):
    """List servers across registries."""
    with _components(ctx) as components:
        try:
            options = _scope_options(registry, search, status, limit, cursor)
            if version:
                options.append(with_version(version))
            result = components.registry_service.list_servers(*options)
        except CatalogError as exc:
            raise click.ClickException(str(exc)) from exc

    if not result.entries:
        console.print("[yellow]No servers found.[/]")
        return

    table = Table(title=f"Servers ({result.count} shown)")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Latest", justify="center")
    table.add_column("Status")
    table.add_column("Description")
    for server in result.entries:
        latest = "[green]Y[/]" if server.is_latest else ""
        table.add_row(server.name, server.version, latest, server.status, server.description[:50])
    console.print(table)
    _print_next(result.next_cursor)


# ── Skills ───────────────────────────────────────────────────────────


@main.command()
@click.option("--registry", "-r", default=None, help="Only this registry (unprefixed names)")
@click.option("--namespace", default=None)
@click.option("--name", default=None, help="Show every version of this skill")
@click.option("--search", "-s", default=None)
@click.option("--status", default=None, help="Comma-separated statuses")
@click.option("--limit", "-n", default=None, type=int)
@click.option("--cursor", default=None)
@click.pass_context
def skills(ctx, registry, namespace, name, search, status, limit, cursor):
    """List skills (latest versions unless --name is given)."""
    with _components(ctx) as components:
        try:
            options = _scope_options(registry, search, status, limit, cursor)
            if namespace:
                options.append(with_namespace(namespace))
            if name:
                options.append(with_name(name))
            result = components.registry_service.list_skills(*options)
        except CatalogError as exc:
            raise click.ClickException(str(exc)) from exc

    if not result.entries:
        console.print("[yellow]No skills found.[/]")
        return

    table = Table(title=f"Skills ({result.count} shown)")
    table.add_column("Namespace", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Latest", justify="center")
    table.add_column("Description")
    for skill in result.entries:
        latest = "[green]Y[/]" if skill.is_latest else ""
        table.add_row(skill.namespace, skill.name, skill.version, latest, skill.description[:50])
    console.print(table)
    _print_next(result.next_cursor)


# ── Registries ───────────────────────────────────────────────────────


@main.command()
@click.pass_context
def registries(ctx):
    """List configured and API-created registries."""
    with _components(ctx) as components:
        infos = components.registry_service.list_registries()

    if not infos:
        console.print("[yellow]No registries configured.[/]")
        return

    table = Table(title=f"Registries ({len(infos)})")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Format")
    table.add_column("Created by")
    table.add_column("Sync")
    for info in infos:
        phase = ""
        if info.sync_status is not None:
            style = _PHASE_STYLE.get(info.sync_status.phase, "white")
            phase = f"[{style}]{info.sync_status.phase.value}[/]"
        table.add_row(
            info.name,
            info.source_type.value,
            info.format.value,
            info.creation_type.value,
            phase,
        )
    console.print(table)


@main.command()
@click.pass_context
def status(ctx):
    """Show the recorded sync status of every registry."""
    with _components(ctx) as components:
        statuses = components.state_service.list_sync_statuses()

    if not statuses:
        console.print("[yellow]No sync status recorded.[/]")
        return

    for name in sorted(statuses):
        st = statuses[name]
        style = _PHASE_STYLE.get(st.phase, "white")
        console.print(f"  [cyan]{name}[/] [{style}]{st.phase.value}[/] {st.message}")
        console.print(
            f"    entries={st.entry_count} attempts={st.attempt_count} "
            f"last_sync={format_time(st.last_sync_time) or '-'}"
        )


if __name__ == "__main__":
    main()
