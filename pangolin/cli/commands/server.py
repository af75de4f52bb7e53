"""Server lifecycle CLI commands."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ...configuration.effective import effective_host, is_https_enabled, is_https_redirect_enabled
from ...core.errors import NameConflictError, PangolinError, PortConflictError
from ...core.log import get_logger
from ...core.process import process_stats
from ...instances.orchestrator import ServerOrchestrator, StartOptions
from ...instances.registry import InstanceRecord
from ...runtimes.base import LaunchResult
from ...runtimes.options import AgentOverrides
from ...utils.codec import to_json_string
from ..context import get_app_context

console = Console()
logger = get_logger(__name__)
server_app = typer.Typer(help="Start, stop and inspect servers")

PROJECT_OPTION = typer.Option(
    Path("."), "--project", "-p", help="Project directory", file_okay=False
)
ENV_OPTION = typer.Option(None, "--env", "-e", help="Environment overlay to apply")


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except NameConflictError as e:
        console.print(f"[red]{e.message}[/red]")
        console.print(f"[yellow]Suggested name: {e.suggested_name}[/yellow]")
        raise typer.Exit(1)
    except PortConflictError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    except PangolinError as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _orchestrator(ctx: typer.Context) -> ServerOrchestrator:
    return ServerOrchestrator(get_app_context(ctx))


def _split(values: Optional[List[str]]) -> List[str]:
    result: List[str] = []
    for value in values or []:
        result.extend(part.strip() for part in value.split(",") if part.strip())
    return result


def _start_options(
    environment: Optional[str],
    name: Optional[str],
    version: Optional[str],
    port: Optional[int],
    force: bool,
    sandbox: bool,
    reassign_ports: bool,
    no_agents: bool,
    agents: Optional[List[str]],
    enable_agent: Optional[List[str]],
    disable_agent: Optional[List[str]],
    config_file: Optional[str],
) -> StartOptions:
    return StartOptions(
        environment=environment,
        name=name,
        version=version,
        http_port=port,
        force=force,
        sandbox=sandbox,
        reassign_ports=reassign_ports,
        agents=AgentOverrides(
            disable_all=no_agents,
            include=_split(agents),
            enable=_split(enable_agent),
            disable=_split(disable_agent),
        ),
        config_file=config_file,
    )


def _status_label(record: InstanceRecord) -> str:
    return "[green]running[/green]" if record.running else "[dim]stopped[/dim]"


@server_app.command()
def start(
    ctx: typer.Context,
    project: Path = PROJECT_OPTION,
    environment: Optional[str] = ENV_OPTION,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
    version: Optional[str] = typer.Option(None, "--version", help="Engine version"),
    port: Optional[int] = typer.Option(None, "--port", help="HTTP port (0 picks a free one)"),
    force: bool = typer.Option(False, "--force", help="Replace a stale entry of another project"),
    sandbox: bool = typer.Option(False, "--sandbox", help="Transient instance removed on stop"),
    reassign_ports: bool = typer.Option(
        False, "--reassign-ports", help="Move conflicting ports to free ones"
    ),
    no_agents: bool = typer.Option(False, "--no-agents", help="Disable all agents"),
    agents: Optional[List[str]] = typer.Option(
        None, "--agents", help="Run only these agents (comma separated)"
    ),
    enable_agent: Optional[List[str]] = typer.Option(None, "--enable-agent", help="Enable an agent"),
    disable_agent: Optional[List[str]] = typer.Option(
        None, "--disable-agent", help="Disable an agent"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config-file", help="Configuration file name inside the project"
    ),
) -> None:
    """Start the project's server in the background."""
    options = _start_options(
        environment, name, version, port, force, sandbox, reassign_ports,
        no_agents, agents, enable_agent, disable_agent, config_file,
    )
    with _handle_errors():
        result = _orchestrator(ctx).start(project, options)

    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    console.print(
        f"[green]Server '{result.record.name}' started on port {result.record.port}[/green]"
    )


@server_app.command()
def run(
    ctx: typer.Context,
    project: Path = PROJECT_OPTION,
    environment: Optional[str] = ENV_OPTION,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
    version: Optional[str] = typer.Option(None, "--version", help="Engine version"),
    port: Optional[int] = typer.Option(None, "--port", help="HTTP port (0 picks a free one)"),
    force: bool = typer.Option(False, "--force", help="Replace a stale entry of another project"),
    sandbox: bool = typer.Option(False, "--sandbox", help="Transient instance removed on exit"),
    reassign_ports: bool = typer.Option(
        False, "--reassign-ports", help="Move conflicting ports to free ones"
    ),
    no_agents: bool = typer.Option(False, "--no-agents", help="Disable all agents"),
    agents: Optional[List[str]] = typer.Option(
        None, "--agents", help="Run only these agents (comma separated)"
    ),
    enable_agent: Optional[List[str]] = typer.Option(None, "--enable-agent", help="Enable an agent"),
    disable_agent: Optional[List[str]] = typer.Option(
        None, "--disable-agent", help="Disable an agent"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config-file", help="Configuration file name inside the project"
    ),
) -> None:
    """Run the project's server in the foreground; Ctrl+C stops it."""
    options = _start_options(
        environment, name, version, port, force, sandbox, reassign_ports,
        no_agents, agents, enable_agent, disable_agent, config_file,
    )

    def announce(result: LaunchResult) -> None:
        console.print(f"[green]Server running on port {result.port}; press Ctrl+C to stop[/green]")

    with _handle_errors():
        exit_code = _orchestrator(ctx).run(project, options, on_started=announce)
    if exit_code:
        raise typer.Exit(exit_code)


@server_app.command()
def stop(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
    project: Path = PROJECT_OPTION,
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Graceful shutdown window"),
) -> None:
    """Stop a server by name, or the project's running server."""
    with _handle_errors():
        orchestrator = _orchestrator(ctx)
        if name:
            stopped = orchestrator.stop(name, timeout)
        else:
            stopped = orchestrator.stop_project(project, timeout)
    label = name or str(project)
    if stopped:
        console.print(f"[green]Stopped {label}[/green]")
    else:
        console.print(f"[yellow]{label} was not running or did not stop cleanly[/yellow]")


@server_app.command()
def restart(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
    project: Path = PROJECT_OPTION,
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Graceful shutdown window"),
    reassign_ports: bool = typer.Option(
        False, "--reassign-ports", help="Move conflicting ports to free ones"
    ),
) -> None:
    """Stop a server and start it again from its project."""
    with _handle_errors():
        orchestrator = _orchestrator(ctx)
        if not name:
            record = orchestrator.status_for_project(project)
            if record is None:
                console.print(f"[yellow]No server registered for {project.resolve()}[/yellow]")
                raise typer.Exit(1)
            name = record.name
        result = orchestrator.restart(name, timeout, reassign_ports)

    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    console.print(
        f"[green]Server '{result.record.name}' restarted on port {result.record.port}[/green]"
    )


@server_app.command()
def status(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
    project: Path = PROJECT_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """Show the status of one server."""
    with _handle_errors():
        orchestrator = _orchestrator(ctx)
        record = orchestrator.status(name) if name else orchestrator.status_for_project(project)
    if record is None:
        console.print(f"[yellow]No server registered for {project.resolve()}[/yellow]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(to_json_string(_record_dict(record)))
        return

    table = Table(title=f"Server {record.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", _status_label(record))
    table.add_row("PID", str(record.pid) if record.pid is not None else "-")
    table.add_row("Port", str(record.port) if record.port is not None else "-")
    table.add_row("Runtime", record.runtime_type.value)
    table.add_row("Project", str(record.project_dir or "-"))
    table.add_row("Environment", record.environment or "-")
    table.add_row("Sandbox", "yes" if record.sandbox else "no")
    for role, port in sorted(record.ports.items()):
        table.add_row(f"{role} port", str(port))
    if record.running and not record.is_container:
        stats = process_stats(record.pid)
        if stats is not None:
            table.add_row("Memory (RSS)", f"{stats.memory_rss // (1024 * 1024)} MiB")
            table.add_row("CPU", f"{stats.cpu_percent:.1f}%")
            table.add_row("Threads", str(stats.num_threads))
    console.print(table)


def _record_dict(record: InstanceRecord) -> dict:
    return {
        "name": record.name,
        "running": record.running,
        "pid": record.pid,
        "port": record.port,
        "runtime": record.runtime_type.value,
        "projectDir": record.project_dir,
        "environment": record.environment,
        "sandbox": record.sandbox,
        "ports": record.ports,
    }


@server_app.command()
def info(
    ctx: typer.Context,
    project: Path = PROJECT_OPTION,
    environment: Optional[str] = ENV_OPTION,
    config_file: Optional[str] = typer.Option(
        None, "--config-file", help="Configuration file name inside the project"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """Show the effective configuration without starting the server."""
    with _handle_errors():
        summary = _orchestrator(ctx).info(project, environment, config_file)

    config = summary.config
    running = summary.record is not None and summary.record.running
    if as_json:
        typer.echo(to_json_string({
            "name": config.name,
            "projectDir": summary.project_dir,
            "configFile": summary.config_path,
            "environment": summary.environment,
            "locked": summary.locked,
            "version": config.version,
            "runtime": config.runtime.type or "express",
            "host": effective_host(config),
            "webroot": config.webroot,
            "ports": summary.ports,
            "instanceDir": summary.instance_dir,
            "running": running,
        }))
        return

    table = Table(title=f"Server configuration for {summary.project_dir}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Config File", str(summary.config_path))
    table.add_row("Server Name", config.name)
    if summary.environment:
        table.add_row("Environment", summary.environment)
    table.add_row("Locked", "yes" if summary.locked else "no")
    table.add_row("Engine Enabled", "yes" if config.enable_engine else "no")
    table.add_row("Engine Version", config.version)
    table.add_row("Runtime", config.runtime.type or "express")
    table.add_row("Host", effective_host(config))
    table.add_row("Webroot", config.webroot)
    for role, port in summary.ports.items():
        table.add_row(f"{role} port", str(port))
    if is_https_enabled(config):
        redirect = "enabled" if is_https_redirect_enabled(config) else "disabled"
        table.add_row("HTTPS Redirect", redirect)
    else:
        table.add_row("HTTPS", "disabled")
    table.add_row("Admin Enabled", "yes" if config.admin.enabled else "no")
    table.add_row("Server Directory", str(summary.instance_dir))
    table.add_row("Status", "[green]running[/green]" if running else "[dim]not running[/dim]")
    console.print(table)

    if summary.drift is not None and summary.drift.drifted:
        console.print(f"[yellow]Warning: {summary.drift.describe()}[/yellow]")


@server_app.command("list")
def list_servers(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
) -> None:
    """List all registered servers."""
    with _handle_errors():
        records = _orchestrator(ctx).list()

    if as_json:
        typer.echo(to_json_string([_record_dict(r) for r in records]))
        return
    if not records:
        console.print("No servers registered")
        return

    table = Table(title="Servers")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Port", style="green")
    table.add_column("Runtime")
    table.add_column("Project")
    for record in records:
        table.add_row(
            record.name,
            _status_label(record),
            str(record.port) if record.port is not None else "-",
            record.runtime_type.value,
            str(record.project_dir or "-"),
        )
    console.print(table)


@server_app.command()
def prune(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Instance name"),
    all_entries: bool = typer.Option(False, "--all", help="Prune every stopped server"),
) -> None:
    """Delete stopped servers from the registry."""
    if not name and not all_entries:
        console.print("[red]Error: pass --name or --all[/red]")
        raise typer.Exit(1)

    with _handle_errors():
        orchestrator = _orchestrator(ctx)
        if all_entries:
            result = orchestrator.prune_all()
            for removed in result.removed:
                console.print(f"[green]Pruned {removed}[/green]")
            for skipped in result.skipped:
                console.print(f"[yellow]Skipped {skipped} (running)[/yellow]")
            return
        single = orchestrator.prune(name)

    if single.removed:
        console.print(f"[green]Pruned {name}[/green]")
    else:
        console.print(f"[yellow]Not pruned {name}: {single.reason}[/yellow]")
        raise typer.Exit(1)


@server_app.command()
def lock(
    ctx: typer.Context,
    project: Path = PROJECT_OPTION,
    environment: Optional[str] = ENV_OPTION,
    update: bool = typer.Option(False, "--update", help="Refresh an existing lock"),
) -> None:
    """Pin the resolved configuration of an environment."""
    with _handle_errors():
        entry = _orchestrator(ctx).lock(project, environment, update)
    console.print(f"[green]Locked {environment or 'default'} environment ({entry.source_hash})[/green]")


@server_app.command()
def unlock(
    ctx: typer.Context,
    project: Path = PROJECT_OPTION,
    environment: Optional[str] = ENV_OPTION,
) -> None:
    """Release a pinned environment."""
    with _handle_errors():
        changed = _orchestrator(ctx).unlock(project, environment)
    if changed:
        console.print(f"[green]Unlocked {environment or 'default'} environment[/green]")
    else:
        console.print(f"[yellow]{environment or 'default'} environment was not locked[/yellow]")


@server_app.command("get")
def get_value(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Dotted configuration key, e.g. jvm.maxMemory"),
    project: Path = PROJECT_OPTION,
    environment: Optional[str] = ENV_OPTION,
) -> None:
    """Print one configuration value."""
    with _handle_errors():
        value = _orchestrator(ctx).get_value(project, key, environment)
    typer.echo(value if isinstance(value, str) else to_json_string(value))


@server_app.command("set")
def set_values(
    ctx: typer.Context,
    assignments: List[str] = typer.Argument(..., help="key=value pairs"),
    project: Path = PROJECT_OPTION,
) -> None:
    """Set configuration values in the project's file."""
    pairs = []
    for assignment in assignments:
        key, sep, value = assignment.partition("=")
        if not sep or not key:
            console.print(f"[red]Error: expected key=value, got '{assignment}'[/red]")
            raise typer.Exit(1)
        pairs.append((key.strip(), value))

    with _handle_errors():
        _orchestrator(ctx).set_values(project, pairs)
    console.print(f"[green]Updated {len(pairs)} value(s)[/green]")


@server_app.command()
def health(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", "-n", help="Instance name"),
) -> None:
    """Probe a running server over HTTP."""
    with _handle_errors():
        result = _orchestrator(ctx).health(name)
    if result.is_healthy:
        console.print(
            f"[green]{name} healthy (HTTP {result.status_code}, {result.response_time:.3f}s)[/green]"
        )
    else:
        console.print(f"[red]{name} unhealthy: {result.error_message}[/red]")
        raise typer.Exit(1)
