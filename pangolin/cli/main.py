"""Main CLI entry point for pangolin."""

import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console
from rich.table import Table

from ..core.errors import PangolinError
from ..core.log import (
    add_file_logging,
    configure_logging,
    get_logger,
    reset_logging,
    shutdown_logging,
)
from .commands.server import server_app
from .context import get_app_context


class GlobalCliOptions(BaseModel):
    """Global CLI options that can be used across all commands."""

    verbose: int = Field(0, description="Increase verbosity level")
    settings_file: Optional[Path] = Field(None, description="Framework settings file path")
    log_file: Optional[Path] = Field(None, description="JSON log file path")
    log_level: str = Field(
        "WARNING", description="Framework logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    model_config = ConfigDict(use_enum_values=True)


app = typer.Typer(
    name="pangolin",
    help="Local server lifecycle manager",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)
app.add_typer(server_app, name="server", help="Start, stop and inspect servers")
console = Console()
logger = get_logger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity level"
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Framework logging level (DEBUG, INFO, WARNING, ERROR) - explicit level",
    ),
    settings_file: Optional[Path] = typer.Option(
        None, "--settings", "-s", help="Framework settings file (YAML)"
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Also write JSON log lines to this file"
    ),
) -> None:
    """Pangolin: local server lifecycle manager."""
    if verbose > 0 and log_level is not None:
        console.print("[red]Error: Cannot specify both --verbose and --log-level[/red]")
        raise typer.Exit(1)

    if log_level is None:
        resolved_log_level = (
            "DEBUG" if verbose >= 2 else "INFO" if verbose == 1 else "WARNING"
        )
    else:
        resolved_log_level = log_level.upper()

    cli_options = GlobalCliOptions(
        verbose=verbose,
        settings_file=settings_file,
        log_file=log_file,
        log_level=resolved_log_level,
    )

    ctx.ensure_object(dict)
    ctx.obj["cli_options"] = cli_options

    # Each invocation applies its own level and log file
    reset_logging()
    configure_logging(level=cli_options.log_level, enable_console=True, enable_json=False)
    if cli_options.log_file is not None:
        add_file_logging(cli_options.log_file)


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__

    table = Table(title="Pangolin Version Information")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("pangolin", __version__)
    console.print(table)


@app.command()
def settings(ctx: typer.Context) -> None:
    """Show the effective framework settings."""
    try:
        current = get_app_context(ctx).settings
    except PangolinError as e:
        console.print(f"[red]Error loading settings: {e.message}[/red]")
        raise typer.Exit(1)

    table = Table(title="Pangolin Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Home Directory", str(current.effective_home_dir))
    table.add_row("Registry", str(current.servers_dir))
    table.add_row("Distributions", str(current.distributions_dir))
    table.add_row("Config File Name", current.config_file_name)
    table.add_row("Dotenv File Name", current.dotenv_file_name)
    table.add_row("Lock File Name", current.lock_file_name)
    table.add_row("Default Runtime", current.default_runtime)
    table.add_row("Default Version", current.default_version)
    table.add_row("Secret Store", current.secret_store or "(disabled)")
    table.add_row(
        "HTTP Port Range",
        f"{current.ports.http_range_start}-{current.ports.http_range_end}",
    )
    table.add_row("Server Startup Timeout", f"{current.timeouts.server_startup}s")
    table.add_row("Server Shutdown Timeout", f"{current.timeouts.server_shutdown}s")
    table.add_row("Log Level", current.log_level)
    console.print(table)


def cli_main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except PangolinError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)
    except (RuntimeError, OSError, ValueError) as e:
        logger.error("Unexpected error: %s", e)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    cli_main()
