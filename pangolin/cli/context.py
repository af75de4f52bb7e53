"""Lazily built application context shared by CLI commands."""

import typer

from ..core.config import load_settings
from ..core.context import ApplicationContext

APP_CONTEXT_KEY = "app_context"


def get_app_context(ctx: typer.Context) -> ApplicationContext:
    """Return the context stored on the click context, creating it on first use."""
    obj = ctx.ensure_object(dict)
    if obj.get(APP_CONTEXT_KEY) is None:
        cli_options = obj.get("cli_options")
        settings_file = cli_options.settings_file if cli_options is not None else None
        obj[APP_CONTEXT_KEY] = ApplicationContext.create(load_settings(settings_file))
    return obj[APP_CONTEXT_KEY]
