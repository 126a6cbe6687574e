"""Custom Click group with automatic help display on errors.

This module provides a custom Click Group class that automatically
displays contextual help when syntax errors occur.
"""

import sys
from typing import Any

import click

USAGE_ERRORS = (
    click.exceptions.UsageError,
    click.exceptions.BadParameter,
    click.exceptions.MissingParameter,
)


class CodeTunnelGroup(click.Group):
    """Custom Click group that auto-displays help on usage errors."""

    @staticmethod
    def _show_error_with_help(error: click.exceptions.UsageError, ctx: click.Context | None) -> None:
        click.echo(f"Error: {error.format_message()}", err=True)
        if ctx is None:
            sys.exit(error.exit_code)
        click.echo("")
        click.echo(ctx.get_help())
        # Use ctx.exit() to properly handle Click's testing mode
        ctx.exit(error.exit_code)

    def invoke(self, ctx: click.Context) -> Any:
        """Show help for the most specific context when a subcommand is misused."""
        try:
            return super().invoke(ctx)
        except USAGE_ERRORS as e:
            self._show_error_with_help(e, e.ctx or ctx)
            return None


__all__ = ["CodeTunnelGroup"]
