"""codetunnel command-line interface.

Commands:
    open    Start a remote code-server session and open it locally
    config  Show or change persistent defaults
"""

import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from codetunnel import __version__
from codetunnel.click_group import CodeTunnelGroup
from codetunnel.config_manager import CodeTunnelConfig, ConfigManager
from codetunnel.errors import CodeTunnelError, ConfigError
from codetunnel.session import SessionController, SessionOptions
from codetunnel.sync import (
    SyncCoordinator,
    extensions_spec,
    local_extensions_dir,
    local_settings_dir,
    settings_spec,
)
from codetunnel.tunnel import TunnelOrchestrator

logger = logging.getLogger(__name__)


def build_options(
    config: CodeTunnelConfig,
    skip_sync: bool,
    sync_back: bool,
    no_open: bool,
    bind: str | None,
    remote_port: str | None,
    ssh_flags: str | None,
) -> SessionOptions:
    """Merge CLI flags over config defaults.

    Boolean flags can only switch a behavior on; string options replace the
    configured value when given.
    """
    return SessionOptions(
        skip_sync=skip_sync or config.skip_sync,
        sync_back=sync_back or config.sync_back,
        open_browser=not (no_open or config.no_open),
        bind_address=bind if bind is not None else config.bind_address,
        remote_port=remote_port,
        ssh_flags=ssh_flags if ssh_flags is not None else config.ssh_flags,
    )


def build_controller(config: CodeTunnelConfig) -> SessionController:
    """Wire a SessionController from configuration."""
    return SessionController(
        tunnel=TunnelOrchestrator(
            server_path=config.server_path,
            download_url=config.server_download_url,
        ),
        sync=SyncCoordinator(
            settings=settings_spec(local_settings_dir(config.vscode_config_dir)),
            extensions=extensions_spec(local_extensions_dir(config.vscode_extensions_dir)),
        ),
    )


@click.group(cls=CodeTunnelGroup, invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.version_option(version=__version__, prog_name="codetunnel")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """codetunnel - run VS Code (code-server) on a remote host over SSH.

    \b
    EXAMPLES:
        # Open ~/project on a host from your ssh config
        $ codetunnel open dev-box ~/project

        # Resolve a GCP instance through gcloud
        $ codetunnel open gcp:my-instance

        # Resolve an Azure VM through az
        $ codetunnel open azure:my-rg/my-vm

        # Bring remote settings and extensions back when done
        $ codetunnel open dev-box --sync-back

    \b
    CONFIGURATION:
        Config file: ~/.codetunnel/config.toml
        Set defaults: codetunnel config set <key> <value>

    For help on any command: codetunnel <command> --help
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@main.command(name="open")
@click.argument("host", type=str)
@click.argument("directory", type=str, default="~", required=False)
@click.option("--skip-sync", is_flag=True, help="Don't sync local settings and extensions to the remote")
@click.option("--sync-back", is_flag=True, help="Sync remote settings and extensions back when the session ends")
@click.option("--no-open", is_flag=True, help="Don't open a browser window")
@click.option("--bind", type=str, default=None, help="Local bind address (default: 127.0.0.1:<random port>)")
@click.option("--remote-port", type=str, default=None, help="Remote code-server port (default: random)")
@click.option("--ssh-flags", type=str, default=None, help="Extra flags passed to ssh")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file path")
def open_command(
    host: str,
    directory: str,
    skip_sync: bool,
    sync_back: bool,
    no_open: bool,
    bind: str | None,
    remote_port: str | None,
    ssh_flags: str | None,
    config_path: str | None,
) -> None:
    """Start code-server on HOST and open it locally.

    HOST can be:
    - Any ssh destination (host, user@host, ssh config alias)
    - gcp:<instance> (resolved with gcloud)
    - azure:<resource-group>/<vm-name> (resolved with az)

    DIRECTORY is the remote directory to open (default: ~).

    The session ends when code-server exits or you press Ctrl+C.
    """
    try:
        config = ConfigManager.load_config(config_path)
        options = build_options(config, skip_sync, sync_back, no_open, bind, remote_port, ssh_flags)
        controller = build_controller(config)
        controller.run(host, directory, options)
    except CodeTunnelError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nCancelled by user.")
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error in open command")
        sys.exit(1)


@main.group(name="config")
def config_group() -> None:
    """Show or change persistent defaults."""
    pass


@config_group.command(name="show")
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file path")
def config_show(config_path: str | None) -> None:
    """Show the effective configuration."""
    try:
        config = ConfigManager.load_config(config_path)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)

    table = Table(title="codetunnel configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in vars(config).items():
        table.add_row(key, "" if value is None else str(value))

    Console().print(table)


@config_group.command(name="set")
@click.argument("key", type=str)
@click.argument("value", type=str)
@click.option("--config", "config_path", type=click.Path(), default=None, help="Config file path")
def config_set(key: str, value: str, config_path: str | None) -> None:
    """Set KEY to VALUE in the config file.

    \b
    Examples:
        codetunnel config set sync_back true
        codetunnel config set ssh_flags "-i ~/.ssh/dev_key"
        codetunnel config set vscode_config_dir ""
    """
    try:
        ConfigManager.set_value(key, value, config_path)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Set {key}")


@config_group.command(name="path")
def config_path_command() -> None:
    """Print the default config file location."""
    click.echo(str(ConfigManager.DEFAULT_CONFIG_FILE))


__all__ = ["main"]
