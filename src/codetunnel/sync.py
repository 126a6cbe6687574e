"""VS Code settings and extensions synchronization module.

This module mirrors the local VS Code user settings and extensions to the
remote code-server data directory (push) and back again (pull) with rsync.

Philosophy:
- Two asset classes share one code path; direction is a parameter
- A failed transfer aborts the session

Public API:
    SyncDirection: PUSH (local -> remote) or PULL (remote -> local)
    SyncSpec: One asset class (local dir, remote dir, exclusions)
    SyncCoordinator: Runs rsync for a SyncSpec in either direction
    local_settings_dir / local_extensions_dir: Platform-aware local paths
"""

import logging
import os
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from codetunnel.command_runner import CommandRunner, SubprocessRunner
from codetunnel.errors import SyncError

logger = logging.getLogger(__name__)

REMOTE_SETTINGS_DIR = "~/.local/share/code-server/User/"
REMOTE_EXTENSIONS_DIR = "~/.local/share/code-server/extensions/"

# Transient editor state that is never worth copying between machines
SETTINGS_EXCLUSIONS = frozenset({"workspaceStorage", "logs", "CachedData"})


class SyncDirection(Enum):
    """Which side of the transfer is the source."""

    PUSH = "push"  # local -> remote
    PULL = "pull"  # remote -> local


@dataclass(frozen=True)
class SyncSpec:
    """A directory pair kept in sync between local and remote."""

    name: str
    local_dir: Path
    remote_dir: str
    exclusions: frozenset[str] = field(default_factory=frozenset)


def local_settings_dir(override: str | None = None) -> Path:
    """Locate the local VS Code user settings directory.

    Resolution order: ``$VSCODE_CONFIG_DIR``, ``override`` (from config),
    then the platform default.
    """
    configured = os.environ.get("VSCODE_CONFIG_DIR") or override
    if configured:
        return Path(configured).expanduser()

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Code" / "User"
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
        return base / "Code" / "User"

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config).expanduser() if xdg_config else Path.home() / ".config"
    return base / "Code" / "User"


def local_extensions_dir(override: str | None = None) -> Path:
    """Locate the local VS Code extensions directory.

    Resolution order: ``$VSCODE_EXTENSIONS_DIR``, ``override`` (from config),
    then ``~/.vscode/extensions``.
    """
    configured = os.environ.get("VSCODE_EXTENSIONS_DIR") or override
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".vscode" / "extensions"


def settings_spec(local_dir: Path | None = None) -> SyncSpec:
    """Standing spec for VS Code user settings."""
    return SyncSpec(
        name="settings",
        local_dir=local_dir or local_settings_dir(),
        remote_dir=REMOTE_SETTINGS_DIR,
        exclusions=SETTINGS_EXCLUSIONS,
    )


def extensions_spec(local_dir: Path | None = None) -> SyncSpec:
    """Standing spec for VS Code extensions."""
    return SyncSpec(
        name="extensions",
        local_dir=local_dir or local_extensions_dir(),
        remote_dir=REMOTE_EXTENSIONS_DIR,
    )


class SyncCoordinator:
    """Drive rsync for the settings and extensions asset classes.

    Example:
        >>> coordinator = SyncCoordinator()
        >>> coordinator.push_all("10.0.0.5", "-i key.pem")
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        settings: SyncSpec | None = None,
        extensions: SyncSpec | None = None,
    ):
        self.runner = runner or SubprocessRunner()
        self.settings = settings or settings_spec()
        self.extensions = extensions or extensions_spec()

    @staticmethod
    def ensure_local_dir(spec: SyncSpec) -> Path:
        """Create the local side of a spec if it does not exist.

        Raises:
            SyncError: If the directory cannot be created
        """
        local_dir = spec.local_dir.expanduser()
        try:
            local_dir.mkdir(mode=0o750, parents=True, exist_ok=True)
        except OSError as e:
            raise SyncError(str(local_dir), spec.remote_dir, f"cannot create local directory: {e}") from e
        return local_dir

    @staticmethod
    def endpoints(spec: SyncSpec, direction: SyncDirection, host: str, local_dir: Path) -> tuple[str, str]:
        """Return (source, destination) for a transfer.

        The local side always ends with a separator so rsync copies the
        directory's contents rather than the directory itself.
        """
        local = str(local_dir).rstrip(os.sep) + os.sep
        remote = f"{host}:{spec.remote_dir}"
        if direction is SyncDirection.PUSH:
            return local, remote
        return remote, local

    @staticmethod
    def build_rsync_command(spec: SyncSpec, ssh_flags: str, source: str, destination: str) -> list[str]:
        """Build the rsync argument list.

        Only newer files are transferred and timestamps are preserved;
        entries missing from the source are deleted at the destination.
        """
        exclude_flags = [f"--exclude={path}" for path in sorted(spec.exclusions)]
        ssh_command = f"ssh {ssh_flags}".strip()
        return [
            "rsync",
            *exclude_flags,
            "-azvr",
            "-e",
            ssh_command,
            "-u",
            "--times",
            "--delete",
            "--copy-unsafe-links",
            source,
            destination,
        ]

    def sync(self, spec: SyncSpec, direction: SyncDirection, host: str, ssh_flags: str = "") -> None:
        """Synchronize one asset class.

        Args:
            spec: Asset class to transfer
            direction: PUSH (local -> remote) or PULL (remote -> local)
            host: Resolved remote host
            ssh_flags: Extra ssh flags passed through rsync's -e

        Raises:
            SyncError: If the local directory cannot be created or rsync fails
        """
        local_dir = self.ensure_local_dir(spec)
        source, destination = self.endpoints(spec, direction, host, local_dir)
        cmd = self.build_rsync_command(spec, ssh_flags, source, destination)

        result = self.runner.run(cmd, capture=False)
        if result.returncode != 0:
            raise SyncError(source, destination, f"rsync exited with code {result.returncode}")

    def push_all(self, host: str, ssh_flags: str = "") -> None:
        """Push settings, then extensions."""
        start = time.monotonic()
        for spec in (self.settings, self.extensions):
            logger.info(f"syncing {spec.name}")
            self.sync(spec, SyncDirection.PUSH, host, ssh_flags)
            logger.info(f"synced {spec.name} in {time.monotonic() - start:.1f}s")

    def pull_all(self, host: str, ssh_flags: str = "") -> None:
        """Pull extensions, then settings."""
        for spec in (self.extensions, self.settings):
            logger.info(f"syncing {spec.name} back")
            self.sync(spec, SyncDirection.PULL, host, ssh_flags)


__all__ = [
    "REMOTE_EXTENSIONS_DIR",
    "REMOTE_SETTINGS_DIR",
    "SETTINGS_EXCLUSIONS",
    "SyncCoordinator",
    "SyncDirection",
    "SyncSpec",
    "extensions_spec",
    "local_extensions_dir",
    "local_settings_dir",
    "settings_spec",
]
