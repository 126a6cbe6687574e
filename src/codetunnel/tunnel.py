"""Remote bootstrap and tunnel management module.

This module handles the remote side of a session:
- Bootstrapping: installing or updating the code-server binary on the host
- Starting one long-lived ``ssh`` process that forwards the local bind address
  and runs code-server on the remote loopback interface
- Supervising that process and reporting its exit exactly once

Security:
- code-server binds to 127.0.0.1 on the remote host only
- No shell=True for local subprocesses
- Remote paths are shell-quoted (a leading ``~/`` is left for the remote
  shell to expand)
"""

import logging
import posixpath
import shlex
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from codetunnel.command_runner import CommandRunner, SubprocessRunner, format_command
from codetunnel.errors import BootstrapError, StartError

logger = logging.getLogger(__name__)

DEFAULT_SERVER_PATH = "~/.cache/codetunnel/codetunnel-server"
DEFAULT_SERVER_DOWNLOAD_URL = "https://codesrv-ci.cdr.sh/latest-linux"

REMOTE_DATA_DIR = "~/.local/share/code-server"


def remote_path_arg(path: str) -> str:
    """Quote a remote path for the remote shell, keeping ``~`` expandable.

    Example:
        >>> remote_path_arg("~/my project")
        "~/'my project'"
    """
    if path == "~":
        return path
    if path.startswith("~/"):
        rest = path[2:]
        return "~/" + shlex.quote(rest) if rest else "~/"
    return shlex.quote(path)


def ssh_flag_args(ssh_flags: str) -> list[str]:
    """Split a user-supplied ssh flag string into arguments."""
    return shlex.split(ssh_flags) if ssh_flags else []


def build_bootstrap_script(
    server_path: str = DEFAULT_SERVER_PATH,
    download_url: str = DEFAULT_SERVER_DOWNLOAD_URL,
) -> str:
    """Generate the remote bootstrap script.

    The script is idempotent: it stops any running server, downloads the
    artifact only when it changed (``wget -N``), and swaps the binary in with a
    hard link before marking it executable.
    """
    server = remote_path_arg(server_path)
    server_dir = remote_path_arg(posixpath.dirname(server_path))
    artifact = shlex.quote(posixpath.basename(download_url.rstrip("/")))

    return (
        "set -euxo pipefail || exit 1\n"
        "\n"
        f"pkill -f {server} || true\n"
        f"mkdir -p {REMOTE_DATA_DIR} {server_dir}\n"
        f"cd {server_dir}\n"
        f"wget -N {shlex.quote(download_url)}\n"
        f"[ -f {server} ] && rm {server}\n"
        f"ln {artifact} {server}\n"
        f"chmod +x {server}"
    )


@dataclass
class TunnelHandle:
    """The ssh process forwarding the port and running code-server.

    Exactly one exists per session. The process inherits the terminal's stdio.
    """

    command: list[str]
    bind_address: str
    remote_port: str
    process: subprocess.Popen
    _watcher: threading.Thread | None = field(default=None, init=False, repr=False)

    @property
    def returncode(self) -> int | None:
        return self.process.poll()

    def is_running(self) -> bool:
        """Check if the tunnel process is still running."""
        return self.process.poll() is None

    def wait_for_exit(self, callback: Callable[[int], None]) -> threading.Thread:
        """Call ``callback(returncode)`` once when the process terminates.

        The wait happens on a daemon thread. Only one callback may be
        registered per handle.

        Raises:
            RuntimeError: If a callback was already registered
        """
        if self._watcher is not None:
            raise RuntimeError("tunnel exit is already being watched")

        def _watch() -> None:
            returncode = self.process.wait()
            logger.debug(f"Tunnel process exited with code {returncode}")
            callback(returncode)

        self._watcher = threading.Thread(target=_watch, name="tunnel-watcher", daemon=True)
        self._watcher.start()
        return self._watcher

    def terminate(self, timeout: float = 5) -> None:
        """Ask the tunnel process to stop, if it is still running.

        Sends SIGTERM and waits up to ``timeout`` seconds. The process is not
        killed if it ignores the request.
        """
        if not self.is_running():
            logger.debug("Tunnel already closed")
            return

        logger.info(f"Closing tunnel on {self.bind_address}")
        try:
            self.process.terminate()
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Tunnel process {self.process.pid} did not exit within {timeout}s")
        except OSError as e:
            logger.debug(f"Error terminating tunnel: {e}")


class TunnelOrchestrator:
    """Bootstrap the remote host and run the code-server tunnel.

    Example:
        >>> orchestrator = TunnelOrchestrator()
        >>> orchestrator.bootstrap("10.0.0.5", "-i key.pem")
        >>> handle = orchestrator.start_tunnel(
        ...     "10.0.0.5", "-i key.pem", "127.0.0.1:8443", "8443", "~/project"
        ... )
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        server_path: str = DEFAULT_SERVER_PATH,
        download_url: str = DEFAULT_SERVER_DOWNLOAD_URL,
    ):
        self.runner = runner or SubprocessRunner()
        self.server_path = server_path
        self.download_url = download_url

    def build_bootstrap_command(self, host: str, ssh_flags: str) -> list[str]:
        return ["ssh", *ssh_flag_args(ssh_flags), host, "/bin/bash"]

    def bootstrap(self, host: str, ssh_flags: str) -> None:
        """Install or update code-server on the remote host.

        The script is fed to a remote bash over ssh's stdin. Output streams to
        the terminal.

        Raises:
            BootstrapError: If the remote script exits non-zero
        """
        script = build_bootstrap_script(self.server_path, self.download_url)
        cmd = self.build_bootstrap_command(host, ssh_flags)

        result = self.runner.run(cmd, input_text=script, capture=False)
        if result.returncode != 0:
            raise BootstrapError(format_command(cmd), script, result.returncode)

    def build_server_command(self, remote_port: str, remote_dir: str) -> str:
        """Remote shell command that starts code-server in ``remote_dir``."""
        server = remote_path_arg(self.server_path)
        return (
            f"cd {remote_path_arg(remote_dir)}; "
            f"{server} --host 127.0.0.1 --allow-http --no-auth --port={shlex.quote(remote_port)}"
        )

    def build_tunnel_command(
        self,
        host: str,
        ssh_flags: str,
        bind_address: str,
        remote_port: str,
        remote_dir: str,
    ) -> list[str]:
        return [
            "ssh",
            "-tt",
            "-q",
            "-L",
            f"{bind_address}:localhost:{remote_port}",
            *ssh_flag_args(ssh_flags),
            host,
            self.build_server_command(remote_port, remote_dir),
        ]

    def start_tunnel(
        self,
        host: str,
        ssh_flags: str,
        bind_address: str,
        remote_port: str,
        remote_dir: str,
    ) -> TunnelHandle:
        """Start code-server on the remote host and forward it locally.

        Returns as soon as the process is spawned; readiness is checked
        separately.

        Raises:
            StartError: If the ssh process cannot be started
        """
        cmd = self.build_tunnel_command(host, ssh_flags, bind_address, remote_port, remote_dir)

        try:
            process = self.runner.spawn(cmd)
        except OSError as e:
            raise StartError(
                f"failed to start code-server: {e}", command=format_command(cmd)
            ) from e

        return TunnelHandle(
            command=cmd,
            bind_address=bind_address,
            remote_port=remote_port,
            process=process,
        )


__all__ = [
    "DEFAULT_SERVER_DOWNLOAD_URL",
    "DEFAULT_SERVER_PATH",
    "TunnelHandle",
    "TunnelOrchestrator",
    "build_bootstrap_script",
    "remote_path_arg",
    "ssh_flag_args",
]
