"""External command execution behind a narrow, fakeable interface.

Every external tool codetunnel drives (ssh, rsync, gcloud, az) is invoked
through a CommandRunner, so the session can be exercised in tests without
spawning real processes.

Philosophy:
- Single responsibility: Execute subprocesses safely
- Standard library only (no external dependencies)
- No shell=True: commands are argument lists

Public API (the "studs"):
    CommandResult: Result dataclass
    CommandRunner: Protocol implemented by runners and test fakes
    SubprocessRunner: Real implementation
    safe_run: Captured execution with pipe deadlock prevention
"""

import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a command execution."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def output(self) -> str:
        """Combined stdout and stderr, in that order."""
        return self.stdout + self.stderr


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for running external commands.

    Implementations must never use a shell; ``cmd`` is always an argument list.
    """

    def run(
        self,
        cmd: list[str],
        *,
        input_text: str | None = None,
        capture: bool = True,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            cmd: Command and arguments
            input_text: Text fed to the command's stdin (optional)
            capture: Capture output instead of streaming it to the terminal
            timeout: Timeout in seconds (None = no timeout)

        Returns:
            CommandResult with exit code and any captured output
        """
        ...

    def spawn(self, cmd: list[str]) -> subprocess.Popen:
        """Start a long-lived command attached to the terminal, without waiting.

        Raises:
            OSError: If the process cannot be started
        """
        ...


def format_command(cmd: list[str]) -> str:
    """Render an argument list as a copy-pasteable shell command."""
    return shlex.join(cmd)


def safe_run(
    cmd: list[str],
    input_text: str | None = None,
    timeout: int | None = 30,
) -> CommandResult:
    """
    Execute subprocess with pipe deadlock prevention.

    Uses background threads to drain stdout/stderr pipes,
    preventing buffer overflow that causes deadlocks.

    Args:
        cmd: Command and arguments
        input_text: Text written to stdin before it is closed
        timeout: Timeout in seconds (None = no timeout)

    Returns:
        CommandResult with output and exit code

    Example:
        >>> result = safe_run(["echo", "hello"])
        >>> assert result.returncode == 0
        >>> assert "hello" in result.stdout.lower()
    """
    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError:
        # Command not found - return standard exit code 127
        return CommandResult(
            returncode=127,
            stderr=f"Command not found: {cmd[0] if cmd else 'unknown'}",
        )
    except (PermissionError, OSError) as e:
        return CommandResult(returncode=1, stderr=f"Error executing command: {e!s}")

    stdout_data: list[bytes] = []
    stderr_data: list[bytes] = []

    def drain_pipe(pipe: IO[bytes], storage: list[bytes]) -> None:
        """Read from pipe until EOF, store in list."""
        try:
            data = pipe.read()
            if data:
                storage.append(data)
        except OSError:
            # Pipe closed - normal during process termination
            pass

    stdout_thread = threading.Thread(target=drain_pipe, args=(process.stdout, stdout_data))
    stderr_thread = threading.Thread(target=drain_pipe, args=(process.stderr, stderr_data))

    stdout_thread.daemon = True
    stderr_thread.daemon = True

    stdout_thread.start()
    stderr_thread.start()

    if input_text is not None and process.stdin is not None:
        try:
            process.stdin.write(input_text.encode("utf-8"))
            process.stdin.close()
        except BrokenPipeError:
            # Command exited without reading all of its input
            pass

    timed_out = False
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    stdout_thread.join(timeout=1)
    stderr_thread.join(timeout=1)

    returncode = process.returncode if process.returncode is not None else -1

    stdout = stdout_data[0].decode("utf-8", errors="replace") if stdout_data else ""
    stderr = stderr_data[0].decode("utf-8", errors="replace") if stderr_data else ""

    return CommandResult(
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
        timed_out=timed_out,
    )


class SubprocessRunner:
    """Run commands with the subprocess module.

    Captured runs go through safe_run. Uncaptured runs and spawned processes
    inherit the terminal's stdio so ssh prompts (host keys, passphrases) and
    rsync progress reach the user.
    """

    def run(
        self,
        cmd: list[str],
        *,
        input_text: str | None = None,
        capture: bool = True,
        timeout: int | None = None,
    ) -> CommandResult:
        logger.debug(f"Running: {format_command(cmd)}")

        if capture:
            return safe_run(cmd, input_text=input_text, timeout=timeout)

        try:
            completed = subprocess.run(
                cmd,
                input=input_text,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(
                returncode=127,
                stderr=f"Command not found: {cmd[0] if cmd else 'unknown'}",
            )
        except subprocess.TimeoutExpired:
            return CommandResult(returncode=-1, timed_out=True)

        return CommandResult(returncode=completed.returncode)

    def spawn(self, cmd: list[str]) -> subprocess.Popen:
        logger.debug(f"Spawning: {format_command(cmd)}")
        return subprocess.Popen(cmd)


__all__ = ["CommandResult", "CommandRunner", "SubprocessRunner", "format_command", "safe_run"]
