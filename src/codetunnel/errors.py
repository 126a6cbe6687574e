"""Exception hierarchy for codetunnel.

Every stage of a session raises its own error type. All of them derive from
CodeTunnelError so the CLI can report any session failure uniformly, and each
carries the command line, script, or paths needed to reproduce the step by hand.

Public API:
    CodeTunnelError: Base class for all session failures
    ResolutionError: Host specifier could not be resolved
    ParseError: Malformed bind address
    NoFreePortError: Port allocation exhausted its tries
    BootstrapError: Remote preparation script failed
    StartError: Tunnel process could not be spawned
    ReadinessTimeoutError: Server did not answer before the deadline
    SyncError: rsync invocation failed
    ConfigError: Configuration file problems
"""


class CodeTunnelError(Exception):
    """Base exception for codetunnel errors."""

    pass


class ResolutionError(CodeTunnelError):
    """Raised when a host specifier cannot be resolved."""

    def __init__(self, message: str, command: str | None = None, output: str = ""):
        super().__init__(message)
        self.command = command
        self.output = output


class ParseError(CodeTunnelError):
    """Raised when a bind address is not of the form host:port."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class NoFreePortError(CodeTunnelError):
    """Raised when no free local port was found."""

    def __init__(self, attempts: int):
        super().__init__(f"max number of tries exceeded: {attempts}")
        self.attempts = attempts


class BootstrapError(CodeTunnelError):
    """Raised when the remote bootstrap script fails."""

    def __init__(self, command: str, script: str, returncode: int):
        super().__init__(
            f"failed to update code-server (exit code {returncode}):\n"
            f"---ssh cmd---\n{command}\n"
            f"---download script---\n{script}"
        )
        self.command = command
        self.script = script
        self.returncode = returncode


class StartError(CodeTunnelError):
    """Raised when the tunnel process cannot be started."""

    def __init__(self, message: str, command: str = ""):
        super().__init__(message)
        self.command = command


class ReadinessTimeoutError(CodeTunnelError):
    """Raised when the server does not answer within the deadline."""

    def __init__(self, url: str, timeout: float):
        super().__init__(f"code-server didn't start in time: no response from {url} within {timeout:g}s")
        self.url = url
        self.timeout = timeout


class SyncError(CodeTunnelError):
    """Raised when an rsync transfer fails."""

    def __init__(self, source: str, destination: str, reason: str = ""):
        message = f"failed to rsync '{source}' to '{destination}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.source = source
        self.destination = destination


class ConfigError(CodeTunnelError):
    """Raised when configuration operations fail."""

    pass


__all__ = [
    "BootstrapError",
    "CodeTunnelError",
    "ConfigError",
    "NoFreePortError",
    "ParseError",
    "ReadinessTimeoutError",
    "ResolutionError",
    "StartError",
    "SyncError",
]
