"""Local port allocation and bind address parsing.

The allocator only certifies that a port was free at the instant it was
checked: the probe listener is closed before the port is returned, so the
caller must claim it promptly.

Public API:
    PortAllocator: Random free-port finder and bind address parser
"""

import logging
import random
import socket

from codetunnel.errors import NoFreePortError, ParseError

logger = logging.getLogger(__name__)


class PortAllocator:
    """Find free local TCP ports.

    Args:
        rng: Random source used to pick candidate ports. Pass a seeded
            ``random.Random`` for deterministic behavior.
    """

    MIN_PORT = 1024
    MAX_PORT = 65535
    MAX_TRIES = 10

    DEFAULT_HOST = "127.0.0.1"

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()  # noqa: S311

    def allocate(self) -> int:
        """Pick a random port that is currently free on all interfaces.

        Returns:
            Port number in [1024, 65535]

        Raises:
            NoFreePortError: If every try hit a port in use
        """
        for _ in range(self.MAX_TRIES):
            port = self.rng.randint(self.MIN_PORT, self.MAX_PORT)
            if self._is_port_free(port):
                return port
            logger.debug(f"port taken: {port}")

        raise NoFreePortError(self.MAX_TRIES)

    @staticmethod
    def _is_port_free(port: int) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind(("", port))
                return True
        except OSError:
            return False

    def parse_bind_address(self, raw: str) -> tuple[str, str]:
        """Split a ``host:port`` bind address, filling in missing parts.

        An empty host becomes 127.0.0.1 and an empty port is allocated.
        IPv6 hosts must be bracketed (``[::1]:8080``).

        Args:
            raw: Bind address as typed by the user ("" means ":")

        Returns:
            Tuple of (host, port)

        Raises:
            ParseError: If raw is not of the form host:port
            NoFreePortError: If a port had to be allocated and none was free

        Example:
            >>> PortAllocator().parse_bind_address("0.0.0.0:8080")
            ('0.0.0.0', '8080')
        """
        address = raw.strip() or ":"

        if address.startswith("["):
            end = address.find("]")
            if end == -1:
                raise ParseError(f"address {raw}: missing ']' in address", raw=raw)
            host = address[1:end]
            rest = address[end + 1 :]
            if not rest.startswith(":"):
                raise ParseError(f"address {raw}: missing port in address", raw=raw)
            port = rest[1:]
        else:
            if ":" not in address:
                raise ParseError(f"address {raw}: missing port in address", raw=raw)
            host, port = address.rsplit(":", 1)
            if ":" in host:
                raise ParseError(f"address {raw}: too many colons in address", raw=raw)

        if port and not port.isdigit():
            raise ParseError(f"address {raw}: invalid port {port!r}", raw=raw)
        if port and int(port) > self.MAX_PORT:
            raise ParseError(f"address {raw}: port {port} out of range", raw=raw)

        if not host:
            host = self.DEFAULT_HOST
        if not port:
            port = str(self.allocate())

        return host, port

    def validate_port(self, port: str) -> str:
        """Check a user-supplied remote port.

        Raises:
            ParseError: If port is not an integer in [1, 65535]
        """
        candidate = port.strip()
        if not candidate.isdigit() or not 0 < int(candidate) <= self.MAX_PORT:
            raise ParseError(f"invalid remote port {port!r}", raw=port)
        return candidate

    @staticmethod
    def format_bind_address(host: str, port: str) -> str:
        """Join host and port, bracketing IPv6 hosts."""
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"

    def resolve_bind_address(self, raw: str) -> str:
        """Parse and re-join a bind address so both parts are filled in."""
        host, port = self.parse_bind_address(raw)
        return self.format_bind_address(host, port)


__all__ = ["PortAllocator"]
