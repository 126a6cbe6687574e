"""Session orchestration.

SessionController runs one remote code-server session end to end:

    resolve -> bootstrap -> sync-in -> tunnel-up -> probe -> open
            -> wait-for-end -> sync-back

Every stage is synchronous and fatal on failure; nothing is retried at this
level. The only concurrency is the race at the end of the running state
between the tunnel process exiting and the user interrupting, settled by a
SignalLatch.

Public API:
    SessionOptions: Immutable per-session options
    SessionState: States of the session state machine
    SessionController: The state machine
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum

from codetunnel.browser import BrowserLauncher
from codetunnel.errors import CodeTunnelError
from codetunnel.host_resolver import HostResolver, ResolvedHost
from codetunnel.lifecycle import InterruptListener, SessionSignal, SignalLatch
from codetunnel.port_allocator import PortAllocator
from codetunnel.readiness import ReadinessProbe
from codetunnel.sync import SyncCoordinator
from codetunnel.tunnel import TunnelHandle, TunnelOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionOptions:
    """Options for one session, built once from CLI flags and config."""

    skip_sync: bool = False
    sync_back: bool = False
    open_browser: bool = True
    bind_address: str = ""
    remote_port: str | None = None
    ssh_flags: str = ""

    @property
    def should_sync_back(self) -> bool:
        # Skipping sync overrides an explicit request to sync back
        return self.sync_back and not self.skip_sync


class SessionState(Enum):
    """States of a session."""

    RESOLVING = "resolving"
    BOOTSTRAPPING = "bootstrapping"
    SYNCING_IN = "syncing_in"
    TUNNEL_STARTING = "tunnel_starting"
    PROBING = "probing"
    RUNNING = "running"
    SYNCING_BACK = "syncing_back"
    DONE = "done"
    FAILED = "failed"


class SessionController:
    """Compose resolver, tunnel, sync, probe and browser into one session.

    All collaborators are injectable so a session can run against fakes.

    Example:
        >>> controller = SessionController()
        >>> controller.run("gcp:my-instance", "~/project", SessionOptions(sync_back=True))
        <SessionState.DONE: 'done'>
    """

    # Main-thread wake interval while waiting for the session to end
    WAIT_POLL_INTERVAL = 0.5

    def __init__(
        self,
        resolver: HostResolver | None = None,
        port_allocator: PortAllocator | None = None,
        tunnel: TunnelOrchestrator | None = None,
        sync: SyncCoordinator | None = None,
        probe: ReadinessProbe | None = None,
        browser: BrowserLauncher | None = None,
        interrupts: InterruptListener | None = None,
        readiness_timeout: float = ReadinessProbe.DEFAULT_TIMEOUT,
    ):
        self.resolver = resolver or HostResolver()
        self.port_allocator = port_allocator or PortAllocator()
        self.tunnel = tunnel or TunnelOrchestrator()
        self.sync = sync or SyncCoordinator()
        self.probe = probe or ReadinessProbe()
        self.browser = browser or BrowserLauncher()
        self.interrupts = interrupts or InterruptListener()
        self.readiness_timeout = readiness_timeout

        self.state: SessionState | None = None
        self.states: list[SessionState] = []
        self.signal: SessionSignal | None = None
        self.resolved_host: ResolvedHost | None = None
        self.options: SessionOptions | None = None
        self.url: str | None = None

    def _enter(self, state: SessionState) -> None:
        logger.debug(f"Session state: {state.value}")
        self.state = state
        self.states.append(state)

    def run(self, host_specifier: str, remote_dir: str, options: SessionOptions) -> SessionState:
        """Run a session to completion.

        Args:
            host_specifier: Host as typed by the user (``gcp:``/``azure:`` prefixes allowed)
            remote_dir: Remote directory code-server opens in
            options: Session options

        Returns:
            SessionState.DONE

        Raises:
            CodeTunnelError: The failing stage's error, after entering FAILED
        """
        try:
            return self._run(host_specifier, remote_dir, options)
        except (CodeTunnelError, KeyboardInterrupt):
            self._enter(SessionState.FAILED)
            raise

    def _run(self, host_specifier: str, remote_dir: str, options: SessionOptions) -> SessionState:
        self._enter(SessionState.RESOLVING)
        logger.info("ensuring code-server is updated...")
        host = self.resolver.resolve(host_specifier)
        self.resolved_host = host
        options = self.resolve_options(options, host)
        self.options = options

        self._enter(SessionState.BOOTSTRAPPING)
        self.tunnel.bootstrap(host.address, options.ssh_flags)

        if not options.skip_sync:
            self._enter(SessionState.SYNCING_IN)
            self.sync.push_all(host.address, options.ssh_flags)

        self._enter(SessionState.TUNNEL_STARTING)
        logger.info("starting code-server...")
        logger.info(f"Tunneling remote port {options.remote_port} to {options.bind_address}")
        handle = self.tunnel.start_tunnel(
            host.address,
            options.ssh_flags,
            options.bind_address,
            options.remote_port or "",
            remote_dir,
        )
        self.url = f"http://{options.bind_address}"

        self._enter(SessionState.PROBING)
        try:
            self.probe.wait_until_ready(self.url, timeout=self.readiness_timeout)
        except (CodeTunnelError, KeyboardInterrupt):
            handle.terminate()
            raise

        self._enter(SessionState.RUNNING)
        if options.open_browser:
            self.browser.open(self.url)
        logger.info(f"code-server is ready at {self.url}")
        self.signal = self.wait_for_end(handle)
        handle.terminate()

        if not options.should_sync_back:
            logger.info("shutting down")
            self._enter(SessionState.DONE)
            return SessionState.DONE

        self._enter(SessionState.SYNCING_BACK)
        logger.info("synchronizing VS Code back to local")
        self.sync.pull_all(host.address, options.ssh_flags)

        self._enter(SessionState.DONE)
        return SessionState.DONE

    def resolve_options(self, options: SessionOptions, host: ResolvedHost) -> SessionOptions:
        """Fill in the ssh flags, bind address and remote port for this session.

        Raises:
            ParseError: If the bind address or remote port is malformed
            NoFreePortError: If a port could not be allocated
        """
        ssh_flags = options.ssh_flags
        if host.extra_flags:
            ssh_flags = " ".join(part for part in (host.extra_flags, ssh_flags) if part)

        bind_address = self.port_allocator.resolve_bind_address(options.bind_address)
        if options.remote_port:
            remote_port = self.port_allocator.validate_port(options.remote_port)
        else:
            remote_port = str(self.port_allocator.allocate())

        return replace(
            options,
            ssh_flags=ssh_flags,
            bind_address=bind_address,
            remote_port=remote_port,
        )

    def wait_for_end(self, handle: TunnelHandle) -> SessionSignal:
        """Block until the tunnel exits or the user interrupts.

        The first signal wins; the other watcher is abandoned.
        """
        latch = SignalLatch()
        handle.wait_for_exit(lambda _returncode: latch.fire(SessionSignal.TUNNEL_ENDED))

        with self.interrupts.install(lambda: latch.fire(SessionSignal.USER_INTERRUPTED)):
            winner = latch.wait(self.WAIT_POLL_INTERVAL)
            while winner is None:
                winner = latch.wait(self.WAIT_POLL_INTERVAL)

        logger.debug(f"Session ended: {winner.value}")
        return winner


__all__ = ["SessionController", "SessionOptions", "SessionState"]
