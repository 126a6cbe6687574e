"""Readiness probing for the tunneled code-server.

code-server exposes no health endpoint, so "accepts a connection and answers
HTTP with anything" is the readiness criterion. A server that is up but broken
passes the probe; that is a known limitation.
"""

import logging
import time
from collections.abc import Callable

import requests

from codetunnel.errors import ReadinessTimeoutError

logger = logging.getLogger(__name__)


class ReadinessProbe:
    """Poll a URL until it answers or a deadline passes.

    Attempts run back to back with no backoff; each one is bounded by
    ``attempt_timeout``.
    """

    DEFAULT_TIMEOUT = 15.0
    ATTEMPT_TIMEOUT = 3.0

    def __init__(
        self,
        session: requests.Session | None = None,
        attempt_timeout: float = ATTEMPT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session or requests.Session()
        self.attempt_timeout = attempt_timeout
        self.clock = clock

    def wait_until_ready(self, url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Block until ``url`` returns any HTTP response.

        Args:
            url: URL to poll
            timeout: Overall deadline in seconds

        Raises:
            ReadinessTimeoutError: If no response arrived before the deadline
        """
        deadline = self.clock() + timeout
        attempts = 0

        while self.clock() < deadline:
            attempts += 1
            try:
                response = self.session.get(url, timeout=self.attempt_timeout)
            except requests.RequestException as e:
                logger.debug(f"{url} not ready (attempt {attempts}): {e}")
                continue

            response.close()
            logger.debug(f"{url} answered with {response.status_code} after {attempts} attempt(s)")
            return

        raise ReadinessTimeoutError(url, timeout)


__all__ = ["ReadinessProbe"]
