"""
Pre-flight checks run before a sync commits any resources.

The gate answers three questions:

- Is the network usable? DNS for the API and raw-content hosts plus one
  lightweight probe that must answer 204 (or 200).
- Is the API healthy? The remaining call budget must be above zero.
- Is there enough budget for this batch? One call for the health check plus
  the calls each lookup will make.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import httpx

from blobsync.core.config.models import ConnectivityConfig
from blobsync.core.exceptions import BlobsyncError, NetworkUnavailableError, RateLimitedError
from blobsync.core.github.client import GitHubClient
from blobsync.core.github.models import RateLimitStatus

logger = logging.getLogger(__name__)

PROBE_OK_STATUS = frozenset({200, 204})


class HasRef(Protocol):
    @property
    def ref(self) -> str | None: ...


class PreflightGate:
    """
    Connectivity and API budget gate.

    Example:
        >>> gate = PreflightGate(client, ConnectivityConfig(wait_timeout_seconds=10))
        >>> if gate.wait_for_connectivity():
        ...     status = gate.check_health()
        ...     gate.ensure_budget(gate.estimate_calls(descriptors), status)
    """

    def __init__(
        self,
        client: GitHubClient,
        config: ConnectivityConfig | None = None,
        *,
        resolve: Callable[..., Any] = socket.getaddrinfo,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.config = config or ConnectivityConfig()
        self._resolve = resolve
        self._sleep = sleep
        self._clock = clock

    def _resolves(self, host: str) -> bool:
        try:
            self._resolve(host, 443)
            return True
        except (OSError, UnicodeError) as e:
            logger.debug("DNS lookup for %s failed: %s", host, e)
            return False

    def check_connectivity(self) -> bool:
        """Both hosts resolve and the probe answers with no content/ok."""
        for host in (self.client.api_host, self.client.raw_host):
            if not self._resolves(host):
                return False

        try:
            status = self.client.probe(
                self.config.probe_url, timeout=self.config.probe_timeout_seconds
            )
        except httpx.HTTPError as e:
            logger.debug("Connectivity probe failed: %s", e)
            return False

        if status not in PROBE_OK_STATUS:
            logger.debug("Connectivity probe answered HTTP %d", status)
            return False
        return True

    def wait_for_connectivity(
        self, timeout: float | None = None, interval: float | None = None
    ) -> bool:
        """
        Poll ``check_connectivity`` at a fixed interval until it succeeds or
        ``timeout`` seconds have elapsed.
        """
        timeout = self.config.wait_timeout_seconds if timeout is None else timeout
        interval = self.config.poll_interval_seconds if interval is None else interval
        deadline = self._clock() + timeout

        attempt = 0
        while True:
            attempt += 1
            if self.check_connectivity():
                if attempt > 1:
                    logger.info("Connectivity available after %d checks", attempt)
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning("No connectivity after %d checks (%.0fs)", attempt, timeout)
                return False
            self._sleep(min(interval, remaining))

    def check_health(self) -> RateLimitStatus:
        """
        Query the remaining API budget.

        Raises:
            NetworkUnavailableError: If the query fails or no calls remain
        """
        try:
            status = self.client.rate_limit()
        except BlobsyncError as e:
            raise NetworkUnavailableError(f"API health check failed: {e}") from e

        if not status.healthy:
            raise NetworkUnavailableError(
                "API call budget exhausted",
                remaining=status.remaining,
                reset_at=status.reset_at,
            )
        logger.debug("API budget: %d/%d remaining", status.remaining, status.limit)
        return status

    @staticmethod
    def estimate_calls(descriptors: Iterable[HasRef]) -> int:
        """
        API calls needed to resolve ``descriptors``, including the health check.

        Each lookup costs one commit query, plus one default-branch lookup
        when the descriptor names no ref.
        """
        required = 1
        for descriptor in descriptors:
            required += 1 if descriptor.ref else 2
        return required

    @staticmethod
    def ensure_budget(required: int, status: RateLimitStatus) -> None:
        """
        Raises:
            RateLimitedError: If ``required`` exceeds the remaining budget
        """
        if required > status.remaining:
            raise RateLimitedError(
                f"Batch needs {required} API calls but only {status.remaining} remain",
                reset_at=status.reset_at,
                required=required,
                remaining=status.remaining,
            )


__all__ = ["PreflightGate", "PROBE_OK_STATUS"]
