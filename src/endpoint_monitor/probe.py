"""HTTP probe clients used to check endpoints."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0

# Responses meaning the server refuses HEAD rather than reporting its health.
METHOD_REJECTED_STATUS_CODES = (405, 501)


class ProbeError(Exception):
    """Raised when an endpoint could not be probed."""


@dataclass(frozen=True)
class ProbeResult:
    status_code: int
    elapsed_ms: int


class ProbeClient(Protocol):
    async def check(self, url: str) -> ProbeResult: ...


class HttpxProbeClient:
    """Probes with HEAD first and falls back to GET when HEAD fails or is rejected."""

    def __init__(
        self,
        timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the probe client.

        Args:
            timeout: Timeout in seconds applied to each attempt
            transport: Optional transport, mainly for tests
        """
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def check(self, url: str) -> ProbeResult:
        try:
            result = await self._request("HEAD", url)
        except httpx.HTTPError as e:
            logger.debug(f"HEAD probe failed, falling back to GET - url: {url}, error: {e!r}")
        else:
            if result.status_code not in METHOD_REJECTED_STATUS_CODES:
                return result
            logger.debug(f"HEAD rejected, falling back to GET - url: {url}, status: {result.status_code}")

        try:
            return await self._request("GET", url)
        except httpx.TimeoutException as e:
            raise ProbeError(f"Timed out after {self.timeout:g}s") from e
        except httpx.ConnectError as e:
            raise ProbeError("Cannot connect to host") from e
        except httpx.HTTPError as e:
            raise ProbeError(str(e) or "Invalid response") from e

    async def _request(self, method: str, url: str) -> ProbeResult:
        start = time.monotonic()
        response = await self._client.request(method, url, timeout=self.timeout)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        return ProbeResult(status_code=response.status_code, elapsed_ms=elapsed_ms)


class SimulatedProbeClient:
    """Randomized probe for demos: mostly healthy, sometimes 502, sometimes failing."""

    def __init__(self, rng: Optional[random.Random] = None, sleep: bool = True) -> None:
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def close(self) -> None:
        return None

    async def check(self, url: str) -> ProbeResult:
        latency_ms = self._rng.randint(350, 1200)
        if self._sleep:
            await asyncio.sleep(latency_ms / 1000)

        roll = self._rng.randint(1, 100)
        if roll <= 70:
            return ProbeResult(status_code=200, elapsed_ms=latency_ms)
        if roll <= 85:
            return ProbeResult(status_code=502, elapsed_ms=latency_ms)
        raise ProbeError("Invalid response")
