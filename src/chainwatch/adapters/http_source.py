"""HTTP metrics source backed by httpx."""

import asyncio
import logging

import httpx

from chainwatch.core.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3.0

_HEADERS = {"Accept": "text/plain; version=0.0.4"}


class HttpMetricsSource:
    """MetricsSourcePort implementation that GETs the node's metrics endpoint.

    The timeout bounds the whole request, connect through body. Every failure
    mode (transport error, timeout, non-2xx status) surfaces as ``FetchError``.

    Args:
        node_name: Node the endpoint belongs to, used in error messages.
        url: Full metrics URL, e.g. ``http://127.0.0.1:12798/metrics``.
        timeout: Seconds allowed per request.
        client: Shared client to use. A private client is created (and
            closed by ``aclose``) when omitted.
    """

    def __init__(
        self,
        node_name: str,
        url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.node_name = node_name
        self.url = url
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(headers=_HEADERS)

    async def fetch(self) -> str:
        """Return the exposition body.

        Raises:
            FetchError: On network failure, timeout or non-success status.
        """
        try:
            async with asyncio.timeout(self.timeout):
                response = await self._client.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise FetchError(
                self.node_name, f"timed out after {self.timeout:g}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                self.node_name, f"HTTP {exc.response.status_code} from {self.url}"
            ) from exc
        except httpx.HTTPError as exc:
            reason = str(exc) or type(exc).__name__
            raise FetchError(self.node_name, reason) from exc
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
