"""Best-effort IP geolocation for discovered peers.

Locations are cached for the lifetime of the process in a single cache
shared by every node, since the same peer often connects to several nodes.
"""

import dataclasses
import ipaddress
import logging
import threading
from collections.abc import Iterable, Mapping, Sequence

import httpx

from chainwatch.core.models import PeerRecord
from chainwatch.core.ports import LocationResolverPort

logger = logging.getLogger(__name__)

IP_API_BATCH_URL = "http://ip-api.com/batch"
IP_API_BATCH_LIMIT = 100
PRIVATE_LOCATION = "private"
UNKNOWN_LOCATION = "unknown"


def is_private_address(address: str) -> bool:
    """True for addresses that public geolocation cannot resolve."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


class LocationCache:
    """Thread-safe address to location cache.

    The lock only guards the dictionaries. Lookups against the resolver run
    with the lock released; addresses being resolved are tracked as pending
    so concurrent callers do not request them twice.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._pending: set[str] = set()
        self._lock = threading.Lock()

    def get(self, address: str) -> str | None:
        with self._lock:
            return self._entries.get(address)

    def claim(self, addresses: Iterable[str]) -> list[str]:
        """Mark uncached addresses as pending and return the ones to resolve.

        Private addresses are answered locally and never returned.
        """
        to_resolve: list[str] = []
        with self._lock:
            for address in dict.fromkeys(addresses):
                if address in self._entries or address in self._pending:
                    continue
                if is_private_address(address):
                    self._entries[address] = PRIVATE_LOCATION
                    continue
                self._pending.add(address)
                to_resolve.append(address)
        return to_resolve

    def fill(self, results: Mapping[str, str], requested: Iterable[str]) -> None:
        """Store resolved locations and release the pending claim.

        Requested addresses missing from ``results`` stay uncached and are
        retried on a later lookup.
        """
        with self._lock:
            self._entries.update(results)
            self._pending.difference_update(requested)

    async def resolve(
        self, addresses: Iterable[str], resolver: LocationResolverPort
    ) -> int:
        """Resolve uncached addresses through ``resolver``.

        Returns:
            Number of addresses newly cached by the resolver.
        """
        to_resolve = self.claim(addresses)
        if not to_resolve:
            return 0
        results: dict[str, str] = {}
        try:
            results = await resolver.lookup(to_resolve)
        finally:
            self.fill(results, to_resolve)
        return len(results)

    def annotate(self, peers: Iterable[PeerRecord]) -> tuple[PeerRecord, ...]:
        """Copy peers with their cached location filled in (None if pending)."""
        with self._lock:
            entries = dict(self._entries)
        return tuple(
            dataclasses.replace(peer, location=entries.get(peer.address))
            for peer in peers
        )

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._pending.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


LOCATION_CACHE = LocationCache()


def format_location(document: Mapping[str, object]) -> str:
    """Render an ip-api.com result as ``City, CC``, ``CC`` or ``unknown``."""
    if document.get("status") != "success":
        return UNKNOWN_LOCATION
    city = str(document.get("city") or "").strip()
    country = str(document.get("countryCode") or "").strip()
    if city and country:
        return f"{city}, {country}"
    return country or city or UNKNOWN_LOCATION


class IpApiResolver:
    """LocationResolverPort implementation using the ip-api.com batch API.

    Args:
        client: Shared client. A private one is created when omitted.
        url: Batch endpoint.
        batch_size: Addresses per request (the service accepts at most 100).
        timeout: Seconds allowed per request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        url: str = IP_API_BATCH_URL,
        batch_size: int = IP_API_BATCH_LIMIT,
        timeout: float = 5.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self.url = url
        self.batch_size = min(batch_size, IP_API_BATCH_LIMIT)
        self.timeout = timeout

    async def lookup(self, addresses: Sequence[str]) -> dict[str, str]:
        """Resolve addresses. Failed batches are logged and omitted."""
        results: dict[str, str] = {}
        for start in range(0, len(addresses), self.batch_size):
            batch = list(addresses[start : start + self.batch_size])
            results.update(await self._lookup_batch(batch))
        return results

    async def _lookup_batch(self, batch: list[str]) -> dict[str, str]:
        query = [
            {"query": address, "fields": "status,countryCode,city,query"}
            for address in batch
        ]
        try:
            response = await self._client.post(
                self.url, json=query, timeout=self.timeout
            )
            response.raise_for_status()
            documents = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Geolocation lookup failed for %d addresses: %s", len(batch), exc
            )
            return {}
        if not isinstance(documents, list):
            logger.warning("Unexpected geolocation response: %r", documents)
            return {}

        results: dict[str, str] = {}
        for address, document in zip(batch, documents):
            if isinstance(document, dict):
                results[address] = format_location(document)
        return results

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
