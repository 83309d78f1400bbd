"""FastAPI adapter exposing node snapshots to a presentation layer.

The API is read-only apart from three one-way triggers: refresh a node,
refresh its peer list and change the selected node.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import fields
from typing import Any

from fastapi import APIRouter, FastAPI, HTTPException, Query, Response

from chainwatch.adapters.storage.alert_log import sanitize_node_name
from chainwatch.core.encoding.ndjson import encode_logs
from chainwatch.core.errors import StorageError
from chainwatch.core.models import Alert, NodeSnapshot, NormalizedMetrics, PeerRecord
from chainwatch.core.peers import PeerStats
from chainwatch.core.ports import LogStoragePort
from chainwatch.runtime.orchestrator import MonitorRuntime


def encode_metrics(metrics: NormalizedMetrics) -> dict[str, Any]:
    return {f.name: getattr(metrics, f.name) for f in fields(metrics)}


def encode_alert(alert: Alert) -> dict[str, Any]:
    return {
        "kind": alert.kind.value,
        "severity": alert.severity.value,
        "triggered_at": alert.triggered_at,
        "node": alert.node_name,
        "title": alert.title,
        "message": alert.message,
    }


def encode_peer(peer: PeerRecord) -> dict[str, Any]:
    return {
        "address": peer.address,
        "port": peer.port,
        "direction": peer.direction.value,
        "rtt_ms": peer.rtt_ms,
        "queue_depth": peer.queue_depth,
        "latency": peer.latency_bucket.value,
        "location": peer.location,
    }


def encode_peer_stats(stats: PeerStats) -> dict[str, Any]:
    return {
        "total": stats.total,
        "incoming": stats.incoming,
        "outgoing": stats.outgoing,
        "by_latency": {
            bucket.value: count for bucket, count in stats.by_latency.items()
        },
        "avg_rtt_ms": stats.avg_rtt_ms,
        "max_queue_depth": stats.max_queue_depth,
    }


def encode_summary(snapshot: NodeSnapshot) -> dict[str, Any]:
    """Compact view of a node for list endpoints."""
    return {
        "name": snapshot.node_name,
        "role": snapshot.role.value,
        "network": snapshot.network,
        "version": snapshot.version,
        "status": snapshot.status.state.value,
        "reason": snapshot.status.reason,
        "health": snapshot.overall_health.value,
        "block_height": snapshot.metrics.block_height,
        "connected_peers": snapshot.metrics.connected_peers,
        "last_updated": snapshot.last_updated,
    }


def encode_snapshot(snapshot: NodeSnapshot) -> dict[str, Any]:
    """Full JSON-compatible view of a node snapshot."""
    aggregate = snapshot.aggregate_peers
    return {
        **encode_summary(snapshot),
        "implementation": snapshot.metrics.implementation.value,
        "metrics": encode_metrics(snapshot.metrics),
        "dimensions": {
            dimension.value: level.value
            for dimension, level in snapshot.health.items()
        },
        "trends": {
            name: direction.value for name, direction in snapshot.trends.items()
        },
        "history": {
            name: [[s.timestamp, s.value] for s in samples]
            for name, samples in snapshot.history.items()
        },
        "tip_age_seconds": snapshot.tip_age_seconds,
        "discovery_mode": snapshot.discovery_mode.value,
        "peers": [encode_peer(peer) for peer in snapshot.peers],
        "peer_stats": encode_peer_stats(PeerStats.from_peers(snapshot.peers)),
        "aggregate_peers": {
            "hot": aggregate.hot,
            "warm": aggregate.warm,
            "cold": aggregate.cold,
            "incoming": aggregate.incoming,
            "outgoing": aggregate.outgoing,
            "duplex": aggregate.duplex,
        },
        "alerts": [encode_alert(alert) for alert in snapshot.alerts],
        "fetch_count": snapshot.fetch_count,
    }


def create_router(
    runtime: MonitorRuntime,
    log_storage: LogStoragePort | None = None,
) -> APIRouter:
    """Create a FastAPI router over a running ``MonitorRuntime``.

    Args:
        runtime: Runtime whose sessions are exposed.
        log_storage: Engine log buffer served at ``/logs``; the endpoint is
            omitted when None.

    Returns:
        APIRouter with the node, alert and log endpoints configured.
    """
    router = APIRouter()

    def lookup(name: str) -> NodeSnapshot:
        try:
            return runtime.snapshot(name)
        except KeyError as exc:
            raise HTTPException(
                status_code=404, detail=f"unknown node {name!r}"
            ) from exc

    @router.get("/nodes")
    async def list_nodes() -> dict[str, Any]:
        return {
            "selected": runtime.selected,
            "nodes": [encode_summary(s) for s in runtime.snapshots()],
        }

    @router.get("/nodes/{name}")
    async def get_node(name: str) -> dict[str, Any]:
        return encode_snapshot(lookup(name))

    @router.post("/nodes/{name}/refresh")
    async def refresh_node(name: str) -> dict[str, Any]:
        lookup(name)
        return encode_snapshot(await runtime.refresh(name))

    @router.post("/nodes/{name}/peers/refresh")
    async def refresh_peers(name: str) -> dict[str, Any]:
        lookup(name)
        return encode_snapshot(await runtime.refresh_peers(name))

    @router.post("/nodes/{name}/select")
    async def select_node(name: str) -> dict[str, Any]:
        lookup(name)
        runtime.select(name)
        return {"selected": runtime.selected}

    @router.get("/nodes/{name}/export")
    async def export_node(name: str, live: bool = Query(default=False)) -> Response:
        """Return the node's archive (or current state) as CSV."""
        lookup(name)
        try:
            body = await runtime.export_csv(name, live=live)
        except StorageError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        suffix = "-live" if live else ""
        filename = f"{sanitize_node_name(name)}{suffix}.csv"
        return Response(
            content=body,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @router.get("/alerts")
    async def get_alerts(since: float = Query(default=0, ge=0)) -> list[dict[str, Any]]:
        return [
            encode_alert(alert)
            for alert in runtime.recent_alerts()
            if alert.triggered_at >= since
        ]

    if log_storage is not None:

        @router.get("/logs")
        async def get_logs(since: float = Query(default=0, ge=0)) -> Response:
            """Return engine logs in NDJSON format.

            Args:
                since: Unix timestamp. Returns entries with timestamp > since.
            """
            body = encode_logs(log_storage.read(since=since))
            return Response(
                content=body,
                media_type="application/x-ndjson",
            )

    return router


def create_app(
    runtime: MonitorRuntime, log_storage: LogStoragePort | None = None
) -> FastAPI:
    """FastAPI application whose lifespan starts and stops ``runtime``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="chainwatch", lifespan=lifespan)
    app.include_router(create_router(runtime, log_storage))
    return app
