"""BDD step definitions for node monitoring features."""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pytest_bdd import given, parsers, then, when

from chainwatch.config import EngineSettings, NodeConfig
from chainwatch.core.errors import FetchError
from chainwatch.core.peers import PeerDiscovery
from chainwatch.runtime.session import NodeSession
from tests.fakes import (
    FakeClock,
    MemorySink,
    ScriptedSource,
    StaticInspector,
    exposition,
)

POLL_INTERVAL = 2.0


def run_async(coro: Any) -> Any:
    """Run a coroutine in a new event loop (for sync step definitions)."""
    return asyncio.run(coro)


@dataclass
class MonitoringContext:
    session: NodeSession
    source: ScriptedSource
    clock: FakeClock
    sink: MemorySink
    discovery: PeerDiscovery | None = None

    def poll(self, body: str | Exception) -> None:
        self.source.script = [body]
        run_async(self.session.refresh())
        self.clock.advance(POLL_INTERVAL)


def _context(tmp_path: Path, inspector: StaticInspector) -> MonitoringContext:
    source = ScriptedSource()
    clock = FakeClock()
    sink = MemorySink()
    session = NodeSession(
        NodeConfig(name="relay-1"),
        EngineSettings(data_dir=tmp_path),
        source,
        inspector=inspector,
        alert_sink=sink,
        clock=clock,
    )
    return MonitoringContext(session, source, clock, sink)


def _values(text: str) -> list[int]:
    return [int(part) for part in text.split(",")]


# --- Given ---


@given("a monitored relay", target_fixture="ctx")
def given_monitored_relay(tmp_path: Path) -> MonitoringContext:
    return _context(tmp_path, StaticInspector())


@given("a monitored relay without socket inspection", target_fixture="ctx")
def given_relay_without_inspection(tmp_path: Path) -> MonitoringContext:
    return _context(tmp_path, StaticInspector(available=False))


@given(parsers.parse("the node reports block height {height:d}"))
@when(parsers.parse("the node reports block height {height:d}"))
def node_reports_height(ctx: MonitoringContext, height: int) -> None:
    ctx.poll(exposition(block_height=height))


@given(parsers.parse("the node reports {count:d} hot peers"))
def node_reports_hot_peers(ctx: MonitoringContext, count: int) -> None:
    ctx.poll(exposition(peers_hot=count))


# --- When ---


@when(parsers.parse("the node reports KES remaining of {values}"))
def node_reports_kes(ctx: MonitoringContext, values: str) -> None:
    for value in _values(values):
        ctx.poll(exposition(kes_remaining=value))


@when(parsers.parse("the node reports connected peers of {values}"))
def node_reports_peers(ctx: MonitoringContext, values: str) -> None:
    for value in _values(values):
        ctx.poll(exposition(connected_peers=value))


@when("the next fetch times out")
def next_fetch_times_out(ctx: MonitoringContext) -> None:
    ctx.poll(FetchError("relay-1", "timed out after 3s"))


@when(parsers.parse("{count:d} fetches fail"))
def fetches_fail(ctx: MonitoringContext, count: int) -> None:
    for _ in range(count):
        ctx.poll(FetchError("relay-1", "connection refused"))


@when("peers are refreshed")
def peers_are_refreshed(ctx: MonitoringContext) -> None:
    ctx.discovery = run_async(ctx.session.refresh_peers())


# --- Then ---


@then(parsers.parse('{count:d} "{kind}" alerts are raised'))
def alerts_are_raised(ctx: MonitoringContext, count: int, kind: str) -> None:
    raised = [alert for alert in ctx.sink.alerts if alert.kind.value == kind]
    assert len(raised) == count


@then(parsers.parse('the latest alert severity is "{severity}"'))
def latest_alert_severity(ctx: MonitoringContext, severity: str) -> None:
    assert ctx.sink.alerts[-1].severity.value == severity


@then(parsers.parse('the node status is "{state}"'))
def node_status_is(ctx: MonitoringContext, state: str) -> None:
    assert ctx.session.status.state.value == state


@then(parsers.parse("the block height is still {height:d}"))
def block_height_is_still(ctx: MonitoringContext, height: int) -> None:
    assert ctx.session.snapshot().metrics.block_height == height


@then(parsers.parse('the discovery mode is "{mode}"'))
def discovery_mode_is(ctx: MonitoringContext, mode: str) -> None:
    assert ctx.session.snapshot().discovery_mode.value == mode


@then(parsers.parse("the aggregate hot peer count is {count:d}"))
def aggregate_hot_peers(ctx: MonitoringContext, count: int) -> None:
    assert ctx.session.snapshot().aggregate_peers.hot == count
