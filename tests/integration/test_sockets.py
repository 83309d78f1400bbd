"""Integration tests for the subprocess-backed socket inspectors."""

import sys

import pytest

from chainwatch.adapters import sockets
from chainwatch.adapters.sockets import (
    NetstatInspector,
    SsInspector,
    UnavailableInspector,
    probe_inspector,
    run_command,
)
from chainwatch.core.errors import DiscoveryUnavailable
from chainwatch.core.models import PeerDirection

pytestmark = [pytest.mark.discovery, pytest.mark.tier(1)]

SS_OUTPUT = """\
Recv-Q Send-Q Local Address:Port Peer Address:Port
0      0      10.0.0.5:3001      203.0.113.7:51234
\t cubic rtt:42.5/3.1
"""

NETSTAT_OUTPUT = """\
Proto Recv-Q Send-Q Local Address     Foreign Address    State
tcp        0      0 10.0.0.5:40000    198.51.100.2:3001  ESTABLISHED
"""


class TestRunCommand:
    async def test_returns_stdout(self) -> None:
        out = await run_command([sys.executable, "-c", "print('ok')"], timeout=10)

        assert out.strip() == "ok"

    async def test_missing_executable(self) -> None:
        with pytest.raises(DiscoveryUnavailable, match="cannot run"):
            await run_command(["/nonexistent/ss-tool"], timeout=1)

    async def test_non_zero_exit(self) -> None:
        argv = [sys.executable, "-c", "import sys; sys.exit(3)"]

        with pytest.raises(DiscoveryUnavailable, match="status 3"):
            await run_command(argv, timeout=10)

    async def test_timeout(self) -> None:
        argv = [sys.executable, "-c", "import time; time.sleep(10)"]

        with pytest.raises(DiscoveryUnavailable, match="timed out"):
            await run_command(argv, timeout=0.2)


class TestInspectors:
    async def test_ss_inspector_parses_output(self, monkeypatch) -> None:
        calls = []

        async def fake_run(argv, timeout):
            calls.append(tuple(argv))
            return SS_OUTPUT

        monkeypatch.setattr(sockets, "run_command", fake_run)

        peers = await SsInspector("/usr/bin/ss").inspect(3001)

        assert calls == [("/usr/bin/ss", "-tni", "state", "established")]
        assert peers[0].rtt_ms == 42.5
        assert peers[0].direction is PeerDirection.INCOMING

    async def test_netstat_inspector_parses_output(self, monkeypatch) -> None:
        async def fake_run(argv, timeout):
            return NETSTAT_OUTPUT

        monkeypatch.setattr(sockets, "run_command", fake_run)

        peers = await NetstatInspector().inspect(3001)

        assert [(p.address, p.direction) for p in peers] == [
            ("198.51.100.2", PeerDirection.OUTGOING)
        ]

    async def test_unavailable_inspector_raises(self) -> None:
        with pytest.raises(DiscoveryUnavailable):
            await UnavailableInspector().inspect(3001)


class TestProbeInspector:
    def test_prefers_ss(self) -> None:
        inspector = probe_inspector(which=lambda name: f"/usr/sbin/{name}")

        assert isinstance(inspector, SsInspector)
        assert inspector.reports_rtt

    def test_falls_back_to_netstat(self) -> None:
        def which(name: str) -> str | None:
            return "/usr/bin/netstat" if name == "netstat" else None

        inspector = probe_inspector(which=which)

        assert isinstance(inspector, NetstatInspector)
        assert not inspector.reports_rtt

    def test_nothing_available(self) -> None:
        inspector = probe_inspector(which=lambda name: None)

        assert isinstance(inspector, UnavailableInspector)
