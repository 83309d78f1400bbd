"""Socket-table inspectors that run ``ss`` or ``netstat`` as subprocesses.

Which tool is used is decided once, at startup, by ``probe_inspector``.
A missing tool is a normal condition and yields ``UnavailableInspector``.
"""

import asyncio
import logging
import shutil
from collections.abc import Callable, Sequence

from chainwatch.core.errors import DiscoveryUnavailable
from chainwatch.core.models import PeerRecord
from chainwatch.core.peers import parse_netstat_output, parse_ss_output
from chainwatch.core.ports import SocketInspectorPort

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 5.0


async def run_command(argv: Sequence[str], timeout: float) -> str:
    """Run a command and return its stdout.

    Raises:
        DiscoveryUnavailable: If the command cannot start, times out or
            exits with a non-zero status.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise DiscoveryUnavailable(f"cannot run {argv[0]}: {exc}") from exc

    try:
        async with asyncio.timeout(timeout):
            stdout, stderr = await process.communicate()
    except TimeoutError as exc:
        raise DiscoveryUnavailable(f"{argv[0]} timed out after {timeout:g}s") from exc
    finally:
        if process.returncode is None:
            process.kill()
            await process.wait()

    if process.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        raise DiscoveryUnavailable(
            f"{argv[0]} exited with status {process.returncode}: {detail}"
        )
    return stdout.decode(errors="replace")


class SsInspector:
    """Inspector using ``ss -tni state established``; reports RTT."""

    reports_rtt = True

    def __init__(
        self, executable: str = "ss", timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    ) -> None:
        self.executable = executable
        self.timeout = timeout

    async def inspect(self, node_port: int) -> list[PeerRecord]:
        argv = (self.executable, "-tni", "state", "established")
        return parse_ss_output(await run_command(argv, self.timeout), node_port)


class NetstatInspector:
    """Inspector using ``netstat -tn``; no RTT information."""

    reports_rtt = False

    def __init__(
        self, executable: str = "netstat", timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    ) -> None:
        self.executable = executable
        self.timeout = timeout

    async def inspect(self, node_port: int) -> list[PeerRecord]:
        argv = (self.executable, "-tn")
        return parse_netstat_output(await run_command(argv, self.timeout), node_port)


class UnavailableInspector:
    """Inspector used when no supported tool is installed."""

    reports_rtt = False

    async def inspect(self, node_port: int) -> list[PeerRecord]:
        raise DiscoveryUnavailable("no socket inspection tool available")


def probe_inspector(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    which: Callable[[str], str | None] = shutil.which,
) -> SocketInspectorPort:
    """Pick the best available inspector. Never raises."""
    ss = which("ss")
    if ss:
        logger.info("Peer discovery using %s", ss)
        return SsInspector(ss, timeout)
    netstat = which("netstat")
    if netstat:
        logger.info("Peer discovery using %s (no RTT)", netstat)
        return NetstatInspector(netstat, timeout)
    logger.info("No socket inspection tool found; peers limited to node counters")
    return UnavailableInspector()
