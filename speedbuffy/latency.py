"""
TCP-connect latency measurement.

Probe flow::

    1. Resolve the target once (honouring the IP version preference).
    2. Liveness check: one connect.  Failure short-circuits to 100% loss.
    3. ``count`` sequential connects, each with a fixed timeout.
    4. Loss, mean RTT and jitter are derived from the recorded RTTs.

Jitter is the population standard deviation of the RTTs, the same
arithmetic ``ping`` reports as ``mdev``.
"""
from __future__ import annotations

import asyncio
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from .constants import (
    DEFAULT_LATENCY_PORT,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_TIMEOUT,
    UNKNOWN,
)
from .errors import UnreachableError
from .stats import calculate_jitter, calculate_mean, loss_percent

logger = logging.getLogger(__name__)

# Signature: (probe_index, elapsed_seconds, running_loss_pct)
ProbeCallback = Callable[[int, float, float], None]


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LatencySample:
    """Aggregated latency data for one target."""

    target: str = UNKNOWN
    probes_sent: int = 0
    probes_received: int = 0
    loss_pct: float = 100.0
    avg_ms: float = 0.0
    jitter_ms: float = 0.0
    reachable: bool = False
    rtts_ms: Tuple[float, ...] = field(default_factory=tuple)

    @classmethod
    def from_rtts(cls, target: str, sent: int, rtts_ms: Tuple[float, ...]) -> LatencySample:
        received = len(rtts_ms)
        return cls(
            target=target,
            probes_sent=sent,
            probes_received=received,
            loss_pct=loss_percent(sent, received),
            avg_ms=calculate_mean(rtts_ms),
            jitter_ms=calculate_jitter(rtts_ms),
            reachable=True,
            rtts_ms=tuple(rtts_ms),
        )

    @classmethod
    def unreachable(cls, target: str, sent: int) -> LatencySample:
        return cls(target=target or UNKNOWN, probes_sent=sent, reachable=False)

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "sent": self.probes_sent,
            "received": self.probes_received,
            "loss_pct": round(self.loss_pct, 1),
            "avg_ms": round(self.avg_ms, 2),
            "jitter_ms": round(self.jitter_ms, 2),
            "reachable": self.reachable,
            "rtts_ms": [round(r, 2) for r in self.rtts_ms],
        }


# ---------------------------------------------------------------------------
# Target parsing
# ---------------------------------------------------------------------------

def split_target(target: str, default_port: int = DEFAULT_LATENCY_PORT) -> Tuple[str, int]:
    """
    Split ``host``, ``host:port``, ``[v6]:port`` or a bare IPv6 address into
    ``(host, port)``.
    """
    target = target.strip()
    if target.startswith("["):
        host, _, rest = target[1:].partition("]")
        if rest.startswith(":") and rest[1:].isdigit():
            return host, int(rest[1:])
        return host, default_port
    if target.count(":") == 1:
        host, _, port = target.partition(":")
        if port.isdigit():
            return host, int(port)
    return target, default_port


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class LatencyTester:
    """Measure loss, mean RTT and jitter to one target with TCP connects."""

    def __init__(
        self,
        count: int = DEFAULT_PING_COUNT,
        timeout: float = DEFAULT_PING_TIMEOUT,
        port: int = DEFAULT_LATENCY_PORT,
        family: int = socket.AF_UNSPEC,
    ) -> None:
        self.count = count
        self.timeout = timeout
        self.port = port
        self.family = family
        self.on_progress: Optional[ProbeCallback] = None

    async def probe(self, target: str) -> LatencySample:
        host, port = split_target(target, self.port)
        logger.debug("Latency test to %s (port %d, %d probes)", host, port, self.count)

        try:
            address = await self._liveness_check(host, port)
        except UnreachableError as exc:
            logger.debug("Liveness check failed: %s", exc)
            return LatencySample.unreachable(target, self.count)

        rtts = []
        start = time.perf_counter()
        for i in range(self.count):
            rtt = await self._connect_once(address)
            if rtt is not None:
                rtts.append(rtt)
                logger.debug("Probe %d/%d: %.2f ms", i + 1, self.count, rtt)
            else:
                logger.debug("Probe %d/%d: dropped", i + 1, self.count)

            if self.on_progress:
                self.on_progress(
                    i + 1,
                    time.perf_counter() - start,
                    loss_percent(i + 1, len(rtts)),
                )

        sample = LatencySample.from_rtts(target, self.count, tuple(rtts))
        logger.debug(
            "Latency result: loss=%.1f%% avg=%.2f ms jitter=%.2f ms",
            sample.loss_pct, sample.avg_ms, sample.jitter_ms,
        )
        return sample

    # -- Internals ----------------------------------------------------------

    async def _liveness_check(self, host: str, port: int) -> Tuple[str, int]:
        """Resolve *host* and make one connect; return the address to probe."""
        loop = asyncio.get_running_loop()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(host, port, family=self.family, type=socket.SOCK_STREAM),
                timeout=max(self.timeout, 5.0),
            )
        except (asyncio.TimeoutError, OSError) as exc:
            raise UnreachableError(host, f"resolution failed ({exc})") from exc

        if not infos:
            raise UnreachableError(host, "no addresses")

        address = infos[0][4][:2]
        if await self._connect_once(address) is None:
            raise UnreachableError(host, "no response")
        return address

    async def _connect_once(self, address: Tuple[str, int]) -> Optional[float]:
        """Open and close one TCP connection; return RTT in ms or ``None``."""
        t0 = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(address[0], address[1]),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, OSError):
            return None
        rtt_ms = (time.perf_counter() - t0) * 1000

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return rtt_ms
