"""
Throughput and latency statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.
"""
from __future__ import annotations

import enum
import math
import statistics
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .constants import EPSILON_SECONDS, MB, UNKNOWN


# ---------------------------------------------------------------------------
# Outcome tags
# ---------------------------------------------------------------------------

class Outcome(str, enum.Enum):
    """Terminal status of one transfer attempt."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Rate helpers
# ---------------------------------------------------------------------------

def floor_elapsed(seconds: float) -> float:
    """Return *seconds* floored to ``EPSILON_SECONDS``; never a true zero."""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        return EPSILON_SECONDS
    if math.isnan(value) or value < EPSILON_SECONDS:
        return EPSILON_SECONDS
    return value


def transfer_rates(bytes_total: int, seconds: float) -> Tuple[float, float]:
    """Return ``(MBps, Mbps)`` for *bytes_total* moved in *seconds*."""
    elapsed = floor_elapsed(seconds)
    if math.isinf(elapsed):
        return 0.0, 0.0
    mbytes = max(bytes_total, 0) / MB
    mbps_bytes = mbytes / elapsed
    return mbps_bytes, mbps_bytes * 8


def loss_percent(sent: int, received: int) -> float:
    """Packet loss in percent, clamped to [0, 100]."""
    if sent <= 0:
        return 100.0
    loss = (sent - received) / sent * 100
    return min(max(loss, 0.0), 100.0)


def calculate_mean(samples: Sequence[float]) -> float:
    if not samples:
        return 0.0
    return statistics.mean(samples)


def calculate_jitter(samples: Sequence[float]) -> float:
    """Population standard deviation of *samples* (ping's ``mdev``)."""
    if len(samples) < 2:
        return 0.0
    return statistics.pstdev(samples)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpeedSample:
    """Result of one completed or abandoned transfer attempt."""

    server: str = UNKNOWN
    bytes_total: int = 0
    seconds: float = EPSILON_SECONDS
    mbytes_per_sec: float = 0.0
    mbits_per_sec: float = 0.0
    outcome: Outcome = Outcome.FAILED
    reason: str = ""

    @classmethod
    def measure(
        cls,
        server: str,
        bytes_total: int,
        seconds: float,
        outcome: Outcome,
        reason: str = "",
    ) -> SpeedSample:
        """Derive rates from raw byte/time figures."""
        bytes_total = max(int(bytes_total), 0)
        mbytes, mbits = transfer_rates(bytes_total, seconds)
        return cls(
            server=server or UNKNOWN,
            bytes_total=bytes_total,
            seconds=floor_elapsed(seconds),
            mbytes_per_sec=mbytes,
            mbits_per_sec=mbits,
            outcome=outcome,
            reason=reason,
        )

    @classmethod
    def failed(cls, server: Optional[str], reason: str, seconds: float = 0.0) -> SpeedSample:
        return cls.measure(server or UNKNOWN, 0, seconds, Outcome.FAILED, reason)

    @property
    def usable(self) -> bool:
        """True when the sample carries a real measurement."""
        return self.outcome is not Outcome.FAILED and self.bytes_total > 0

    def to_dict(self) -> dict:
        return {
            "server": self.server,
            "bytes": self.bytes_total,
            "seconds": round(self.seconds, 3),
            "MBps": round(self.mbytes_per_sec, 3),
            "Mbps": round(self.mbits_per_sec, 1),
            "outcome": self.outcome.value,
            "reason": self.reason,
        }


@dataclass
class ChunkStats:
    """Bytes and time for a single ranged request or upload chunk."""

    index: int = 0
    bytes_transferred: int = 0
    seconds: float = 0.0
    status: Optional[int] = None


@dataclass
class TransferAttempt:
    """
    Running accumulator for one server attempt.

    Owned by exactly one attempt; discarded once it has been turned into a
    ``SpeedSample``.
    """

    server: str
    strategy: str
    chunks: List[ChunkStats] = field(default_factory=list)
    status: Optional[Outcome] = None
    reason: str = ""

    @property
    def bytes_total(self) -> int:
        return sum(c.bytes_transferred for c in self.chunks)

    @property
    def seconds(self) -> float:
        return sum(c.seconds for c in self.chunks)

    def record(self, chunk: ChunkStats) -> None:
        self.chunks.append(chunk)

    def finish(self, status: Outcome, reason: str = "") -> SpeedSample:
        self.status = status
        self.reason = reason
        return SpeedSample.measure(
            self.server, self.bytes_total, self.seconds, status, reason,
        )


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(mbytes_per_sec: float) -> str:
    """Human-readable speed string, e.g. ``5.00 MB/s (40.00 Mb/s)``."""
    return f"{mbytes_per_sec:.2f} MB/s ({mbytes_per_sec * 8:.2f} Mb/s)"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.2f} ms"
