"""
Download speed test module.

Each catalog server is tried in order.  Per server the strategies are::

    (a) ranged-chunked over the URL as given
    (b) ranged-chunked over plain HTTP, when (a) was HTTPS and failed
    (c) one full, unranged fetch of the URL as given

A ``HEAD`` capability check gates (a) and (b): a clean answer without
``Accept-Ranges: bytes`` routes straight to (c).  All servers and strategies
share one phase deadline of ``cap_seconds``, and every request is bounded by
what is left of it.  Reaching the deadline, between chunks or mid-request,
finalizes the attempt with the bytes accumulated so far.
"""
from __future__ import annotations

import asyncio
import logging
import socket
import time
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import aiohttp

from .catalog import ServerDescriptor, http_equivalent, payload_bytes
from .constants import (
    CAPABILITY_TIMEOUT,
    CAP_REACHED,
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    DEFAULT_CHUNK_COUNT,
    DEFAULT_DL_CAP,
    DEFAULT_DL_SIZE_MB,
    READ_SIZE,
)
from .errors import ChunkError, TransferError, budget_expired, describe
from .stats import ChunkStats, Outcome, SpeedSample, TransferAttempt, transfer_rates

logger = logging.getLogger(__name__)

RANGED = "ranged"
FULL = "full"

# Signature: (fraction_complete, current_MBps)
ProgressCallback = Callable[[float, float], None]

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def partition(total: int, count: int) -> List[Tuple[int, int]]:
    """Split ``[0, total)`` into *count* inclusive byte ranges.

    The last range absorbs the remainder.
    """
    if total <= 0:
        return []
    count = max(1, min(count, total))
    size = total // count
    ranges = []
    for i in range(count):
        start = i * size
        end = total - 1 if i == count - 1 else (i + 1) * size - 1
        ranges.append((start, end))
    return ranges


# ---------------------------------------------------------------------------
# Tester
# ---------------------------------------------------------------------------

class DownloadTester:
    """Sequential, capability-aware download tester with fallback."""

    def __init__(
        self,
        size_mb: float = DEFAULT_DL_SIZE_MB,
        cap_seconds: float = DEFAULT_DL_CAP,
        chunk_count: int = DEFAULT_CHUNK_COUNT,
        family: int = socket.AF_UNSPEC,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.size_mb = size_mb
        self.cap_seconds = cap_seconds
        self.chunk_count = chunk_count
        self.family = family
        self.clock = clock
        self.on_progress: Optional[ProgressCallback] = None
        self.on_server: Optional[Callable[[str], None]] = None

    # -- Public -------------------------------------------------------------

    async def test(self, servers: Sequence[ServerDescriptor]) -> SpeedSample:
        """Try *servers* in order; return the first usable sample.

        All servers share one time budget of ``cap_seconds``.  When every
        server fails, or the budget runs out first, the last failed sample
        is returned so the caller still sees which endpoint was attempted.
        """
        total = payload_bytes(self.size_mb)
        deadline = self.clock() + self.cap_seconds
        last = SpeedSample.failed(None, "no servers configured")

        async with self._session() as session:
            for server in servers:
                if self._remaining(deadline) <= 0:
                    logger.debug("Time cap of %.1f s reached, skipping remaining servers", self.cap_seconds)
                    break
                url = server.expand(self.size_mb)
                if self.on_server:
                    self.on_server(url)
                logger.debug("Attempting download from: %s (%s)", url, server.name)

                sample = await self.test_server(session, url, total, deadline)
                if sample.usable:
                    logger.debug(
                        "Download from %s: %d bytes in %.3f s (%.3f MB/s, %s)",
                        sample.server, sample.bytes_total, sample.seconds,
                        sample.mbytes_per_sec, sample.outcome.value,
                    )
                    return sample
                logger.debug("All strategies failed for %s: %s", url, sample.reason)
                last = sample
            else:
                logger.debug("All download servers failed")

        return last

    async def test_server(
        self,
        session: aiohttp.ClientSession,
        url: str,
        total: int,
        deadline: Optional[float] = None,
    ) -> SpeedSample:
        """Run the fallback chain for one server within *deadline*."""
        if deadline is None:
            deadline = self.clock() + self.cap_seconds
        last = SpeedSample.failed(url, "no strategy attempted")
        ranges_refused = False

        for strategy, candidate in self._strategies(url):
            if strategy == RANGED and ranges_refused:
                continue
            if self._remaining(deadline) <= 0:
                logger.debug("Time cap reached before %s strategy on %s", strategy, candidate)
                return SpeedSample.failed(candidate, CAP_REACHED)

            if strategy == RANGED:
                supported = await self._supports_ranges(session, candidate, deadline)
                if supported is None:
                    last = SpeedSample.failed(candidate, "capability check failed")
                    continue
                if not supported:
                    logger.debug("%s does not advertise range support", candidate)
                    ranges_refused = True
                    continue
                run = self._ranged_fetch
            else:
                run = self._full_fetch

            try:
                sample = await run(session, candidate, total, deadline)
            except TransferError as exc:
                logger.debug("%s strategy failed: %s", strategy, exc)
                last = SpeedSample.failed(candidate, exc.detail)
                continue

            if sample.usable:
                return sample
            last = sample

        return last

    # -- Strategies ---------------------------------------------------------

    @staticmethod
    def _strategies(url: str) -> Iterator[Tuple[str, str]]:
        yield RANGED, url
        fallback = http_equivalent(url)
        if fallback != url:
            yield RANGED, fallback
        yield FULL, url

    async def _supports_ranges(
        self,
        session: aiohttp.ClientSession,
        url: str,
        deadline: float,
    ) -> Optional[bool]:
        """``True``/``False`` from a HEAD answer, ``None`` on transport failure."""
        try:
            async with session.head(
                url,
                allow_redirects=True,
                timeout=aiohttp.ClientTimeout(
                    total=min(CAPABILITY_TIMEOUT, self._remaining(deadline)),
                ),
            ) as resp:
                accept = resp.headers.get("Accept-Ranges", "")
                logger.debug("HEAD %s -> %d (Accept-Ranges: %s)", url, resp.status, accept or "-")
                if not 200 <= resp.status < 300:
                    return False
                return "bytes" in accept.lower()
        except _TRANSPORT_ERRORS as exc:
            logger.debug("HEAD %s failed: %s", url, describe(exc))
            return None

    async def _ranged_fetch(
        self,
        session: aiohttp.ClientSession,
        url: str,
        total: int,
        deadline: float,
    ) -> SpeedSample:
        attempt = TransferAttempt(server=url, strategy=RANGED)
        ranges = partition(total, self.chunk_count)

        for index, (start, end) in enumerate(ranges):
            if self._remaining(deadline) <= 0:
                logger.debug(
                    "Time cap of %.1f s reached after %d/%d chunks",
                    self.cap_seconds, index, len(ranges),
                )
                return self._capped(attempt)

            chunk = ChunkStats(index=index)
            try:
                await self._fetch_range(session, url, chunk, start, end, deadline)
            except asyncio.TimeoutError:
                attempt.record(chunk)
                logger.debug(
                    "Time cap of %.1f s reached during chunk %d/%d (%d bytes read)",
                    self.cap_seconds, index + 1, len(ranges), chunk.bytes_transferred,
                )
                return self._capped(attempt)

            attempt.record(chunk)
            logger.debug(
                "Chunk %d/%d: %d bytes in %.3f s (HTTP %s)",
                index + 1, len(ranges), chunk.bytes_transferred, chunk.seconds, chunk.status,
            )
            self._report(attempt.bytes_total, total, attempt.seconds)

        return attempt.finish(Outcome.SUCCESS)

    async def _fetch_range(
        self,
        session: aiohttp.ClientSession,
        url: str,
        chunk: ChunkStats,
        start: int,
        end: int,
        deadline: float,
    ) -> None:
        """Fill *chunk* with one byte range.

        Raises ``ChunkError`` on any defect, or ``asyncio.TimeoutError`` when
        the phase budget ran out mid-request (*chunk* then holds what arrived).
        """
        expected = end - start + 1
        index = chunk.index
        t0 = self.clock()

        try:
            async with session.get(
                url,
                headers={"Range": f"bytes={start}-{end}"},
                timeout=self._request_timeout(deadline),
            ) as resp:
                chunk.status = resp.status
                if not 200 <= resp.status < 300:
                    raise ChunkError(url, index, f"HTTP {resp.status}", resp.status)
                async for data in resp.content.iter_chunked(READ_SIZE):
                    chunk.bytes_transferred += len(data)
                    if chunk.bytes_transferred > expected:
                        break
        except _TRANSPORT_ERRORS as exc:
            if budget_expired(exc) or self._remaining(deadline) <= 0:
                raise asyncio.TimeoutError(CAP_REACHED) from exc
            raise ChunkError(url, index, describe(exc), chunk.status) from exc
        finally:
            chunk.seconds = self.clock() - t0

        if chunk.bytes_transferred != expected:
            raise ChunkError(
                url,
                index,
                f"expected {expected} bytes, got {chunk.bytes_transferred}",
                chunk.status,
            )

    async def _full_fetch(
        self,
        session: aiohttp.ClientSession,
        url: str,
        total: int,
        deadline: float,
    ) -> SpeedSample:
        attempt = TransferAttempt(server=url, strategy=FULL)
        chunk = ChunkStats(index=0)
        outcome, reason = Outcome.SUCCESS, ""
        t0 = self.clock()

        try:
            async with session.get(url, timeout=self._request_timeout(deadline)) as resp:
                chunk.status = resp.status
                logger.debug("GET %s -> %d", url, resp.status)
                if not 200 <= resp.status < 300:
                    raise TransferError(url, f"HTTP {resp.status}")
                async for data in resp.content.iter_chunked(READ_SIZE):
                    chunk.bytes_transferred += len(data)
                    self._report(chunk.bytes_transferred, total, self.clock() - t0)
                    if self._remaining(deadline) <= 0:
                        outcome, reason = Outcome.PARTIAL_FAILURE, CAP_REACHED
                        break
        except _TRANSPORT_ERRORS as exc:
            if not chunk.bytes_transferred:
                raise TransferError(url, describe(exc)) from exc
            outcome = Outcome.PARTIAL_FAILURE
            capped = budget_expired(exc) or self._remaining(deadline) <= 0
            reason = CAP_REACHED if capped else describe(exc)

        chunk.seconds = self.clock() - t0
        attempt.record(chunk)
        logger.debug(
            "Full fetch of %s: %d bytes in %.3f s",
            url, chunk.bytes_transferred, chunk.seconds,
        )
        if not chunk.bytes_transferred:
            return attempt.finish(Outcome.FAILED, "empty response")
        return attempt.finish(outcome, reason)

    # -- Internals ----------------------------------------------------------

    def _session(self) -> aiohttp.ClientSession:
        connector = aiohttp.TCPConnector(family=self.family, limit=1)
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=CONNECT_TIMEOUT)
        return aiohttp.ClientSession(
            headers=COMMON_HEADERS,
            connector=connector,
            timeout=timeout,
        )

    def _remaining(self, deadline: float) -> float:
        return deadline - self.clock()

    def _request_timeout(self, deadline: float) -> aiohttp.ClientTimeout:
        """Per-request timeout bounded by what is left of the phase budget."""
        remaining = self._remaining(deadline)
        return aiohttp.ClientTimeout(
            total=remaining, sock_connect=min(CONNECT_TIMEOUT, remaining),
        )

    @staticmethod
    def _capped(attempt: TransferAttempt) -> SpeedSample:
        if not attempt.bytes_total:
            return attempt.finish(Outcome.FAILED, CAP_REACHED)
        return attempt.finish(Outcome.PARTIAL_FAILURE, CAP_REACHED)

    def _report(self, done: int, total: int, seconds: float) -> None:
        if self.on_progress and total > 0:
            mbytes, _ = transfer_rates(done, seconds)
            self.on_progress(min(done / total, 1.0), mbytes)
