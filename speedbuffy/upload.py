"""
Upload speed test module.

Sends the payload as sequential HTTP POSTs of ``chunk_mb`` each (or as one
block when the chunk size is 0).  Bodies are streamed from a pre-generated
random buffer, so the full payload never sits in memory.  Servers are tried
in catalog order; there is no range negotiation for uploads.

All servers share one ``cap_seconds`` budget.  A POST cut off by it still
counts the bytes already streamed.
"""
from __future__ import annotations

import asyncio
import logging
import os
import socket
import time
from typing import AsyncIterator, Callable, List, Optional, Sequence

import aiohttp

from .catalog import ServerDescriptor, payload_bytes
from .constants import (
    CAP_REACHED,
    COMMON_HEADERS,
    CONNECT_TIMEOUT,
    DEFAULT_UL_CAP,
    DEFAULT_UPLOAD_CHUNK_MB,
    MB,
    UPLOAD_BUFFER_SIZE,
    UPLOAD_SLICE_SIZE,
)
from .errors import TransferError, budget_expired, describe
from .stats import ChunkStats, Outcome, SpeedSample, TransferAttempt, transfer_rates

logger = logging.getLogger(__name__)

# Signature: (fraction_complete, current_MBps)
ProgressCallback = Callable[[float, float], None]

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


def chunk_sizes(total: int, chunk_bytes: int) -> List[int]:
    """Sizes of the POST bodies needed to send *total* bytes."""
    if total <= 0:
        return []
    if chunk_bytes <= 0 or chunk_bytes >= total:
        return [total]
    sizes = [chunk_bytes] * (total // chunk_bytes)
    if total % chunk_bytes:
        sizes.append(total % chunk_bytes)
    return sizes


class UploadTester:
    """Chunked or single-shot upload tester with catalog fallback."""

    HEADERS = {
        **COMMON_HEADERS,
        "Content-Type": "application/octet-stream",
    }

    def __init__(
        self,
        size_mb: float,
        cap_seconds: float = DEFAULT_UL_CAP,
        chunk_mb: float = DEFAULT_UPLOAD_CHUNK_MB,
        family: int = socket.AF_UNSPEC,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.size_mb = size_mb
        self.cap_seconds = cap_seconds
        self.chunk_bytes = int(chunk_mb * MB)
        self.family = family
        self.clock = clock
        self._data_buffer = os.urandom(UPLOAD_BUFFER_SIZE)
        self.on_progress: Optional[ProgressCallback] = None
        self.on_server: Optional[Callable[[str], None]] = None

    async def test(self, servers: Sequence[ServerDescriptor]) -> SpeedSample:
        """Try *servers* in order within one ``cap_seconds`` budget."""
        total = payload_bytes(self.size_mb)
        deadline = self.clock() + self.cap_seconds
        last = SpeedSample.failed(None, "no servers configured")

        connector = aiohttp.TCPConnector(family=self.family, limit=1)
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=CONNECT_TIMEOUT)
        async with aiohttp.ClientSession(
            headers=self.HEADERS,
            connector=connector,
            timeout=timeout,
        ) as session:
            for server in servers:
                if self._remaining(deadline) <= 0:
                    logger.debug("Time cap of %.1f s reached, skipping remaining servers", self.cap_seconds)
                    break
                url = server.expand(self.size_mb)
                if self.on_server:
                    self.on_server(url)
                logger.debug("Attempting upload to: %s (%s)", url, server.name)

                sample = await self.test_server(session, url, total, deadline)
                if sample.usable:
                    logger.debug(
                        "Upload to %s: %d bytes in %.3f s (%.3f MB/s, %s)",
                        url, sample.bytes_total, sample.seconds,
                        sample.mbytes_per_sec, sample.outcome.value,
                    )
                    return sample
                logger.debug("Upload failed, trying next server (%s)", sample.reason)
                last = sample
            else:
                logger.debug("All upload servers failed")

        return last

    async def test_server(
        self,
        session: aiohttp.ClientSession,
        url: str,
        total: int,
        deadline: Optional[float] = None,
    ) -> SpeedSample:
        if deadline is None:
            deadline = self.clock() + self.cap_seconds
        sizes = chunk_sizes(total, self.chunk_bytes)
        attempt = TransferAttempt(
            server=url,
            strategy="chunked" if len(sizes) > 1 else "single",
        )

        for index, size in enumerate(sizes):
            if self._remaining(deadline) <= 0:
                logger.debug(
                    "Time cap of %.1f s reached after %d/%d chunks",
                    self.cap_seconds, index, len(sizes),
                )
                return self._finish(attempt, CAP_REACHED)

            chunk = ChunkStats(index=index)
            try:
                await self._send_chunk(session, url, chunk, size, deadline)
            except asyncio.TimeoutError:
                # The body already on the wire still counts
                attempt.record(chunk)
                logger.debug(
                    "Time cap of %.1f s reached during chunk %d/%d (%d bytes sent)",
                    self.cap_seconds, index + 1, len(sizes), chunk.bytes_transferred,
                )
                return self._finish(attempt, CAP_REACHED)
            except TransferError as exc:
                logger.debug("Chunk %d/%d failed: %s", index + 1, len(sizes), exc.detail)
                return self._finish(attempt, exc.detail)

            attempt.record(chunk)
            logger.debug(
                "Chunk %d/%d: %d bytes in %.3f s (HTTP %s)",
                index + 1, len(sizes), chunk.bytes_transferred, chunk.seconds, chunk.status,
            )
            if self.on_progress:
                mbytes, _ = transfer_rates(attempt.bytes_total, attempt.seconds)
                self.on_progress(min(attempt.bytes_total / total, 1.0), mbytes)

        return attempt.finish(Outcome.SUCCESS)

    # -- Internals ----------------------------------------------------------

    async def _send_chunk(
        self,
        session: aiohttp.ClientSession,
        url: str,
        chunk: ChunkStats,
        size: int,
        deadline: float,
    ) -> None:
        """POST *size* bytes, counting what was streamed into *chunk*.

        Raises ``TransferError`` on failure, or ``asyncio.TimeoutError`` when
        the phase budget ran out mid-request.
        """
        remaining = self._remaining(deadline)
        t0 = self.clock()
        try:
            async with session.post(
                url,
                data=self._stream(size, chunk),
                headers={"Content-Length": str(size)},
                timeout=aiohttp.ClientTimeout(
                    total=remaining, sock_connect=min(CONNECT_TIMEOUT, remaining),
                ),
            ) as resp:
                chunk.status = resp.status
                await resp.read()
                if not 200 <= resp.status < 300:
                    raise TransferError(url, f"HTTP {resp.status}")
        except _TRANSPORT_ERRORS as exc:
            if budget_expired(exc) or self._remaining(deadline) <= 0:
                raise asyncio.TimeoutError(CAP_REACHED) from exc
            raise TransferError(url, describe(exc)) from exc
        finally:
            chunk.seconds = self.clock() - t0

    async def _stream(self, size: int, chunk: ChunkStats) -> AsyncIterator[bytes]:
        """Yield *size* bytes by cycling through the random buffer."""
        buffer_size = len(self._data_buffer)
        pos = 0
        remaining = size
        while remaining > 0:
            n = min(UPLOAD_SLICE_SIZE, remaining, buffer_size - pos)
            yield self._data_buffer[pos:pos + n]
            chunk.bytes_transferred += n
            remaining -= n
            pos = (pos + n) % buffer_size

    def _remaining(self, deadline: float) -> float:
        return deadline - self.clock()

    @staticmethod
    def _finish(attempt: TransferAttempt, reason: str) -> SpeedSample:
        if attempt.bytes_total:
            return attempt.finish(Outcome.PARTIAL_FAILURE, reason)
        return attempt.finish(Outcome.FAILED, reason)
