"""Exception taxonomy for the measurement engine."""
from __future__ import annotations

import asyncio
from typing import Optional

import aiohttp


class SpeedBuffyError(Exception):
    """Base class for all speedbuffy errors."""


class ConfigError(SpeedBuffyError, ValueError):
    """An input parameter was rejected before any network activity."""


class UnreachableError(SpeedBuffyError):
    """The target never answered at all."""

    def __init__(self, target: str, detail: str = "") -> None:
        self.target = target
        self.detail = detail
        msg = f"{target} is unreachable"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class TransferError(SpeedBuffyError):
    """A transfer strategy produced no usable measurement."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        self.detail = detail
        super().__init__(f"{url}: {detail}")


class ChunkError(TransferError):
    """A ranged chunk failed (bad status, transport error, or byte count)."""

    def __init__(
        self,
        url: str,
        index: int,
        detail: str,
        status: Optional[int] = None,
    ) -> None:
        self.index = index
        self.status = status
        super().__init__(url, f"chunk {index + 1} failed: {detail}")


def describe(exc: BaseException) -> str:
    """Short text for a transport exception, as used in outcome reasons."""
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    return str(exc) or type(exc).__name__


def budget_expired(exc: BaseException) -> bool:
    """True when a request was cut off by its ``total`` timeout.

    Requests are issued with the remaining phase budget as their total
    timeout, so this marks the time cap rather than a dead server.  Connect
    and read stalls raise ``ServerTimeoutError`` and do not count.
    """
    return isinstance(exc, asyncio.TimeoutError) and not isinstance(
        exc, aiohttp.ServerTimeoutError
    )
