"""
Phase runner: latency, then download, then upload.

Each phase is isolated: an error escaping one tester is logged and replaced
by a failed sample, so the remaining phases still run and the final record
is always complete.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from .config import RunConfig
from .download import DownloadTester
from .errors import SpeedBuffyError
from .latency import LatencySample, LatencyTester
from .result import TestResult, build_result
from .stats import SpeedSample
from .upload import UploadTester

logger = logging.getLogger(__name__)

_PHASE_ERRORS = (SpeedBuffyError, aiohttp.ClientError, asyncio.TimeoutError, OSError)


class RunObserver:
    """Hooks for progress reporting.  The base class ignores everything."""

    def phase_started(self, phase: str, detail: str) -> None:
        pass

    def probe(self, index: int, total: int, loss_pct: float) -> None:
        pass

    def server(self, phase: str, url: str) -> None:
        pass

    def progress(self, phase: str, fraction: float, mbytes_per_sec: float) -> None:
        pass

    def latency_done(self, sample: LatencySample) -> None:
        pass

    def transfer_done(self, phase: str, sample: SpeedSample) -> None:
        pass


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------

async def run_latency(config: RunConfig, observer: RunObserver) -> LatencySample:
    observer.phase_started("latency", config.latency_target)
    tester = LatencyTester(
        count=config.ping_count,
        timeout=config.ping_timeout,
        port=config.latency_port,
        family=config.address_family,
    )
    tester.on_progress = lambda i, _elapsed, loss: observer.probe(i, config.ping_count, loss)

    try:
        sample = await tester.probe(config.latency_target)
    except _PHASE_ERRORS as exc:
        logger.debug("Latency phase aborted: %s", exc, exc_info=True)
        sample = LatencySample.unreachable(config.latency_target, config.ping_count)

    observer.latency_done(sample)
    return sample


async def run_download(config: RunConfig, observer: RunObserver) -> SpeedSample:
    observer.phase_started("download", f"{config.size_mb:g} MB")
    tester = DownloadTester(
        size_mb=config.size_mb,
        cap_seconds=config.download_cap,
        chunk_count=config.chunk_count,
        family=config.address_family,
    )
    tester.on_server = lambda url: observer.server("download", url)
    tester.on_progress = lambda p, s: observer.progress("download", p, s)

    try:
        sample = await tester.test(config.download_servers)
    except _PHASE_ERRORS as exc:
        logger.debug("Download phase aborted: %s", exc, exc_info=True)
        sample = SpeedSample.failed(None, str(exc) or type(exc).__name__)

    observer.transfer_done("download", sample)
    return sample


async def run_upload(config: RunConfig, observer: RunObserver) -> SpeedSample:
    size_mb = config.effective_upload_size_mb
    observer.phase_started("upload", f"{size_mb:g} MB")
    tester = UploadTester(
        size_mb=size_mb,
        cap_seconds=config.upload_cap,
        chunk_mb=config.upload_chunk_mb,
        family=config.address_family,
    )
    tester.on_server = lambda url: observer.server("upload", url)
    tester.on_progress = lambda p, s: observer.progress("upload", p, s)

    try:
        sample = await tester.test(config.upload_servers)
    except _PHASE_ERRORS as exc:
        logger.debug("Upload phase aborted: %s", exc, exc_info=True)
        sample = SpeedSample.failed(None, str(exc) or type(exc).__name__)

    observer.transfer_done("upload", sample)
    return sample


async def run_tests(
    config: RunConfig,
    observer: Optional[RunObserver] = None,
) -> TestResult:
    """Validate *config*, run all three phases in order and aggregate."""
    config.validate()
    observer = observer or RunObserver()
    logger.debug(
        "Run: size=%g MB dlcap=%.1f s ulcap=%.1f s ipv=%s latency=%s",
        config.size_mb, config.download_cap, config.upload_cap,
        config.ip_version, config.latency_target,
    )

    latency = await run_latency(config, observer)
    download = await run_download(config, observer)
    upload = await run_upload(config, observer)
    return build_result(latency, download, upload)
