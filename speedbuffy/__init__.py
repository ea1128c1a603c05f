"""SpeedBuffy measurement engine -- latency, download and upload testers."""

from .catalog import DOWNLOAD_SERVERS, LATENCY_TARGETS, UPLOAD_SERVERS, ServerDescriptor
from .config import RunConfig
from .download import DownloadTester
from .errors import (
    ChunkError,
    ConfigError,
    SpeedBuffyError,
    TransferError,
    UnreachableError,
)
from .latency import LatencySample, LatencyTester
from .result import build_result, format_json
from .runner import RunObserver, run_tests
from .stats import Outcome, SpeedSample, format_latency, format_speed
from .upload import UploadTester

__all__ = [
    "ChunkError",
    "ConfigError",
    "DOWNLOAD_SERVERS",
    "DownloadTester",
    "LATENCY_TARGETS",
    "LatencySample",
    "LatencyTester",
    "Outcome",
    "RunConfig",
    "RunObserver",
    "ServerDescriptor",
    "SpeedBuffyError",
    "SpeedSample",
    "TransferError",
    "UPLOAD_SERVERS",
    "UnreachableError",
    "UploadTester",
    "build_result",
    "format_json",
    "format_latency",
    "format_speed",
    "run_tests",
]
