"""
Shared constants used across all speedbuffy modules.

Centralises defaults, limits, and tunables so they live in exactly one
place.
"""
import os
import tempfile

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = "SpeedBuffy/1.0"

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    # Compressed bodies would make byte counts meaningless.
    "Accept-Encoding": "identity",
}

# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

MB = 1_048_576                  # bytes per megabyte
EPSILON_SECONDS = 0.001         # floor for elapsed time before dividing
UNKNOWN = "unknown"             # sentinel for unresolved text fields

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_DL_SIZE_MB = 100
DEFAULT_DL_CAP = 30.0           # seconds
DEFAULT_UL_CAP = 30.0           # seconds
DEFAULT_IP_VERSION = "auto"
DEFAULT_LATENCY_TARGET = "8.8.8.8"
DEFAULT_LATENCY_PORT = 53
DEFAULT_PING_COUNT = 10
DEFAULT_PING_TIMEOUT = 1.0      # seconds per probe
DEFAULT_CHUNK_COUNT = 10
DEFAULT_UPLOAD_CHUNK_MB = 8.0

# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

IP_VERSIONS = ("4", "6", "auto")
MIN_SIZE_MB = 0.001
MAX_SIZE_MB = 10_000.0
MIN_CAP = 1.0
MAX_CAP = 3600.0
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100
MIN_CHUNK_COUNT = 1
MAX_CHUNK_COUNT = 1000

# ---------------------------------------------------------------------------
# Transfer tuning
# ---------------------------------------------------------------------------

READ_SIZE = 256 * 1024          # bytes per socket read
UPLOAD_BUFFER_SIZE = 1024 * 1024  # pre-generated random buffer, cycled
UPLOAD_SLICE_SIZE = 256 * 1024  # bytes yielded per generator step
CAPABILITY_TIMEOUT = 10.0       # seconds for the HEAD probe
CONNECT_TIMEOUT = 10.0
CAP_REACHED = "time cap reached"  # outcome reason when the phase budget runs out

# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

DEBUG_LOG = os.path.join(tempfile.gettempdir(), "speedbuffy.log")
JSON_FILENAME_FORMAT = "speedbuffy-%Y%m%d-%H%M%S.json"
