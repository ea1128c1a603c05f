"""
Run configuration and user defaults.

``RunConfig`` is the single immutable value handed to every tester.  User
defaults are read from / written to ``~/.speedbuffy/config.json``.

Supported keys::

    size_mb = 100            # download size
    upload_size_mb = 0       # 0 = one tenth of the download size
    download_cap = 30.0      # seconds
    upload_cap = 30.0        # seconds
    ip_version = "auto"      # "4", "6" or "auto"
    latency_server = "8.8.8.8"
    download_server = ""     # "" = whole catalog
    upload_server = ""
    chunks = 10
"""
from __future__ import annotations

import json
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

from .catalog import DOWNLOAD_SERVERS, UPLOAD_SERVERS, ServerDescriptor
from .constants import (
    DEFAULT_CHUNK_COUNT,
    DEFAULT_DL_CAP,
    DEFAULT_DL_SIZE_MB,
    DEFAULT_IP_VERSION,
    DEFAULT_LATENCY_PORT,
    DEFAULT_LATENCY_TARGET,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_UL_CAP,
    DEFAULT_UPLOAD_CHUNK_MB,
    IP_VERSIONS,
    MAX_CAP,
    MAX_CHUNK_COUNT,
    MAX_PING_COUNT,
    MAX_SIZE_MB,
    MIN_CAP,
    MIN_CHUNK_COUNT,
    MIN_PING_COUNT,
    MIN_SIZE_MB,
)
from .errors import ConfigError

_CONFIG_DIR = os.path.join(Path.home(), ".speedbuffy")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

def default_upload_size(size_mb: float) -> float:
    """One tenth of the download size, never below 1 MB."""
    return max(size_mb / 10, 1.0)


@dataclass(frozen=True)
class RunConfig:
    """Everything one measurement run needs, passed explicitly."""

    size_mb: float = DEFAULT_DL_SIZE_MB
    upload_size_mb: float = 0.0
    download_cap: float = DEFAULT_DL_CAP
    upload_cap: float = DEFAULT_UL_CAP
    ip_version: str = DEFAULT_IP_VERSION
    latency_target: str = DEFAULT_LATENCY_TARGET
    latency_port: int = DEFAULT_LATENCY_PORT
    ping_count: int = DEFAULT_PING_COUNT
    ping_timeout: float = DEFAULT_PING_TIMEOUT
    chunk_count: int = DEFAULT_CHUNK_COUNT
    upload_chunk_mb: float = DEFAULT_UPLOAD_CHUNK_MB
    download_servers: Tuple[ServerDescriptor, ...] = field(default=DOWNLOAD_SERVERS)
    upload_servers: Tuple[ServerDescriptor, ...] = field(default=UPLOAD_SERVERS)

    @property
    def effective_upload_size_mb(self) -> float:
        if self.upload_size_mb > 0:
            return self.upload_size_mb
        return default_upload_size(self.size_mb)

    @property
    def address_family(self) -> int:
        return {
            "4": socket.AF_INET,
            "6": socket.AF_INET6,
        }.get(self.ip_version, socket.AF_UNSPEC)

    def validate(self) -> RunConfig:
        """Raise ``ConfigError`` if any parameter is out of range."""
        if not MIN_SIZE_MB <= self.size_mb <= MAX_SIZE_MB:
            raise ConfigError(f"Download size must be between {MIN_SIZE_MB} and {MAX_SIZE_MB:.0f} MB")
        if self.upload_size_mb and not MIN_SIZE_MB <= self.upload_size_mb <= MAX_SIZE_MB:
            raise ConfigError(f"Upload size must be between {MIN_SIZE_MB} and {MAX_SIZE_MB:.0f} MB")
        if self.upload_size_mb < 0:
            raise ConfigError("Upload size must not be negative")
        if not MIN_CAP <= self.download_cap <= MAX_CAP:
            raise ConfigError(f"Download time cap must be between {MIN_CAP:.0f} and {MAX_CAP:.0f} s")
        if not MIN_CAP <= self.upload_cap <= MAX_CAP:
            raise ConfigError(f"Upload time cap must be between {MIN_CAP:.0f} and {MAX_CAP:.0f} s")
        if self.ip_version not in IP_VERSIONS:
            raise ConfigError(f"IP version must be one of: {', '.join(IP_VERSIONS)}")
        if not self.latency_target.strip():
            raise ConfigError("Latency target must not be empty")
        if not 1 <= self.latency_port <= 65535:
            raise ConfigError("Latency port must be between 1 and 65535")
        if not MIN_PING_COUNT <= self.ping_count <= MAX_PING_COUNT:
            raise ConfigError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
        if self.ping_timeout <= 0:
            raise ConfigError("Ping timeout must be positive")
        if not MIN_CHUNK_COUNT <= self.chunk_count <= MAX_CHUNK_COUNT:
            raise ConfigError(f"Chunk count must be between {MIN_CHUNK_COUNT} and {MAX_CHUNK_COUNT}")
        if self.upload_chunk_mb < 0:
            raise ConfigError("Upload chunk size must not be negative")
        if not self.download_servers:
            raise ConfigError("No download servers configured")
        if not self.upload_servers:
            raise ConfigError("No upload servers configured")
        return self


# ---------------------------------------------------------------------------
# User defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "size_mb": DEFAULT_DL_SIZE_MB,
    "upload_size_mb": 0,
    "download_cap": DEFAULT_DL_CAP,
    "upload_cap": DEFAULT_UL_CAP,
    "ip_version": DEFAULT_IP_VERSION,
    "latency_server": DEFAULT_LATENCY_TARGET,
    "download_server": "",
    "upload_server": "",
    "chunks": DEFAULT_CHUNK_COUNT,
}


def load_config() -> Dict[str, Any]:
    """Load defaults from disk, returning built-in values for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update({k: v for k, v in user.items() if k in DEFAULTS})
    except (json.JSONDecodeError, IOError):
        pass  # corrupt file; use defaults

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    data = {k: v for k, v in config.items() if k in DEFAULTS}
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, ensure_ascii=False)

    return path


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
