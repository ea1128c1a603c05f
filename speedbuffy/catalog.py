"""
Server catalog.

Endpoints are URL templates with two placeholders: ``BYTES`` (total payload
size in bytes) and ``SIZE_MB`` (the same size in megabytes).  Templates are
never mutated; ``expand`` returns a fresh URL for each attempt.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple
from urllib.parse import urlsplit, urlunsplit

from .constants import MB
from .errors import ConfigError

BYTES_PLACEHOLDER = "BYTES"
SIZE_MB_PLACEHOLDER = "SIZE_MB"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerDescriptor:
    """A single catalog entry."""

    name: str
    template: str

    @property
    def scheme(self) -> str:
        return urlsplit(self.template).scheme.lower()

    @property
    def is_encrypted(self) -> bool:
        return self.scheme == "https"

    def expand(self, size_mb: float) -> str:
        """Substitute ``BYTES`` and ``SIZE_MB`` for a payload of *size_mb*."""
        return self.template.replace(
            BYTES_PLACEHOLDER, str(payload_bytes(size_mb)),
        ).replace(
            SIZE_MB_PLACEHOLDER, format_size_mb(size_mb),
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "template": self.template, "scheme": self.scheme}


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DOWNLOAD_SERVERS: Tuple[ServerDescriptor, ...] = (
    ServerDescriptor("Cloudflare", "https://speed.cloudflare.com/__down?bytes=BYTES"),
    ServerDescriptor("HTTPBin", "https://httpbin.org/stream-bytes/BYTES"),
    ServerDescriptor("OTEnet", "http://speedtest.ftp.otenet.gr/files/SIZE_MB.test"),
    ServerDescriptor("Tele2", "http://speedtest.tele2.net/SIZE_MB.zip"),
)

UPLOAD_SERVERS: Tuple[ServerDescriptor, ...] = (
    ServerDescriptor("HTTPBin", "https://httpbin.org/post"),
    ServerDescriptor("Postman Echo", "https://postman-echo.com/post"),
)

LATENCY_TARGETS: Tuple[ServerDescriptor, ...] = (
    ServerDescriptor("Google DNS", "8.8.8.8"),
    ServerDescriptor("Cloudflare DNS", "1.1.1.1"),
    ServerDescriptor("OpenDNS", "208.67.222.222"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def payload_bytes(size_mb: float) -> int:
    return int(round(size_mb * MB))


def format_size_mb(size_mb: float) -> str:
    """``100`` for whole megabytes, otherwise the shortest float text."""
    if float(size_mb).is_integer():
        return str(int(size_mb))
    return repr(float(size_mb))


def http_equivalent(url: str) -> str:
    """Rewrite an ``https`` URL to ``http`` on the same host/path/query."""
    parts = urlsplit(url)
    if parts.scheme.lower() != "https":
        return url
    netloc = parts.netloc
    if netloc.endswith(":443"):
        netloc = netloc[: -len(":443")]
    return urlunsplit(("http", netloc, parts.path, parts.query, parts.fragment))


def select_server(
    choice: str,
    catalog: Sequence[ServerDescriptor],
) -> Tuple[ServerDescriptor, ...]:
    """
    Narrow *catalog* to the entry picked by *choice*.

    *choice* may be a 1-based index, a catalog name (case-insensitive), or a
    custom URL template.  An empty choice keeps the whole catalog.
    """
    choice = (choice or "").strip()
    if not choice:
        return tuple(catalog)

    if choice.isdigit():
        idx = int(choice)
        if not 1 <= idx <= len(catalog):
            raise ConfigError(f"Server index must be between 1 and {len(catalog)}")
        return (catalog[idx - 1],)

    for server in catalog:
        if server.name.lower() == choice.lower():
            return (server,)

    if "://" in choice:
        scheme = urlsplit(choice).scheme.lower()
        if scheme not in ("http", "https"):
            raise ConfigError(f"Unsupported URL scheme: {scheme}")
        return (ServerDescriptor("Custom", choice),)

    names = ", ".join(s.name for s in catalog)
    raise ConfigError(f"Unknown server '{choice}'. Available: {names}")


def select_latency_target(choice: str) -> str:
    """Resolve a preset name or index to its address; other text is a host."""
    choice = (choice or "").strip()
    if not choice:
        raise ConfigError("Latency target must not be empty")
    if choice.isdigit() and 1 <= int(choice) <= len(LATENCY_TARGETS):
        return LATENCY_TARGETS[int(choice) - 1].template
    for preset in LATENCY_TARGETS:
        if preset.name.lower() == choice.lower():
            return preset.template
    return choice
