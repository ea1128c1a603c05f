"""
Result aggregation and canonical JSON.

``build_result`` merges the three phase outputs into one immutable
``TestResult``.  ``format_json`` renders it as a compact document with a
fixed key order and fixed precision, so identical inputs always give
byte-identical text::

    {"latency":{"server":"8.8.8.8","loss_pct":0.0,"avg_ms":12.34,"jitter_ms":0.56},
     "download":{"server":"...","MBps":11.921,"Mbps":95.4,"seconds":8.39},
     "upload":{"server":"...","MBps":2.500,"Mbps":20.0,"seconds":4.00}}

(wrapped here for readability; the real output is a single line).
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .constants import UNKNOWN
from .latency import LatencySample
from .stats import SpeedSample

# (key, precision) pairs in output order
_LATENCY_FIELDS = (("loss_pct", 1), ("avg_ms", 2), ("jitter_ms", 2))
_SPEED_FIELDS = (("MBps", 3), ("Mbps", 1), ("seconds", 2))


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def sanitize_number(value: Any, upper: Optional[float] = None) -> float:
    """Coerce *value* to a finite, non-negative float; anything else is 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    if upper is not None:
        number = min(number, upper)
    return number


def sanitize_text(value: Any) -> str:
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    return text or UNKNOWN


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TestResult:
    """One run's latency, download and upload figures."""

    __test__ = False

    latency: LatencySample = field(default_factory=LatencySample)
    download: SpeedSample = field(default_factory=SpeedSample)
    upload: SpeedSample = field(default_factory=SpeedSample)


def build_result(
    latency: Optional[LatencySample] = None,
    download: Optional[SpeedSample] = None,
    upload: Optional[SpeedSample] = None,
) -> TestResult:
    """Compose a ``TestResult``; missing phases become zeroed failures."""
    return TestResult(
        latency=latency if latency is not None else LatencySample.unreachable(UNKNOWN, 0),
        download=download if download is not None else SpeedSample.failed(None, "not run"),
        upload=upload if upload is not None else SpeedSample.failed(None, "not run"),
    )


def to_dict(result: TestResult) -> Dict[str, Dict[str, Any]]:
    """The canonical record as a dict, values already rounded."""
    lat = result.latency
    latency_values = {
        "loss_pct": sanitize_number(lat.loss_pct, upper=100.0),
        "avg_ms": sanitize_number(lat.avg_ms),
        "jitter_ms": sanitize_number(lat.jitter_ms),
    }
    record: Dict[str, Dict[str, Any]] = {
        "latency": {"server": sanitize_text(lat.target)},
    }
    for key, digits in _LATENCY_FIELDS:
        record["latency"][key] = round(latency_values[key], digits)

    for name in ("download", "upload"):
        sample: SpeedSample = getattr(result, name)
        values = {
            "MBps": sanitize_number(sample.mbytes_per_sec),
            "Mbps": sanitize_number(sample.mbits_per_sec),
            "seconds": sanitize_number(sample.seconds),
        }
        record[name] = {"server": sanitize_text(sample.server)}
        for key, digits in _SPEED_FIELDS:
            record[name][key] = round(values[key], digits)

    return record


def format_json(result: TestResult) -> str:
    """Render *result* as canonical compact JSON (no trailing newline)."""
    record = to_dict(result)
    precision = {
        "latency": dict(_LATENCY_FIELDS),
        "download": dict(_SPEED_FIELDS),
        "upload": dict(_SPEED_FIELDS),
    }

    sections = []
    for section in ("latency", "download", "upload"):
        values = record[section]
        parts = [f'"server":{json.dumps(values["server"])}']
        for key, digits in precision[section].items():
            parts.append(f'"{key}":{values[key]:.{digits}f}')
        sections.append(f'"{section}":{{{",".join(parts)}}}')
    return "{" + ",".join(sections) + "}"
