"""
Output formatting -- JSON export and plain text.
"""
from __future__ import annotations

import os
from datetime import datetime
from typing import Optional

from speedbuffy.constants import JSON_FILENAME_FORMAT
from speedbuffy.result import TestResult


def timestamped_filename(now: Optional[datetime] = None) -> str:
    """``speedbuffy-YYYYMMDD-HHMMSS.json`` for *now* (local time)."""
    return (now or datetime.now()).strftime(JSON_FILENAME_FORMAT)


def save_json(text: str, filepath: str) -> None:
    """Write *text* verbatim to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(text + "\n")
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        # Clean up partial temp file
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain-text helpers
# ---------------------------------------------------------------------------

def format_text_result(result: TestResult) -> str:
    lat, dl, ul = result.latency, result.download, result.upload
    sep = "=" * 50
    mid = "-" * 50
    return (
        f"{sep}\n"
        f"SpeedBuffy Results\n"
        f"{sep}\n"
        f"Latency: {lat.avg_ms:.2f} ms (loss: {lat.loss_pct:.1f}%, jitter: {lat.jitter_ms:.2f} ms)\n"
        f"  Server: {lat.target}\n"
        f"{mid}\n"
        f"Download: {dl.mbytes_per_sec:.2f} MB/s ({dl.mbits_per_sec:.2f} Mb/s) in {dl.seconds:.2f} s\n"
        f"  Server: {dl.server}\n"
        f"Upload: {ul.mbytes_per_sec:.2f} MB/s ({ul.mbits_per_sec:.2f} Mb/s) in {ul.seconds:.2f} s\n"
        f"  Server: {ul.server}\n"
        f"{sep}"
    )
