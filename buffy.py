#!/usr/bin/env python3
"""
SpeedBuffy CLI -- latency, download and upload testing from the terminal.

Usage::

    python buffy.py                         # visual run (same as --quick)
    python buffy.py --json                  # JSON to stdout only
    python buffy.py --save-json             # summary + timestamped JSON file
    python buffy.py --out-json result.json  # summary + named JSON file
    python buffy.py --size 50 --dlcap 15    # 50 MB download, 15 s cap
    python buffy.py --ipv 4 --debug         # IPv4 only, transcript in /tmp
    python buffy.py --size 50 --save-defaults
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional, Sequence

from speedbuffy.catalog import (
    DOWNLOAD_SERVERS,
    LATENCY_TARGETS,
    ServerDescriptor,
    UPLOAD_SERVERS,
    select_latency_target,
    select_server,
)
from speedbuffy.config import RunConfig, load_config, save_config
from speedbuffy.constants import DEBUG_LOG, IP_VERSIONS
from speedbuffy.errors import ConfigError
from speedbuffy.logging_setup import configure_debug_log
from speedbuffy.result import TestResult, format_json
from speedbuffy.runner import RunObserver, run_tests
from ui import dashboard
from ui.output import format_text_result, save_json, timestamped_filename

EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _catalog_help(
    catalog: Sequence[ServerDescriptor],
    custom: str = "custom URL",
    default: str = "try all",
) -> str:
    names = ", ".join(f"{i}={s.name}" for i, s in enumerate(catalog, 1))
    return f"index, name or {custom} ({names}; default: {default})"


def build_parser(defaults: Dict[str, Any]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speedbuffy",
        description="SpeedBuffy -- ASCII network speed test",
    )

    # Output modes
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("--quick", action="store_true", help="Run full visual test and exit")
    modes.add_argument("--json", action="store_true", help="Output JSON to stdout only, no visuals")
    modes.add_argument("--save-json", action="store_true", help="Like --json + save to timestamped file")
    modes.add_argument("--out-json", type=str, metavar="FILE", help="Like --json + save to specified FILE")

    # Test parameters
    parser.add_argument("--size", type=float, default=defaults["size_mb"], metavar="MB", help=f"Download size in MB (default: {defaults['size_mb']})")
    parser.add_argument("--upload-size", type=float, default=defaults["upload_size_mb"], metavar="MB", help="Upload size in MB (default: a tenth of --size, at least 1)")
    parser.add_argument("--dlcap", type=float, default=defaults["download_cap"], metavar="SEC", help=f"Download time cap in seconds (default: {defaults['download_cap']})")
    parser.add_argument("--ulcap", type=float, default=defaults["upload_cap"], metavar="SEC", help=f"Upload time cap in seconds (default: {defaults['upload_cap']})")
    parser.add_argument("--ipv", type=str, default=str(defaults["ip_version"]), choices=IP_VERSIONS, help=f"IP version preference (default: {defaults['ip_version']})")
    parser.add_argument("--chunks", type=int, default=defaults["chunks"], metavar="N", help=f"Ranged download chunks (default: {defaults['chunks']})")

    # Server selection
    parser.add_argument("--latency-server", type=str, default=defaults["latency_server"], metavar="HOST", help=_catalog_help(LATENCY_TARGETS, "host[:port]", defaults["latency_server"]))
    parser.add_argument("--download-server", type=str, default=defaults["download_server"], metavar="SERVER", help=_catalog_help(DOWNLOAD_SERVERS))
    parser.add_argument("--upload-server", type=str, default=defaults["upload_server"], metavar="SERVER", help=_catalog_help(UPLOAD_SERVERS))

    # Presentation
    colors = parser.add_mutually_exclusive_group()
    colors.add_argument("--no-color", dest="color", action="store_false", default=None, help="Disable colored output")
    colors.add_argument("--color", dest="color", action="store_true", help="Force colored output")
    parser.add_argument("--debug", action="store_true", help=f"Write verbose logs to {DEBUG_LOG}")
    parser.add_argument("--save-defaults", action="store_true", help="Store the given options as defaults and exit")

    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    """Translate parsed flags into a validated ``RunConfig``."""
    return RunConfig(
        size_mb=args.size,
        upload_size_mb=args.upload_size,
        download_cap=args.dlcap,
        upload_cap=args.ulcap,
        ip_version=args.ipv,
        latency_target=select_latency_target(args.latency_server),
        chunk_count=args.chunks,
        download_servers=select_server(args.download_server, DOWNLOAD_SERVERS),
        upload_servers=select_server(args.upload_server, UPLOAD_SERVERS),
    ).validate()


def _defaults_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "size_mb": args.size,
        "upload_size_mb": args.upload_size,
        "download_cap": args.dlcap,
        "upload_cap": args.ulcap,
        "ip_version": args.ipv,
        "latency_server": args.latency_server,
        "download_server": args.download_server,
        "upload_server": args.upload_server,
        "chunks": args.chunks,
    }


# ---------------------------------------------------------------------------
# Run modes
# ---------------------------------------------------------------------------

def _run(config: RunConfig, observer: RunObserver) -> TestResult:
    return asyncio.run(run_tests(config, observer))


def run_visual(config: RunConfig) -> TestResult:
    if not dashboard.console.is_terminal:
        # Piped output: no live display, plain summary only
        result = _run(config, RunObserver())
        print(format_text_result(result))
        return result

    dashboard.print_header()
    result = _run(config, dashboard.DashboardObserver())
    dashboard.print_final_results(result)
    dashboard.print_footer()
    return result


def run_json(config: RunConfig) -> TestResult:
    result = _run(config, RunObserver())
    print(format_json(result))
    return result


def run_export(config: RunConfig, path: Optional[str]) -> TestResult:
    """Summary lines, the JSON document, then the saved file."""
    console = dashboard.console
    console.print("[cyan]Running tests for JSON export...[/cyan]\n")
    result = _run(config, dashboard.SummaryObserver())

    text = format_json(result)
    target = path or timestamped_filename()
    console.print()
    print(text)
    save_json(text, target)
    console.print(f"[green]JSON saved to:[/green] {target}", highlight=False)
    console.print()
    dashboard.print_footer()
    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser(load_config())
    args = parser.parse_args(argv)

    dashboard.configure_console(args.color)

    try:
        config = build_config(args)
    except ConfigError as exc:
        dashboard.print_error(str(exc))
        sys.exit(1)

    if args.save_defaults:
        path = save_config(_defaults_from_args(args))
        dashboard.console.print(f"[green]Defaults saved to:[/green] {path}", highlight=False)
        return

    if args.debug:
        configure_debug_log()

    try:
        if args.json:
            run_json(config)
        elif args.save_json or args.out_json:
            run_export(config, args.out_json)
        else:
            run_visual(config)
    except KeyboardInterrupt:
        dashboard.print_error("Test cancelled by user")
        sys.exit(EXIT_INTERRUPTED)
    except (ConfigError, IOError) as exc:
        dashboard.print_error(str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
