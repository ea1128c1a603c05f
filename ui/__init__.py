"""UI layer -- Rich dashboard and output formatters."""

from .dashboard import (
    DashboardObserver,
    ProgressDisplay,
    SummaryObserver,
    configure_console,
    create_histogram,
    print_error,
    print_final_results,
    print_footer,
    print_header,
    print_latency_result,
    print_speed_result,
)
from .output import format_text_result, save_json, timestamped_filename

__all__ = [
    "DashboardObserver",
    "ProgressDisplay",
    "SummaryObserver",
    "configure_console",
    "create_histogram",
    "format_text_result",
    "print_error",
    "print_final_results",
    "print_footer",
    "print_header",
    "print_latency_result",
    "print_speed_result",
    "save_json",
    "timestamped_filename",
]
