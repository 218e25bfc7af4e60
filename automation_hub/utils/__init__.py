"""Utilities package"""
from .helpers import (
    sanitize_filename,
    normalize_report_path,
    now_ms,
    format_stamp,
    find_report,
    format_duration,
)

__all__ = [
    "sanitize_filename",
    "normalize_report_path",
    "now_ms",
    "format_stamp",
    "find_report",
    "format_duration",
]
