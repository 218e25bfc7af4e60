"""
Utility helper functions
"""
import posixpath
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Optional


def sanitize_filename(name: str, max_length: int = 50) -> str:
    """
    Sanitize a string to be used as a filename or id seed.

    Args:
        name: Original name
        max_length: Maximum length of the result

    Returns:
        Name with every character outside [a-z0-9] and CJK replaced by "_"
    """
    sanitized = re.sub(r'[^a-zA-Z0-9\u4e00-\u9fa5]', '_', name or '')
    return sanitized[:max_length]


def normalize_report_path(path: Optional[str]) -> Optional[str]:
    """
    Reduce a report path reported by a runner to its basename.

    Args:
        path: Path as reported by a local or remote runner

    Returns:
        The basename, or None when it has no usable basename
    """
    if not path:
        return None
    base = posixpath.basename(path.replace('\\', '/'))
    if not base or base in ('.', '..'):
        return None
    return base


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def format_stamp(ts_ms: int, with_ms: bool = False) -> str:
    """Format epoch milliseconds as YYYYMMDD_HHMMSS, optionally with millis."""
    dt = datetime.fromtimestamp(ts_ms / 1000)
    stamp = dt.strftime("%Y%m%d_%H%M%S")
    if with_ms:
        stamp += f"{ts_ms % 1000:03d}"
    return stamp


def find_report(report_dir: Path, execution_id: str) -> Optional[str]:
    """
    Resolve the best report file name for an execution.

    Prefers ``<execution_id>.html``; falls back to the most recently
    modified html file in the directory.
    """
    if not report_dir.exists():
        return None
    expected = report_dir / f"{execution_id}.html"
    if expected.exists():
        return expected.name
    candidates = sorted(
        report_dir.glob("*.html"),
        key=lambda p: p.stat().st_mtime,
        reverse=True
    )
    return candidates[0].name if candidates else None


def format_duration(ms: int) -> str:
    """
    Format duration in milliseconds to human-readable string.

    Args:
        ms: Duration in milliseconds

    Returns:
        Formatted duration string
    """
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) / 1000
        return f"{minutes}m {seconds:.0f}s"
