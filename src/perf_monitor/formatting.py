"""Formatting utilities for consistent output across console, text log and CLI."""

KB = 1024
MB = KB * 1024
GB = MB * 1024
TB = GB * 1024


def format_bytes(num_bytes: int) -> str:
    """Format a byte count with binary units and two decimals.

    Returns:
        "512 B", "1.50 KB", "2.00 GB", ...
    """
    for unit, size in (("TB", TB), ("GB", GB), ("MB", MB), ("KB", KB)):
        if num_bytes >= size:
            return f"{num_bytes / size:.2f} {unit}"
    return f"{num_bytes} B"


def format_throughput(bytes_per_sec: float) -> str:
    """Format a byte rate, e.g. "12.34 MB/s"; sub-KB rates have no decimals."""
    for unit, size in (("GB", GB), ("MB", MB), ("KB", KB)):
        if bytes_per_sec >= size:
            return f"{bytes_per_sec / size:.2f} {unit}/s"
    return f"{bytes_per_sec:.0f} B/s"


def format_bytes_short(num_bytes: float) -> str:
    """Compact byte count for fixed-width columns: "512B", "3K", "12M", "1.5G"."""
    if num_bytes >= TB:
        return f"{num_bytes / TB:.1f}T"
    if num_bytes >= GB:
        return f"{num_bytes / GB:.1f}G"
    if num_bytes >= MB:
        return f"{num_bytes / MB:.0f}M"
    if num_bytes >= KB:
        return f"{num_bytes / KB:.0f}K"
    return f"{num_bytes:.0f}B"


def truncate(text: str, max_len: int) -> str:
    """Shorten ``text`` to ``max_len`` characters, marking the cut with ".."."""
    if len(text) <= max_len:
        return text
    return text[: max(max_len - 2, 0)] + ".."
