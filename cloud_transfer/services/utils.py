"""Shared formatting helpers for transfer services."""


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 GB")
    """
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def transfer_speed_mbps(size_bytes: int, duration_seconds: float | None) -> float | None:
    """Average speed in megabits per second, None without a positive duration."""
    if not duration_seconds or duration_seconds <= 0:
        return None
    return round(size_bytes / duration_seconds / 1024 / 1024 * 8, 2)
