"""
Formatting helpers shared by the drivers and API responses.
"""

from datetime import datetime
from typing import Any, Union
from fastapi.encoders import jsonable_encoder


SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]


def format_bytes(num_bytes: Union[int, float], decimals: int = 2) -> str:
    """
    Format a byte count into a human-readable string.

    Examples:
        format_bytes(1024)        -> "1.00 KB"
        format_bytes(1234567890)  -> "1.15 GB"
    """
    if not num_bytes or num_bytes <= 0:
        return "0 Bytes"

    precision = max(0, decimals)
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(SIZE_UNITS) - 1:
        value /= 1024
        i += 1

    return f"{value:.{precision}f} {SIZE_UNITS[i]}"


def format_date(value: Union[datetime, str, int, float], fmt: str = "%b %d, %Y, %I:%M %p") -> str:
    """
    Format a datetime, ISO string or epoch seconds, e.g. "Feb 16, 2026, 04:30 AM".
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value)
    else:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return moment.strftime(fmt)


def truncate_string(value: str, max_length: int) -> str:
    """Truncate a string, appending an ellipsis if it was cut."""
    if len(value) <= max_length:
        return value
    return value[:max_length] + "..."


def to_jsonable(value: Any) -> Any:
    """
    Make driver rows and values JSON-safe. Binary column values are
    rendered as hex strings.
    """
    return jsonable_encoder(
        value,
        custom_encoder={
            bytes: lambda raw: raw.hex(),
            bytearray: lambda raw: bytes(raw).hex(),
            memoryview: lambda raw: raw.tobytes().hex(),
        },
    )
