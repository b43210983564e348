"""
Time and client-context utilities.

Provides UTC normalisation for timestamps read back from the store and
privacy masking for values that end up in log lines.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on write, so values read back are naive even though
    they were stored as UTC.

    Args:
        dt: Datetime to normalise, or None

    Returns:
        Timezone-aware datetime, or None if input is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def mask_ip_address(ip: str | None) -> str | None:
    """
    Mask an IP address for privacy (show only first octet for IPv4).

    Args:
        ip: IP address string or None

    Returns:
        Masked IP like "192.x.x.x" for IPv4 or first segment for IPv6
    """
    if ip is None:
        return None

    if ":" in ip:
        # IPv6 - show first two segments
        parts = ip.split(":")
        if len(parts) >= 2:
            return f"{parts[0]}:{parts[1]}:*:*:*:*:*:*"
        return ip

    # IPv4 - show only first octet
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.x.x.x"

    return ip
