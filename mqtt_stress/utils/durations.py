"""
Duration string helpers.
Parses Go-style duration strings such as "500ms", "1m30s" or "1.5h".
"""

import re

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """
    Parse a duration string into seconds.

    Args:
        value: Duration text, e.g. "500ms", "15s", "1h30m". A bare "0" is accepted.

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the text is empty, negative, or has a missing/unknown unit
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("invalid duration: empty string")
    if text == "0":
        return 0.0
    if text.startswith("-"):
        raise ValueError(f"invalid duration {value!r}: negative durations are not allowed")
    if text.startswith("+"):
        text = text[1:]

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _COMPONENT_RE.match(text, pos)
        if not match:
            raise ValueError(f"invalid duration {value!r}: expected <number><unit> at {text[pos:]!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    return total


def format_duration(seconds: float) -> str:
    """Render seconds back into a short duration string for log lines."""
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    minutes, secs = divmod(seconds, 60)
    if minutes < 1:
        return f"{secs:g}s"
    hours, minutes = divmod(int(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs:
        parts.append(f"{secs:g}s")
    return "".join(parts)
