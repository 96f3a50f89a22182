"""Human-readable rendering of sample values and byte counts."""

_NS_PER_US = 1_000
_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000

_BYTE_UNIT = 1024
_BYTE_PREFIXES = "KMGTPE"


def format_sample_value(value: int, unit: str) -> str:
    """Render a sample value (CPU time, a count, ...) for display."""
    if unit == "nanoseconds":
        if value >= _NS_PER_S:
            seconds, nanos = divmod(value, _NS_PER_S)
            return f"{float(seconds) + nanos / 1e9:.2f}s"
        if value >= _NS_PER_MS:
            return f"{float(value // _NS_PER_MS):.2f}ms"
        if value >= _NS_PER_US:
            return f"{float(value // _NS_PER_US):.2f}us"
        return f"{value}ns"
    if unit == "count":
        return str(value)
    return f"{value} {unit}"


def format_bytes(b: int) -> str:
    """Render a byte count with a binary prefix (KB, MB, GB, ...)."""
    if b < _BYTE_UNIT:
        return f"{b} B"
    div, exp = _BYTE_UNIT, 0
    n = b // _BYTE_UNIT
    while n >= _BYTE_UNIT:
        div *= _BYTE_UNIT
        exp += 1
        n //= _BYTE_UNIT
    return f"{float(b) / float(div):.2f} {_BYTE_PREFIXES[exp]}B"