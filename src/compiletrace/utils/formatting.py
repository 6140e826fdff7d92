from typing import Any


def fmt_count(n: Any) -> str:
    try:
        return f"{int(n):,}"
    except (TypeError, ValueError):
        return "N/A"


def fmt_seconds(s: Any) -> str:
    try:
        v = float(s)
    except (TypeError, ValueError):
        return "N/A"
    if v >= 60:
        return f"{v / 60:.1f} min"
    if v >= 1:
        return f"{v:.2f} s"
    return f"{v * 1000:.1f} ms"


def fmt_ns(ns: Any) -> str:
    """
    Format a nanosecond duration into a human-friendly string.
    """
    try:
        v = float(ns)
    except (TypeError, ValueError):
        return "N/A"

    units = ["ns", "us", "ms", "s"]
    idx = 0
    while v >= 1000 and idx < len(units) - 1:
        v /= 1000.0
        idx += 1

    if v >= 100 or idx == 0:
        return f"{v:.0f} {units[idx]}"
    elif v >= 10:
        return f"{v:.1f} {units[idx]}"
    else:
        return f"{v:.2f} {units[idx]}"
