"""Unit parsing utilities for network simulation.

Data rates and times can be given as plain numbers (bits per second and
seconds) or as strings such as ``"5Mbps"``, ``"1.5kb/s"`` or ``"2ms"``.
"""

import re
from typing import Union

from cwnd_sim.core.exceptions import ConfigError

_QUANTITY = re.compile(r"^\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*([A-Za-z/]*)\s*$")

RATE_UNITS = {
    "bps": 1.0,
    "b/s": 1.0,
    "kbps": 1e3,
    "kb/s": 1e3,
    "mbps": 1e6,
    "mb/s": 1e6,
    "gbps": 1e9,
    "gb/s": 1e9,
    "Bps": 8.0,
    "B/s": 8.0,
    "KBps": 8e3,
    "KB/s": 8e3,
    "kBps": 8e3,
    "kB/s": 8e3,
    "MBps": 8e6,
    "MB/s": 8e6,
    "GBps": 8e9,
    "GB/s": 8e9,
}

TIME_UNITS = {
    "": 1.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "ns": 1e-9,
    "min": 60.0,
    "h": 3600.0,
}


def _split(value: str, kind: str):
    match = _QUANTITY.match(value)
    if match is None:
        raise ConfigError(f"Malformed {kind}", {"value": value})
    return float(match.group(1)), match.group(2)


def parse_data_rate(value: Union[str, float, int]) -> float:
    """Parse a data rate.

    Bit units are case-insensitive (``"5Mbps"`` == ``"5mbps"``); byte
    units use a capital ``B``.

    Args:
        value: Rate in bits per second, or a string with a unit suffix.

    Returns:
        Rate in bits per second.

    Raises:
        ConfigError: If the string cannot be parsed.
    """
    if isinstance(value, (int, float)):
        return float(value)
    number, unit = _split(value, "data rate")
    if not unit:
        return number
    if unit in RATE_UNITS and "B" in unit:
        return number * RATE_UNITS[unit]
    lowered = unit.lower()
    if lowered in RATE_UNITS and "B" not in unit:
        return number * RATE_UNITS[lowered]
    raise ConfigError("Unknown data rate unit", {"value": value})


def parse_time(value: Union[str, float, int]) -> float:
    """Parse a duration.

    Args:
        value: Duration in seconds, or a string such as ``"2ms"``.

    Returns:
        Duration in seconds.

    Raises:
        ConfigError: If the string cannot be parsed.
    """
    if isinstance(value, (int, float)):
        return float(value)
    number, unit = _split(value, "time")
    if unit not in TIME_UNITS:
        raise ConfigError("Unknown time unit", {"value": value})
    return number * TIME_UNITS[unit]


def format_data_rate(bps: float) -> str:
    """Format a rate in bits per second with the largest fitting unit."""
    for unit, scale in (("Gbps", 1e9), ("Mbps", 1e6), ("kbps", 1e3)):
        if bps >= scale:
            return f"{bps / scale:g}{unit}"
    return f"{bps:g}bps"
