"""Pacing functions for traffic generation.

This module provides the interval computations used by applications to
space their sends for a target bit rate.
"""

from cwnd_sim.core.exceptions import ConfigError


def pacing_interval(packet_size: int, data_rate: float) -> float:
    """Compute the gap between consecutive sends.

    Args:
        packet_size: Size of each packet in bytes.
        data_rate: Target rate in bits per second.

    Returns:
        Interval in seconds, ``packet_size * 8 / data_rate``.

    Raises:
        ConfigError: If the rate or size is not strictly positive.
    """
    if data_rate <= 0:
        raise ConfigError("Data rate must be positive", {"data_rate": data_rate})
    if packet_size <= 0:
        raise ConfigError("Packet size must be positive", {"packet_size": packet_size})
    return packet_size * 8 / float(data_rate)

