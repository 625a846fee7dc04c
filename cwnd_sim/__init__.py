"""Congestion-window tracing over a simulated point-to-point network.

The package is split into ``core`` (scheduling, links, nodes, transport),
``traffic`` (applications that generate and absorb traffic) and ``utils``
(telemetry capture, unit parsing, metrics and plotting).
"""

__version__ = "0.1.0"
