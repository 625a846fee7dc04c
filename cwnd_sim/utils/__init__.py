"""Utilities for telemetry capture, unit parsing, metrics and plotting."""
