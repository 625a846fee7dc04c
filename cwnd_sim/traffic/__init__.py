"""Traffic generation for network simulation.

This module provides the applications that are installed on nodes: the
rate-paced TrafficGenerator and the PacketSink that absorbs its data.
"""
