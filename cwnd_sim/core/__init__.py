"""Core components for network simulation.

This module contains the fundamental classes for the simulated network,
including the event scheduler, trace sources, packets, links, nodes,
transport endpoints and the NetworkSimulator host.
"""
