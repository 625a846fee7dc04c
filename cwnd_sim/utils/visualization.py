"""Visualization utilities for network simulation.

This module provides functions for visualizing simulation results,
including the network topology, congestion window traces and drops.
"""

import os
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np

from cwnd_sim.core.simulator import NetworkSimulator
from cwnd_sim.utils.telemetry import CongestionSample


def chain_positions(node_ids: List[int], spacing: float = 10.0) -> Dict[int, Tuple[float, float]]:
    """Lay nodes out left to right at fixed positions (x = 1, 11, 21, ...; y = 2)."""
    return {node_id: (1.0 + i * spacing, 2.0) for i, node_id in enumerate(node_ids)}


def save_network_visualization(
    simulator: NetworkSimulator,
    filename: Optional[str] = None,
    positions: Optional[Dict[int, Tuple[float, float]]] = None,
    figsize: Tuple[int, int] = (10, 3),
    show: bool = True,
) -> None:
    """Save network topology visualization to a file.

    Args:
        simulator: NetworkSimulator instance.
        filename: Output filename, or None to show it immediately.
        positions: Node positions; chain layout when omitted.
        figsize: Figure size as (width, height) in inches.
        show: Whether to show the figure when no filename is given.
    """
    fig = plt.figure(figsize=figsize)

    graph = simulator.graph
    pos = positions or chain_positions(sorted(graph.nodes()))

    nx.draw_networkx_nodes(graph, pos, node_size=500, node_color="lightblue")
    nx.draw_networkx_edges(graph, pos, edge_color="gray")

    lossy = [
        (link.source, link.target)
        for link in simulator.links.values()
        if link.error_model is not None
    ]
    nx.draw_networkx_edges(
        graph,
        pos,
        edgelist=lossy,
        width=3,
        alpha=0.5,
        edge_color="red",
        style="dashed",
    )

    nx.draw_networkx_labels(graph, pos, font_size=14)

    edge_labels = {
        (u, v): f"{graph[u][v]['capacity']/1e6:g}Mbps\n{graph[u][v]['delay']*1000:.1f}ms"
        for u, v in graph.edges()
    }
    nx.draw_networkx_edge_labels(
        graph,
        pos,
        edge_labels=edge_labels,
        font_size=10,
        rotate=False,
        bbox=dict(facecolor="white", edgecolor="none", alpha=0.7),
    )

    plt.axis("off")
    plt.tight_layout()

    if filename:
        os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
        fig.savefig(filename)
        plt.close(fig)
    elif show:
        plt.show()


def plot_congestion_window(
    samples: List[CongestionSample],
    filename: Optional[str] = None,
    drop_times: Optional[List[float]] = None,
    show: bool = True,
) -> None:
    """Plot the congestion window over time as a step function.

    Args:
        samples: Congestion samples in time order.
        filename: Output filename, or None to show the plot.
        drop_times: Times of link drops, marked as vertical lines.
        show: Whether to show the figure when no filename is given.
    """
    fig, ax = plt.subplots(figsize=(12, 5))

    if samples:
        times = np.array([s.timestamp for s in samples])
        windows = np.array([s.new_value for s in samples])
        ax.step(times, windows, where="post", label="cwnd")

    for i, drop_time in enumerate(drop_times or []):
        ax.axvline(
            drop_time,
            color="red",
            linestyle="--",
            alpha=0.6,
            label="drop" if i == 0 else None,
        )

    ax.set_title("Congestion Window")
    ax.set_xlabel("Simulation Time (seconds)")
    ax.set_ylabel("Window (bytes)")
    ax.grid(True, linestyle="--", alpha=0.7)
    if samples or drop_times:
        ax.legend()

    plt.tight_layout()

    if filename:
        os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
        fig.savefig(filename)
        plt.close(fig)
    elif show:
        plt.show()
