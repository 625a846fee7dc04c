"""Metrics utilities for network simulation.

This module provides functions for summarizing recorded traces and
saving metrics, including congestion window statistics and drop counts.
"""

import json
import os
from typing import Any, Dict, List

import numpy as np

from cwnd_sim.utils.pcap import PcapRecord
from cwnd_sim.utils.telemetry import CongestionSample


def save_metrics_to_json(
    metrics: Dict[str, Any], filename: str = "results/metrics.json"
) -> None:
    """Save metrics to a JSON file.

    Args:
        metrics: Dictionary of metrics to save.
        filename: Output filename.
    """
    os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)

    # Convert non-serializable types
    serializable_metrics = {}
    for key, value in metrics.items():
        if isinstance(value, dict):
            serializable_metrics[key] = {str(k): v for k, v in value.items()}
        elif isinstance(value, np.generic):
            serializable_metrics[key] = value.item()
        else:
            serializable_metrics[key] = value

    with open(filename, "w") as f:
        json.dump(serializable_metrics, f, indent=2)


def summarize_congestion_trace(samples: List[CongestionSample]) -> Dict[str, float]:
    """Summarize a congestion window trace.

    Args:
        samples: Samples in time order.

    Returns:
        Sample count, window reductions, min/max/mean window and the
        time-weighted mean window between the first and last sample.
    """
    if not samples:
        return {
            "samples": 0,
            "reductions": 0,
            "min_cwnd": 0.0,
            "max_cwnd": 0.0,
            "mean_cwnd": 0.0,
            "time_weighted_cwnd": 0.0,
        }

    times = np.array([s.timestamp for s in samples])
    old_values = np.array([s.old_value for s in samples], dtype=float)
    new_values = np.array([s.new_value for s in samples], dtype=float)

    durations = np.diff(times)
    if durations.sum() > 0:
        time_weighted = float(np.sum(new_values[:-1] * durations) / durations.sum())
    else:
        time_weighted = float(new_values[-1])

    return {
        "samples": len(samples),
        "reductions": int(np.count_nonzero(new_values < old_values)),
        "min_cwnd": float(new_values.min()),
        "max_cwnd": float(new_values.max()),
        "mean_cwnd": float(new_values.mean()),
        "time_weighted_cwnd": time_weighted,
    }


def summarize_drop_trace(records: List[PcapRecord]) -> Dict[str, float]:
    """Summarize a capture of dropped frames.

    Args:
        records: Records from a drop capture.

    Returns:
        Drop count, dropped bytes and first/last drop time.
    """
    if not records:
        return {"drops": 0, "bytes": 0, "first_drop": 0.0, "last_drop": 0.0}
    return {
        "drops": len(records),
        "bytes": int(sum(r.original_len for r in records)),
        "first_drop": records[0].timestamp,
        "last_drop": records[-1].timestamp,
    }
