"""Error models for network simulation.

An error model decides whether a frame arriving at a link endpoint is
corrupted. Corrupted frames are dropped by the link and reported through
its receive-drop trace source.
"""

from enum import Enum
from typing import Optional

import numpy as np

from cwnd_sim.core.exceptions import ConfigError


class ErrorUnit(Enum):
    """Unit to which the error rate applies.

    Attributes:
        BYTE: Each byte is independently corrupted with the error rate.
        PACKET: Each frame is corrupted with the error rate.
    """

    BYTE = "byte"
    PACKET = "packet"


class RateErrorModel:
    """Corrupts frames at a fixed rate.

    Attributes:
        error_rate: Probability of corruption per unit.
        unit: Unit the rate applies to.
        enabled: Whether the model drops anything at all.
        frames_corrupted: Number of frames this model has corrupted.
    """

    def __init__(
        self,
        error_rate: float,
        unit: ErrorUnit = ErrorUnit.BYTE,
        seed: Optional[int] = None,
    ):
        """Initialize the error model.

        Args:
            error_rate: Probability in [0, 1] of corrupting one unit.
            unit: Whether the rate applies per byte or per frame.
            seed: Seed for the model's random generator.
        """
        if not 0.0 <= error_rate <= 1.0:
            raise ConfigError(
                "Error rate must be within [0, 1]", {"error_rate": error_rate}
            )
        self.error_rate = error_rate
        self.unit = unit
        self.enabled = True
        self.frames_corrupted = 0
        self.rng = np.random.default_rng(seed)

    def corruption_probability(self, frame_size: int) -> float:
        """Probability that a frame of the given size is corrupted.

        Args:
            frame_size: Size of the frame in bytes.

        Returns:
            Probability in [0, 1].
        """
        if self.unit is ErrorUnit.PACKET:
            return self.error_rate
        return 1.0 - (1.0 - self.error_rate) ** frame_size

    def is_corrupt(self, frame_size: int) -> bool:
        """Draw whether a frame of the given size is corrupted."""
        if not self.enabled or self.error_rate == 0.0:
            return False
        corrupt = bool(self.rng.random() < self.corruption_probability(frame_size))
        if corrupt:
            self.frames_corrupted += 1
        return corrupt

    def __repr__(self) -> str:
        return f"RateErrorModel({self.error_rate:g} per {self.unit.value})"
