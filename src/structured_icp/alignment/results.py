"""
ICP result records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class IterTermReason(str, Enum):
    """Why the ICP loop stopped."""

    UNDEFINED = "undefined"
    NO_PAIRINGS = "no_pairings"
    STALLED = "stalled"
    MAX_ITERATIONS = "max_iterations"


@dataclass(eq=False)
class Results:
    """
    Output of one alignment.

    Attributes:
        optimal_tf: 4x4 pose of the moving cloud in the reference frame.
        optimal_scale: Estimated scale (1.0 unless scale estimation is enabled).
        n_iterations: Number of iterations that produced a new pose.
        termination_reason: Why the loop stopped.
        goodness: Ratio in [0, 1] of primitives of the largest layer that found
            a pairing in the last matching pass.
    """

    optimal_tf: np.ndarray = field(default_factory=lambda: np.eye(4))
    optimal_scale: float = 1.0
    n_iterations: int = 0
    termination_reason: IterTermReason = IterTermReason.UNDEFINED
    goodness: float = 0.0

    @property
    def success(self) -> bool:
        return self.termination_reason in (IterTermReason.STALLED, IterTermReason.MAX_ITERATIONS)

    def as_dict(self) -> dict:
        return {
            "optimal_tf": self.optimal_tf.tolist(),
            "optimal_scale": float(self.optimal_scale),
            "n_iterations": int(self.n_iterations),
            "termination_reason": self.termination_reason.value,
            "goodness": float(self.goodness),
        }
