"""Volume-threshold speech detection."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def rms(samples: Sequence[float] | np.ndarray) -> float:
    """Root-mean-square energy of a chunk; 0.0 for an empty chunk."""
    data = np.asarray(samples, dtype=np.float64)
    if data.size == 0:
        return 0.0
    data = np.nan_to_num(data, nan=0.0, posinf=1.0, neginf=-1.0)
    return float(np.sqrt(np.mean(np.square(data))))


def is_speech(level: float, threshold: float) -> bool:
    return level > threshold


def classify(samples: Sequence[float] | np.ndarray, threshold: float) -> tuple[float, bool]:
    level = rms(samples)
    return level, is_speech(level, threshold)


__all__ = ["classify", "is_speech", "rms"]
