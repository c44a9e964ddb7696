"""Growable float32 sample buffer."""

from __future__ import annotations

from typing import Sequence

import numpy as np


class SampleAccumulator:
    """Append-only sample store that remembers when its first chunk arrived."""

    def __init__(self, sample_rate: int, initial_capacity: int = 16_000) -> None:
        self.sample_rate = sample_rate
        self._data = np.zeros(max(1, int(initial_capacity)), dtype=np.float32)
        self._size = 0
        self.start_ms = 0.0

    def append(self, samples: Sequence[float] | np.ndarray, now_ms: float) -> None:
        chunk = np.asarray(samples, dtype=np.float32).reshape(-1)
        if self._size == 0:
            self.start_ms = now_ms
        needed = self._size + chunk.size
        if needed > self._data.size:
            capacity = self._data.size
            while capacity < needed:
                capacity *= 2
            grown = np.zeros(capacity, dtype=np.float32)
            grown[: self._size] = self._data[: self._size]
            self._data = grown
        self._data[self._size : needed] = chunk
        self._size = needed

    def samples(self) -> np.ndarray:
        return self._data[: self._size].copy()

    def tail(self, count: int) -> np.ndarray:
        count = max(0, min(int(count), self._size))
        return self._data[self._size - count : self._size].copy()

    def drop_head(self, count: int) -> int:
        """Discard the oldest ``count`` samples and shift ``start_ms`` forward."""
        count = max(0, min(int(count), self._size))
        if count == 0:
            return 0
        remaining = self._size - count
        self._data[:remaining] = self._data[count : self._size]
        self._size = remaining
        self.start_ms += count * 1000.0 / self.sample_rate
        return count

    def clear(self) -> None:
        self._size = 0
        self.start_ms = 0.0

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    def __len__(self) -> int:
        return self._size
