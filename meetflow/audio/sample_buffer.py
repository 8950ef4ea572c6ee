"""
SampleBuffer - drainable queue of float32 audio samples.

Frames are stored as a deque of numpy chunks so that appending stays
proportional to the frame length; chunks are only concatenated when a caller
peeks at the head of the buffer.
"""

from collections import deque
from typing import Deque, Sequence, Union

import numpy as np

from meetflow.shared.errors import InsufficientDataError, InvalidRangeError

FrameLike = Union[np.ndarray, Sequence[float]]


class SampleBuffer:
    """Append-only at the tail, policy-driven truncation at the head."""

    def __init__(self):
        self._chunks: Deque[np.ndarray] = deque()
        self._length = 0
        self._write_position = 0

    def __len__(self) -> int:
        return self._length

    @property
    def write_position(self) -> int:
        """Total samples ever appended. Never decreases, not even on drop()."""
        return self._write_position

    def duration_seconds(self, sample_rate: int) -> float:
        return self._length / float(sample_rate)

    def append(self, frame: FrameLike) -> None:
        chunk = np.asarray(frame, dtype=np.float32).reshape(-1)
        if chunk.size == 0:
            return
        self._chunks.append(chunk)
        self._length += chunk.size
        self._write_position += chunk.size

    def peek(self, n: int) -> np.ndarray:
        """Return a copy of the first n samples without mutating the buffer."""
        if n < 0 or n > self._length:
            raise InsufficientDataError(n, self._length)
        if n == 0:
            return np.zeros(0, dtype=np.float32)

        parts = []
        remaining = n
        for chunk in self._chunks:
            if remaining <= 0:
                break
            take = chunk[:remaining]
            parts.append(take)
            remaining -= take.size
        return np.concatenate(parts)

    def drop(self, n: int) -> None:
        """Remove the first n samples."""
        if n < 0 or n > self._length:
            raise InvalidRangeError(n, self._length)

        remaining = n
        while remaining > 0:
            head = self._chunks[0]
            if head.size <= remaining:
                self._chunks.popleft()
                remaining -= head.size
            else:
                self._chunks[0] = head[remaining:]
                remaining = 0
        self._length -= n

    def reset(self) -> None:
        self._chunks.clear()
        self._length = 0
