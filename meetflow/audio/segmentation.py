"""
Segmentation Policies

Decide when the SampleBuffer holds an inference-ready Window and how much of
the buffer survives the cut. Three interchangeable strategies share one
interface so the orchestrator never branches on a mode flag:

    FixedAccumulation  - emit once `target_samples` are buffered, drain all
    OverlappingChunk   - emit fixed chunks, keep an overlapping tail
    SilenceTriggered   - emit at natural pauses, forced at max duration

The orchestrator drives a policy like this after every appended frame:

    buffer.append(frame)
    policy.observe(frame)
    for window in policy.segment(buffer):
        ...

Windows whose peak amplitude does not exceed the configured minimum are still
extracted (so the buffer is mutated identically) and then dropped by the
caller via `Window.is_silent()`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .sample_buffer import FrameLike, SampleBuffer

logger = logging.getLogger(__name__)

SIGNIFICANT_AMPLITUDE_THRESHOLD = 0.01  # |amplitude| above this counts as sound
MIN_PEAK_AMPLITUDE = 0.01  # windows at or below this peak are never transcribed


@dataclass(frozen=True, eq=False)
class Window:
    """Immutable snapshot of a contiguous run of buffered samples."""
    samples: np.ndarray
    sample_rate: int
    peak: float

    @classmethod
    def from_samples(cls, samples: np.ndarray, sample_rate: int) -> "Window":
        samples = np.array(samples, dtype=np.float32, copy=True)
        samples.flags.writeable = False
        peak = float(np.max(np.abs(samples))) if samples.size else 0.0
        return cls(samples=samples, sample_rate=sample_rate, peak=peak)

    @property
    def sample_count(self) -> int:
        return int(self.samples.size)

    @property
    def duration_seconds(self) -> float:
        return self.sample_count / float(self.sample_rate)

    def is_silent(self, min_peak: float = MIN_PEAK_AMPLITUDE) -> bool:
        return self.peak <= min_peak


class SegmentationPolicy(ABC):
    """Capability interface shared by every segmentation strategy."""

    name = "base"

    def __init__(self, sample_rate: int = 16000):
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        self.sample_rate = sample_rate

    @property
    def silence_elapsed(self) -> float:
        """Seconds of contiguous low-amplitude audio. Only tracked by silence-aware policies."""
        return 0.0

    def observe(self, frame: FrameLike) -> None:
        """Inspect the newest frame after it was appended to the buffer."""

    def reset(self) -> None:
        """Clear per-session state."""

    @abstractmethod
    def should_emit(self, buffer: SampleBuffer, silence_elapsed: float) -> bool:
        ...

    @abstractmethod
    def extract_window(self, buffer: SampleBuffer) -> Tuple[Window, int]:
        """Cut one window off the head of the buffer. Returns (window, retained tail length)."""
        ...

    def segment(self, buffer: SampleBuffer) -> List[Window]:
        """Extract every window that is ready right now."""
        windows = []
        while self.should_emit(buffer, self.silence_elapsed):
            window, _retained = self.extract_window(buffer)
            windows.append(window)
        return windows

    def flush(self, buffer: SampleBuffer, emit: bool = False) -> Optional[Window]:
        """
        Handle the trailing partial window when a session stops.

        By default the remainder is discarded. With emit=True whatever is left
        is returned as a final window.
        """
        window = None
        if emit and len(buffer) > 0:
            window = self._drain(buffer)
        elif len(buffer) > 0:
            logger.debug(f"Discarding trailing {len(buffer)} samples ({self.name})")
        buffer.reset()
        self.reset()
        return window

    def _take(self, buffer: SampleBuffer, count: int, advance: int) -> Tuple[Window, int]:
        window = Window.from_samples(buffer.peek(count), self.sample_rate)
        buffer.drop(advance)
        return window, len(buffer)

    def _drain(self, buffer: SampleBuffer) -> Window:
        window, _ = self._take(buffer, len(buffer), len(buffer))
        return window


class FixedAccumulation(SegmentationPolicy):
    """Emit once target_samples are buffered, then drain everything."""

    name = "fixed"

    def __init__(self, target_samples: int, sample_rate: int = 16000):
        super().__init__(sample_rate)
        if target_samples <= 0:
            raise ValueError("target_samples must be positive")
        self.target_samples = target_samples

    def should_emit(self, buffer: SampleBuffer, silence_elapsed: float) -> bool:
        return len(buffer) >= self.target_samples

    def extract_window(self, buffer: SampleBuffer) -> Tuple[Window, int]:
        return self._take(buffer, len(buffer), len(buffer))


class OverlappingChunk(SegmentationPolicy):
    """
    Emit chunk_samples-long windows, keeping chunk_samples * overlap_fraction
    samples so consecutive windows share a suffix/prefix.
    """

    name = "overlapping"

    def __init__(self, chunk_samples: int, overlap_fraction: float = 0.25, sample_rate: int = 16000):
        super().__init__(sample_rate)
        if chunk_samples <= 0:
            raise ValueError("chunk_samples must be positive")
        if not 0.0 <= overlap_fraction < 1.0:
            raise ValueError("overlap_fraction must be in [0.0, 1.0)")
        self.chunk_samples = chunk_samples
        self.overlap_fraction = overlap_fraction
        self.overlap_samples = int(round(chunk_samples * overlap_fraction))
        self.step_samples = chunk_samples - self.overlap_samples
        if self.step_samples < 1:
            raise ValueError(
                f"chunk of {chunk_samples} samples with overlap {overlap_fraction} never advances"
            )

    def should_emit(self, buffer: SampleBuffer, silence_elapsed: float) -> bool:
        return len(buffer) >= self.chunk_samples

    def extract_window(self, buffer: SampleBuffer) -> Tuple[Window, int]:
        return self._take(buffer, self.chunk_samples, self.step_samples)


class SilenceTriggered(SegmentationPolicy):
    """
    Segment at natural pauses.

    A frame counts as silent when every sample has |amplitude| <= threshold.
    Silent frames add their duration to the silence counter, any louder sample
    resets it. Emits (full drain) when the pause is long enough and the buffer
    holds more than min_buffer_seconds, or unconditionally once the buffer
    reaches max_buffer_seconds.
    """

    name = "silence"

    def __init__(
        self,
        silence_threshold_seconds: float = 2.0,
        max_buffer_seconds: float = 15.0,
        min_buffer_seconds: float = 2.0,
        sample_rate: int = 16000,
        significant_amplitude: float = SIGNIFICANT_AMPLITUDE_THRESHOLD,
    ):
        super().__init__(sample_rate)
        if silence_threshold_seconds <= 0:
            raise ValueError("silence_threshold_seconds must be positive")
        if max_buffer_seconds <= 0:
            raise ValueError("max_buffer_seconds must be positive")
        if min_buffer_seconds < 0 or min_buffer_seconds >= max_buffer_seconds:
            raise ValueError("min_buffer_seconds must be in [0, max_buffer_seconds)")
        self.silence_threshold_seconds = silence_threshold_seconds
        self.max_buffer_seconds = max_buffer_seconds
        self.min_buffer_seconds = min_buffer_seconds
        self.significant_amplitude = significant_amplitude
        self._silence_elapsed = 0.0

    @property
    def silence_elapsed(self) -> float:
        return self._silence_elapsed

    def observe(self, frame: FrameLike) -> None:
        samples = np.asarray(frame, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return
        if np.all(np.abs(samples) <= self.significant_amplitude):
            self._silence_elapsed += samples.size / float(self.sample_rate)
        else:
            self._silence_elapsed = 0.0

    def reset(self) -> None:
        self._silence_elapsed = 0.0

    def should_emit(self, buffer: SampleBuffer, silence_elapsed: float) -> bool:
        buffered = buffer.duration_seconds(self.sample_rate)
        if buffered >= self.max_buffer_seconds:
            return True
        return silence_elapsed >= self.silence_threshold_seconds and buffered > self.min_buffer_seconds

    def extract_window(self, buffer: SampleBuffer) -> Tuple[Window, int]:
        return self._take(buffer, len(buffer), len(buffer))


def create_segmentation_policy(config) -> SegmentationPolicy:
    """
    Build the policy named by config.segmentation_policy.

    The policy is chosen once per orchestrator and is not switched
    mid-session.
    """
    policy = config.segmentation_policy
    sample_rate = config.sample_rate

    if policy == FixedAccumulation.name:
        instance = FixedAccumulation(
            target_samples=int(round(config.fixed_window_seconds * sample_rate)),
            sample_rate=sample_rate,
        )
    elif policy == OverlappingChunk.name:
        instance = OverlappingChunk(
            chunk_samples=int(round(config.chunk_seconds * sample_rate)),
            overlap_fraction=config.overlap_fraction,
            sample_rate=sample_rate,
        )
    elif policy == SilenceTriggered.name:
        instance = SilenceTriggered(
            silence_threshold_seconds=config.silence_threshold_seconds,
            max_buffer_seconds=config.max_buffer_seconds,
            min_buffer_seconds=config.min_buffer_seconds,
            sample_rate=sample_rate,
            significant_amplitude=config.significant_amplitude,
        )
    else:
        raise ValueError(f"Unknown segmentation policy: {policy!r}. Valid options: fixed, overlapping, silence")

    logger.info(f"Segmentation policy: {type(instance).__name__} @ {sample_rate}Hz")
    return instance
