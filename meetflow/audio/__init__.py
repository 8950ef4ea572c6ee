"""
Audio segmentation core: SampleBuffer, Window and the segmentation policies.
"""

from .sample_buffer import SampleBuffer
from .segmentation import (
    Window,
    SegmentationPolicy,
    FixedAccumulation,
    OverlappingChunk,
    SilenceTriggered,
    create_segmentation_policy,
    SIGNIFICANT_AMPLITUDE_THRESHOLD,
    MIN_PEAK_AMPLITUDE,
)

__all__ = [
    "SampleBuffer",
    "Window",
    "SegmentationPolicy",
    "FixedAccumulation",
    "OverlappingChunk",
    "SilenceTriggered",
    "create_segmentation_policy",
    "SIGNIFICANT_AMPLITUDE_THRESHOLD",
    "MIN_PEAK_AMPLITUDE",
]
