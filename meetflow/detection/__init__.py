"""
Person detection post-processing: rolling history, smoothing, debounce.
"""

from .smoother import (
    DetectionHistory,
    DetectionSmoother,
    DetectionThrottle,
    round_half_up,
)
from .monitor import DetectionMonitor, DetectionResult, count_persons

__all__ = [
    "DetectionHistory",
    "DetectionSmoother",
    "DetectionThrottle",
    "round_half_up",
    "DetectionMonitor",
    "DetectionResult",
    "count_persons",
]
