"""
Participant monitor

Throttles incoming video frames, sends accepted ones to the detection stage
without blocking the caller, filters confident person detections and feeds
the count into the DetectionSmoother.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from meetflow.shared.errors import InferenceFailure, StageNotReadyError
from meetflow.stages.models import Detection, DetectionRequest

from .smoother import DetectionSmoother, DetectionThrottle, IncreaseCallback, Scheduler

logger = logging.getLogger(__name__)

PERSON_LABEL = "person"
CONFIDENCE_THRESHOLD = 0.65


def count_persons(
    detections: List[Detection],
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
) -> List[Detection]:
    """Detections labelled person with a score strictly above the threshold."""
    return [
        d for d in detections
        if d.label == PERSON_LABEL and d.score > confidence_threshold
    ]


@dataclass
class DetectionResult:
    """Outcome of one accepted detection attempt."""
    is_new_person: bool
    count: int
    boxes: List[Dict[str, Any]] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DetectionMonitor:
    """Runs throttled detection attempts against one detection stage."""

    def __init__(
        self,
        stage,
        interval_s: float = 1.0,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        history_size: int = 5,
        debounce_s: float = 2.0,
        supersede_pending: bool = True,
        on_result: Optional[Callable[[DetectionResult], None]] = None,
        on_increase: Optional[IncreaseCallback] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stage = stage
        self.confidence_threshold = confidence_threshold
        self.on_result = on_result
        self.throttle = DetectionThrottle(interval_s)
        self.smoother = DetectionSmoother(
            history_size=history_size,
            debounce_s=debounce_s,
            supersede_pending=supersede_pending,
            on_increase=on_increase,
            scheduler=scheduler,
        )
        self._clock = clock
        self._tasks: Set[asyncio.Task] = set()
        self.active = False

        self.frames_offered = 0
        self.frames_accepted = 0

    @property
    def debounced_count(self) -> int:
        return self.smoother.debounced_count

    def start(self) -> None:
        self._reset()
        self.active = True
        logger.info("📷 Participant detection started")

    def stop(self) -> None:
        self.active = False
        self._reset()
        logger.info("📷 Participant detection stopped")

    def _reset(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.smoother.reset()
        self.throttle.reset()

    def offer_frame(self, image_base64: str, width: int = 640, height: int = 480) -> Optional[asyncio.Task]:
        """
        Offer one encoded frame. Returns the scheduled detection task, or None
        when the frame was throttled or detection is inactive.
        """
        self.frames_offered += 1
        if not self.active or not self.stage.ready:
            return None
        if not self.throttle.accept(self._clock()):
            return None

        self.frames_accepted += 1
        request = DetectionRequest(image_base64=image_base64, width=width, height=height)
        task = asyncio.create_task(self._detect(request), name="detection_attempt")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _detect(self, request: DetectionRequest) -> Optional[DetectionResult]:
        try:
            response = await self.stage.submit(request)
        except (InferenceFailure, StageNotReadyError) as e:
            logger.warning(f"Detection attempt dropped: {e}")
            return None

        # Session stopped while the stage was busy
        if not self.active:
            return None

        persons = count_persons(response.detections, self.confidence_threshold)
        previous = self.smoother.debounced_count
        smoothed = self.smoother.add_sample(len(persons))

        result = DetectionResult(
            is_new_person=smoothed > previous,
            count=smoothed,
            boxes=[{"bbox": list(d.bbox), "score": d.score} for d in persons],
        )
        if self.on_result:
            try:
                self.on_result(result)
            except Exception as e:
                logger.error(f"Detection result handler error: {e}", exc_info=True)
        return result

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "debounced_count": self.smoother.debounced_count,
            "history": self.smoother.history.values(),
            "pending_timers": self.smoother.pending_timers,
            "frames_offered": self.frames_offered,
            "frames_accepted": self.frames_accepted,
        }
