"""
Pipeline Orchestrator

Owns the recording lifecycle and wires every stage together:

    audio frames -> inbound queue -> SampleBuffer -> SegmentationPolicy
        -> Window (silent ones dropped) -> transcription
        -> TranscriptAccumulator (submission order)
        -> keywords -> ideas                    (incremental mode, per fragment)
    stop -> keywords -> ideas                   (batch mode, whole transcript)
    stop -> summary
    video frames -> DetectionMonitor -> participant increase -> summary

Frame callbacks never await a stage. Every stage call runs as a tracked task;
a failed call is logged, surfaced as an ERROR event and its result dropped.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

import numpy as np

from meetflow.audio.segmentation import Window, create_segmentation_policy
from meetflow.detection.monitor import DetectionMonitor, DetectionResult
from meetflow.detection.smoother import Scheduler
from meetflow.shared.errors import InputAcquisitionError, PipelineError, StageLoadError
from meetflow.shared.event_broker import EventBroker
from meetflow.shared.events import EventTypes, PipelineEvent
from meetflow.shared.structured_logger import StructuredLogger
from meetflow.stages.base import InferenceStageClient
from meetflow.stages.http_stage import HttpStageClient
from meetflow.stages.keywords import build_idea_prompt, build_summary_prompt, make_idea
from meetflow.stages.local_stage import create_keyword_stage
from meetflow.stages.models import (
    DetectionResponse,
    GenerationResponse,
    Idea,
    KeywordResponse,
    SummaryResponse,
    TextRequest,
    TranscriptionRequest,
    TranscriptionResponse,
)
from meetflow.stages.readiness import ReadinessGate

from .config import PipelineConfig
from .inputs import InputSource, PushInputSource
from .models import VideoFrameMessage
from .state_manager import SessionState, State, StateMachine

logger = logging.getLogger(__name__)

OutputHandler = Callable[[PipelineEvent], Any]

_STOP = object()  # capture loop sentinel


def create_stages(config: PipelineConfig) -> Dict[str, InferenceStageClient]:
    """Build the stage clients named by the configuration."""
    def http_stage(name, base_url, endpoint, response_model):
        return HttpStageClient(
            name,
            base_url=base_url,
            endpoint=endpoint,
            response_model=response_model,
            required=not config.is_optional(name),
            load_timeout_s=config.stage_load_timeout_s,
            request_timeout_s=config.stage_request_timeout_s,
            health_retry_delay_s=config.health_retry_delay_s,
        )

    stages: Dict[str, InferenceStageClient] = {
        "transcription": http_stage(
            "transcription", config.transcription_url, config.transcription_endpoint, TranscriptionResponse
        ),
    }
    if config.keyword_stage_url:
        stages["keywords"] = http_stage(
            "keywords", config.keyword_stage_url, config.keywords_endpoint, KeywordResponse
        )
    else:
        stages["keywords"] = create_keyword_stage(required=not config.is_optional("keywords"))
    stages["ideas"] = http_stage("ideas", config.ideas_url, config.ideas_endpoint, GenerationResponse)
    stages["summary"] = http_stage("summary", config.summary_url, config.summary_endpoint, SummaryResponse)
    stages["detection"] = http_stage(
        "detection", config.detection_url, config.detection_endpoint, DetectionResponse
    )
    return stages


class PipelineOrchestrator:
    """
    State machine owning one capture-and-annotate pipeline.

    Commands (start_recording, stop_recording, start_detection,
    stop_detection) are no-ops outside their source state and return False.
    """

    def __init__(
        self,
        config: PipelineConfig,
        stages: Optional[Dict[str, InferenceStageClient]] = None,
        audio_source: Optional[InputSource] = None,
        video_source: Optional[InputSource] = None,
        broker: Optional[EventBroker] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.stages = stages if stages is not None else create_stages(config)
        if "transcription" not in self.stages:
            raise ValueError("A transcription stage is required")

        self.audio_source = audio_source or PushInputSource("microphone")
        self.video_source = video_source or PushInputSource("camera")
        self.broker = broker
        self.structured_logger = StructuredLogger(logger)

        self.fsm = StateMachine("meetflow")
        self.fsm.add_listener(self._on_transition)

        # Stage listener first so STAGE_READY precedes PIPELINE_READY
        self.gate = ReadinessGate()
        for stage in self.stages.values():
            stage.add_listener(self._on_stage_update)
            self.gate.watch(stage)
        self.gate.on_ready(self._on_gate_open)

        self.policy = create_segmentation_policy(config)
        self.session: Optional[SessionState] = None
        self._audio_queue: Optional[asyncio.Queue] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._handlers: List[OutputHandler] = []
        # Start commands suspend on input acquisition; one at a time
        self._recording_lock = asyncio.Lock()
        self._detection_lock = asyncio.Lock()

        self.detection: Optional[DetectionMonitor] = None
        if "detection" in self.stages:
            self.detection = DetectionMonitor(
                self.stages["detection"],
                interval_s=config.detection_interval_s,
                confidence_threshold=config.confidence_threshold,
                history_size=config.detection_history_size,
                debounce_s=config.debounce_s,
                supersede_pending=config.debounce_mode == "supersede",
                on_result=self._on_detection_result,
                on_increase=self._on_participant_increase,
                scheduler=scheduler,
                clock=clock,
            )

        self.ideas: List[Idea] = []
        self.last_summary: Optional[str] = None

    @property
    def state(self) -> State:
        return self.fsm.state

    @property
    def session_id(self) -> str:
        return self.session.session_id if self.session else "pipeline"

    # ------------------------------------------------------------------ #
    # Outbound events
    # ------------------------------------------------------------------ #

    def add_output_handler(self, handler: OutputHandler) -> None:
        self._handlers.append(handler)

    def remove_output_handler(self, handler: OutputHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def _emit(self, event_type: str, payload: Dict[str, Any], source: str = "orchestrator") -> PipelineEvent:
        event = PipelineEvent(
            event_type=event_type,
            session_id=self.session_id,
            payload=payload,
            source=source,
        )
        event.validate_payload()
        self.structured_logger.event(
            event.session_id, event_type, f"Emitted {event_type}", level="DEBUG", data={"source": source}
        )

        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._spawn(result, f"handler_{event_type}")
            except Exception as e:
                logger.error(f"Output handler error for {event_type}: {e}", exc_info=True)

        if self.broker is not None:
            self._spawn(self._publish(event), "publish_event")
        return event

    async def _publish(self, event: PipelineEvent) -> None:
        try:
            await self.broker.publish_session_event(event)
        except Exception as e:
            logger.warning(f"Event publish failed ({event.event_type}): {e}")

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_transition(self, old_state: State, new_state: State, trigger: str) -> None:
        self._emit(
            EventTypes.STATE_CHANGED,
            {"old_state": old_state.value, "new_state": new_state.value, "trigger": trigger},
        )

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    def _on_stage_update(self, name: str, ready: bool, error: Optional[StageLoadError]) -> None:
        if ready:
            self._emit(EventTypes.STAGE_READY, {"stage": name}, source=name)
        else:
            self._emit(
                EventTypes.STAGE_FAILED,
                {"stage": name, "error": str(error), "required": self.stages[name].required},
                source=name,
            )

    def _on_gate_open(self) -> None:
        if self.fsm.transition(State.READY, "stages_ready"):
            self._emit(EventTypes.PIPELINE_READY, {"stages": sorted(self.stages)})

    async def start(self) -> bool:
        """Idle -> Loading: load every stage. Returns True once Ready."""
        if not self.fsm.transition(State.LOADING, "start"):
            return False

        names = list(self.stages)
        results = await asyncio.gather(
            *(self.stages[name].load() for name in names), return_exceptions=True
        )
        for name, result in zip(names, results):
            if isinstance(result, BaseException) and not isinstance(result, StageLoadError):
                logger.error(f"Unexpected error loading stage '{name}': {result}")

        if self.gate.blocked:
            logger.error(f"❌ Pipeline blocked in LOADING, required stage failed: {sorted(self.gate.failed)}")
        return self.fsm.state == State.READY

    # ------------------------------------------------------------------ #
    # Recording
    # ------------------------------------------------------------------ #

    async def start_recording(self) -> bool:
        """Ready -> Recording. Raises InputAcquisitionError if the audio input cannot be opened."""
        async with self._recording_lock:
            if self.fsm.state != State.READY:
                logger.warning(f"start_recording ignored in state {self.fsm.state.value}")
                return False

            try:
                await self.audio_source.open(self.push_audio_frame)
            except InputAcquisitionError:
                raise
            except Exception as e:
                raise InputAcquisitionError(self.audio_source.name, str(e)) from e

            session = SessionState()
            session.transcript.on_fragment(
                lambda sequence, text: self._on_fragment(session, sequence, text)
            )
            self.policy.reset()
            queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.audio_queue_size)
            previous = self.session
            self.session = session
            self._audio_queue = queue

            # The FSM may have moved on while the input was opening
            if not self.fsm.transition(State.RECORDING, "start_recording", session.session_id):
                self.session = previous
                self._audio_queue = None
                await self._release_input(self.audio_source)
                return False

            self._loop_task = asyncio.create_task(
                self._capture_loop(session, queue), name="capture_loop"
            )
            logger.info(f"🎙️ Recording session {session.session_id} started")
            return True

    async def _release_input(self, source: InputSource) -> None:
        try:
            await source.close()
        except Exception as e:
            logger.warning(f"Error releasing input '{source.name}': {e}")

    def push_audio_frame(self, frame) -> bool:
        """Non-blocking frame entry point. Returns False when the frame was refused."""
        session = self.session
        queue = self._audio_queue
        if session is None or queue is None or not session.accepting:
            return False

        samples = np.asarray(frame, dtype=np.float32).reshape(-1)
        session.frames_received += 1
        try:
            queue.put_nowait(samples)
        except asyncio.QueueFull:
            session.frames_dropped += 1
            logger.warning(f"[{session.session_id}] Audio queue full, dropped frame #{session.frames_received}")
            return False
        return True

    async def _capture_loop(self, session: SessionState, queue: asyncio.Queue) -> None:
        try:
            while True:
                frame = await queue.get()
                if frame is _STOP:
                    break
                self._ingest(session, frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{session.session_id}] Capture loop error: {e}", exc_info=True)
            session.accepting = False
            self._emit(EventTypes.ERROR, {"source": "capture", "error": str(e)})
            self._spawn(self.stop_recording(trigger="capture_error"), "stop_after_error")

    def _ingest(self, session: SessionState, frame: np.ndarray) -> None:
        session.buffer.append(frame)
        self.policy.observe(frame)
        for window in self.policy.segment(session.buffer):
            self._handle_window(session, window)

    def _handle_window(self, session: SessionState, window: Window) -> None:
        session.windows_emitted += 1
        submitted = not window.is_silent(self.config.min_peak_amplitude)
        self.structured_logger.window_emitted(session.session_id, window.sample_count, window.peak, submitted)

        if not submitted:
            session.windows_discarded += 1
            self._emit(
                EventTypes.WINDOW_DISCARDED,
                {"sample_count": window.sample_count, "peak": window.peak},
                source="segmentation",
            )
            return

        sequence = session.transcript.reserve()
        session.track(asyncio.create_task(
            self._transcribe(session, sequence, window), name=f"transcribe_{sequence}"
        ))

    async def _transcribe(self, session: SessionState, sequence: int, window: Window) -> None:
        stage = self.stages["transcription"]
        start = time.time()
        try:
            response = await stage.submit(TranscriptionRequest.from_window(window))
        except asyncio.CancelledError:
            session.transcript.skip(sequence)
            raise
        except PipelineError as e:
            session.transcript.skip(sequence)
            self._stage_error("transcription", e)
            return

        self.structured_logger.stage_completed(
            session.session_id, "transcription", (time.time() - start) * 1000,
            {"sequence": sequence, "samples": window.sample_count},
        )
        session.transcript.fulfill(sequence, response.text)

    def _on_fragment(self, session: SessionState, sequence: int, text: str) -> None:
        session.fragments += 1
        self._emit(EventTypes.TRANSCRIPT_FRAGMENT, {"text": text, "sequence": sequence}, source="transcription")
        if self.config.keyword_mode == "incremental":
            session.track(asyncio.create_task(self._generate_idea(text), name=f"ideas_{sequence}"))

    def _stage_error(self, stage: str, error: Exception) -> None:
        logger.warning(f"Stage '{stage}' request dropped: {error}")
        self._emit(EventTypes.ERROR, {"source": stage, "error": str(error)}, source=stage)

    def _stage_available(self, name: str) -> bool:
        stage = self.stages.get(name)
        return stage is not None and stage.ready

    async def _generate_idea(self, text: str) -> Optional[Idea]:
        """Keywords for the text, then one idea built from them."""
        if not self._stage_available("keywords"):
            return None
        try:
            keyword_response = await self.stages["keywords"].submit(TextRequest(text=text))
        except PipelineError as e:
            self._stage_error("keywords", e)
            return None

        keywords = keyword_response.keywords or ["default"]
        self._emit(EventTypes.KEYWORDS, {"keywords": keywords, "text": text}, source="keywords")

        if not self._stage_available("ideas"):
            return None
        try:
            generated = await self.stages["ideas"].submit(build_idea_prompt(keywords, text))
        except PipelineError as e:
            self._stage_error("ideas", e)
            return None

        if not generated.text.strip():
            return None
        idea = make_idea(generated.text, keywords)
        self.ideas.append(idea)
        self._emit(EventTypes.IDEA, idea.model_dump(), source="ideas")
        return idea

    async def _summarize(self, transcript: str, trigger: str) -> Optional[str]:
        start = time.time()
        try:
            response = await self.stages["summary"].submit(build_summary_prompt(transcript))
        except PipelineError as e:
            self._stage_error("summary", e)
            return None

        self.structured_logger.stage_completed(
            self.session_id, "summary", (time.time() - start) * 1000, {"trigger": trigger}
        )
        self.last_summary = response.summary
        self._emit(
            EventTypes.SUMMARY,
            {"summary": response.summary, "trigger": trigger, "transcript_chars": len(transcript)},
            source="summary",
        )
        return response.summary

    def _schedule_summary(self, transcript: str, trigger: str) -> Optional[asyncio.Task]:
        if not transcript or not self._stage_available("summary"):
            return None
        return self._spawn(self._summarize(transcript, trigger), f"summary_{trigger}")

    async def stop_recording(self, trigger: str = "stop_recording") -> bool:
        """Recording -> Stopping -> Ready."""
        session = self.session
        if self.fsm.state != State.RECORDING or session is None:
            logger.warning(f"stop_recording ignored in state {self.fsm.state.value}")
            return False

        # Halt ingestion before anything else touches the buffer
        session.accepting = False
        self.fsm.transition(State.STOPPING, trigger, session.session_id)

        await self._release_input(self.audio_source)

        # Frames already queued are still segmented
        if self._loop_task is not None:
            if not self._loop_task.done():
                await self._audio_queue.put(_STOP)
            await asyncio.gather(self._loop_task, return_exceptions=True)

        window = self.policy.flush(session.buffer, emit=self.config.flush_trailing_window)
        if window is not None:
            self._handle_window(session, window)

        await self._drain(session)

        transcript = session.transcript.text
        if transcript:
            if self.config.keyword_mode == "batch":
                self._spawn(self._generate_idea(transcript), "ideas_batch")
            self._schedule_summary(transcript, "session_stop")

        logger.info(f"⏹️ Recording session {session.session_id} stopped: {session.stats()}")
        session.transcript.clear()
        session.buffer.reset()
        self._loop_task = None
        self._audio_queue = None

        self.fsm.transition(State.READY, "teardown_complete", session.session_id)
        return True

    async def _drain(self, session: SessionState) -> None:
        """Wait for in-flight stage work of the session, bounded by stop_drain_timeout_s."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.stop_drain_timeout_s
        while True:
            pending = [task for task in session.pending if not task.done()]
            if not pending:
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"[{session.session_id}] Drain timed out, cancelling {len(pending)} task(s)")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                return
            await asyncio.wait(pending, timeout=remaining)

    # ------------------------------------------------------------------ #
    # Detection
    # ------------------------------------------------------------------ #

    async def start_detection(self) -> bool:
        async with self._detection_lock:
            if self.detection is None or self.detection.active:
                return False
            if self.fsm.state not in (State.READY, State.RECORDING, State.STOPPING):
                logger.warning(f"start_detection ignored in state {self.fsm.state.value}")
                return False
            if not self.detection.stage.ready:
                logger.warning("start_detection ignored, detection stage not ready")
                return False

            try:
                await self.video_source.open(self.push_video_frame)
            except InputAcquisitionError:
                raise
            except Exception as e:
                raise InputAcquisitionError(self.video_source.name, str(e)) from e
            self.detection.start()
            return True

    async def stop_detection(self) -> bool:
        if self.detection is None or not self.detection.active:
            return False
        self.detection.stop()
        await self._release_input(self.video_source)
        return True

    def push_video_frame(self, frame) -> bool:
        """
        Non-blocking video entry point. Accepts a base64 string or a
        VideoFrameMessage. Returns True when the frame was sent to detection.
        """
        if self.detection is None:
            return False
        if isinstance(frame, VideoFrameMessage):
            image, width, height = frame.image, frame.width, frame.height
        else:
            image, width, height = frame, None, None
        task = self.detection.offer_frame(
            image,
            width=width or self.config.video_width,
            height=height or self.config.video_height,
        )
        return task is not None

    def _on_detection_result(self, result: DetectionResult) -> None:
        self._emit(EventTypes.DETECTION, result.to_dict(), source="detection")

    def _on_participant_increase(self, previous: int, count: int) -> None:
        self._emit(EventTypes.PARTICIPANT_INCREASE, {"previous": previous, "count": count}, source="detection")
        if self.session is not None and self.fsm.state == State.RECORDING:
            self._schedule_summary(self.session.transcript.text, "participant_increase")

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    async def shutdown(self) -> None:
        """Cancel all work, release inputs and stages, return to Idle."""
        if self.fsm.state == State.IDLE:
            return

        # Let a start command that is acquiring an input finish first
        async with self._recording_lock, self._detection_lock:
            if self.fsm.state == State.IDLE:
                return
            await self._teardown()

    async def _teardown(self) -> None:
        logger.info("🛑 Shutting down pipeline...")
        session = self.session
        if session is not None:
            session.accepting = False
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
        if session is not None:
            for task in list(session.pending):
                task.cancel()
            await asyncio.gather(*session.pending, return_exceptions=True)

        if self.detection is not None and self.detection.active:
            self.detection.stop()
        for source in (self.audio_source, self.video_source):
            await self._release_input(source)

        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)

        for stage in self.stages.values():
            try:
                await stage.teardown()
            except Exception as e:
                logger.warning(f"Error tearing down stage '{stage.name}': {e}")
        self.gate.teardown()

        self.session = None
        self._loop_task = None
        self._audio_queue = None
        self.fsm.transition(State.IDLE, "shutdown")

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.fsm.state.value,
            "readiness": self.gate.snapshot(),
            "blocked": self.gate.blocked,
            "stages": {name: stage.get_stats() for name, stage in self.stages.items()},
            "session": self.session.stats() if self.session else None,
            "detection": self.detection.get_stats() if self.detection else None,
            "ideas": len(self.ideas),
            "last_summary": self.last_summary,
        }
