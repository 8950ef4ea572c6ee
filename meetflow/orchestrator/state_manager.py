"""
Pipeline lifecycle FSM and per-session state

    IDLE -> LOADING -> READY -> RECORDING -> STOPPING -> READY (loop)
    any  -> IDLE (teardown)

Transitions outside the table are logged and ignored, so a command issued in
the wrong state is a no-op.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from meetflow.audio.sample_buffer import SampleBuffer
from meetflow.shared.structured_logger import StructuredLogger

from .transcript import TranscriptAccumulator

logger = logging.getLogger(__name__)


class State(Enum):
    """Orchestrator states"""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    RECORDING = "recording"
    STOPPING = "stopping"


VALID_TRANSITIONS: Dict[State, List[State]] = {
    State.IDLE: [State.LOADING],
    State.LOADING: [State.READY, State.IDLE],
    State.READY: [State.RECORDING, State.IDLE],
    State.RECORDING: [State.STOPPING, State.IDLE],
    State.STOPPING: [State.READY, State.IDLE],
}

# listener(old_state, new_state, trigger)
TransitionListener = Callable[[State, State, str], None]


@dataclass
class SessionState:
    """Everything one recording session owns. Replaced on every start."""
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    buffer: SampleBuffer = field(default_factory=SampleBuffer)
    transcript: TranscriptAccumulator = field(default_factory=TranscriptAccumulator)
    pending: Set[asyncio.Task] = field(default_factory=set)
    accepting: bool = True
    started_at: float = field(default_factory=time.time)

    # Counters
    frames_received: int = 0
    frames_dropped: int = 0
    windows_emitted: int = 0
    windows_discarded: int = 0
    fragments: int = 0

    def track(self, task: asyncio.Task) -> asyncio.Task:
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)
        return task

    def stats(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "accepting": self.accepting,
            "buffered_samples": len(self.buffer),
            "samples_written": self.buffer.write_position,
            "frames_received": self.frames_received,
            "frames_dropped": self.frames_dropped,
            "windows_emitted": self.windows_emitted,
            "windows_discarded": self.windows_discarded,
            "fragments": self.fragments,
            "pending_tasks": len(self.pending),
            "duration_s": round(time.time() - self.started_at, 1),
        }


class StateMachine:
    """Validated lifecycle transitions with structured logging."""

    def __init__(self, name: str = "pipeline"):
        self.name = name
        self.state = State.IDLE
        self.structured_logger = StructuredLogger(logger)
        self._listeners: List[TransitionListener] = []
        self._last_transition_ts = time.time()
        self.history: List[Dict[str, object]] = []

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def can_transition(self, new_state: State) -> bool:
        return new_state in VALID_TRANSITIONS.get(self.state, [])

    def transition(self, new_state: State, trigger: str, session_id: Optional[str] = None) -> bool:
        """Move to new_state. Returns False (and changes nothing) when not allowed."""
        old_state = self.state
        if not self.can_transition(new_state):
            logger.warning(
                f"[{self.name}] Ignoring transition "
                f"{old_state.value.upper()} -> {new_state.value.upper()} (trigger: {trigger})"
            )
            return False

        now = time.time()
        delta_ms = (now - self._last_transition_ts) * 1000.0
        self._last_transition_ts = now
        self.state = new_state
        self.history.append({
            "from": old_state.value,
            "to": new_state.value,
            "trigger": trigger,
            "timestamp": now,
        })

        logger.info(
            f"[{self.name}] {old_state.value.upper()} -> {new_state.value.upper()} "
            f"(trigger: {trigger}, after {delta_ms:.0f}ms)"
        )
        self.structured_logger.state_transition(session_id, old_state.value, new_state.value, trigger)

        for listener in self._listeners:
            try:
                listener(old_state, new_state, trigger)
            except Exception as e:
                logger.error(f"[{self.name}] Transition listener error: {e}", exc_info=True)
        return True
