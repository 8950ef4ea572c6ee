"""
Pipeline orchestration: lifecycle FSM, session state, transcript accumulation
and the command API.
"""

from .config import PipelineConfig
from .inputs import InputSource, PushInputSource
from .pipeline import PipelineOrchestrator, create_stages
from .state_manager import SessionState, State, StateMachine, VALID_TRANSITIONS
from .transcript import TranscriptAccumulator, join_fragment

__all__ = [
    "PipelineConfig",
    "InputSource",
    "PushInputSource",
    "PipelineOrchestrator",
    "create_stages",
    "SessionState",
    "State",
    "StateMachine",
    "VALID_TRANSITIONS",
    "TranscriptAccumulator",
    "join_fragment",
]
