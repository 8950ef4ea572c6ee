"""
Shared Utilities Module for Meetflow

Common building blocks used by every pipeline subpackage:
- Error taxonomy
- Pipeline event schema and Redis Streams broker
- Structured JSON logging helper

Usage:
    from meetflow.shared import PipelineEvent, EventTypes, EventBroker

    broker = EventBroker(redis_client)
    await broker.publish_session_event(event)
"""

from .errors import (
    PipelineError,
    StageLoadError,
    StageNotReadyError,
    InputAcquisitionError,
    InferenceFailure,
    InsufficientDataError,
    InvalidRangeError,
)

from .events import (
    PipelineEvent,
    EventTypes,
)

from .event_broker import (
    EventBroker,
    session_stream_key,
)

from .structured_logger import StructuredLogger

__all__ = [
    # Errors
    "PipelineError",
    "StageLoadError",
    "StageNotReadyError",
    "InputAcquisitionError",
    "InferenceFailure",
    "InsufficientDataError",
    "InvalidRangeError",
    # Events
    "PipelineEvent",
    "EventTypes",
    "EventBroker",
    "session_stream_key",
    # Logging
    "StructuredLogger",
]
