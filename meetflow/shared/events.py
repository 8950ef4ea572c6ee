"""
Unified Event Schema for the Meetflow pipeline.

Every result the pipeline produces (transcript fragments, keywords, ideas,
summaries, participant changes, state transitions) leaves the orchestrator as a
PipelineEvent. Events are handed to in-process output handlers and, when
enabled, published to Redis Streams for UI consumers.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any
import time
import json
import uuid


@dataclass
class PipelineEvent:
    """
    Standard event model for all pipeline events.
    """
    event_type: str
    session_id: str
    payload: Dict[str, Any]
    source: str
    timestamp: float = field(default_factory=time.time)
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    def to_redis_dict(self) -> Dict[str, str]:
        """
        Convert to Redis-compatible dictionary (all values must be strings/bytes).
        The payload and metadata are JSON serialized.
        """
        return {
            "event_type": self.event_type,
            "session_id": self.session_id,
            "source": self.source,
            "timestamp": str(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": json.dumps(self.payload),
            "metadata": json.dumps(self.metadata)
        }

    @classmethod
    def from_redis_dict(cls, data: Dict[str, Any]) -> 'PipelineEvent':
        """Create PipelineEvent from Redis stream data."""
        def decode(val):
            return val.decode('utf-8') if isinstance(val, bytes) else val

        def get(key):
            return data.get(key) or data.get(key.encode())

        return cls(
            event_type=decode(get("event_type")),
            session_id=decode(get("session_id")),
            source=decode(get("source")),
            timestamp=float(decode(get("timestamp") or 0.0)),
            correlation_id=decode(get("correlation_id")),
            payload=json.loads(decode(get("payload") or "{}")),
            metadata=json.loads(decode(get("metadata") or "{}"))
        )

    def validate_payload(self) -> None:
        """Validate payload schema for critical event types."""
        required = {
            EventTypes.TRANSCRIPT_FRAGMENT: ["text", "sequence"],
            EventTypes.IDEA: ["id", "text", "keywords"],
            EventTypes.SUMMARY: ["summary"],
            EventTypes.PARTICIPANT_INCREASE: ["previous", "count"],
            EventTypes.STATE_CHANGED: ["old_state", "new_state", "trigger"],
        }

        fields = required.get(self.event_type)
        if fields:
            missing = [f for f in fields if f not in self.payload]
            if missing:
                raise ValueError(
                    f"Event {self.event_type} payload missing required fields: {missing}. "
                    f"Payload: {self.payload}"
                )


# Event Type Constants
class EventTypes:
    # Orchestrator lifecycle
    STATE_CHANGED = "meetflow.orchestrator.state"
    PIPELINE_READY = "meetflow.orchestrator.ready"
    ERROR = "meetflow.orchestrator.error"

    # Stage lifecycle
    STAGE_READY = "meetflow.stage.ready"
    STAGE_FAILED = "meetflow.stage.failed"

    # Audio path
    WINDOW_DISCARDED = "meetflow.audio.window_discarded"
    TRANSCRIPT_FRAGMENT = "meetflow.transcript.fragment"
    KEYWORDS = "meetflow.keywords.extracted"
    IDEA = "meetflow.idea.generated"
    SUMMARY = "meetflow.summary.ready"

    # Video path
    DETECTION = "meetflow.detection.result"
    PARTICIPANT_INCREASE = "meetflow.detection.participant_increase"
