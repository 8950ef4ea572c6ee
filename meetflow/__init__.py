"""
Meetflow - real-time capture-and-annotate pipeline

Ingests live audio and video, cuts audio into inference-ready windows,
transcribes them, extracts keywords and ideas, and summarizes the session when
new participants join.

Subpackages:
    shared: Errors, pipeline events, Redis Streams broker, structured logging
    audio: SampleBuffer and segmentation policies
    stages: Inference stage clients, readiness gate, keyword extraction
    detection: Person-count smoothing and debounce
    orchestrator: Pipeline state machine, configuration and command API
"""

__version__ = "1.0.0"

__all__ = ["shared", "audio", "stages", "detection", "orchestrator"]
