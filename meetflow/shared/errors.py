"""
Error taxonomy for the Meetflow pipeline.

Two families live here:

- Operational errors (stage loading, readiness, input acquisition, inference)
  are expected at runtime. The orchestrator catches them at task boundaries,
  logs them and turns them into error events.
- Buffer contract violations (InsufficientDataError, InvalidRangeError) mean
  the orchestrator asked the SampleBuffer for something it never had. They
  indicate a bug and are left to propagate.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class StageLoadError(PipelineError):
    """A stage failed to initialize. Fatal for that stage only."""

    def __init__(self, stage: str, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"Stage '{stage}' failed to load: {reason}")


class StageNotReadyError(PipelineError):
    """Submission attempted before the stage reported readiness."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Stage '{stage}' is not ready")


class InputAcquisitionError(PipelineError):
    """Camera/microphone permission or device failure."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to acquire input '{source}': {reason}")


class InferenceFailure(PipelineError):
    """A stage returned an error for one specific request."""

    def __init__(self, stage: str, reason: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.reason = reason
        self.cause = cause
        super().__init__(f"Stage '{stage}' inference failed: {reason}")


class InsufficientDataError(PipelineError):
    """peek(n) called with fewer than n buffered samples."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} samples but only {available} buffered")


class InvalidRangeError(PipelineError):
    """drop(n) called with n outside [0, len(buffer)]."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Cannot drop {requested} samples from buffer of {available}")
