"""
Inference stage clients, the readiness gate, and prompt/keyword helpers.
"""

from .base import InferenceStageClient
from .http_stage import HttpStageClient
from .local_stage import CallableStageClient, create_keyword_stage
from .readiness import ReadinessGate
from .keywords import (
    extract_keywords,
    build_idea_prompt,
    build_summary_prompt,
    make_idea,
    STOP_WORDS,
)
from .models import (
    TranscriptionRequest,
    TranscriptionResponse,
    TextRequest,
    PromptMessage,
    PromptRequest,
    KeywordResponse,
    GenerationResponse,
    SummaryResponse,
    DetectionRequest,
    Detection,
    DetectionResponse,
    Idea,
)

__all__ = [
    "InferenceStageClient",
    "HttpStageClient",
    "CallableStageClient",
    "create_keyword_stage",
    "ReadinessGate",
    "extract_keywords",
    "build_idea_prompt",
    "build_summary_prompt",
    "make_idea",
    "STOP_WORDS",
    "TranscriptionRequest",
    "TranscriptionResponse",
    "TextRequest",
    "PromptMessage",
    "PromptRequest",
    "KeywordResponse",
    "GenerationResponse",
    "SummaryResponse",
    "DetectionRequest",
    "Detection",
    "DetectionResponse",
    "Idea",
]
