"""
Pydantic models for inference stage contracts

Typed request/response bodies exchanged with the out-of-process inference
services. Prompts for generative stages are role-tagged messages instead of
free-form strings so the orchestrator never depends on prompt wording.
"""

from typing import List, Literal

from pydantic import BaseModel, Field


class TranscriptionRequest(BaseModel):
    """One audio window for the speech-to-text stage"""
    samples: List[float] = Field(..., description="Mono float32 samples in [-1, 1]")
    sample_rate: int = Field(16000, gt=0, description="Sample rate in Hz")

    @classmethod
    def from_window(cls, window) -> "TranscriptionRequest":
        return cls(samples=window.samples.tolist(), sample_rate=window.sample_rate)


class TranscriptionResponse(BaseModel):
    """Speech-to-text result"""
    text: str = Field("", description="Transcribed text (may be empty)")


class TextRequest(BaseModel):
    """Raw text input (keyword stage)"""
    text: str


class PromptMessage(BaseModel):
    """Role-tagged prompt fragment"""
    role: Literal["system", "user", "assistant"]
    content: str


class PromptRequest(BaseModel):
    """Structured prompt for generative stages (ideas, summaries)"""
    messages: List[PromptMessage]
    max_new_tokens: int = Field(150, gt=0)

    def content_of(self, role: str) -> str:
        return "\n".join(m.content for m in self.messages if m.role == role)


class KeywordResponse(BaseModel):
    """Short keyword strings extracted from text"""
    keywords: List[str] = Field(default_factory=list)


class GenerationResponse(BaseModel):
    """Free-text generation (idea sentence)"""
    text: str = ""


class SummaryResponse(BaseModel):
    """Free-text summary of a session transcript"""
    summary: str = ""


class DetectionRequest(BaseModel):
    """One encoded video frame for the detection stage"""
    image_base64: str
    width: int = 640
    height: int = 480


class Detection(BaseModel):
    """One object detected in a frame"""
    bbox: List[float] = Field(..., description="[x, y, width, height]")
    score: float = Field(..., ge=0.0, le=1.0)
    label: str


class DetectionResponse(BaseModel):
    """All objects detected in a frame"""
    detections: List[Detection] = Field(default_factory=list)


class Idea(BaseModel):
    """Idea card produced from one transcript chunk"""
    id: int = Field(..., description="Millisecond timestamp")
    text: str
    keywords: List[str] = Field(default_factory=list, description="First keywords used in the prompt")
