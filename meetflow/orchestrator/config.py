"""
Configuration for the Meetflow pipeline orchestrator

Loaded from environment variables with the MEETFLOW_* prefix. Defaults match
a 16 kHz single-session deployment with every inference stage served over
HTTP.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

VALID_POLICIES = ("fixed", "overlapping", "silence")
VALID_KEYWORD_MODES = ("incremental", "batch")
VALID_DEBOUNCE_MODES = ("supersede", "independent")
STAGE_NAMES = ("transcription", "keywords", "ideas", "summary", "detection")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class PipelineConfig:
    """Configuration for one PipelineOrchestrator."""

    # Audio
    sample_rate: int = 16000

    # Segmentation
    segmentation_policy: str = "overlapping"
    fixed_window_seconds: float = 1.0
    chunk_seconds: float = 3.5
    overlap_fraction: float = 0.25
    silence_threshold_seconds: float = 2.0
    max_buffer_seconds: float = 15.0
    min_buffer_seconds: float = 2.0
    significant_amplitude: float = 0.01
    min_peak_amplitude: float = 0.01
    flush_trailing_window: bool = False
    audio_queue_size: int = 256

    # Transcript fan-out
    keyword_mode: str = "incremental"
    keyword_stage_url: Optional[str] = None  # None: built-in frequency extractor

    # Stage services
    transcription_url: str = "http://meetflow-stt:8001"
    ideas_url: str = "http://meetflow-llm:8002"
    summary_url: str = "http://meetflow-llm:8002"
    detection_url: str = "http://meetflow-vision:8003"
    transcription_endpoint: str = "/transcribe"
    keywords_endpoint: str = "/keywords"
    ideas_endpoint: str = "/generate"
    summary_endpoint: str = "/summarize"
    detection_endpoint: str = "/detect"
    stage_load_timeout_s: float = 60.0
    stage_request_timeout_s: float = 30.0
    health_retry_delay_s: float = 2.0
    optional_stages: List[str] = field(default_factory=list)
    stop_drain_timeout_s: float = 10.0

    # Detection
    detection_history_size: int = 5
    detection_interval_s: float = 1.0
    confidence_threshold: float = 0.65
    debounce_s: float = 2.0
    debounce_mode: str = "supersede"
    video_width: int = 640
    video_height: int = 480

    # Events
    publish_events: bool = False
    redis_url: str = "redis://localhost:6379/0"
    stream_prefix: str = "meetflow"
    stream_max_len: int = 10000

    # Service
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "PipelineConfig":
        """Load configuration from MEETFLOW_* environment variables"""
        return PipelineConfig(
            sample_rate=int(os.getenv("MEETFLOW_SAMPLE_RATE", "16000")),

            segmentation_policy=os.getenv("MEETFLOW_SEGMENTATION_POLICY", "overlapping").lower(),
            fixed_window_seconds=float(os.getenv("MEETFLOW_FIXED_WINDOW_SECONDS", "1.0")),
            chunk_seconds=float(os.getenv("MEETFLOW_CHUNK_SECONDS", "3.5")),
            overlap_fraction=float(os.getenv("MEETFLOW_OVERLAP_FRACTION", "0.25")),
            silence_threshold_seconds=float(os.getenv("MEETFLOW_SILENCE_THRESHOLD_SECONDS", "2.0")),
            max_buffer_seconds=float(os.getenv("MEETFLOW_MAX_BUFFER_SECONDS", "15.0")),
            min_buffer_seconds=float(os.getenv("MEETFLOW_MIN_BUFFER_SECONDS", "2.0")),
            significant_amplitude=float(os.getenv("MEETFLOW_SIGNIFICANT_AMPLITUDE", "0.01")),
            min_peak_amplitude=float(os.getenv("MEETFLOW_MIN_PEAK_AMPLITUDE", "0.01")),
            flush_trailing_window=_env_bool("MEETFLOW_FLUSH_TRAILING_WINDOW", "false"),
            audio_queue_size=int(os.getenv("MEETFLOW_AUDIO_QUEUE_SIZE", "256")),

            keyword_mode=os.getenv("MEETFLOW_KEYWORD_MODE", "incremental").lower(),
            keyword_stage_url=os.getenv("MEETFLOW_KEYWORDS_URL") or None,

            transcription_url=os.getenv("MEETFLOW_TRANSCRIPTION_URL", "http://meetflow-stt:8001"),
            ideas_url=os.getenv("MEETFLOW_IDEAS_URL", "http://meetflow-llm:8002"),
            summary_url=os.getenv("MEETFLOW_SUMMARY_URL", "http://meetflow-llm:8002"),
            detection_url=os.getenv("MEETFLOW_DETECTION_URL", "http://meetflow-vision:8003"),
            transcription_endpoint=os.getenv("MEETFLOW_TRANSCRIPTION_ENDPOINT", "/transcribe"),
            keywords_endpoint=os.getenv("MEETFLOW_KEYWORDS_ENDPOINT", "/keywords"),
            ideas_endpoint=os.getenv("MEETFLOW_IDEAS_ENDPOINT", "/generate"),
            summary_endpoint=os.getenv("MEETFLOW_SUMMARY_ENDPOINT", "/summarize"),
            detection_endpoint=os.getenv("MEETFLOW_DETECTION_ENDPOINT", "/detect"),
            stage_load_timeout_s=float(os.getenv("MEETFLOW_STAGE_LOAD_TIMEOUT", "60.0")),
            stage_request_timeout_s=float(os.getenv("MEETFLOW_STAGE_REQUEST_TIMEOUT", "30.0")),
            health_retry_delay_s=float(os.getenv("MEETFLOW_HEALTH_RETRY_DELAY", "2.0")),
            optional_stages=_env_list("MEETFLOW_OPTIONAL_STAGES", ""),
            stop_drain_timeout_s=float(os.getenv("MEETFLOW_STOP_DRAIN_TIMEOUT", "10.0")),

            detection_history_size=int(os.getenv("MEETFLOW_DETECTION_HISTORY_SIZE", "5")),
            detection_interval_s=float(os.getenv("MEETFLOW_DETECTION_INTERVAL", "1.0")),
            confidence_threshold=float(os.getenv("MEETFLOW_CONFIDENCE_THRESHOLD", "0.65")),
            debounce_s=float(os.getenv("MEETFLOW_DEBOUNCE_SECONDS", "2.0")),
            debounce_mode=os.getenv("MEETFLOW_DEBOUNCE_MODE", "supersede").lower(),
            video_width=int(os.getenv("MEETFLOW_VIDEO_WIDTH", "640")),
            video_height=int(os.getenv("MEETFLOW_VIDEO_HEIGHT", "480")),

            publish_events=_env_bool("MEETFLOW_PUBLISH_EVENTS", "false"),
            redis_url=os.getenv("MEETFLOW_REDIS_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0")),
            stream_prefix=os.getenv("MEETFLOW_STREAM_PREFIX", "meetflow"),
            stream_max_len=int(os.getenv("MEETFLOW_STREAM_MAX_LEN", "10000")),

            host=os.getenv("MEETFLOW_HOST", "0.0.0.0"),
            port=int(os.getenv("MEETFLOW_PORT", "8080")),
            log_level=os.getenv("MEETFLOW_LOG_LEVEL", os.getenv("LOG_LEVEL", "INFO")),
        )

    def __post_init__(self):
        """Validate configuration"""
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.segmentation_policy not in VALID_POLICIES:
            raise ValueError(f"segmentation_policy must be one of {VALID_POLICIES}, got {self.segmentation_policy!r}")
        if self.fixed_window_seconds <= 0 or self.chunk_seconds <= 0:
            raise ValueError("window durations must be positive")
        if not 0.0 <= self.overlap_fraction < 1.0:
            raise ValueError("overlap_fraction must be in [0.0, 1.0)")
        fixed_samples = int(round(self.fixed_window_seconds * self.sample_rate))
        chunk_samples = int(round(self.chunk_seconds * self.sample_rate))
        if fixed_samples < 1 or chunk_samples < 1:
            raise ValueError("window durations must cover at least one sample")
        if chunk_samples - int(round(chunk_samples * self.overlap_fraction)) < 1:
            raise ValueError(
                f"chunk_seconds={self.chunk_seconds} with overlap_fraction={self.overlap_fraction} "
                f"leaves no samples to advance between windows"
            )
        if not 0.0 <= self.min_buffer_seconds < self.max_buffer_seconds:
            raise ValueError("min_buffer_seconds must be in [0, max_buffer_seconds)")
        if self.keyword_mode not in VALID_KEYWORD_MODES:
            raise ValueError(f"keyword_mode must be one of {VALID_KEYWORD_MODES}, got {self.keyword_mode!r}")
        if self.debounce_mode not in VALID_DEBOUNCE_MODES:
            raise ValueError(f"debounce_mode must be one of {VALID_DEBOUNCE_MODES}, got {self.debounce_mode!r}")
        if self.detection_history_size <= 0:
            raise ValueError("detection_history_size must be positive")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be in [0.0, 1.0]")
        if self.stage_load_timeout_s <= 0 or self.stage_request_timeout_s <= 0:
            raise ValueError("stage timeouts must be positive")
        if self.audio_queue_size <= 0:
            raise ValueError("audio_queue_size must be positive")
        unknown = [name for name in self.optional_stages if name not in STAGE_NAMES]
        if unknown:
            raise ValueError(f"Unknown optional stages: {unknown}. Valid stages: {STAGE_NAMES}")

        logger.info(
            f"PipelineConfig loaded: "
            f"policy={self.segmentation_policy}, "
            f"sample_rate={self.sample_rate}, "
            f"keyword_mode={self.keyword_mode}, "
            f"debounce={self.debounce_s}s/{self.debounce_mode}"
        )
        if self.optional_stages:
            logger.info(f"   Optional stages: {self.optional_stages}")
        if self.publish_events:
            logger.info(f"   Publishing events to {self.redis_url} (prefix={self.stream_prefix})")

    def is_optional(self, stage_name: str) -> bool:
        return stage_name in self.optional_stages
