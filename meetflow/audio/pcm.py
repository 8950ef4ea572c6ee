"""
PCM conversion helpers for network audio frames.
"""

import numpy as np


def pcm16_to_float32(audio_chunk: bytes) -> np.ndarray:
    """Little-endian 16-bit PCM bytes -> float32 samples in [-1, 1)."""
    if len(audio_chunk) % 2:
        raise ValueError(f"PCM16 chunk must have an even byte length, got {len(audio_chunk)}")
    return np.frombuffer(audio_chunk, dtype="<i2").astype(np.float32) / 32768.0


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()
