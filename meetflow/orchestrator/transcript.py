"""
Session transcript accumulation

Transcription responses for one stage arrive in submission order, but a
fragment may still be skipped (silent result, failed request). Each window
reserves a sequence number when it is submitted; fragments are released to
the transcript strictly in that order, so a late skip never lets a newer
fragment overtake an older one.
"""

import logging
import re
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_TERMINAL_PUNCTUATION = re.compile(r"[.!?]$")

# callback(sequence, text)
FragmentCallback = Callable[[int, str], None]


def join_fragment(transcript: str, fragment: str) -> str:
    """Append a fragment, closing the previous sentence when it lacks punctuation."""
    if not transcript:
        return fragment
    if _TERMINAL_PUNCTUATION.search(transcript):
        return f"{transcript} {fragment}"
    return f"{transcript}. {fragment}"


class TranscriptAccumulator:
    """Ordered concatenation of transcript fragments for one session."""

    def __init__(self):
        self._text = ""
        self._fragments: List[str] = []
        self._next_sequence = 0
        self._next_release = 0
        self._held: Dict[int, Optional[str]] = {}
        self._callbacks: List[FragmentCallback] = []

    @property
    def text(self) -> str:
        return self._text

    @property
    def fragments(self) -> List[str]:
        return list(self._fragments)

    @property
    def outstanding(self) -> int:
        """Reserved sequence numbers not yet released."""
        return self._next_sequence - self._next_release

    def __bool__(self) -> bool:
        return bool(self._text)

    def on_fragment(self, callback: FragmentCallback) -> None:
        self._callbacks.append(callback)

    def reserve(self) -> int:
        sequence = self._next_sequence
        self._next_sequence += 1
        return sequence

    def fulfill(self, sequence: int, text: str) -> None:
        text = (text or "").strip()
        self._resolve(sequence, text or None)

    def skip(self, sequence: int) -> None:
        self._resolve(sequence, None)

    def _resolve(self, sequence: int, text: Optional[str]) -> None:
        if sequence < self._next_release or sequence >= self._next_sequence or sequence in self._held:
            logger.warning(f"Ignoring unknown or already resolved fragment #{sequence}")
            return
        self._held[sequence] = text

        while self._next_release in self._held:
            released = self._held.pop(self._next_release)
            if released:
                self._append(self._next_release, released)
            self._next_release += 1

    def _append(self, sequence: int, text: str) -> None:
        self._text = join_fragment(self._text, text)
        self._fragments.append(text)
        for callback in self._callbacks:
            try:
                callback(sequence, text)
            except Exception as e:
                logger.error(f"Fragment callback error: {e}", exc_info=True)

    def clear(self) -> None:
        """Drop the text and any outstanding reservations."""
        self._text = ""
        self._fragments.clear()
        self._held.clear()
        self._next_release = self._next_sequence
