"""
Input sources

An input source hands frames to a callback once opened. Acquisition
mechanics (microphone, camera, network socket) live behind this boundary;
the orchestrator only needs open/close and a frame callback that never
blocks.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from meetflow.shared.errors import InputAcquisitionError

logger = logging.getLogger(__name__)

FrameCallback = Callable[[Any], bool]


class InputSource(ABC):
    """Producer of audio or video frames."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def open(self, on_frame: FrameCallback) -> None:
        """Start delivering frames to on_frame. Raises InputAcquisitionError."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering frames and release the device."""


class PushInputSource(InputSource):
    """
    Source fed by an external producer, e.g. a WebSocket handler calling
    feed() for every frame it receives.
    """

    def __init__(self, name: str):
        super().__init__(name)
        self._on_frame: Optional[FrameCallback] = None

    @property
    def is_open(self) -> bool:
        return self._on_frame is not None

    async def open(self, on_frame: FrameCallback) -> None:
        if self._on_frame is not None:
            raise InputAcquisitionError(self.name, "already open")
        self._on_frame = on_frame
        logger.info(f"🎤 Input '{self.name}' opened")

    async def close(self) -> None:
        if self._on_frame is not None:
            logger.info(f"Input '{self.name}' closed")
        self._on_frame = None

    def feed(self, frame: Any) -> bool:
        """Deliver one frame. Returns False when the source is closed or the frame was refused."""
        if self._on_frame is None:
            return False
        return bool(self._on_frame(frame))
