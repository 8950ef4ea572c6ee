"""
In-process inference stage

Wraps a plain callable as a stage. Coroutine functions are awaited directly,
blocking functions run in a worker thread so they never stall the event loop.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from .base import InferenceStageClient
from .keywords import extract_keywords
from .models import KeywordResponse, TextRequest

logger = logging.getLogger(__name__)


class CallableStageClient(InferenceStageClient):
    """Stage backed by an in-process callable."""

    def __init__(
        self,
        name: str,
        infer_fn: Callable[[Any], Any],
        load_fn: Optional[Callable[[], Any]] = None,
        required: bool = True,
        load_timeout_s: float = 60.0,
    ):
        super().__init__(name, required=required, load_timeout_s=load_timeout_s)
        self.infer_fn = infer_fn
        self.load_fn = load_fn

    async def _load(self) -> None:
        if self.load_fn is None:
            return
        if inspect.iscoroutinefunction(self.load_fn):
            await self.load_fn()
        else:
            await asyncio.to_thread(self.load_fn)

    async def _infer(self, request: Any) -> Any:
        if inspect.iscoroutinefunction(self.infer_fn):
            return await self.infer_fn(request)
        return await asyncio.to_thread(self.infer_fn, request)


def _keyword_infer(request: TextRequest) -> KeywordResponse:
    return KeywordResponse(keywords=extract_keywords(request.text))


def create_keyword_stage(name: str = "keywords", required: bool = True) -> CallableStageClient:
    """Frequency-based keyword extractor that needs no model."""
    return CallableStageClient(name, _keyword_infer, required=required)
