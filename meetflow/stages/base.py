"""
Inference Stage Client Base

Uniform handle to one opaque asynchronous inference service (transcription,
keywords, ideas, summarization, detection).

Contract:
    load()          - initialize; flips `ready` or raises StageLoadError
    submit(request) - await one response; StageNotReadyError before readiness
    dispatch(req)   - schedule submit() as a tracked task (non-blocking callers)
    cancel()        - cancel every queued or in-flight submission

A stage owns a single inference slot. Concurrent submissions queue on an
asyncio.Lock, which wakes waiters in FIFO order, so one stage always answers
in submission order. Different stages share nothing and may interleave.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set

from meetflow.shared.errors import InferenceFailure, StageLoadError, StageNotReadyError

logger = logging.getLogger(__name__)

# listener(stage_name, ready, error)
ReadinessListener = Callable[[str, bool, Optional[StageLoadError]], None]


class InferenceStageClient(ABC):
    """Base class for every stage client."""

    def __init__(self, name: str, required: bool = True, load_timeout_s: float = 60.0):
        self.name = name
        self.required = required
        self.load_timeout_s = load_timeout_s
        self.load_error: Optional[StageLoadError] = None

        self._ready = False
        self._slot = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()
        self._listeners: List[ReadinessListener] = []

        # Metrics
        self.requests_completed = 0
        self.requests_failed = 0
        self.last_latency_ms = 0.0

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_listener(self, listener: ReadinessListener) -> None:
        self._listeners.append(listener)

    def _notify(self, ready: bool, error: Optional[StageLoadError]) -> None:
        for listener in self._listeners:
            try:
                listener(self.name, ready, error)
            except Exception as e:
                logger.error(f"[{self.name}] Readiness listener error: {e}", exc_info=True)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def load(self) -> None:
        """Initialize the stage, bounded by load_timeout_s."""
        if self._ready:
            return

        logger.info(f"[{self.name}] Loading stage (timeout={self.load_timeout_s}s)...")
        start = time.time()
        try:
            await asyncio.wait_for(self._load(), timeout=self.load_timeout_s)
        except asyncio.TimeoutError:
            error = StageLoadError(self.name, f"timed out after {self.load_timeout_s}s")
        except StageLoadError as e:
            error = e
        except Exception as e:
            error = StageLoadError(self.name, str(e) or type(e).__name__)
        else:
            self._ready = True
            self.load_error = None
            logger.info(f"[{self.name}] Stage ready ({(time.time() - start) * 1000:.0f}ms)")
            self._notify(True, None)
            return

        self.load_error = error
        logger.error(f"[{self.name}] {error}")
        self._notify(False, error)
        raise error

    async def teardown(self) -> None:
        """Cancel outstanding work, release resources and drop readiness."""
        self.cancel()
        self._ready = False
        await self.close()

    async def close(self) -> None:
        """Release client resources. Override when the client holds any."""

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    async def submit(self, request: Any) -> Any:
        if not self._ready:
            raise StageNotReadyError(self.name)

        async with self._slot:
            start = time.time()
            try:
                response = await self._infer(request)
            except InferenceFailure:
                self.requests_failed += 1
                raise
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.requests_failed += 1
                raise InferenceFailure(self.name, str(e) or type(e).__name__, cause=e) from e

            self.last_latency_ms = (time.time() - start) * 1000
            self.requests_completed += 1
            return response

    def dispatch(self, request: Any) -> asyncio.Task:
        """Schedule submit() without awaiting it."""
        if not self._ready:
            raise StageNotReadyError(self.name)
        task = asyncio.create_task(self.submit(request), name=f"{self.name}_submit")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def cancel(self) -> int:
        """Cancel every pending submission. Returns how many were cancelled."""
        cancelled = 0
        for task in list(self._pending):
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logger.info(f"[{self.name}] Cancelled {cancelled} pending request(s)")
        return cancelled

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "ready": self._ready,
            "required": self.required,
            "load_error": str(self.load_error) if self.load_error else None,
            "pending": len(self._pending),
            "requests_completed": self.requests_completed,
            "requests_failed": self.requests_failed,
            "last_latency_ms": round(self.last_latency_ms, 1),
        }

    # ------------------------------------------------------------------ #
    # Subclass hooks
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _load(self) -> None:
        ...

    @abstractmethod
    async def _infer(self, request: Any) -> Any:
        ...
