"""
Readiness Gate

Barrier that opens once every configured stage reports initialized. The gate
recomputes `all_ready` after each flag transition and fires its ready
callbacks exactly once; it never closes again until explicit teardown.

Optional stages that fail to load are excluded from the AND. A failed
required stage keeps the gate closed for the lifetime of the process.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from meetflow.shared.errors import StageLoadError

logger = logging.getLogger(__name__)


class ReadinessGate:
    """Aggregates per-stage readiness flags."""

    def __init__(self):
        self.flags: Dict[str, bool] = {}
        self._required: Dict[str, bool] = {}
        self._failed: Dict[str, StageLoadError] = {}
        self._callbacks: List[Callable[[], None]] = []
        self._opened = False
        self._event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    def register(self, name: str, required: bool = True) -> None:
        if self._opened:
            raise RuntimeError(f"Cannot register stage '{name}' after the gate opened")
        self.flags[name] = False
        self._required[name] = required

    def watch(self, stage) -> None:
        """Register a stage client and subscribe to its readiness transitions."""
        self.register(stage.name, required=stage.required)
        stage.add_listener(self._on_stage_update)

    def on_ready(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def _on_stage_update(self, name: str, ready: bool, error: Optional[StageLoadError]) -> None:
        if ready:
            self.mark_ready(name)
        else:
            self.mark_failed(name, error or StageLoadError(name, "unknown error"))

    def mark_ready(self, name: str) -> None:
        if name not in self.flags:
            raise KeyError(f"Unknown stage: {name}")
        if self.flags[name]:
            return
        self.flags[name] = True
        logger.info(f"Stage '{name}' ready ({self.ready_count}/{len(self.flags)})")
        self._recompute()

    def mark_failed(self, name: str, error: StageLoadError) -> None:
        if name not in self.flags:
            raise KeyError(f"Unknown stage: {name}")
        self._failed[name] = error
        if self._required[name]:
            logger.error(f"Required stage '{name}' failed - pipeline cannot become ready: {error}")
        else:
            logger.warning(f"Optional stage '{name}' failed and is excluded: {error}")
        self._recompute()

    def _counted(self) -> Set[str]:
        return {
            name for name in self.flags
            if not (name in self._failed and not self._required[name])
        }

    def _recompute(self) -> None:
        if self._opened:
            return
        counted = self._counted()
        if not counted or not all(self.flags[name] for name in counted):
            return

        self._opened = True
        if self._event is not None:
            self._event.set()
        logger.info(f"✅ All stages ready: {sorted(counted)}")
        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Ready callback error: {e}", exc_info=True)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    @property
    def all_ready(self) -> bool:
        return self._opened

    @property
    def ready_count(self) -> int:
        return sum(1 for ready in self.flags.values() if ready)

    @property
    def blocked(self) -> bool:
        """True when a required stage failed, so the gate can never open."""
        return any(self._required[name] for name in self._failed)

    @property
    def failed(self) -> Dict[str, StageLoadError]:
        return dict(self._failed)

    async def wait(self) -> bool:
        """
        Block until the gate opens or is torn down.

        Returns True when the gate opened, False when teardown released the
        waiter first.
        """
        if self._opened:
            return True
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()
        return self._opened

    def teardown(self) -> None:
        """Explicit teardown: every flag back to False, gate closed, waiters released."""
        for name in self.flags:
            self.flags[name] = False
        self._failed.clear()
        self._opened = False
        if self._event is not None:
            self._event.set()
        self._event = None

    def snapshot(self) -> Dict[str, object]:
        return {
            "all_ready": self._opened,
            "flags": dict(self.flags),
            "failed": {name: str(err) for name, err in self._failed.items()},
        }
