"""
Test configuration and fixtures for orchestrator tests.

Every stage is an in-process CallableStageClient driven by a StageScript, so
the full pipeline runs without any model service.
"""

import asyncio

import numpy as np
import pytest
import pytest_asyncio

from meetflow.orchestrator.config import PipelineConfig
from meetflow.orchestrator.pipeline import PipelineOrchestrator
from meetflow.shared.errors import InferenceFailure
from meetflow.stages.local_stage import CallableStageClient, create_keyword_stage
from meetflow.stages.models import (
    Detection,
    DetectionResponse,
    GenerationResponse,
    SummaryResponse,
    TranscriptionResponse,
)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: full pipeline runs with in-process stages")


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Debounce timers that only fire when the test says so."""

    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    def fire_all(self):
        for handle in [h for h in self.handles if not h.cancelled]:
            handle.cancelled = True
            handle.callback()


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class StageScript:
    """Scripted stage behaviour plus a record of every request."""

    def __init__(self):
        self.transcripts = []           # str or Exception per window; default "hello world"
        self.person_counts = []         # per detection request; default 0
        self.idea_text = "Run a pilot with the new budget."
        self.calls = {"transcription": [], "ideas": [], "summary": [], "detection": []}
        self.failing_loads = set()

    def build(self, optional=()):
        async def transcribe(request):
            self.calls["transcription"].append(request)
            await asyncio.sleep(0)
            outcome = self.transcripts.pop(0) if self.transcripts else "hello world"
            if isinstance(outcome, Exception):
                raise outcome
            return TranscriptionResponse(text=outcome)

        async def ideas(prompt):
            self.calls["ideas"].append(prompt)
            return GenerationResponse(text=self.idea_text)

        async def summarize(prompt):
            self.calls["summary"].append(prompt)
            return SummaryResponse(summary=f"summary of: {prompt.content_of('user')}")

        async def detect(request):
            self.calls["detection"].append(request)
            count = self.person_counts.pop(0) if self.person_counts else 0
            return DetectionResponse(detections=[
                Detection(bbox=[float(i), 0.0, 50.0, 120.0], score=0.9, label="person")
                for i in range(count)
            ])

        def loader(name):
            async def load():
                if name in self.failing_loads:
                    raise RuntimeError(f"{name} weights missing")
            return load

        def stage(name, fn):
            return CallableStageClient(name, fn, load_fn=loader(name), required=name not in optional)

        return {
            "transcription": stage("transcription", transcribe),
            "keywords": create_keyword_stage(required="keywords" not in optional),
            "ideas": stage("ideas", ideas),
            "summary": stage("summary", summarize),
            "detection": stage("detection", detect),
        }


class EventLog(list):
    """Output handler collecting every PipelineEvent."""

    def __call__(self, event):
        self.append(event)

    def types(self):
        return [event.event_type for event in self]

    def of(self, event_type):
        return [event for event in self if event.event_type == event_type]


async def settle(orchestrator, timeout=2.0):
    """Wait for every background task the orchestrator spawned."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        pending = [t for t in orchestrator._background if not t.done()]
        if orchestrator.detection is not None:
            pending += [t for t in orchestrator.detection._tasks if not t.done()]
        if orchestrator.session is not None:
            pending += [t for t in orchestrator.session.pending if not t.done()]
        if not pending:
            await asyncio.sleep(0)
            return
        await asyncio.wait(pending, timeout=deadline - loop.time())
    raise AssertionError("background tasks did not settle")


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def frames(value, count, size=1600):
    return [np.full(size, value, dtype=np.float32) for _ in range(count)]


@pytest.fixture
def config():
    return PipelineConfig(
        segmentation_policy="fixed",
        fixed_window_seconds=1.0,
        stop_drain_timeout_s=2.0,
    )


@pytest.fixture
def script():
    return StageScript()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def make_orchestrator(config, script, scheduler, clock, events):
    def make(optional=(), **kwargs):
        orchestrator = PipelineOrchestrator(
            kwargs.pop("config", config),
            stages=script.build(optional=optional),
            scheduler=scheduler,
            clock=clock,
            **kwargs,
        )
        orchestrator.add_output_handler(events)
        return orchestrator
    return make


@pytest_asyncio.fixture
async def orchestrator(make_orchestrator):
    """Loaded orchestrator in READY."""
    orchestrator = make_orchestrator()
    assert await orchestrator.start()
    yield orchestrator
    await orchestrator.shutdown()


@pytest.fixture
def transcription_error():
    return InferenceFailure("transcription", "HTTP 500")
