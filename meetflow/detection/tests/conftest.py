"""
Pytest fixtures for detection smoothing tests.
"""

import pytest

from meetflow.stages.local_stage import CallableStageClient
from meetflow.stages.models import Detection, DetectionResponse


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Records scheduled callbacks instead of running them on the event loop."""

    def __init__(self):
        self.handles = []

    def __call__(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def live(self):
        return [h for h in self.handles if not h.cancelled]

    def fire_all(self):
        for handle in list(self.live):
            handle.cancelled = True
            handle.callback()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def person():
    def make(score=0.9, label="person"):
        return Detection(bbox=[10.0, 20.0, 100.0, 200.0], score=score, label=label)
    return make


@pytest.fixture
def scripted_detection_stage():
    """Detection stage answering with scripted person counts, one per request."""
    counts = []

    def infer(request):
        count = counts.pop(0) if counts else 0
        return DetectionResponse(detections=[
            Detection(bbox=[float(i), 0.0, 10.0, 10.0], score=0.9, label="person")
            for i in range(count)
        ])

    stage = CallableStageClient("detection", infer)
    stage.counts = counts
    return stage
