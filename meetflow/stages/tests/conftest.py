"""
Pytest fixtures for inference stage tests.
"""

import asyncio

import pytest
from unittest.mock import MagicMock

from meetflow.stages.local_stage import CallableStageClient


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")


class FakeResponse:
    """Async context manager standing in for aiohttp.ClientResponse."""

    def __init__(self, status=200, payload=None, error=None):
        self.status = status
        self._payload = payload if payload is not None else {}
        self._error = error

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self):
        return self._payload


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_http_session():
    """MagicMock shaped like an open aiohttp.ClientSession."""
    session = MagicMock()
    session.closed = False

    async def close():
        session.closed = True

    session.close = close
    return session


@pytest.fixture
def echo_stage():
    """Async stage returning its request, with a tiny delay."""
    async def infer(request):
        await asyncio.sleep(0.001)
        return request

    return CallableStageClient("echo", infer)
