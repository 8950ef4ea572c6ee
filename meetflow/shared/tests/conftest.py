"""
Pytest fixtures for shared module tests.
"""

import pytest
from unittest.mock import AsyncMock


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests spanning several components")


@pytest.fixture
def mock_redis_client():
    """Create a mock Redis client."""
    client = AsyncMock()
    client.xadd = AsyncMock(return_value="1234567890-0")
    client.xread = AsyncMock(return_value=[])
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
def sample_pipeline_event():
    """Create a sample PipelineEvent for testing."""
    from meetflow.shared.events import PipelineEvent, EventTypes

    return PipelineEvent(
        event_type=EventTypes.TRANSCRIPT_FRAGMENT,
        session_id="test_session_123",
        source="transcription",
        payload={"text": "Hello world", "sequence": 0},
        metadata={"sample_rate": 16000}
    )


@pytest.fixture
def sample_event_dict():
    """Create a sample event as a Redis-compatible dict."""
    return {
        "event_type": "meetflow.transcript.fragment",
        "session_id": "test_session_123",
        "source": "transcription",
        "timestamp": "1234567890.123",
        "correlation_id": "abc-123-def",
        "payload": '{"text": "Hello world", "sequence": 0}',
        "metadata": '{"sample_rate": 16000}'
    }
