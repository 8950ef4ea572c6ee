"""
Pytest fixtures for audio segmentation tests.
"""

import numpy as np
import pytest

SAMPLE_RATE = 16000


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast isolated tests")


@pytest.fixture
def sample_rate():
    return SAMPLE_RATE


@pytest.fixture
def ramp():
    """Samples whose value encodes their position, so overlaps are checkable."""
    def make(n, start=0):
        return (np.arange(start, start + n, dtype=np.float64) % 1000 / 1000.0 + 0.05).astype(np.float32)
    return make


@pytest.fixture
def loud_frame():
    """One 100 ms frame of significant audio."""
    return np.full(1600, 0.2, dtype=np.float32)


@pytest.fixture
def quiet_frame():
    """One 100 ms frame below the significance threshold."""
    return np.full(1600, 0.005, dtype=np.float32)
