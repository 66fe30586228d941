"""
Pytest configuration and shared fixtures for imagekernels tests.
"""

import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")

from imagekernels import PipelineConfig, open_backend  # noqa: E402
from imagekernels.errors import DeviceResourceError  # noqa: E402


@pytest.fixture
def host_backend():
    """Fresh host backend with zeroed allocation counters."""
    return open_backend("host")


@pytest.fixture(scope="session")
def opencl_backend():
    """First usable OpenCL device; skips when none is installed."""
    try:
        return open_backend("auto")
    except DeviceResourceError as e:
        pytest.skip(f"No OpenCL device available: {e}")


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def odd_image(rng):
    """7 wide, 5 high: odd in both axes and smaller than one work-group."""
    return rng.integers(0, 256, size=(5, 7), dtype=np.uint8)


@pytest.fixture
def small_config():
    return PipelineConfig(width=20, height=18)
