from __future__ import annotations

import numpy as np
import pytest

from tests.signals import tiled_sine


@pytest.fixture
def tone_400() -> np.ndarray:
    """400 Hz at 8 kHz: a 20-sample period."""
    return tiled_sine(20)


@pytest.fixture
def silence() -> np.ndarray:
    return np.zeros(2048, dtype=np.float32)
