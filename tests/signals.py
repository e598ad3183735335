from __future__ import annotations

import numpy as np


def tiled_sine(period: int, amplitude: float = 0.8, size: int = 2048) -> np.ndarray:
    # Repeating one sampled cycle keeps the frame exactly periodic at `period` samples.
    cycle = amplitude * np.sin(2 * np.pi * np.arange(period) / period)
    return np.tile(cycle, size // period + 1)[:size].astype(np.float32)
