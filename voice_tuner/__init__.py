from __future__ import annotations

from voice_tuner.errors import InvalidConfigError, InvalidFrameError, TunerError
from voice_tuner.pitch import (
    AudioFrame,
    ConsistencyFilter,
    DetectorConfig,
    PitchDetector,
    PitchEstimator,
)

__version__ = "0.1.0"

__all__ = [
    "AudioFrame",
    "ConsistencyFilter",
    "DetectorConfig",
    "InvalidConfigError",
    "InvalidFrameError",
    "PitchDetector",
    "PitchEstimator",
    "TunerError",
    "__version__",
]
