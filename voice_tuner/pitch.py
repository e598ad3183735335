from __future__ import annotations

import dataclasses
import logging
import math
import numbers
from collections import deque
from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from voice_tuner.errors import InvalidConfigError, InvalidFrameError

logger = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = 2048

# Cap on the elements of one block of shifted rows in the score search.
_SCORE_BLOCK_ELEMENTS = 1 << 18


def _as_int(value: object, name: str) -> int:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise InvalidFrameError(f"{name} must be an integer, got {value!r}") from exc


@dataclass(frozen=True)
class DetectorConfig:
    history_size: int = 5
    pitch_tolerance: float = 10.0  # Hz, max distance of any history entry from the mean
    rms_threshold: float = 0.05
    correlation_threshold: float = 0.92
    min_correlation_quality: float = 0.05
    min_hz: float = 60.0
    max_hz: float = 1000.0

    def __post_init__(self) -> None:
        size = self.history_size
        if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size < 1:
            raise InvalidConfigError(f"history_size must be a positive integer, got {size!r}")
        object.__setattr__(self, "history_size", int(size))

        for f in dataclasses.fields(self):
            if f.name == "history_size":
                continue
            try:
                value = float(getattr(self, f.name))
            except (TypeError, ValueError) as exc:
                raise InvalidConfigError(f"{f.name} must be a number") from exc
            if not math.isfinite(value) or value < 0.0:
                raise InvalidConfigError(f"{f.name} must be finite and non-negative, got {value!r}")
            object.__setattr__(self, f.name, value)

        if self.pitch_tolerance <= 0.0:
            raise InvalidConfigError("pitch_tolerance must be greater than zero")
        if self.min_hz <= 0.0 or self.max_hz <= self.min_hz:
            raise InvalidConfigError(
                f"plausible range must satisfy 0 < min_hz < max_hz, got {self.min_hz}..{self.max_hz}"
            )

    def replace(self, **changes: object) -> DetectorConfig:
        names = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(changes) - names)
        if unknown:
            raise InvalidConfigError(f"unknown setting(s): {', '.join(unknown)}")
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True, eq=False)
class AudioFrame:
    """One fixed-length window of mono samples, read-only once built."""

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        try:
            samples = np.array(self.samples, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise InvalidFrameError("frame samples must be numeric") from exc
        if samples.ndim != 1:
            raise InvalidFrameError(f"frame must be one-dimensional, got shape {samples.shape}")
        if not np.all(np.isfinite(samples)):
            raise InvalidFrameError("frame contains non-finite samples")
        sample_rate = _as_int(self.sample_rate, "sample rate")
        if sample_rate <= 0:
            raise InvalidFrameError(f"sample rate must be positive, got {self.sample_rate!r}")
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "sample_rate", sample_rate)

    def __len__(self) -> int:
        return int(self.samples.size)


def frame_rms(samples: np.ndarray) -> float:
    x = np.asarray(samples, dtype=np.float64)
    if x.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(x))))


def correlation_scores(samples: np.ndarray) -> np.ndarray:
    """
    Normalized-difference score for every lag ``k`` in ``1 .. N/2 - 1``.

    ``score(k) = 1 - sum(|x[i] - x[i + k]|, i < N/2) / (N/2)``; element ``k - 1``
    of the result holds ``score(k)``. A perfectly periodic signal scores 1 at its
    period.
    """
    x = np.asarray(samples, dtype=np.float64)
    half = x.size // 2
    if half < 2:
        return np.zeros(0, dtype=np.float64)
    # Row k of the view is x[k : k + half]; row 0 is the unshifted reference.
    windows = sliding_window_view(x, half)
    reference = x[:half]
    scores = np.empty(half - 1, dtype=np.float64)
    block = max(1, _SCORE_BLOCK_ELEMENTS // half)
    for start in range(1, half, block):
        stop = min(half, start + block)
        distance = np.abs(windows[start:stop] - reference).sum(axis=1)
        scores[start - 1 : stop - 1] = 1.0 - distance / float(half)
    return scores


def pick_period_lag(scores: np.ndarray, correlation_threshold: float) -> tuple[int, float] | None:
    """
    Lag with the largest rise over its predecessor among lags scoring above the threshold.

    ``scores[k - 1]`` is the score of lag ``k``; the lag before lag 1 counts as 1.0.
    Returns ``(lag, rise)``, or ``None`` when no lag both clears the threshold and rises.
    """
    scores = np.asarray(scores, dtype=np.float64)
    if scores.size == 0:
        return None
    previous = np.concatenate(([1.0], scores[:-1]))
    rising = (scores > correlation_threshold) & (scores > previous)
    if not np.any(rising):
        return None
    steps = np.where(rising, scores - previous, -np.inf)
    # argmax keeps the earliest lag on ties.
    best = int(np.argmax(steps))
    return best + 1, float(steps[best])


class PitchEstimator:
    """
    Raw fundamental-frequency estimate for a single frame.

    Strategy:
    - Gate by RMS: nothing is searched unless the frame is louder than the threshold.
    - Score every lag with the normalized absolute difference of the frame
      against itself shifted by that lag.
    - Among lags scoring above ``correlation_threshold`` pick the one with the
      largest rise over the previous lag's score. That is the first strong
      upward inflection of the curve (the fundamental period), not the global
      maximum, which tends to land on a later multiple of the period.
    - Reject the pick when that rise is below ``min_correlation_quality``.
    """

    def __init__(
        self,
        sample_rate: int,
        frame_size: int = DEFAULT_FRAME_SIZE,
        config: DetectorConfig | None = None,
    ) -> None:
        rate = _as_int(sample_rate, "sample rate")
        size = _as_int(frame_size, "frame size")
        if rate <= 0:
            raise InvalidFrameError(f"sample rate must be positive, got {sample_rate!r}")
        if size < 4 or size % 2:
            raise InvalidFrameError(f"frame size must be even and at least 4, got {frame_size!r}")
        self._sample_rate = rate
        self._frame_size = size
        self._cfg = config or DetectorConfig()

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def config(self) -> DetectorConfig:
        return self._cfg

    def estimate(self, frame: AudioFrame | np.ndarray) -> float | None:
        frame = self._checked(frame)
        cfg = self._cfg

        # A frame exactly at the threshold counts as silence.
        if frame_rms(frame.samples) <= cfg.rms_threshold:
            return None

        picked = pick_period_lag(correlation_scores(frame.samples), cfg.correlation_threshold)
        if picked is None:
            return None
        best_offset, rise = picked
        if rise < cfg.min_correlation_quality:
            return None
        return float(frame.sample_rate) / float(best_offset)

    def _checked(self, frame: AudioFrame | np.ndarray) -> AudioFrame:
        if not isinstance(frame, AudioFrame):
            frame = AudioFrame(frame, self._sample_rate)
        if frame.sample_rate != self._sample_rate:
            raise InvalidFrameError(
                f"frame sample rate {frame.sample_rate} does not match estimator rate {self._sample_rate}"
            )
        if len(frame) != self._frame_size:
            raise InvalidFrameError(f"expected {self._frame_size} samples, got {len(frame)}")
        return frame


class ConsistencyFilter:
    """Reports a pitch only once the last ``history_size`` raw estimates agree."""

    def __init__(self, config: DetectorConfig | None = None) -> None:
        self._cfg = config or DetectorConfig()
        self._history: deque[float] = deque(maxlen=self._cfg.history_size)

    @property
    def config(self) -> DetectorConfig:
        return self._cfg

    @property
    def history(self) -> tuple[float, ...]:
        return tuple(self._history)

    @property
    def is_full(self) -> bool:
        return len(self._history) == self._cfg.history_size

    def push(self, raw_hz: float | None) -> float | None:
        cfg = self._cfg
        # NaN fails both comparisons and resets like any other implausible value.
        if raw_hz is None or not (cfg.min_hz <= raw_hz <= cfg.max_hz):
            self.reset()
            return None

        self._history.append(float(raw_hz))
        if len(self._history) < cfg.history_size:
            return None

        avg = math.fsum(self._history) / len(self._history)
        if all(abs(hz - avg) < cfg.pitch_tolerance for hz in self._history):
            return avg
        return None

    def reset(self) -> None:
        self._history.clear()


class PitchDetector:
    """
    One estimator and its consistency filter, owned by a single caller.

    Calls must be sequential: the order of ``process`` calls is the order of
    the history. Independent detectors share nothing.
    """

    def __init__(
        self,
        sample_rate: int,
        frame_size: int = DEFAULT_FRAME_SIZE,
        config: DetectorConfig | None = None,
    ) -> None:
        cfg = config or DetectorConfig()
        self._estimator = PitchEstimator(sample_rate, frame_size, cfg)
        self._filter = ConsistencyFilter(cfg)

    @property
    def sample_rate(self) -> int:
        return self._estimator.sample_rate

    @property
    def frame_size(self) -> int:
        return self._estimator.frame_size

    @property
    def config(self) -> DetectorConfig:
        return self._estimator.config

    @property
    def history(self) -> tuple[float, ...]:
        return self._filter.history

    def process(self, frame: AudioFrame | np.ndarray) -> float | None:
        return self._filter.push(self._estimator.estimate(frame))

    def reset(self) -> None:
        self._filter.reset()

    def reconfigure(self, config: DetectorConfig) -> None:
        # History gathered under the old thresholds is dropped with the old filter.
        self._estimator = PitchEstimator(self.sample_rate, self.frame_size, config)
        self._filter = ConsistencyFilter(config)
        logger.debug("detector reconfigured: %s", config)

    def set_sensitivity(self, **changes: object) -> DetectorConfig:
        config = self.config.replace(**changes)
        self.reconfigure(config)
        return config
