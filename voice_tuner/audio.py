from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from voice_tuner.errors import InvalidConfigError
from voice_tuner.pitch import DEFAULT_FRAME_SIZE, AudioFrame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioInputConfig:
    sample_rate: int = 48000
    channels: int = 1
    block_size: int = 1024
    frame_size: int = DEFAULT_FRAME_SIZE

    def __post_init__(self) -> None:
        if self.sample_rate <= 0 or self.channels < 1 or self.block_size < 1:
            raise InvalidConfigError("sample_rate, channels and block_size must be positive")
        if self.frame_size < 4 or self.frame_size % 2:
            raise InvalidConfigError(f"frame_size must be even and at least 4, got {self.frame_size}")


class AudioInput:
    """
    Microphone capture that always holds the most recent ``frame_size`` samples.

    ``read_frame`` returns a snapshot of that window, so a poller running slower
    than the device callback sees the latest audio rather than a backlog.
    """

    def __init__(self, config: AudioInputConfig | None = None) -> None:
        self._cfg = config or AudioInputConfig()
        self._lock = threading.Lock()
        self._window = np.zeros(self._cfg.frame_size, dtype=np.float32)
        self._filled = 0
        self._stream: sd.InputStream | None = None

    @property
    def sample_rate(self) -> int:
        return self._cfg.sample_rate

    @property
    def frame_size(self) -> int:
        return self._cfg.frame_size

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return

        def callback(indata, frames, time_info, status) -> None:  # noqa: ARG001
            if status:
                # Drop blocks on over/underflow; the window keeps its last good audio.
                logger.debug("input stream status: %s", status)
                return
            self.push(indata[:, 0])

        self._stream = sd.InputStream(
            samplerate=self._cfg.sample_rate,
            channels=self._cfg.channels,
            blocksize=self._cfg.block_size,
            dtype="float32",
            callback=callback,
        )
        self._stream.start()
        logger.info(
            "audio input started: %d Hz, %d-sample frames",
            self._cfg.sample_rate,
            self._cfg.frame_size,
        )

    def stop(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._stream = None
            with self._lock:
                self._filled = 0
            logger.info("audio input stopped")

    def push(self, block: np.ndarray) -> None:
        mono = np.asarray(block, dtype=np.float32).reshape(-1)
        n = int(mono.size)
        if n == 0:
            return
        size = self._cfg.frame_size
        with self._lock:
            if n >= size:
                self._window[:] = mono[-size:]
            else:
                self._window[:-n] = self._window[n:]
                self._window[-n:] = mono
            self._filled = min(size, self._filled + n)

    def read_frame(self) -> AudioFrame | None:
        with self._lock:
            if self._filled < self._cfg.frame_size:
                return None
            samples = self._window.copy()
        return AudioFrame(samples, self._cfg.sample_rate)
