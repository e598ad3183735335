from __future__ import annotations

import logging
import threading
import uuid

import numpy as np

from voice_tuner.errors import InvalidFrameError
from voice_tuner.pitch import DEFAULT_FRAME_SIZE, AudioFrame, DetectorConfig, PitchDetector
from voice_tuner.web.schemas import ErrorEvent, PitchUpdateEvent

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 48_000


class RealtimeSession:
    """
    Per-connection detector fed from raw float32 audio chunks.

    Chunks of any size are buffered and cut into consecutive, non-overlapping
    frames of ``frame_size`` samples; every complete frame yields one
    ``pitch_update`` event.
    """

    def __init__(
        self,
        session_id: str,
        *,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        frame_size: int = DEFAULT_FRAME_SIZE,
    ) -> None:
        self.session_id = session_id
        self.detector = PitchDetector(sample_rate, frame_size)
        self._pending = np.zeros(0, dtype=np.float32)
        self._clock = 0.0

    def init(
        self,
        *,
        sample_rate: int,
        frame_size: int = DEFAULT_FRAME_SIZE,
        changes: dict[str, object] | None = None,
    ) -> None:
        # Sample rate and frame size are fixed per detector, so start over.
        config = DetectorConfig().replace(**(changes or {}))
        self.detector = PitchDetector(sample_rate, frame_size, config)
        self._pending = np.zeros(0, dtype=np.float32)
        self._clock = 0.0
        logger.debug(
            "session %s initialized at %d Hz, %d-sample frames",
            self.session_id,
            sample_rate,
            frame_size,
        )

    def set_sensitivity(self, changes: dict[str, object]) -> DetectorConfig:
        return self.detector.set_sensitivity(**changes)

    def reset(self) -> None:
        self.detector.reset()
        self._pending = np.zeros(0, dtype=np.float32)

    def process_audio_bytes(self, payload: bytes) -> list[dict[str, object]]:
        if not payload:
            return []
        if len(payload) % 4:
            raise InvalidFrameError("audio payload must be a whole number of float32 samples")

        chunk = np.frombuffer(payload, dtype="<f4")
        self._pending = np.concatenate((self._pending, chunk))

        size = self.detector.frame_size
        rate = float(self.detector.sample_rate)
        events: list[dict[str, object]] = []
        while self._pending.size >= size:
            block = self._pending[:size]
            self._pending = self._pending[size:]
            self._clock += size / rate
            try:
                hz = self.detector.process(AudioFrame(block, self.detector.sample_rate))
            except InvalidFrameError as exc:
                # The gap breaks the run of consecutive estimates.
                logger.warning("session %s dropped a frame: %s", self.session_id, exc)
                self.detector.reset()
                events.append(ErrorEvent(code="invalid_frame", message=str(exc)).model_dump())
                continue
            event = PitchUpdateEvent(t=self._clock, hz=hz, voiced=hz is not None)
            events.append(event.model_dump(by_alias=True))

        return events


def analyze_recording(
    audio: np.ndarray,
    sample_rate: int,
    *,
    frame_size: int = DEFAULT_FRAME_SIZE,
    config: DetectorConfig | None = None,
) -> list[tuple[float, float | None]]:
    """Run a whole recording through a fresh detector, one result per complete frame."""
    detector = PitchDetector(sample_rate, frame_size, config)
    results: list[tuple[float, float | None]] = []
    for i in range(0, len(audio) - frame_size + 1, frame_size):
        hz = detector.process(audio[i : i + frame_size])
        results.append(((i + frame_size) / float(sample_rate), hz))
    return results


class SessionManager:
    def __init__(self) -> None:
        self._sessions: dict[str, RealtimeSession] = {}
        self._lock = threading.Lock()

    def create(self) -> RealtimeSession:
        session_id = uuid.uuid4().hex
        session = RealtimeSession(session_id)
        with self._lock:
            self._sessions[session_id] = session
        return session

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)
