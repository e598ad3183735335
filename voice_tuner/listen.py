from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from voice_tuner.pitch import AudioFrame, PitchDetector

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1


def poll_detector(
    read_frame: Callable[[], AudioFrame | None],
    detector: PitchDetector,
    on_pitch: Callable[[float | None], None],
    stop: threading.Event,
    *,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> int:
    """
    Feed the latest frame into ``detector`` once per ``interval`` until ``stop`` is set.

    ``on_pitch`` receives every filtered result, ``None`` included. Polls where no
    frame is available yet are skipped. Returns the number of frames processed.
    The detector's history is cleared on exit so a later session starts fresh.
    """
    processed = 0
    next_t = time.monotonic()
    try:
        while not stop.is_set():
            frame = read_frame()
            if frame is not None:
                on_pitch(detector.process(frame))
                processed += 1
            next_t += interval
            delay = next_t - time.monotonic()
            if delay < 0.0:
                # Fell behind the audio; resync instead of bursting to catch up.
                next_t = time.monotonic()
                delay = 0.0
            stop.wait(delay)
    finally:
        detector.reset()
    return processed


def main() -> None:
    from voice_tuner.audio import AudioInput

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    audio = AudioInput()
    detector = PitchDetector(audio.sample_rate, audio.frame_size)
    stop = threading.Event()
    last: float | None = None

    def report(hz: float | None) -> None:
        nonlocal last
        if hz is None:
            if last is not None:
                logger.info("no pitch")
        else:
            logger.info("%.1f Hz", hz)
        last = hz

    audio.start()
    try:
        poll_detector(audio.read_frame, detector, report, stop)
    except KeyboardInterrupt:
        stop.set()
    finally:
        audio.stop()


if __name__ == "__main__":
    main()
