from __future__ import annotations

import io
import json
import logging
import time

import numpy as np
import soundfile as sf
import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from voice_tuner import __version__
from voice_tuner.errors import TunerError
from voice_tuner.pitch import DEFAULT_FRAME_SIZE
from voice_tuner.web.schemas import (
    MAX_FRAME_SIZE,
    MIN_FRAME_SIZE,
    ErrorEvent,
    InitMessage,
    ResetMessage,
    SetSensitivityMessage,
    StatusEvent,
    TransportPingMessage,
    TransportPongEvent,
)
from voice_tuner.web.session import RealtimeSession, SessionManager, analyze_recording

logger = logging.getLogger(__name__)

app = FastAPI(title="Voice Tuner", version=__version__)
sessions = SessionManager()


@app.get("/api/health")
async def health() -> dict[str, object]:
    return {
        "status": "ok",
        "version": __version__,
        "activeSessions": sessions.active_count,
    }


@app.post("/api/pitch/analyze")
async def analyze(
    audio: UploadFile = File(...),
    frame_size: int = Form(DEFAULT_FRAME_SIZE, ge=MIN_FRAME_SIZE, le=MAX_FRAME_SIZE),
) -> dict[str, object]:
    payload = await audio.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Audio file is empty")

    try:
        waveform, sample_rate = _decode_audio(payload)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=f"Unable to decode audio: {exc}") from exc

    try:
        results = await run_in_threadpool(
            analyze_recording, waveform, sample_rate, frame_size=frame_size
        )
    except TunerError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    voiced = [hz for _, hz in results if hz is not None]
    return {
        "sampleRate": sample_rate,
        "frameSize": frame_size,
        "frames": [{"t": t, "hz": hz} for t, hz in results],
        "medianHz": float(np.median(voiced)) if voiced else None,
    }


@app.websocket("/ws/realtime")
async def realtime_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    session = sessions.create()
    logger.info("realtime session %s opened", session.session_id)
    await websocket.send_json(StatusEvent(message="Connected.").model_dump())

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            text = message.get("text")
            binary = message.get("bytes")

            if text is not None:
                events = _handle_text_message(session, text)
            elif binary is not None:
                try:
                    events = await run_in_threadpool(session.process_audio_bytes, binary)
                except TunerError as exc:
                    events = [_error("invalid_audio", str(exc))]
            else:
                continue
            for event in events:
                await websocket.send_json(event)
    except WebSocketDisconnect:
        pass
    finally:
        sessions.remove(session.session_id)
        logger.info("realtime session %s closed", session.session_id)


def _handle_text_message(session: RealtimeSession, text: str) -> list[dict[str, object]]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return [_error("invalid_json", "Invalid JSON payload")]

    if not isinstance(payload, dict):
        return [_error("invalid_payload", "Expected JSON object")]

    msg_type = payload.get("type")
    try:
        if msg_type == "init":
            msg = InitMessage.model_validate(payload)
            session.init(sample_rate=msg.sample_rate, frame_size=msg.frame_size, changes=msg.changes())
            return [_status("Session initialized.")]

        if msg_type == "set_sensitivity":
            msg = SetSensitivityMessage.model_validate(payload)
            session.set_sensitivity(msg.changes())
            return [_status("Sensitivity updated.")]

        if msg_type == "reset":
            ResetMessage.model_validate(payload)
            session.reset()
            return [_status("Detector reset.")]

        if msg_type == "transport_ping":
            msg = TransportPingMessage.model_validate(payload)
            pong = TransportPongEvent(client_ts=msg.client_ts, server_ts=time.time())
            return [pong.model_dump(by_alias=True)]

    except ValidationError as exc:
        return [_error("invalid_message", str(exc))]
    except TunerError as exc:
        return [_error("invalid_config", str(exc))]

    return [_error("unknown_message", f"Unknown type: {msg_type}")]


def _status(message: str) -> dict[str, object]:
    return StatusEvent(message=message).model_dump()


def _error(code: str, message: str) -> dict[str, object]:
    return ErrorEvent(code=code, message=message).model_dump()


def _decode_audio(payload: bytes) -> tuple[np.ndarray, int]:
    data, sample_rate = sf.read(io.BytesIO(payload), dtype="float32", always_2d=False)
    audio = np.asarray(data, dtype=np.float32)
    if audio.ndim == 2:
        audio = np.mean(audio, axis=1, dtype=np.float32)
    if audio.size == 0:
        raise ValueError("decoded audio is empty")
    return audio, int(sample_rate)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "voice_tuner.web.server:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
    )


if __name__ == "__main__":
    main()
