from __future__ import annotations

import io

import numpy as np
import soundfile as sf
from fastapi.testclient import TestClient

from tests.signals import tiled_sine
from voice_tuner.web.server import app


def test_health_endpoint() -> None:
    client = TestClient(app)
    resp = client.get("/api/health")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["status"] == "ok"
    assert "activeSessions" in payload


def test_realtime_websocket_flow() -> None:
    client = TestClient(app)
    chunk = tiled_sine(20).astype("<f4")

    with client.websocket_connect("/ws/realtime") as ws:
        first = ws.receive_json()
        assert first["type"] == "status"

        ws.send_json({"type": "init", "sampleRate": 8000, "frameSize": 2048})
        assert ws.receive_json()["type"] == "status"

        updates = []
        for _ in range(5):
            ws.send_bytes(chunk.tobytes())
            updates.append(ws.receive_json())

        assert [u["type"] for u in updates] == ["pitch_update"] * 5
        assert [u["hz"] for u in updates[:4]] == [None] * 4
        assert updates[4]["hz"] == 400.0
        assert updates[4]["voiced"] is True
        assert updates[4]["t"] > updates[3]["t"]


def test_chunks_are_reassembled_into_frames() -> None:
    client = TestClient(app)
    stream = np.tile(tiled_sine(20), 5).astype("<f4").tobytes()

    with client.websocket_connect("/ws/realtime") as ws:
        ws.receive_json()
        ws.send_json({"type": "init", "sampleRate": 8000, "historySize": 2})
        ws.receive_json()

        # 2048 samples = 8192 bytes; split off-frame so the first send completes nothing.
        ws.send_bytes(stream[:6000])
        ws.send_bytes(stream[6000:18000])
        first = ws.receive_json()
        second = ws.receive_json()

        assert first["hz"] is None
        assert second["hz"] == 400.0


def test_sensitivity_and_reset_messages() -> None:
    client = TestClient(app)

    with client.websocket_connect("/ws/realtime") as ws:
        ws.receive_json()

        ws.send_json({"type": "set_sensitivity", "historySize": 3, "pitchTolerance": 5.0})
        assert ws.receive_json() == {"type": "status", "message": "Sensitivity updated."}

        ws.send_json({"type": "set_sensitivity", "historySize": 0})
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_json({"type": "set_sensitivity", "minHz": 500.0, "maxHz": 100.0})
        assert ws.receive_json()["code"] == "invalid_config"

        ws.send_json({"type": "reset"})
        assert ws.receive_json()["type"] == "status"

        ws.send_json({"type": "transport_ping", "clientTs": 12.5})
        pong = ws.receive_json()
        assert pong["type"] == "transport_pong"
        assert pong["clientTs"] == 12.5

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["code"] == "unknown_message"

        ws.send_text("not json")
        assert ws.receive_json()["code"] == "invalid_json"


def test_malformed_audio_reports_errors() -> None:
    client = TestClient(app)
    bad = np.zeros(2048, dtype="<f4")
    bad[10] = np.nan

    with client.websocket_connect("/ws/realtime") as ws:
        ws.receive_json()
        ws.send_json({"type": "init", "sampleRate": 8000})
        ws.receive_json()

        ws.send_bytes(b"\x00\x00\x00")
        assert ws.receive_json()["code"] == "invalid_audio"

        ws.send_bytes(bad.tobytes())
        assert ws.receive_json()["code"] == "invalid_frame"

        ws.send_bytes(tiled_sine(20).astype("<f4").tobytes())
        assert ws.receive_json()["type"] == "pitch_update"


def test_analyze_uploaded_recording() -> None:
    client = TestClient(app)
    buf = io.BytesIO()
    sf.write(buf, np.tile(tiled_sine(20), 6), 8000, format="WAV", subtype="FLOAT")

    resp = client.post(
        "/api/pitch/analyze",
        files={"audio": ("tone.wav", buf.getvalue(), "audio/wav")},
        data={"frame_size": "2048"},
    )

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["sampleRate"] == 8000
    assert [f["hz"] for f in payload["frames"]] == [None, None, None, None, 400.0, 400.0]
    assert payload["medianHz"] == 400.0


def test_analyze_rejects_empty_upload() -> None:
    client = TestClient(app)
    resp = client.post("/api/pitch/analyze", files={"audio": ("empty.wav", b"", "audio/wav")})
    assert resp.status_code == 400


def test_analyze_rejects_oversized_frames() -> None:
    client = TestClient(app)
    buf = io.BytesIO()
    sf.write(buf, np.tile(tiled_sine(20), 20), 8000, format="WAV", subtype="FLOAT")

    resp = client.post(
        "/api/pitch/analyze",
        files={"audio": ("tone.wav", buf.getvalue(), "audio/wav")},
        data={"frame_size": "20000"},
    )

    assert resp.status_code == 422


def test_websocket_rejects_oversized_frames() -> None:
    client = TestClient(app)

    with client.websocket_connect("/ws/realtime") as ws:
        ws.receive_json()
        ws.send_json({"type": "init", "sampleRate": 48000, "frameSize": 16384})
        assert ws.receive_json()["code"] == "invalid_message"

        ws.send_json({"type": "init", "sampleRate": 48000, "frameSize": 8192})
        assert ws.receive_json()["type"] == "status"
