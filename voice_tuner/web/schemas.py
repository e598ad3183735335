from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# Largest frame a client may ask for; the score search is quadratic in frame size.
MAX_FRAME_SIZE = 8192
MIN_FRAME_SIZE = 64


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Sensitivity(_Model):
    history_size: int | None = Field(alias="historySize", default=None, ge=1, le=50)
    pitch_tolerance: float | None = Field(alias="pitchTolerance", default=None, gt=0.0)
    rms_threshold: float | None = Field(alias="rmsThreshold", default=None, ge=0.0, le=1.0)
    correlation_threshold: float | None = Field(
        alias="correlationThreshold", default=None, ge=0.0, le=1.0
    )
    min_correlation_quality: float | None = Field(
        alias="minCorrelationQuality", default=None, ge=0.0, le=1.0
    )
    min_hz: float | None = Field(alias="minHz", default=None, gt=0.0)
    max_hz: float | None = Field(alias="maxHz", default=None, gt=0.0)

    def changes(self) -> dict[str, object]:
        # Only the fields that were sent; the rest keep their current values.
        return self.model_dump(include=set(Sensitivity.model_fields), exclude_none=True)


class InitMessage(Sensitivity):
    type: Literal["init"]
    sample_rate: int = Field(alias="sampleRate", ge=8_000, le=192_000)
    frame_size: int = Field(
        alias="frameSize", default=2048, ge=MIN_FRAME_SIZE, le=MAX_FRAME_SIZE
    )


class SetSensitivityMessage(Sensitivity):
    type: Literal["set_sensitivity"]


class ResetMessage(_Model):
    type: Literal["reset"]


class TransportPingMessage(_Model):
    type: Literal["transport_ping"]
    client_ts: float = Field(alias="clientTs")


class StatusEvent(_Model):
    type: Literal["status"] = "status"
    message: str


class ErrorEvent(_Model):
    type: Literal["error"] = "error"
    code: str
    message: str


class PitchUpdateEvent(_Model):
    type: Literal["pitch_update"] = "pitch_update"
    t: float
    hz: float | None
    voiced: bool


class TransportPongEvent(_Model):
    type: Literal["transport_pong"] = "transport_pong"
    client_ts: float = Field(alias="clientTs")
    server_ts: float = Field(alias="serverTs")
