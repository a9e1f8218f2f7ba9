"""
Pydantic schemas for API requests and responses.
"""

from typing import Literal

from pydantic import BaseModel, Field


# === General ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    active_sessions: int = 0


# === Routing ===


class RouteRequest(BaseModel):
    """Routing lookup for an API key."""

    api_key: str = Field(..., min_length=1)


class RouteResponse(BaseModel):
    """Provider selected for a key. The key itself is never echoed."""

    provider: str
    label: str
    base_url: str
    model: str
    vision: bool


# === Session WebSocket ===


class ClientMessage(BaseModel):
    """Message from the browser on /session."""

    type: Literal[
        "start",
        "stop",
        "frame",
        "frame_ended",
        "transcript",
        "speech_error",
        "pilot_input",
        "configure",
        "snapshot",
    ]
    data: str | None = None  # Base64 image ("frame")
    text: str | None = None  # "transcript" / "pilot_input"
    is_final: bool = True
    error: str | None = None  # Recognizer error code ("speech_error")
    callsign: str | None = None
    api_key: str | None = None


class ServerMessage(BaseModel):
    """Message to the browser on /session."""

    type: str  # "state", "log", "telemetry", "interim", "speak", "cancel_speech", "snapshot", "error"
    status: dict | None = None
    entry: dict | None = None
    telemetry: dict | None = None
    text: str | None = None
    rate: float | None = None
    pitch: float | None = None
    language: str | None = None
    snapshot: dict | None = None
    error: str | None = None
