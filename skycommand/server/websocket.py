"""
WebSocket endpoint for browser-driven ATC sessions.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from skycommand.atc.frames import EncodeConfig, PushedFrameSource
from skycommand.atc.session import ATCSession
from skycommand.atc.speech import (
    CallbackSpeechOutput,
    QueueRecognizer,
    VoiceSettings,
    speech_error_from_code,
)
from skycommand.config import get_config
from skycommand.server.app import (
    get_gateway,
    get_log_sink,
    register_session,
    unregister_session,
)
from skycommand.server.schemas import ClientMessage, ServerMessage

logger = logging.getLogger(__name__)

router = APIRouter()


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Send queued messages in order until the socket goes away."""
    while True:
        message = await outbox.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            return


@router.websocket("/session")
async def atc_session(websocket: WebSocket):
    """
    WebSocket endpoint for one ATC session.

    The browser owns the screen share, speech recognition and speech
    synthesis; the server runs the dialogue and the model calls.

    Protocol (client -> server):
    - {"type": "start", "callsign": "SKY-123", "api_key": "..."}
    - {"type": "frame", "data": "<base64 jpeg or data: URL>"} (about once a second)
    - {"type": "transcript", "text": "ATC", "is_final": true}
    - {"type": "speech_error", "error": "not-allowed"}
    - {"type": "pilot_input", "text": "Request taxi"}
    - {"type": "configure", "callsign": "...", "api_key": "..."}
    - {"type": "frame_ended"} (share closed) / {"type": "stop"}
    - {"type": "snapshot"}

    Protocol (server -> client):
    - {"type": "state", "status": {...}}
    - {"type": "log", "entry": {...}}
    - {"type": "telemetry", "telemetry": {"alt": "1200", "spd": "150", "hdg": "---"}}
    - {"type": "interim", "text": "..."}
    - {"type": "cancel_speech"} then {"type": "speak", "text": "...", "rate": 1.1, ...}
    - {"type": "snapshot", "snapshot": {...}}
    - {"type": "error", "error": "..."}
    """
    await websocket.accept()

    config = get_config()
    outbox: asyncio.Queue = asyncio.Queue()

    def send(kind: str, **fields) -> None:
        outbox.put_nowait(ServerMessage(type=kind, **fields).model_dump(exclude_none=True))

    voice = VoiceSettings(
        language=config.speech.language,
        rate=config.speech.rate,
        pitch=config.speech.pitch,
        volume=config.speech.volume,
    )
    source = PushedFrameSource(
        EncodeConfig(target_width=config.capture.target_width, jpeg_quality=config.capture.jpeg_quality)
    )
    recognizer = QueueRecognizer()
    speech_out = CallbackSpeechOutput(
        on_speak=lambda text, v: send(
            "speak", text=text, rate=v.rate, pitch=v.pitch, language=v.language
        ),
        on_cancel=lambda: send("cancel_speech"),
        voice=voice,
    )

    session = ATCSession(
        source=source,
        recognizer=recognizer,
        speech_out=speech_out,
        gateway=get_gateway(),
        log_sink=get_log_sink(),
        config=config,
        on_log=lambda entry: send("log", entry=entry.to_dict()),
        on_telemetry=lambda telemetry: send("telemetry", telemetry=telemetry.to_dict()),
        on_interim=lambda text: send("interim", text=text),
        on_state=lambda status: send("state", status=status),
    )
    register_session(session)
    writer = asyncio.create_task(_pump(websocket, outbox), name="ws-writer")
    logger.info("Session %s opened", session.session_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = ClientMessage.model_validate_json(raw)
            except ValidationError as e:
                send("error", error=f"Invalid message: {e.errors()[0]['msg']}")
                continue

            await _dispatch(session, source, recognizer, message, send)

    except WebSocketDisconnect:
        logger.info("Session %s: client disconnected", session.session_id)
    finally:
        unregister_session(session)
        await session.close()
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass


async def _dispatch(
    session: ATCSession,
    source: PushedFrameSource,
    recognizer: QueueRecognizer,
    message: ClientMessage,
    send,
) -> None:
    msg_type = message.type

    if msg_type in ("start", "configure"):
        if message.callsign:
            session.callsign = message.callsign
        if message.api_key is not None:
            session.api_key = message.api_key

        if msg_type == "start":
            await session.start()
        else:
            send("state", status=session.status())

    elif msg_type == "stop":
        await session.stop()

    elif msg_type == "frame":
        if not session.is_connected:
            logger.debug("Frame before start, dropped")
        elif not message.data:
            send("error", error="Frame without data")
        elif not source.push(message.data):
            send("error", error="Invalid frame")

    elif msg_type == "frame_ended":
        source.end()
        await session.stop()

    elif msg_type == "transcript":
        if session.speech_in.is_listening:
            recognizer.feed(message.text or "", is_final=message.is_final)
        else:
            logger.debug("Transcript while not listening, dropped")

    elif msg_type == "speech_error":
        if session.speech_in.is_listening:
            recognizer.fail(speech_error_from_code(message.error or "unknown"))

    elif msg_type == "pilot_input":
        session.submit_text(message.text or "")

    elif msg_type == "snapshot":
        send("snapshot", snapshot=session.snapshot())
