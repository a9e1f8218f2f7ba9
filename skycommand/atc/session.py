"""
ATC session - wires a frame source, the pilot radio and the model into
one controllable session.

One ATCSession per browser connection or local run. The session id is
generated here and attached to every persisted log row.
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Callable, Optional

from skycommand.atc.dialogue import (
    DialogueCallbacks,
    DialogueOrchestrator,
    LogEntry,
    Sender,
)
from skycommand.atc.errors import FrameSourceError, MicrophonePermissionError, SpeechInputError
from skycommand.atc.frames import FrameFeed, FrameSource
from skycommand.atc.gateway import ModelGateway
from skycommand.atc.logsink import LogSink, NullLogSink
from skycommand.atc.speech import (
    Recognizer,
    SpeechInputChannel,
    SpeechOutputChannel,
    TranscriptEvent,
)
from skycommand.atc.telemetry import Telemetry
from skycommand.config import Config, get_config

logger = logging.getLogger(__name__)

RADAR_CONNECTION_FAILED = "Radar connection failed."
RADAR_TERMINATED = "Radar service terminated."
MIC_PERMISSION_DENIED = "CRITICAL: MIC PERMISSION DENIED."
LINK_RADAR_FIRST = "Link radar to start transmission."


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


class ATCSession:
    """
    A live tower session.

    Usage:
        session = ATCSession(
            source=ScreenFrameSource(),
            recognizer=MicrophoneRecognizer(),
            speech_out=ProcessSpeechOutput(),
            gateway=ModelGateway(config.model),
            api_key=config.model.api_key,
        )
        await session.start()
        ...
        await session.stop()
    """

    def __init__(
        self,
        source: FrameSource,
        recognizer: Recognizer,
        speech_out: SpeechOutputChannel,
        gateway: Optional[ModelGateway] = None,
        log_sink: Optional[LogSink] = None,
        config: Optional[Config] = None,
        callsign: Optional[str] = None,
        api_key: Optional[str] = None,
        session_id: Optional[str] = None,
        on_log: Optional[Callable[[LogEntry], None]] = None,
        on_telemetry: Optional[Callable[[Telemetry], None]] = None,
        on_interim: Optional[Callable[[str], None]] = None,
        on_state: Optional[Callable[[dict], None]] = None,
    ):
        """
        Args:
            source: Video stream to watch
            recognizer: Pilot speech recognizer
            speech_out: Controller voice
            gateway: Model gateway (shared between sessions on a server)
            log_sink: Flight log persistence
            config: Settings (defaults to the global config)
            callsign: Pilot callsign used in the greeting
            api_key: Routing credential
            session_id: Explicit id (generated if omitted)
            on_log: Called for every new log entry
            on_telemetry: Called when telemetry changes
            on_interim: Called when the interim transcript changes
            on_state: Called with status() when connection, stage or
                processing flag changes
        """
        self.config = config or get_config()
        self.session_id = session_id or str(uuid.uuid4())
        self.callsign = callsign or self.config.pilot.callsign
        self.connection = ConnectionState.DISCONNECTED
        self.speech_out = speech_out
        self.log_sink = log_sink or NullLogSink()
        self._on_state = on_state
        self._tasks: set[asyncio.Task] = set()

        self.feed = FrameFeed(
            source,
            on_frame=self._on_frame,
            interval_s=self.config.capture.interval_s,
            on_ended=self._on_source_ended,
        )
        self.speech_in = SpeechInputChannel(
            recognizer, restart_delay_s=self.config.speech.restart_delay_s
        )
        self.orchestrator = DialogueOrchestrator(
            gateway=gateway or ModelGateway(self.config.model),
            speech_out=speech_out,
            request_capture=self.feed.request_capture,
            session_id=self.session_id,
            api_key=self.config.model.api_key if api_key is None else api_key,
            log_sink=self.log_sink,
            callbacks=DialogueCallbacks(
                on_log=on_log,
                on_telemetry=on_telemetry,
                on_interim=on_interim,
                on_stage=lambda stage: self._notify_state(),
                on_processing=lambda busy: self._notify_state(),
            ),
        )

    @property
    def api_key(self) -> str:
        return self.orchestrator.api_key

    @api_key.setter
    def api_key(self, value: str) -> None:
        # Read at call time, so a new key applies from the next transmission
        self.orchestrator.api_key = value

    @property
    def is_connected(self) -> bool:
        return self.connection is ConnectionState.CONNECTED

    def _notify_state(self) -> None:
        if self._on_state:
            self._on_state(self.status())

    def _set_connection(self, connection: ConnectionState) -> None:
        self.connection = connection
        self._notify_state()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # =========================================================================
    # Control
    # =========================================================================

    async def start(self) -> bool:
        """
        Open the radar link.

        Returns:
            True if the session is connected
        """
        if self.is_connected:
            return True

        try:
            await asyncio.to_thread(self.feed.source.open)
        except FrameSourceError as e:
            logger.error("Radar link failed: %s", e)
            self._set_connection(ConnectionState.ERROR)
            self.orchestrator.add_log(Sender.SYSTEM, RADAR_CONNECTION_FAILED)
            return False

        self._set_connection(ConnectionState.CONNECTED)
        self.orchestrator.add_log(Sender.SYSTEM, f"RADAR IDENTIFIED. Good morning, {self.callsign}")
        self.speech_in.start(self._on_transcript, self._on_speech_error)
        self.feed.start()
        logger.info("Session %s connected", self.session_id)
        return True

    async def stop(self) -> None:
        """
        Close the radar link. Safe to call more than once.

        A model call already in flight is not cancelled; its reply is
        still handled when it arrives.
        """
        if not self.is_connected:
            return

        self._set_connection(ConnectionState.DISCONNECTED)
        await self.feed.stop()
        await self.speech_in.stop()
        self.orchestrator.add_log(Sender.SYSTEM, RADAR_TERMINATED)
        logger.info("Session %s disconnected", self.session_id)

    async def close(self) -> None:
        """Stop and flush pending log writes."""
        await self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.orchestrator.drain()
        await self.speech_out.close()

    def submit_text(self, text: str) -> None:
        """Typed pilot transmission."""
        if not text.strip():
            return
        self.orchestrator.submit_pilot_input(text, connected=self.is_connected)
        if not self.is_connected:
            self.orchestrator.add_log(Sender.SYSTEM, LINK_RADAR_FIRST)

    # =========================================================================
    # Component callbacks
    # =========================================================================

    async def _on_frame(self, image_b64: str) -> None:
        await self.orchestrator.handle_frame(image_b64)

    def _on_source_ended(self) -> None:
        logger.info("Frame source ended, stopping session")
        self._spawn(self.stop())

    def _on_transcript(self, event: TranscriptEvent) -> None:
        self.orchestrator.handle_transcript(event.text, event.is_final)

    def _on_speech_error(self, error: SpeechInputError) -> None:
        if isinstance(error, MicrophonePermissionError):
            self.orchestrator.add_log(Sender.SYSTEM, MIC_PERMISSION_DENIED)

    # =========================================================================
    # Projections
    # =========================================================================

    def status(self) -> dict:
        """Connection, stage and processing flag."""
        state = self.orchestrator.state
        return {
            "session_id": self.session_id,
            "connection": self.connection.value,
            "stage": state.stage.value,
            "processing": state.in_flight,
            "callsign": self.callsign,
        }

    def snapshot(self) -> dict:
        """Full UI projection."""
        state = self.orchestrator.state
        return {
            **self.status(),
            "telemetry": state.telemetry.to_dict(),
            "interim_text": state.interim_text,
            "logs": [entry.to_dict() for entry in state.logs],
        }
