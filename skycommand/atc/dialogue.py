"""
Dialogue orchestrator - the tower's conversation state machine.

Decides when a transcript is addressed to ATC, what context goes with the
next frame, when a reply is worth saying out loud, and keeps at most one
model call in flight.

Stage cycle:

    IDLE --wake phrase--> AWAITING_AIRCRAFT_ID --reply--> AWAITING_DESTINATION --reply--> IDLE

All state lives on one SessionState cell. Code that resumes after the
model call reads the cell again instead of values captured beforehand.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from skycommand.atc.errors import MissingCredentialError
from skycommand.atc.gateway import ModelGateway
from skycommand.atc.logsink import LogSink, NullLogSink
from skycommand.atc.prompts import IDENTIFY_AIRCRAFT, VISUAL_SIGNAL_WEAK
from skycommand.atc.speech import SpeechOutputChannel
from skycommand.atc.telemetry import Telemetry, parse_telemetry
from skycommand.atc.wakeword import WakePhraseDetector

logger = logging.getLogger(__name__)

API_CONFIG_ERROR = "System failure. API configuration error."
DESTINATION_PREFIX = "Destination/Flight Info: "

# Unsolicited replies are only voiced when they carry one of these
URGENCY_MARKERS = ("URGENT", "ALERT")


class ConversationStage(Enum):
    """Where the pilot is in the call-up sequence."""

    IDLE = "idle"  # Waiting for a wake phrase
    AWAITING_AIRCRAFT_ID = "awaiting_aircraft_id"
    AWAITING_DESTINATION = "awaiting_destination"


# Applied after every resolved model call, success or failure
STAGE_ADVANCE = {
    ConversationStage.AWAITING_AIRCRAFT_ID: ConversationStage.AWAITING_DESTINATION,
    ConversationStage.AWAITING_DESTINATION: ConversationStage.IDLE,
}


class Sender(str, Enum):
    ATC = "ATC"
    PILOT = "PILOT"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class LogEntry:
    """One line of the radio log."""

    sender: Sender
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "sender": self.sender.value,
            "text": self.text,
        }


@dataclass
class SessionState:
    """Mutable state cell shared by every continuation of a session."""

    stage: ConversationStage = ConversationStage.IDLE
    pilot_context: str = ""
    in_flight: bool = False
    telemetry: Telemetry = field(default_factory=Telemetry)
    interim_text: str = ""
    logs: list[LogEntry] = field(default_factory=list)


@dataclass
class DialogueCallbacks:
    """Optional observers for UI projections."""

    on_log: Optional[Callable[[LogEntry], None]] = None
    on_telemetry: Optional[Callable[[Telemetry], None]] = None
    on_interim: Optional[Callable[[str], None]] = None
    on_stage: Optional[Callable[[ConversationStage], None]] = None
    on_processing: Optional[Callable[[bool], None]] = None


class DialogueOrchestrator:
    """
    Conversation state machine for one session.

    Usage:
        orchestrator = DialogueOrchestrator(
            gateway, speech_out, request_capture=feed.request_capture,
            session_id=session_id, api_key=key,
        )
        orchestrator.handle_transcript("ATC this is Speedbird 123", is_final=True)
        # feed calls back with the frame:
        await orchestrator.handle_frame(frame_b64)
    """

    def __init__(
        self,
        gateway: ModelGateway,
        speech_out: SpeechOutputChannel,
        request_capture: Callable[[], None],
        session_id: Optional[str] = None,
        api_key: str = "",
        log_sink: Optional[LogSink] = None,
        detector: Optional[WakePhraseDetector] = None,
        callbacks: Optional[DialogueCallbacks] = None,
    ):
        """
        Args:
            gateway: Model gateway used for every transmission
            speech_out: Where controller replies are spoken
            request_capture: Schedules an immediate frame capture
            session_id: Attached to every persisted log row
            api_key: Routing credential (may be changed between turns)
            log_sink: Persistence for log entries
            detector: Wake phrase matcher
            callbacks: UI observers
        """
        self.gateway = gateway
        self.speech_out = speech_out
        self.request_capture = request_capture
        self.session_id = session_id or str(uuid.uuid4())
        self.api_key = api_key
        self.log_sink = log_sink or NullLogSink()
        self.detector = detector or WakePhraseDetector()
        self.callbacks = callbacks or DialogueCallbacks()

        self.state = SessionState()
        self._persist_tasks: set[asyncio.Task] = set()
        self._credential_warned = False

    # =========================================================================
    # Log
    # =========================================================================

    def add_log(self, sender: Sender, text: str, context: Optional[str] = None) -> LogEntry:
        """Append a log entry and mirror it to the sink in the background."""
        entry = LogEntry(sender=sender, text=text)
        self.state.logs.append(entry)
        logger.info("[%s] %s", sender.value, text)

        if self.callbacks.on_log:
            self.callbacks.on_log(entry)

        task = asyncio.get_running_loop().create_task(
            self._persist(entry, context), name="log-persist"
        )
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)
        return entry

    async def _persist(self, entry: LogEntry, context: Optional[str]) -> None:
        try:
            await self.log_sink.save(self.session_id, entry.sender.value, entry.text, context)
        except Exception as e:
            logger.error("Failed to persist log entry %s: %s", entry.id, e)

    async def drain(self) -> None:
        """Wait for outstanding log writes."""
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)

    # =========================================================================
    # State helpers
    # =========================================================================

    def _set_stage(self, stage: ConversationStage) -> None:
        if self.state.stage is stage:
            return
        logger.debug("Stage %s -> %s", self.state.stage.value, stage.value)
        self.state.stage = stage
        if self.callbacks.on_stage:
            self.callbacks.on_stage(stage)

    def _set_interim(self, text: str) -> None:
        if self.state.interim_text == text:
            return
        self.state.interim_text = text
        if self.callbacks.on_interim:
            self.callbacks.on_interim(text)

    def _set_processing(self, value: bool) -> None:
        self.state.in_flight = value
        if self.callbacks.on_processing:
            self.callbacks.on_processing(value)

    def _say(self, text: str, context: Optional[str] = None) -> None:
        self.add_log(Sender.ATC, text, context)
        self.speech_out.speak(text)

    # =========================================================================
    # Inputs
    # =========================================================================

    def handle_transcript(self, text: str, is_final: bool) -> None:
        """
        Feed one recognition result.

        Interim results only update the interim projection. Final results
        drive the stage machine. Runs synchronously: by the time this
        returns, stage and context reflect the transcript.
        """
        clean = text.strip()

        if not is_final:
            self._set_interim(clean)
            return

        self._set_interim("")
        if not clean:
            return

        stage = self.state.stage

        if stage is ConversationStage.IDLE:
            self._handle_call_up(clean)

        elif stage is ConversationStage.AWAITING_AIRCRAFT_ID:
            self.add_log(Sender.PILOT, clean)
            self.state.pilot_context = clean
            self.request_capture()

        elif stage is ConversationStage.AWAITING_DESTINATION:
            self.add_log(Sender.PILOT, clean)
            self.state.pilot_context = DESTINATION_PREFIX + clean
            self.request_capture()

    def _handle_call_up(self, transcript: str) -> None:
        match = self.detector.match(transcript)
        if match is None:
            return

        self.add_log(Sender.PILOT, match.transcript)

        if match.has_payload:
            # Aircraft given in the same breath: go straight to the model.
            # Stage must be set before the capture resolves.
            self.state.pilot_context = match.payload
            self._set_stage(ConversationStage.AWAITING_AIRCRAFT_ID)
            self.request_capture()
        else:
            self._say(IDENTIFY_AIRCRAFT)
            self._set_stage(ConversationStage.AWAITING_AIRCRAFT_ID)

    def submit_pilot_input(self, text: str, connected: bool) -> bool:
        """
        Typed transmission from the pilot (no wake phrase needed).

        Does not look at or change the stage.

        Args:
            text: Message text
            connected: Whether a live feed can capture right now

        Returns:
            True if a capture was requested
        """
        clean = text.strip()
        if not clean:
            return False

        self.add_log(Sender.PILOT, clean)
        self.state.pilot_context = clean

        if connected:
            self.request_capture()
            return True
        return False

    # =========================================================================
    # Frame -> model -> reply
    # =========================================================================

    async def handle_frame(self, image_b64: str) -> None:
        """
        Run one captured frame through the model.

        Dropped if a call is already in flight. The stage advances once
        the call resolves, whatever the outcome.
        """
        state = self.state
        if state.in_flight:
            logger.debug("Model call in flight, frame dropped")
            return

        self._set_processing(True)
        context = state.pilot_context

        try:
            response = await self.gateway.analyze(image_b64, context, self.api_key)
            self._handle_reply(response, context)
        except MissingCredentialError as e:
            self._handle_missing_credential(e, context)
        except Exception:
            logger.exception("Model call failed")
        finally:
            self._set_processing(False)
            next_stage = STAGE_ADVANCE.get(state.stage)
            if next_stage is not None:
                self._set_stage(next_stage)

    def _handle_missing_credential(self, error: MissingCredentialError, context: str) -> None:
        # Idle checks stay silent; only a pilot turn reports the failure
        if not context:
            if not self._credential_warned:
                logger.warning("Routine check skipped: %s", error)
                self._credential_warned = True
            return

        logger.error("Model call skipped: %s", error)
        self.add_log(Sender.SYSTEM, API_CONFIG_ERROR)
        self.speech_out.speak(API_CONFIG_ERROR)
        if self.state.pilot_context == context:
            self.state.pilot_context = ""

    def _handle_reply(self, response: str, context: str) -> None:
        state = self.state
        text, telemetry = parse_telemetry(response, state.telemetry)

        if telemetry is not state.telemetry:
            state.telemetry = telemetry
            if self.callbacks.on_telemetry:
                self.callbacks.on_telemetry(telemetry)

        if not text:
            text = VISUAL_SIGNAL_WEAK

        if context:
            self._say(text, context)
            # Keep anything the pilot said while the call was out
            if state.pilot_context == context:
                state.pilot_context = ""
        elif any(marker in text for marker in URGENCY_MARKERS):
            self._say(text)
        else:
            logger.debug("Routine check, reply not voiced: %s", text)
