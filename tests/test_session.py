"""
Tests for the ATC session controller.
"""

import asyncio
import base64

import cv2
import numpy as np
import pytest

from skycommand.atc.dialogue import ConversationStage, Sender
from skycommand.atc.errors import FrameSourceError
from skycommand.atc.frames import FrameSource, PushedFrameSource
from skycommand.atc.logsink import MemoryLogSink
from skycommand.atc.session import (
    LINK_RADAR_FIRST,
    MIC_PERMISSION_DENIED,
    RADAR_CONNECTION_FAILED,
    RADAR_TERMINATED,
    ATCSession,
    ConnectionState,
)
from skycommand.atc.speech import NullSpeechOutput, QueueRecognizer, speech_error_from_code
from skycommand.config import CaptureConfig, Config, ModelConfig, PilotConfig, SpeechConfig


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _jpeg_b64() -> str:
    ok, buf = cv2.imencode(".jpg", np.zeros((240, 320, 3), dtype=np.uint8))
    assert ok
    return base64.b64encode(buf.tobytes()).decode("utf-8")


class BrokenSource(FrameSource):
    def open(self):
        raise FrameSourceError("Permission denied by user")

    def grab(self):
        return None

    def release(self):
        pass


@pytest.fixture
def config():
    return Config(
        model=ModelConfig(api_key="AIzaXXXX"),
        capture=CaptureConfig(interval_s=60.0),
        speech=SpeechConfig(restart_delay_s=0),
        pilot=PilotConfig(callsign="SKY-123"),
    )


@pytest.fixture
def parts(gateway, config):
    source = PushedFrameSource()
    recognizer = QueueRecognizer()
    speech_out = NullSpeechOutput()
    sink = MemoryLogSink()
    session = ATCSession(
        source=source,
        recognizer=recognizer,
        speech_out=speech_out,
        gateway=gateway,
        log_sink=sink,
        config=config,
    )
    return session, source, recognizer, speech_out, sink


def _texts(session):
    return [(e.sender, e.text) for e in session.orchestrator.state.logs]


class TestLifecycle:
    async def test_start_greets(self, parts):
        session, *_ = parts

        assert await session.start()

        assert session.connection is ConnectionState.CONNECTED
        assert session.speech_in.is_listening
        assert session.feed.is_active
        assert _texts(session) == [(Sender.SYSTEM, "RADAR IDENTIFIED. Good morning, SKY-123")]
        await session.close()

    async def test_start_failure(self, gateway, config):
        session = ATCSession(BrokenSource(), QueueRecognizer(), NullSpeechOutput(), gateway=gateway, config=config)

        assert not await session.start()

        assert session.connection is ConnectionState.ERROR
        assert _texts(session) == [(Sender.SYSTEM, RADAR_CONNECTION_FAILED)]
        assert not session.speech_in.is_listening

    async def test_stop_is_idempotent(self, parts):
        session, *_ = parts
        await session.start()

        await session.stop()
        await session.stop()

        assert session.connection is ConnectionState.DISCONNECTED
        assert not session.speech_in.is_listening
        assert not session.feed.is_active
        assert _texts(session).count((Sender.SYSTEM, RADAR_TERMINATED)) == 1

    async def test_session_ids_unique(self, gateway, config):
        a = ATCSession(PushedFrameSource(), QueueRecognizer(), NullSpeechOutput(), gateway=gateway, config=config)
        b = ATCSession(PushedFrameSource(), QueueRecognizer(), NullSpeechOutput(), gateway=gateway, config=config)
        assert a.session_id != b.session_id

    async def test_frame_source_end_stops_session(self, parts):
        session, source, *_ = parts
        await session.start()

        source.end()
        session.feed.request_capture()
        await asyncio.sleep(0.05)
        await _settle()

        assert session.connection is ConnectionState.DISCONNECTED
        assert _texts(session)[-1] == (Sender.SYSTEM, RADAR_TERMINATED)


    async def test_idle_loop_without_key_stays_quiet(self, gateway, config):
        config.capture.interval_s = 0.01
        source = PushedFrameSource()
        speech_out = NullSpeechOutput()
        session = ATCSession(source, QueueRecognizer(), speech_out, gateway=gateway, config=config, api_key="")
        session.api_key = ""
        await session.start()
        source.push(_jpeg_b64())

        await asyncio.sleep(0.2)
        await session.stop()

        assert len(gateway.calls) >= 2
        assert speech_out.spoken == []
        assert [text for sender, text in _texts(session) if sender is Sender.SYSTEM] == [
            "RADAR IDENTIFIED. Good morning, SKY-123",
            RADAR_TERMINATED,
        ]
        await session.close()


class TestSpeechFlow:
    async def test_wake_phrase_to_reply(self, parts, gateway):
        session, source, recognizer, speech_out, sink = parts
        gateway.replies = ["Speedbird 123, radar contact. [TELEM: ALT=2500 SPD=210]"]
        await session.start()
        source.push(_jpeg_b64())

        recognizer.feed("ATC this is Speedbird 123", is_final=True)
        await _settle()
        await asyncio.gather(*session.feed._pending)

        assert gateway.calls[0][1] == "this is Speedbird 123"
        assert session.orchestrator.state.stage is ConversationStage.AWAITING_DESTINATION
        assert speech_out.spoken == ["Speedbird 123, radar contact."]
        assert session.snapshot()["telemetry"] == {"alt": "2500", "spd": "210", "hdg": "---"}

        await session.close()
        assert all(row["session_id"] == session.session_id for row in sink.rows)
        assert [row["sender"] for row in sink.rows] == ["SYSTEM", "PILOT", "ATC", "SYSTEM"]

    async def test_mic_permission_denied(self, parts):
        session, _, recognizer, *_ = parts
        await session.start()

        recognizer.fail(speech_error_from_code("not-allowed"))
        await _settle()

        assert _texts(session)[-1] == (Sender.SYSTEM, MIC_PERMISSION_DENIED)
        assert not session.speech_in.is_listening
        assert session.is_connected
        await session.close()

    async def test_transient_speech_error_not_logged(self, parts):
        session, _, recognizer, *_ = parts
        await session.start()

        recognizer.fail(speech_error_from_code("no-speech"))
        await _settle()

        assert len(session.orchestrator.state.logs) == 1
        assert session.speech_in.is_listening
        await session.close()


class TestManualInput:
    async def test_requires_link(self, parts):
        session, *_ = parts

        session.submit_text("Request taxi")

        assert _texts(session) == [(Sender.PILOT, "Request taxi"), (Sender.SYSTEM, LINK_RADAR_FIRST)]

    async def test_connected_triggers_model(self, parts, gateway):
        session, source, *_ = parts
        await session.start()
        source.push(_jpeg_b64())

        session.submit_text("Request taxi")
        await asyncio.gather(*session.feed._pending)

        assert gateway.calls[0][1] == "Request taxi"
        await session.close()

    async def test_api_key_change_applies_next_turn(self, parts, gateway):
        session, source, *_ = parts
        await session.start()
        source.push(_jpeg_b64())

        session.api_key = "ghp_new"
        session.submit_text("Radio check")
        await asyncio.gather(*session.feed._pending)

        assert gateway.calls[0][2] == "ghp_new"
        await session.close()


class TestProjections:
    async def test_snapshot(self, parts):
        session, *_ = parts
        await session.start()

        snapshot = session.snapshot()

        assert snapshot["connection"] == "connected"
        assert snapshot["stage"] == "idle"
        assert snapshot["processing"] is False
        assert snapshot["callsign"] == "SKY-123"
        assert snapshot["telemetry"] == {"alt": "---", "spd": "---", "hdg": "---"}
        assert snapshot["logs"][0]["sender"] == "SYSTEM"
        await session.close()

    async def test_state_listener(self, gateway, config):
        states = []
        session = ATCSession(
            PushedFrameSource(),
            QueueRecognizer(),
            NullSpeechOutput(),
            gateway=gateway,
            config=config,
            on_state=states.append,
        )

        await session.start()
        await session.stop()

        assert [s["connection"] for s in states] == ["connected", "disconnected"]
