"""
Tests for speech input/output channels.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from skycommand.atc.errors import MicrophonePermissionError, SpeechInputError
from skycommand.atc.speech import (
    CallbackSpeechOutput,
    NullSpeechOutput,
    ProcessSpeechOutput,
    QueueRecognizer,
    SpeechInputChannel,
    TranscriptEvent,
    VoiceSettings,
    speech_error_from_code,
)


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestSpeechErrorCodes:
    def test_permission_codes(self):
        assert isinstance(speech_error_from_code("not-allowed"), MicrophonePermissionError)
        assert isinstance(speech_error_from_code("service-not-allowed"), MicrophonePermissionError)

    def test_transient_codes(self):
        error = speech_error_from_code("network")
        assert type(error) is SpeechInputError
        assert "network" in str(error)


class TestSpeechInputChannel:
    """Supervision of a recognizer."""

    async def test_delivers_results(self):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        results = []

        channel.start(results.append)
        recognizer.feed("ATC", is_final=False)
        recognizer.feed("ATC this is Speedbird 123")
        await _settle()

        assert results == [
            TranscriptEvent("ATC", is_final=False),
            TranscriptEvent("ATC this is Speedbird 123", is_final=True),
        ]
        await channel.stop()

    async def test_blank_results_skipped(self):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        results = []

        channel.start(results.append)
        recognizer.feed("   ")
        await _settle()

        assert results == []
        await channel.stop()

    async def test_restarts_after_unexpected_end(self):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        results = []

        channel.start(results.append)
        recognizer.end()
        await _settle()
        recognizer.feed("still listening")
        await _settle()

        assert channel.restarts == 1
        assert channel.is_listening
        assert results[-1].text == "still listening"
        await channel.stop()

    async def test_transient_error_reported_and_restarted(self):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        errors = []

        channel.start(lambda event: None, errors.append)
        recognizer.fail(SpeechInputError("Speech Error: network"))
        await _settle()

        assert len(errors) == 1
        assert channel.is_listening
        assert channel.restarts == 1
        await channel.stop()

    async def test_permission_denied_stops_for_good(self):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        errors = []

        channel.start(lambda event: None, errors.append)
        recognizer.fail(MicrophonePermissionError("Speech Error: not-allowed"))
        await _settle()

        assert len(errors) == 1
        assert isinstance(errors[0], MicrophonePermissionError)
        assert not channel.is_listening
        assert channel.restarts == 0

    async def test_stop_disables_restart(self):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        results = []

        channel.start(results.append)
        await _settle()
        await channel.stop()

        assert not channel.is_listening
        recognizer.feed("after stop")
        await _settle()
        assert results == []

    async def test_handler_error_keeps_listening(self, caplog):
        recognizer = QueueRecognizer()
        channel = SpeechInputChannel(recognizer, restart_delay_s=0)
        results = []

        def on_result(event):
            if event.text == "boom":
                raise RuntimeError("handler broke")
            results.append(event.text)

        channel.start(on_result)
        recognizer.feed("boom")
        recognizer.feed("ATC radio check")
        await _settle()

        assert results == ["ATC radio check"]
        assert channel.is_listening
        assert channel.restarts == 0
        assert "handler broke" in caplog.text
        await channel.stop()

    async def test_start_twice_is_noop(self):
        channel = SpeechInputChannel(QueueRecognizer(), restart_delay_s=0)
        channel.start(lambda event: None)
        task = channel._task
        channel.start(lambda event: None)
        assert channel._task is task
        await channel.stop()


class TestProcessSpeechOutput:
    def test_voice_mapping(self):
        output = ProcessSpeechOutput("espeak-ng", VoiceSettings(rate=1.1, pitch=1.05))
        args = output.build_args("Radar contact.")
        assert args[0] == "espeak-ng"
        assert args[args.index("-s") + 1] == "192"
        assert args[args.index("-p") + 1] == "52"
        assert args[args.index("-v") + 1] == "en-us"
        assert args[-1] == "Radar contact."

    async def test_new_utterance_terminates_previous(self):
        first = MagicMock()
        first.returncode = None
        first.wait = AsyncMock(side_effect=asyncio.Event().wait)
        second = MagicMock()
        second.returncode = None
        second.wait = AsyncMock(return_value=0)

        with patch(
            "skycommand.atc.speech.asyncio.create_subprocess_exec",
            AsyncMock(side_effect=[first, second]),
        ) as spawn:
            output = ProcessSpeechOutput()
            output.speak("Station calling, identify your aircraft.")
            await _settle()
            output.speak("Say again.")
            await _settle()

        first.terminate.assert_called()
        assert spawn.call_count == 2
        assert spawn.call_args.args[-1] == "Say again."

    async def test_missing_command_logged(self):
        with patch(
            "skycommand.atc.speech.asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("espeak-ng")),
        ):
            output = ProcessSpeechOutput()
            output.speak("hello")
            await _settle()
        await output.close()


class TestCallbackSpeechOutput:
    def test_cancel_then_speak(self):
        events = []
        output = CallbackSpeechOutput(
            on_speak=lambda text, voice: events.append(("speak", text, voice.rate)),
            on_cancel=lambda: events.append(("cancel",)),
        )
        output.speak("Radar contact.")
        assert events == [("cancel",), ("speak", "Radar contact.", 1.1)]


class TestNullSpeechOutput:
    def test_records(self):
        output = NullSpeechOutput()
        output.speak("one")
        output.speak("two")
        assert output.spoken == ["one", "two"]
        assert output.cancelled == 2


class TestMicrophoneRecognizer:
    def test_missing_package(self):
        from skycommand.atc.speech import MicrophoneRecognizer

        with patch.dict("sys.modules", {"speech_recognition": None}):
            with pytest.raises(ImportError, match="SpeechRecognition"):
                MicrophoneRecognizer()
