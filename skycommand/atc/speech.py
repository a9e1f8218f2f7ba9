"""
Speech channels for the pilot radio.

Input: continuous recognition producing interim and final transcripts,
restarted automatically while the session wants to listen.

Output: text-to-speech where the newest transmission always wins - a new
utterance cuts off the one still playing, nothing is queued.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from skycommand.atc.errors import MicrophonePermissionError, SpeechInputError

logger = logging.getLogger(__name__)

# Browser SpeechRecognition error codes that mean "never retry"
PERMISSION_ERRORS = frozenset({"not-allowed", "service-not-allowed"})


@dataclass(frozen=True)
class TranscriptEvent:
    """One recognition result."""

    text: str
    is_final: bool = True


def speech_error_from_code(code: str) -> SpeechInputError:
    """Map a recognizer error code to the matching exception."""
    if code in PERMISSION_ERRORS:
        return MicrophonePermissionError(f"Speech Error: {code}")
    return SpeechInputError(f"Speech Error: {code}")


# =============================================================================
# Input
# =============================================================================


class Recognizer(ABC):
    """A speech recognizer session.

    ``stream()`` yields results until the recognizer stops on its own
    (returns) or fails (raises SpeechInputError).
    """

    @abstractmethod
    def stream(self) -> AsyncIterator[TranscriptEvent]:
        pass

    def close(self) -> None:
        """Unblock a running stream. Called when listening stops."""


class _End:
    pass


_END = _End()


class QueueRecognizer(Recognizer):
    """
    Recognizer fed from outside the process.

    Used when recognition happens elsewhere (the browser's Web Speech
    API) or for typed input on the console.

    Usage:
        recognizer = QueueRecognizer()
        recognizer.feed("ATC", is_final=False)
        recognizer.feed("ATC this is Speedbird 123")
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()

    def feed(self, text: str, is_final: bool = True) -> None:
        self._queue.put_nowait(TranscriptEvent(text=text, is_final=is_final))

    def fail(self, error: SpeechInputError) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        """The remote recognizer stopped (e.g. browser onend)."""
        self._queue.put_nowait(_END)

    def close(self) -> None:
        # Drop anything not yet consumed
        self._queue = asyncio.Queue()

    async def stream(self) -> AsyncIterator[TranscriptEvent]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, SpeechInputError):
                raise item
            yield item


class MicrophoneRecognizer(Recognizer):
    """
    Local microphone recognition via the SpeechRecognition package.

    Produces final transcripts only. A microphone that cannot be opened
    is reported as a permission failure so the channel stops retrying.

    Requires: pip install skycommand-atc[voice]
    """

    def __init__(
        self,
        language: str = "en-US",
        device_index: Optional[int] = None,
        phrase_time_limit: float = 10.0,
    ):
        try:
            import speech_recognition as sr
        except ImportError as e:
            raise ImportError(
                "SpeechRecognition not installed. "
                "Install with: pip install skycommand-atc[voice]"
            ) from e

        self._sr = sr
        self.language = language
        self.device_index = device_index
        self.phrase_time_limit = phrase_time_limit
        self._stop_event = threading.Event()

    def close(self) -> None:
        self._stop_event.set()

    def _listen(self, emit: Callable[[object], None], stop_event: threading.Event) -> None:
        sr = self._sr
        recognizer = sr.Recognizer()

        try:
            microphone = sr.Microphone(device_index=self.device_index)
            with microphone as source:
                recognizer.adjust_for_ambient_noise(source, duration=0.5)
                while not stop_event.is_set():
                    try:
                        audio = recognizer.listen(
                            source, timeout=1.0, phrase_time_limit=self.phrase_time_limit
                        )
                    except sr.WaitTimeoutError:
                        continue

                    try:
                        text = recognizer.recognize_google(audio, language=self.language)
                    except sr.UnknownValueError:
                        continue
                    except sr.RequestError as e:
                        emit(SpeechInputError(f"Speech Error: network ({e})"))
                        return

                    if text:
                        emit(TranscriptEvent(text=text, is_final=True))
        except OSError as e:
            emit(MicrophonePermissionError(f"Speech Error: not-allowed ({e})"))
        except Exception as e:
            emit(SpeechInputError(f"Speech Error: {e}"))
        finally:
            emit(_END)

    async def stream(self) -> AsyncIterator[TranscriptEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop_event = threading.Event()
        self._stop_event = stop_event

        def emit(item: object) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, item)

        thread = threading.Thread(
            target=self._listen, args=(emit, stop_event), daemon=True, name="mic-recognizer"
        )
        thread.start()

        try:
            while True:
                item = await queue.get()
                if item is _END:
                    return
                if isinstance(item, SpeechInputError):
                    raise item
                yield item
        finally:
            stop_event.set()


TranscriptHandler = Callable[[TranscriptEvent], None]
ErrorHandler = Callable[[SpeechInputError], None]


class SpeechInputChannel:
    """
    Keeps a recognizer running for as long as the session listens.

    - Unexpected end or transient error: reported, then restarted.
    - Permission denied: reported, then listening stops for good.

    Handlers are called synchronously on the event loop.
    """

    def __init__(self, recognizer: Recognizer, restart_delay_s: float = 0.5):
        self.recognizer = recognizer
        self._restart_delay_s = restart_delay_s
        self._on_result: Optional[TranscriptHandler] = None
        self._on_error: Optional[ErrorHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._listening = False
        self.restarts = 0

    @property
    def is_listening(self) -> bool:
        return self._listening

    def start(self, on_result: TranscriptHandler, on_error: Optional[ErrorHandler] = None) -> None:
        """Begin listening (no-op if already listening)."""
        if self._listening:
            return
        self._on_result = on_result
        self._on_error = on_error
        self._listening = True
        self._task = asyncio.get_running_loop().create_task(self._run(), name="speech-input")
        logger.info("Speech recognition started")

    async def stop(self) -> None:
        """Stop listening and disable auto-restart."""
        self._listening = False
        self.recognizer.close()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Speech recognition stopped")

    def _report(self, error: SpeechInputError) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def _deliver(self, event: TranscriptEvent) -> None:
        try:
            self._on_result(event)
        except Exception:
            logger.exception("Transcript handler failed for %r", event.text)

    async def _run(self) -> None:
        while self._listening:
            try:
                async for event in self.recognizer.stream():
                    if not self._listening:
                        break
                    if event.text.strip():
                        self._deliver(event)
            except MicrophonePermissionError as e:
                logger.error("Microphone permission denied: %s", e)
                self._listening = False
                self._report(e)
                return
            except SpeechInputError as e:
                logger.warning("Speech recognition error: %s", e)
                self._report(e)

            if self._listening:
                self.restarts += 1
                logger.info("Speech recognition ended, restarting")
                await asyncio.sleep(self._restart_delay_s)


# =============================================================================
# Output
# =============================================================================


@dataclass
class VoiceSettings:
    """Fixed presentation parameters for the controller voice."""

    language: str = "en-US"
    rate: float = 1.1  # Slightly fast, radio style
    pitch: float = 1.05
    volume: float = 1.0


class SpeechOutputChannel(ABC):
    """Text-to-speech where a new utterance preempts the current one."""

    def __init__(self, voice: Optional[VoiceSettings] = None):
        self.voice = voice or VoiceSettings()

    @abstractmethod
    def speak(self, text: str) -> None:
        """Cancel whatever is playing and start speaking ``text``."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the current utterance, if any."""

    async def close(self) -> None:
        self.cancel()


class ProcessSpeechOutput(SpeechOutputChannel):
    """
    Speak through a command-line synthesizer (espeak-ng by default).

    Each utterance runs in its own subprocess; starting a new one
    terminates the previous process.
    """

    BASE_WPM = 175
    BASE_PITCH = 50

    def __init__(self, command: str = "espeak-ng", voice: Optional[VoiceSettings] = None):
        super().__init__(voice)
        self.command = command
        self._task: Optional[asyncio.Task] = None
        self._proc: Optional[asyncio.subprocess.Process] = None

    def build_args(self, text: str) -> list[str]:
        """Command line for one utterance."""
        return [
            self.command,
            "-v", self.voice.language.lower(),
            "-s", str(int(self.BASE_WPM * self.voice.rate)),
            "-p", str(int(self.BASE_PITCH * self.voice.pitch)),
            "-a", str(int(100 * self.voice.volume)),
            text,
        ]

    def speak(self, text: str) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._play(text), name="tts")

    def cancel(self) -> None:
        if self._proc is not None and self._proc.returncode is None:
            self._proc.terminate()
        self._proc = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _play(self, text: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_args(text),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError:
            logger.error("TTS command not found: %s", self.command)
            return

        self._proc = proc
        try:
            await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.terminate()
            raise
        finally:
            if self._proc is proc:
                self._proc = None


class CallbackSpeechOutput(SpeechOutputChannel):
    """
    Forward utterances to a remote synthesizer (browser speechSynthesis).

    The remote side is told to cancel before every new utterance.
    """

    def __init__(
        self,
        on_speak: Callable[[str, VoiceSettings], None],
        on_cancel: Callable[[], None],
        voice: Optional[VoiceSettings] = None,
    ):
        super().__init__(voice)
        self._on_speak = on_speak
        self._on_cancel = on_cancel

    def speak(self, text: str) -> None:
        self._on_cancel()
        self._on_speak(text, self.voice)

    def cancel(self) -> None:
        self._on_cancel()


class NullSpeechOutput(SpeechOutputChannel):
    """Muted output; keeps a record of what would have been said."""

    def __init__(self, voice: Optional[VoiceSettings] = None):
        super().__init__(voice)
        self.spoken: list[str] = []
        self.cancelled = 0

    def speak(self, text: str) -> None:
        self.cancel()
        self.spoken.append(text)

    def cancel(self) -> None:
        self.cancelled += 1
