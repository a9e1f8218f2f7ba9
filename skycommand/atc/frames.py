"""
Frame sources for the radar feed.

Grabs still frames from the pilot's screen share, downscales them to a
bounded width and encodes them as base64 JPEG for the vision model.

Sources:
- ScreenFrameSource: local screen via mss
- CameraFrameSource: OpenCV capture device, video file or stream URL
- PushedFrameSource: frames pushed by a browser client

FrameFeed drives a source on a timer and on demand.
"""

import asyncio
import base64
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

import cv2
import numpy as np

from skycommand.atc.errors import FrameSourceError

logger = logging.getLogger(__name__)


@dataclass
class EncodeConfig:
    """Downscale/encode settings for captured frames."""

    target_width: int = 768
    jpeg_quality: int = 70


def encode_frame(frame: Optional[np.ndarray], config: Optional[EncodeConfig] = None) -> Optional[str]:
    """
    Downscale a BGR frame to the target width and encode it.

    The aspect ratio is preserved. Frames narrower than the target are
    scaled up, matching the fixed-width canvas the model prompt assumes.

    Args:
        frame: BGR (or BGRA) image
        config: Target width and JPEG quality

    Returns:
        Base64 JPEG string, or None if the frame has no dimensions
    """
    config = config or EncodeConfig()
    if frame is None or frame.ndim < 2 or frame.shape[0] == 0 or frame.shape[1] == 0:
        return None

    if frame.ndim == 3 and frame.shape[2] == 4:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)

    height, width = frame.shape[:2]
    scale = config.target_width / width
    target_height = max(1, round(height * scale))
    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR
    resized = cv2.resize(frame, (config.target_width, target_height), interpolation=interpolation)

    ok, jpeg_buf = cv2.imencode(".jpg", resized, [cv2.IMWRITE_JPEG_QUALITY, config.jpeg_quality])
    if not ok:
        return None
    return base64.b64encode(jpeg_buf.tobytes()).decode("utf-8")


class FrameSource(ABC):
    """A live video stream that can be sampled on demand."""

    def __init__(self, encode: Optional[EncodeConfig] = None):
        self.encode = encode or EncodeConfig()

    @abstractmethod
    def open(self) -> None:
        """
        Acquire the stream.

        Raises:
            FrameSourceError: If the stream cannot be opened
        """

    @abstractmethod
    def grab(self) -> Optional[np.ndarray]:
        """Return the current raw frame, or None if there is none."""

    @abstractmethod
    def release(self) -> None:
        """Release the stream (stop all tracks)."""

    @property
    def ended(self) -> bool:
        """True once the stream has finished on its own."""
        return False

    def capture_now(self) -> Optional[str]:
        """Capture and encode the current frame (blocking)."""
        return encode_frame(self.grab(), self.encode)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


class ScreenFrameSource(FrameSource):
    """
    Screen capture via mss.

    Usage:
        with ScreenFrameSource(monitor=1) as screen:
            frame_b64 = screen.capture_now()
    """

    def __init__(self, monitor: int = 1, encode: Optional[EncodeConfig] = None):
        super().__init__(encode)
        self.monitor = monitor
        self._open = False

    def open(self) -> None:
        import mss

        try:
            with mss.mss() as sct:
                available = len(sct.monitors) - 1
        except Exception as e:
            raise FrameSourceError(f"Screen capture unavailable: {e}") from e

        if self.monitor > available:
            raise FrameSourceError(f"Monitor {self.monitor} not found ({available} available)")

        self._open = True
        logger.info("Screen capture ready: monitor %d", self.monitor)

    def grab(self) -> Optional[np.ndarray]:
        if not self._open:
            return None

        import mss

        # mss handles are thread-bound; grabs run in worker threads
        with mss.mss() as sct:
            shot = sct.grab(sct.monitors[self.monitor])
        return np.asarray(shot)  # BGRA

    def release(self) -> None:
        self._open = False


class CameraFrameSource(FrameSource):
    """
    OpenCV capture: device index, video file or stream URL.

    End of a file or a dropped stream marks the source as ended, which
    stops the session the same way a closed screen share does.
    """

    def __init__(self, device: Union[int, str] = 0, encode: Optional[EncodeConfig] = None):
        super().__init__(encode)
        self.device = device
        self._cap = None
        self._ended = False
        # Grabs run in worker threads; release() may come from the loop
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        """Check if the capture is currently open."""
        return self._cap is not None and self._cap.isOpened()

    @property
    def ended(self) -> bool:
        return self._ended

    def open(self) -> None:
        with self._lock:
            self._cap = cv2.VideoCapture(self.device)
            if not self._cap.isOpened():
                self._cap = None
                raise FrameSourceError(f"Failed to open video source {self.device!r}")

            self._ended = False
            width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("Video source ready: %s (%dx%d)", self.device, width, height)

    def grab(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self.is_open:
                return None

            ret, frame = self._cap.read()
        if not ret or frame is None:
            logger.info("Video source %s ended", self.device)
            self._ended = True
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None


class PushedFrameSource(FrameSource):
    """
    Latest frame pushed by a remote client (browser screen share).

    The client sends encoded stills; capture_now() re-encodes the most
    recent one through the same downscale path as local sources.
    """

    def __init__(self, encode: Optional[EncodeConfig] = None):
        super().__init__(encode)
        self._latest: Optional[np.ndarray] = None
        self._open = False
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def open(self) -> None:
        self._open = True
        self._ended = False

    def push(self, data: Union[str, bytes]) -> bool:
        """
        Store a frame from the client.

        Args:
            data: Base64 string (optionally a data: URL) or raw image bytes

        Returns:
            True if the frame decoded
        """
        if not self._open:
            return False

        if isinstance(data, str):
            if data.startswith("data:"):
                data = data.split(",", 1)[-1]
            try:
                data = base64.b64decode(data, validate=True)
            except ValueError:
                logger.warning("Dropping frame: invalid base64")
                return False

        frame = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if frame is None:
            logger.warning("Dropping frame: undecodable image (%d bytes)", len(data))
            return False

        self._latest = frame
        return True

    def end(self) -> None:
        """The client stopped sharing."""
        self._ended = True

    def grab(self) -> Optional[np.ndarray]:
        return self._latest if self._open else None

    def release(self) -> None:
        self._open = False
        self._latest = None


FrameHandler = Callable[[str], Awaitable[None]]


class FrameFeed:
    """
    Timer-driven and on-demand capture for one frame source.

    Captured frames are handed to ``on_frame``; empty grabs are dropped
    without calling it. When the source reports end-of-stream,
    ``on_ended`` is called once.

    Usage:
        feed = FrameFeed(source, on_frame=orchestrator.handle_frame, interval_s=5.0)
        feed.start()
        feed.request_capture()  # immediate reaction to speech
        await feed.stop()
    """

    def __init__(
        self,
        source: FrameSource,
        on_frame: FrameHandler,
        interval_s: float = 5.0,
        on_ended: Optional[Callable[[], None]] = None,
    ):
        self.source = source
        self._on_frame = on_frame
        self._interval_s = interval_s
        self._on_ended = on_ended

        self._timer: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Start periodic capture. The source must already be open."""
        if self._active:
            return
        self._active = True
        self._timer = asyncio.get_running_loop().create_task(self._tick(), name="frame-timer")

    def request_capture(self) -> None:
        """Schedule an immediate capture (no-op while inactive)."""
        if not self._active:
            return
        task = asyncio.get_running_loop().create_task(self._capture(), name="frame-capture")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        """Stop the timer and release the source."""
        self._active = False
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        self.source.release()

    async def _tick(self) -> None:
        while self._active:
            await asyncio.sleep(self._interval_s)
            if self._active:
                self.request_capture()

    async def _capture(self) -> None:
        try:
            frame_b64 = await asyncio.to_thread(self.source.capture_now)
        except Exception as e:
            logger.error("Frame capture failed: %s", e)
            return

        if self.source.ended:
            if self._active:
                self._active = False
                if self._on_ended is not None:
                    self._on_ended()
            return

        if frame_b64 is None or not self._active:
            return

        await self._on_frame(frame_b64)
