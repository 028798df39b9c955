"""
RingSign Video Pipeline - Frame Sources for the Detector

The detector pulls frames through a tiny interface:
- frame_size -> (width, height), (0, 0) until known
- read_frame() -> (frame or None, sequence number)

The sequence number only grows when a new frame arrives, so the detector
can tell a fresh frame from one it has already pushed into its
persistence window.

Sources:
- ThreadedVideoCapture: webcam / stream, always the freshest frame
- VideoFileReader: file playback at native speed, optional looping
- ArrayFrameSource: in-memory frames for replay and tests
"""

import time
import logging
import platform
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np


@dataclass
class CaptureStats:
    """Capture-side counters, for the HUD and logs."""
    frames_captured: int
    frames_skipped: int
    width: int
    height: int
    fps: float
    latency_ms: float = 0.0


class FrameSource(ABC):
    """Anything the detector can pull BGR frames from."""

    @property
    @abstractmethod
    def frame_size(self) -> Tuple[int, int]:
        pass

    @abstractmethod
    def read_frame(self) -> Tuple[Optional[np.ndarray], int]:
        pass

    @property
    def latest_frame(self) -> Optional[np.ndarray]:
        frame, _ = self.read_frame()
        return frame

    def start(self) -> bool:
        return True

    def stop(self):
        pass

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


# Lower-latency camera backends where the platform has one
_CAMERA_BACKENDS = {
    "Windows": cv2.CAP_DSHOW,
    "Darwin": cv2.CAP_AVFOUNDATION,
    "Linux": cv2.CAP_V4L2,
}


class ThreadedVideoCapture(FrameSource):
    """
    Camera or stream reader on a daemon thread.

    The thread keeps only the newest decoded frame; frames nobody read
    before the next one arrived are counted as skipped.

    Usage:
        with ThreadedVideoCapture(source=0) as cap:
            frame, seq = cap.read_frame()
    """

    def __init__(
        self,
        source: int | str = 0,
        resolution: Optional[Tuple[int, int]] = None,
    ):
        """
        Args:
            source: Camera index (int) or video file path / stream URL (str)
            resolution: Requested (width, height), None keeps the native size
        """
        self.source = source
        self.resolution = resolution

        self._cap: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._seq = 0
        self._seq_read = 0
        self._skipped = 0
        self._arrived_at = 0.0
        self._started_at = 0.0
        self._latency_ms = 0.0

        self._size = (0, 0)
        self._native_fps = 0.0

        self.logger = logging.getLogger(__name__)

    def _open(self) -> Optional[cv2.VideoCapture]:
        backend = _CAMERA_BACKENDS.get(platform.system())
        if isinstance(self.source, int) and backend is not None:
            cap = cv2.VideoCapture(self.source, backend)
            if cap.isOpened():
                return cap
            self.logger.warning(f"Backend {backend} failed for camera {self.source}, retrying default")

        cap = cv2.VideoCapture(self.source)
        return cap if cap.isOpened() else None

    def _configure(self) -> bool:
        self._cap = self._open()
        if self._cap is None:
            self.logger.error(f"Failed to open video source: {self.source}")
            return False

        if self.resolution:
            width, height = self.resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._size = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        self._native_fps = self._cap.get(cv2.CAP_PROP_FPS) or 30.0
        self.logger.info(
            f"Opened {self.source}: {self._size[0]}x{self._size[1]} @ {self._native_fps:.1f}fps"
        )
        return True

    def _publish(self, frame: np.ndarray):
        now = time.perf_counter()
        with self._lock:
            if self._seq > self._seq_read:
                self._skipped += 1
            self._latest = frame
            self._seq += 1
            self._arrived_at = now
            self._size = (frame.shape[1], frame.shape[0])

    def _run(self):
        while self._running:
            if not self._cap.grab():
                if isinstance(self.source, str):
                    self.logger.info("End of video stream reached")
                    self._running = False
                else:
                    time.sleep(0.001)
                continue

            ok, frame = self._cap.retrieve()
            if ok:
                self._publish(frame)

    def start(self) -> bool:
        """Open the source and spawn the reader thread."""
        if self._running:
            return True
        if not self._configure():
            return False

        with self._lock:
            self._latest = None
            self._seq = self._seq_read = self._skipped = 0
        self._started_at = time.perf_counter()
        self._running = True

        self._thread = threading.Thread(target=self._run, name="ThreadedVideoCapture", daemon=True)
        self._thread.start()
        self.logger.info("Video capture thread started")
        return True

    def stop(self):
        """Stop the reader thread and release the device."""
        self._running = False
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=1.0)
        self._thread = None

        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self.logger.info("Video capture stopped")

    def read_frame(self) -> Tuple[Optional[np.ndarray], int]:
        """Copy of the newest frame and its sequence number (0 before the first frame)."""
        with self._lock:
            if self._latest is None:
                return None, 0
            self._seq_read = self._seq
            self._latency_ms = (time.perf_counter() - self._arrived_at) * 1000
            return self._latest.copy(), self._seq

    @property
    def stats(self) -> CaptureStats:
        elapsed = time.perf_counter() - self._started_at
        with self._lock:
            return CaptureStats(
                frames_captured=self._seq,
                frames_skipped=self._skipped,
                width=self._size[0],
                height=self._size[1],
                fps=self._seq / elapsed if self._running and elapsed > 0 else 0.0,
                latency_ms=self._latency_ms,
            )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frame_size(self) -> Tuple[int, int]:
        return self._size


class VideoFileReader(ThreadedVideoCapture):
    """Plays a video file at its own frame rate; rewinds at the end when loop=True."""

    def __init__(self, filepath: str, loop: bool = False, **kwargs):
        super().__init__(source=filepath, **kwargs)
        self.filepath = filepath
        self.loop = loop
        self.total_frames = 0

    def _configure(self) -> bool:
        if not super()._configure():
            return False
        self.total_frames = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        return True

    def _run(self):
        period = 1.0 / self._native_fps if self._native_fps > 0 else 0.0
        while self._running:
            ok, frame = self._cap.read()
            if ok:
                self._publish(frame)
            elif self.loop:
                self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                continue
            else:
                self.logger.info(f"End of {self.filepath}")
                self._running = False
                break

            if period:
                time.sleep(period)


class ArrayFrameSource(FrameSource):
    """
    Replays in-memory BGR frames, one new frame per read.

    After the last frame the source keeps returning it with the same number
    (like a paused stream), unless loop=True.
    """

    def __init__(self, frames: Sequence[np.ndarray], loop: bool = False):
        self._frames = list(frames)
        self.loop = loop
        self._count = 0
        self._lock = threading.Lock()

    def read_frame(self) -> Tuple[Optional[np.ndarray], int]:
        with self._lock:
            if not self._frames:
                return None, 0
            if self.exhausted:
                return self._frames[-1], self._count
            frame = self._frames[self._count % len(self._frames)]
            self._count += 1
            return frame, self._count

    @property
    def frame_size(self) -> Tuple[int, int]:
        if not self._frames:
            return (0, 0)
        h, w = self._frames[0].shape[:2]
        return (w, h)

    @property
    def frames_read(self) -> int:
        return self._count

    @property
    def exhausted(self) -> bool:
        return not self.loop and self._count >= len(self._frames)
