"""
RingSign Detector - Real-Time Red Ring Traffic-Sign Pipeline

One frame at a time, strictly in arrival order:

┌──────────────────────────────────────────────────────────────────┐
│  frame ─► blur + HSV ─► stats ─► profile ─► adapted thresholds   │
│        ─► red mask (2 hue bands, close) ─► contours + hierarchy  │
│        ─► ring strategies (hierarchy, then circle-fit fallback)  │
│        ─► persistence window ─► confirmed detections             │
└──────────────────────────────────────────────────────────────────┘

Frame loop:
- start() allocates buffers, clears history and spawns the loop thread
- each tick processes exactly one new frame, then sleeps to the target rate
- stop() sets the run's stop event; the loop exits and releases buffers
- a restart waits for the previous run's loop to finish its last frame
- a failing frame is reported and skipped, the loop keeps running
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .adaptive_hsv import (
    FrameStats,
    ThresholdSet,
    adapt_thresholds,
    compute_frame_stats,
    select_profile,
)
from .config import DetectorConfig, UIConfig
from .persistence import PersistenceFilter
from .ring_detection import Candidate, Rect, RingDetectorChain, RingStrategy
from .segmentation import ContourExtractor, FrameBuffers, RedSegmenter, find_ring_contours


STATUS_ACTIVE = "System Active: Detecting..."
STATUS_STOPPED = "Stopped."
STATUS_WAITING = "Waiting for frames..."


@dataclass(frozen=True)
class ConfirmedDetection:
    """A persistent ring, ready for the renderer (frame pixel coordinates)."""
    rect: Rect
    label: str
    score: float
    center: Tuple[float, float]


@dataclass
class DetectionResult:
    """Everything the pipeline decided for one frame."""
    frame_index: int
    detections: List[ConfirmedDetection]
    candidates: List[Candidate]
    strategy: Optional[str]
    profile: str
    tightness: str
    thresholds: ThresholdSet
    stats: FrameStats
    latency_ms: float = 0.0

    def status_line(self) -> str:
        return (
            f"{self.profile} | {self.tightness} | "
            f"Smin={self.thresholds.s_min} Vmin={self.thresholds.v_min} | "
            f"L={self.stats.luma_mean:.0f}"
        )


class RedRingDetector:
    """
    Red-rimmed circular traffic-sign detector.

    Usage (threaded):
        detector = RedRingDetector(
            frame_source=video,
            get_ui_config=store,
            on_status=print,
            on_result=lambda frame, result: renderer_queue.put(result),
        )
        detector.start()
        ...
        detector.stop()

    Usage (synchronous):
        detector = RedRingDetector()
        result = detector.process_frame(frame)
    """

    def __init__(
        self,
        frame_source=None,
        get_ui_config: Callable[[], UIConfig] = UIConfig,
        on_status: Optional[Callable[[str], None]] = None,
        on_result: Optional[Callable[[np.ndarray, DetectionResult], None]] = None,
        config: DetectorConfig = DetectorConfig(),
        contour_extractor: ContourExtractor = find_ring_contours,
        strategies: Optional[Sequence[RingStrategy]] = None,
    ):
        """
        Args:
            frame_source: Object with frame_size and read_frame(), needed for start()
            get_ui_config: Accessor for the operator's profile/tightness, read every frame
            on_status: Sink for human-readable status messages
            on_result: Called with (frame, DetectionResult) after each processed frame
            config: Tunable thresholds and presets
            contour_extractor: mask -> ContourSet primitive
            strategies: Ring strategies in priority order (default: hierarchy, circle-fit)
        """
        self.config = config
        self._frame_source = frame_source
        self._get_ui_config = get_ui_config
        self._on_status = on_status
        self._on_result = on_result
        self._contour_extractor = contour_extractor

        self._segmenter = RedSegmenter(config.segmentation)
        self._chain = RingDetectorChain(strategies, config.max_candidates, config.ring)
        self._persistence = PersistenceFilter(config.persistence)
        self._buffers = FrameBuffers()

        # Guards buffers, history and the last result
        self._lock = threading.RLock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._frame_index = 0
        self._last_frame_number: Optional[int] = None
        self._waiting = False
        self._last_result: Optional[DetectionResult] = None

        self.logger = logging.getLogger("RedRingDetector")

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def process_frame(self, frame: np.ndarray) -> DetectionResult:
        """
        Run the full pipeline on one BGR frame.

        Raises:
            ValueError: on a zero-area frame or an invalid UI configuration
        """
        h, w = frame.shape[:2]
        if h == 0 or w == 0:
            raise ValueError(f"Cannot process a {w}x{h} frame")

        start_time = time.perf_counter()
        ui = self._get_ui_config()

        with self._lock:
            self._buffers.ensure(w, h)

            hsv = self._segmenter.prepare(frame, self._buffers)
            stats = compute_frame_stats(
                self._buffers.blurred, hsv, self.config.adaptive.sample_step
            )
            profile = select_profile(stats, ui.profile, self.config.adaptive.night_luma_cutoff)
            thresholds = adapt_thresholds(stats, profile, ui.tightness, self.config.adaptive)

            mask = self._segmenter.segment(hsv, thresholds, self._buffers)
            contour_set = self._contour_extractor(mask)
            candidates, strategy = self._chain.detect(contour_set, mask)

            confirmed = self._persistence.update(candidates)
            self._frame_index += 1

            result = DetectionResult(
                frame_index=self._frame_index,
                detections=[
                    ConfirmedDetection(
                        rect=c.rect,
                        label=self.config.label,
                        score=c.score,
                        center=(c.center_x, c.center_y),
                    )
                    for c in confirmed
                ],
                candidates=candidates,
                strategy=strategy,
                profile=profile,
                tightness=ui.tightness,
                thresholds=thresholds,
                stats=stats,
                latency_ms=(time.perf_counter() - start_time) * 1000,
            )
            self._last_result = result

        self.logger.debug(
            f"Frame {result.frame_index}: {result.status_line()} | "
            f"candidates={len(candidates)} ({strategy}) confirmed={len(result.detections)} "
            f"| {result.latency_ms:.1f}ms"
        )
        return result

    def reset(self):
        """Forget the persistence history."""
        with self._lock:
            self._persistence.clear()

    # -------------------------------------------------------------------------
    # Frame loop
    # -------------------------------------------------------------------------

    def step(self) -> Optional[DetectionResult]:
        """
        One scheduled invocation of the frame loop.

        Returns:
            The frame's result, or None if nothing was processed (stopped,
            no new frame, or a processing error).
        """
        if not self._running:
            self._release_buffers()
            return None

        try:
            frame, frame_number = self._frame_source.read_frame()

            if frame is None or frame.size == 0:
                if not self._waiting:
                    self._waiting = True
                    self._report(STATUS_WAITING)
                return None

            if self._waiting:
                self._waiting = False
                self._report(STATUS_ACTIVE)

            # Same frame as last tick: do not count it twice in the window
            if frame_number == self._last_frame_number:
                return None
            self._last_frame_number = frame_number

            result = self.process_frame(frame)

            if self._on_result is not None:
                self._on_result(frame, result)
            return result

        except Exception as e:
            self.logger.exception("Frame processing error")
            self._report(f"Processing error: {e}")
            return None

    def _frame_loop(self, stop_event: threading.Event):
        interval = 1.0 / self.config.target_fps if self.config.target_fps > 0 else 0.0

        while not stop_event.is_set():
            tick = time.perf_counter()
            self.step()
            remaining = interval - (time.perf_counter() - tick)
            stop_event.wait(max(remaining, 0.001))

        self._release_buffers()

    def start(self):
        """Allocate buffers, clear history and begin the frame loop."""
        if self._running:
            return
        if self._frame_source is None:
            raise ValueError("RedRingDetector.start() requires a frame_source")

        # The previous run's loop may still be finishing its last frame.
        # Its stop event is already set, so it exits right after.
        previous = self._thread
        if previous is not None and previous is not threading.current_thread():
            previous.join()
        self._thread = None

        width, height = self._frame_source.frame_size
        with self._lock:
            if width > 0 and height > 0:
                self._buffers.ensure(width, height)
            self._persistence.clear()
            self._frame_index = 0
            self._last_frame_number = None
            self._last_result = None
            self._waiting = False

        self._stop_event = threading.Event()
        self._running = True
        self._report(STATUS_ACTIVE)

        self._thread = threading.Thread(
            target=self._frame_loop, args=(self._stop_event,), name="RedRingDetector", daemon=True
        )
        self._thread.start()

    def stop(self):
        """Stop the frame loop and release all per-run buffers."""
        if self._stop_event is None:
            return

        self._running = False
        self._stop_event.set()
        self._stop_event = None

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
            if thread.is_alive():
                # Kept so the next start() waits for it
                self.logger.warning("Frame loop still busy after stop(); it exits after this frame")
            else:
                self._thread = None

        self._release_buffers()
        self._report(STATUS_STOPPED)

    def _release_buffers(self):
        with self._lock:
            self._buffers.release()

    def _report(self, message: str):
        self.logger.info(message)
        if self._on_status is not None:
            self._on_status(message)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def debug_mask(self) -> Optional[np.ndarray]:
        """Copy of the latest binary mask, or None when no buffers are held."""
        with self._lock:
            if self._buffers.mask is None:
                return None
            return self._buffers.mask.copy()

    @property
    def last_result(self) -> Optional[DetectionResult]:
        with self._lock:
            return self._last_result

    @property
    def buffers_allocated(self) -> bool:
        with self._lock:
            return self._buffers.allocated

    @property
    def history_length(self) -> int:
        with self._lock:
            return len(self._persistence)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def frames_processed(self) -> int:
        return self._frame_index

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
