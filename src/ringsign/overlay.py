"""
RingSign Overlay - Rendering for Confirmed Detections

The detector never draws; this is the renderer side of the boundary:
- Box + label for each confirmed detection (frame pixel coordinates)
- Binary mask view for debugging thresholds
- HUD line with profile, tightness and adapted S/V floors
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import cv2

from .config import UIConfig
from .detector import ConfirmedDetection, DetectionResult


@dataclass
class ColorScheme:
    """Colors for the overlay (BGR)."""
    detection: Tuple[int, int, int] = (0, 255, 0)     # Green
    hud_text: Tuple[int, int, int] = (200, 200, 200)  # Light gray
    warning: Tuple[int, int, int] = (0, 165, 255)     # Orange
    background: Tuple[int, int, int] = (0, 0, 0)      # Black


class DetectionRenderer:
    """Draws confirmed detections and the HUD onto BGR frames."""

    def __init__(self, colors: Optional[ColorScheme] = None):
        self.colors = colors or ColorScheme()
        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self.font_scale = 0.6
        self.box_thickness = 3
        self.text_thickness = 2

    def render(self, frame: np.ndarray, detections: Sequence[ConfirmedDetection]) -> np.ndarray:
        """
        Draw each detection's rectangle with its label just above it.

        Args:
            frame: BGR frame, modified in place
            detections: Confirmed detections for this frame

        Returns:
            The same frame
        """
        for det in detections:
            x, y, w, h = det.rect
            cv2.rectangle(frame, (x, y), (x + w, y + h), self.colors.detection, self.box_thickness)
            cv2.putText(
                frame, det.label, (x, max(0, y - 10)),
                self.font, self.font_scale, self.colors.detection, self.text_thickness
            )
        return frame

    @staticmethod
    def render_mask(mask: np.ndarray) -> np.ndarray:
        """Binary mask as a displayable BGR image."""
        return cv2.cvtColor(mask, cv2.COLOR_GRAY2BGR)

    def render_hud(
        self,
        frame: np.ndarray,
        fps: float = 0.0,
        result: Optional[DetectionResult] = None,
        ui: Optional[UIConfig] = None,
        status: str = ""
    ) -> np.ndarray:
        """Top bar with FPS, adaptive threshold state and the latest status."""
        h, w = frame.shape[:2]

        overlay = frame.copy()
        cv2.rectangle(overlay, (0, 0), (w, 40), self.colors.background, -1)
        cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

        fps_color = (0, 255, 0) if fps >= 30 else (0, 255, 255) if fps >= 20 else (0, 0, 255)
        cv2.putText(frame, f"FPS: {fps:.1f}", (10, 28), self.font, 0.6, fps_color, 1, cv2.LINE_AA)

        if result is not None:
            info = result.status_line()
            if ui is not None and ui.profile == "auto":
                info = "auto:" + info
            cv2.putText(frame, info, (120, 28), self.font, 0.5, self.colors.hud_text, 1, cv2.LINE_AA)

        if status:
            text_size = cv2.getTextSize(status, self.font, 0.5, 1)[0]
            cv2.putText(
                frame, status, (w - text_size[0] - 10, 28),
                self.font, 0.5, self.colors.warning, 1, cv2.LINE_AA
            )

        return frame


class PerformanceOverlay:
    """Smoothed FPS counter."""

    def __init__(self, history_size: int = 30):
        self._history_size = history_size
        self._frame_times: List[float] = []
        self._last_time = time.perf_counter()

    def update(self):
        now = time.perf_counter()
        self._frame_times.append(now - self._last_time)
        self._last_time = now
        if len(self._frame_times) > self._history_size:
            self._frame_times.pop(0)

    @property
    def fps(self) -> float:
        if not self._frame_times:
            return 0.0
        avg = sum(self._frame_times) / len(self._frame_times)
        return 1.0 / avg if avg > 0 else 0.0
