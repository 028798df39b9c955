"""
RingSign Segmentation - Red HSV Mask + Contour Hierarchy

Red wraps around hue 0/180 in OpenCV's HSV, so the mask is the OR of two
hue bands gated by the adapted S/V floors. A small elliptical closing
reconnects rings broken by glare.

All intermediate images live in a FrameBuffers arena owned by the detector,
resized only when the frame dimensions change.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np
import cv2

from .adaptive_hsv import ThresholdSet
from .config import SegmentationConfig


logger = logging.getLogger(__name__)


class FrameBuffers:
    """
    Pre-sized per-run image buffers.

    Reused frame to frame to avoid reallocation; released on stop.
    """

    def __init__(self):
        self.width = 0
        self.height = 0
        self.blurred: Optional[np.ndarray] = None
        self.hsv: Optional[np.ndarray] = None
        self.mask_low: Optional[np.ndarray] = None
        self.mask_high: Optional[np.ndarray] = None
        self.mask: Optional[np.ndarray] = None

    def ensure(self, width: int, height: int) -> bool:
        """
        Make sure buffers match (width, height).

        Returns:
            True if the buffers were (re)allocated
        """
        if self.allocated and (width, height) == (self.width, self.height):
            return False

        if self.allocated:
            logger.info(f"Frame size changed {self.width}x{self.height} -> {width}x{height}")

        self.width, self.height = width, height
        self.blurred = np.zeros((height, width, 3), dtype=np.uint8)
        self.hsv = np.zeros((height, width, 3), dtype=np.uint8)
        self.mask_low = np.zeros((height, width), dtype=np.uint8)
        self.mask_high = np.zeros((height, width), dtype=np.uint8)
        self.mask = np.zeros((height, width), dtype=np.uint8)
        return True

    def release(self):
        self.blurred = self.hsv = self.mask_low = self.mask_high = self.mask = None
        self.width = self.height = 0

    @property
    def allocated(self) -> bool:
        return self.mask is not None


class RedSegmenter:
    """Blur -> HSV -> two-band red mask -> morphology."""

    def __init__(self, config: SegmentationConfig = SegmentationConfig()):
        self.config = config
        self._close_kernel = cv2.getStructuringElement(
            cv2.MORPH_ELLIPSE, (config.close_ksize, config.close_ksize)
        )
        self._open_kernel = cv2.getStructuringElement(
            cv2.MORPH_ELLIPSE, (config.open_ksize, config.open_ksize)
        )

    def prepare(self, frame: np.ndarray, buffers: FrameBuffers) -> np.ndarray:
        """
        Blur the BGR frame and convert it to HSV.

        Returns:
            The HSV image (also stored in buffers.hsv). The blurred BGR
            image is left in buffers.blurred for frame statistics.
        """
        k = self.config.blur_ksize
        buffers.blurred = cv2.GaussianBlur(frame, (k, k), 0, dst=buffers.blurred)
        buffers.hsv = cv2.cvtColor(buffers.blurred, cv2.COLOR_BGR2HSV, dst=buffers.hsv)
        return buffers.hsv

    def segment(self, hsv: np.ndarray, thr: ThresholdSet, buffers: FrameBuffers) -> np.ndarray:
        """Build the binary (0/255) red mask for this frame."""
        low1 = np.array([thr.h1[0], thr.s_min, thr.v_min], dtype=np.uint8)
        high1 = np.array([thr.h1[1], 255, 255], dtype=np.uint8)
        low2 = np.array([thr.h2[0], thr.s_min, thr.v_min], dtype=np.uint8)
        high2 = np.array([thr.h2[1], 255, 255], dtype=np.uint8)

        buffers.mask_low = cv2.inRange(hsv, low1, high1, dst=buffers.mask_low)
        buffers.mask_high = cv2.inRange(hsv, low2, high2, dst=buffers.mask_high)
        buffers.mask = cv2.bitwise_or(buffers.mask_low, buffers.mask_high, dst=buffers.mask)

        # Connect rings broken by glare
        buffers.mask = cv2.morphologyEx(
            buffers.mask, cv2.MORPH_CLOSE, self._close_kernel, dst=buffers.mask
        )

        if self.config.open_enabled:
            buffers.mask = cv2.morphologyEx(
                buffers.mask, cv2.MORPH_OPEN, self._open_kernel, dst=buffers.mask
            )

        return buffers.mask


# =============================================================================
# CONTOUR PRIMITIVE
# =============================================================================

@dataclass
class ContourSet:
    """
    Contours of a binary mask plus their 2-level hierarchy.

    hierarchy is an (N, 4) int array of [next, prev, first_child, parent],
    or None when no hierarchy is available.
    """
    contours: Sequence[np.ndarray]
    hierarchy: Optional[np.ndarray] = None

    def __len__(self):
        return len(self.contours)


ContourExtractor = Callable[[np.ndarray], ContourSet]


def find_ring_contours(mask: np.ndarray) -> ContourSet:
    """RETR_CCOMP: outer boundaries plus one level of holes."""
    contours, hierarchy = cv2.findContours(mask, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_SIMPLE)
    if hierarchy is not None:
        hierarchy = hierarchy.reshape(-1, 4)
    return ContourSet(contours=list(contours), hierarchy=hierarchy)
