"""
RingSign Ring Detection - Two Strategies, Fallback Order

(A) HierarchyRingStrategy
    Outer contour with a child hole. The outer shape test is loose because
    the red blob may be attached to a pole or another red object; the hole
    is usually clean, so its circularity test is strict.

(B) CircleFitStrategy
    Minimal enclosing circle of each contour, scored by sampling the mask:
    the annulus around the circle must be red, the center disk must not.

RingDetectorChain runs the strategies in order and keeps the first
non-empty result, capped to the top few candidates.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import cv2

from .adaptive_hsv import clamp, round_half_up
from .config import RingConfig
from .segmentation import ContourSet

Rect = Tuple[int, int, int, int]


@dataclass(frozen=True)
class Candidate:
    """A ring hypothesis for one frame. Score only ranks within a strategy."""
    rect: Rect  # (x, y, width, height) in frame pixels
    center_x: float
    center_y: float
    score: float
    strategy: str = ""


def circularity(area: float, perimeter: float) -> float:
    """4*pi*A / P^2 (1.0 for a perfect circle), 0 for degenerate perimeters."""
    if perimeter <= 1:
        return 0.0
    return (4.0 * math.pi * area) / (perimeter * perimeter)


def rect_from_circle(cx: float, cy: float, r: float, width: int, height: int) -> Rect:
    """Axis-aligned box of a circle, clamped to the frame."""
    x = clamp(round_half_up(cx - r), 0, width - 1)
    y = clamp(round_half_up(cy - r), 0, height - 1)
    x2 = clamp(round_half_up(cx + r), 0, width - 1)
    y2 = clamp(round_half_up(cy + r), 0, height - 1)
    return (x, y, max(1, x2 - x), max(1, y2 - y))


def _red_fraction(mask: np.ndarray, xs: np.ndarray, ys: np.ndarray, empty_value: float) -> float:
    h, w = mask.shape[:2]
    xs = np.floor(xs + 0.5).astype(np.int64)
    ys = np.floor(ys + 0.5).astype(np.int64)
    inside = (xs >= 0) & (ys >= 0) & (xs < w) & (ys < h)
    total = int(np.count_nonzero(inside))
    if total == 0:
        return empty_value
    red = int(np.count_nonzero(mask[ys[inside], xs[inside]] > 0))
    return red / total


def annulus_score(
    mask: np.ndarray,
    cx: float,
    cy: float,
    r: float,
    config: RingConfig = RingConfig()
) -> Tuple[float, float]:
    """
    Sample the binary mask around a circle.

    Returns:
        (ring_frac, center_frac): red fraction on the annulus r -/+ thickness,
        and red fraction inside a center disk of radius ~0.45 r. Samples
        falling outside the frame are ignored; an empty center counts as red.
    """
    thick = max(2, round_half_up(r * config.annulus_thickness_frac))
    r_in = max(2, r - thick)
    r_out = r + thick

    # Ring samples: angles x radial steps
    angles = np.arange(config.annulus_angles) / config.annulus_angles * (2.0 * math.pi)
    steps = config.annulus_radial_steps
    radii = r_in + np.arange(steps) / max(1, steps - 1) * (r_out - r_in)
    rr, tt = np.meshgrid(radii, angles)
    ring_frac = _red_fraction(mask, cx + rr * np.cos(tt), cy + rr * np.sin(tt), empty_value=0.0)

    # Center samples: square grid clipped to a disk
    c_r = max(2, round_half_up(r * config.center_disk_frac))
    step = max(2, round_half_up(c_r / 6))
    offsets = np.arange(-c_r, c_r + 1, step)
    yy, xx = np.meshgrid(offsets, offsets, indexing="ij")
    in_disk = (xx * xx + yy * yy) <= c_r * c_r
    center_frac = _red_fraction(mask, cx + xx[in_disk], cy + yy[in_disk], empty_value=1.0)

    return ring_frac, center_frac


# =============================================================================
# STRATEGIES
# =============================================================================

class RingStrategy(ABC):
    """A ring-candidate producer over the frame's contours and mask."""

    name = "base"

    def __init__(self, config: RingConfig = RingConfig(), max_candidates: int = 6):
        self.config = config
        self.max_candidates = max_candidates

    @abstractmethod
    def find(self, contour_set: ContourSet, mask: np.ndarray) -> List[Candidate]:
        """Return candidates ranked by descending score."""
        pass


class HierarchyRingStrategy(RingStrategy):
    """Top-level outer contour that owns a hole."""

    name = "hierarchy"

    def find(self, contour_set: ContourSet, mask: np.ndarray) -> List[Candidate]:
        hierarchy = contour_set.hierarchy
        if hierarchy is None:
            return []

        cfg = self.config
        contours = contour_set.contours
        found = []

        for i, outer in enumerate(contours):
            _, _, child, parent = hierarchy[i]
            if parent != -1 or child == -1:
                continue

            outer_area = cv2.contourArea(outer)
            if outer_area < cfg.min_outer_area:
                continue
            outer_peri = cv2.arcLength(outer, True)
            if outer_peri <= 1:
                continue

            outer_circ = circularity(outer_area, outer_peri)
            x, y, w, h = cv2.boundingRect(outer)
            aspect = w / h

            hole = contours[child]
            hole_area = cv2.contourArea(hole)
            hole_circ = circularity(hole_area, cv2.arcLength(hole, True))

            ringness = hole_area / max(1.0, outer_area)

            ok = (
                cfg.outer_circularity_min <= outer_circ <= cfg.outer_circularity_max
                and cfg.aspect_min <= aspect <= cfg.aspect_max
                and hole_circ >= cfg.hole_circularity_min
                and cfg.ringness_min <= ringness <= cfg.ringness_max
            )
            if not ok:
                continue

            # Outer rect may include an attachment, acceptable for the box
            found.append(Candidate(
                rect=(int(x), int(y), int(w), int(h)),
                center_x=x + w * 0.5,
                center_y=y + h * 0.5,
                score=hole_circ * 0.6 + outer_circ * 0.4,
                strategy=self.name,
            ))

        found.sort(key=lambda c: c.score, reverse=True)
        return found[:self.max_candidates]


class CircleFitStrategy(RingStrategy):
    """Minimal enclosing circle + annulus sampling; finds rings with broken holes."""

    name = "circle_fit"

    def find(self, contour_set: ContourSet, mask: np.ndarray) -> List[Candidate]:
        cfg = self.config
        height, width = mask.shape[:2]
        found = []

        for cnt in contour_set.contours:
            if cv2.contourArea(cnt) < cfg.min_outer_area:
                continue

            (cx, cy), r = cv2.minEnclosingCircle(cnt)
            if r < cfg.min_radius:
                continue

            ring_frac, center_frac = annulus_score(mask, cx, cy, r, cfg)
            if ring_frac >= cfg.annulus_red_min and center_frac <= cfg.center_red_max:
                found.append(Candidate(
                    rect=rect_from_circle(cx, cy, r, width, height),
                    center_x=float(cx),
                    center_y=float(cy),
                    score=ring_frac - center_frac,
                    strategy=self.name,
                ))

        found.sort(key=lambda c: c.score, reverse=True)
        return found[:self.max_candidates]


class RingDetectorChain:
    """
    Ordered fallback over ring strategies.

    The first strategy to produce any candidate wins the frame; later
    strategies are not run.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[RingStrategy]] = None,
        max_candidates: int = 6,
        config: RingConfig = RingConfig()
    ):
        if strategies is None:
            strategies = [
                HierarchyRingStrategy(config, max_candidates),
                CircleFitStrategy(config, max_candidates),
            ]
        self.strategies = list(strategies)
        self.max_candidates = max_candidates

    def detect(self, contour_set: ContourSet, mask: np.ndarray) -> Tuple[List[Candidate], Optional[str]]:
        """
        Returns:
            (top candidates, name of the strategy that produced them or None)
        """
        for strategy in self.strategies:
            candidates = strategy.find(contour_set, mask)
            if candidates:
                return candidates[:self.max_candidates], strategy.name
        return [], None
