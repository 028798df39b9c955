"""
RingSign Adaptive HSV - Frame Statistics + Day/Night Threshold Adaptation

Per frame:
1. Sample the frame sparsely (every 8th pixel in both axes) for mean
   luma / saturation / value
2. Pick a lighting profile (forced by the operator, or auto by luma cutoff)
3. Nudge the preset's S/V floors toward the observed lighting using the
   profile's anchor statistics. Hue bands are never touched: they define "red".
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .config import AdaptiveConfig, HSVPreset, StatsAnchor


@dataclass(frozen=True)
class FrameStats:
    """Sparse-sampled summary of the current frame."""
    luma_mean: float
    s_mean: float
    v_mean: float


@dataclass(frozen=True)
class ThresholdSet:
    """Adapted HSV gate for a single frame."""
    h1: Tuple[int, int]
    h2: Tuple[int, int]
    s_min: int
    v_min: int


NEUTRAL_STATS = FrameStats(luma_mean=0.0, s_mean=0.0, v_mean=0.0)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp(x, lo, hi):
    return max(lo, min(hi, x))


def compute_frame_stats(frame: np.ndarray, hsv: np.ndarray, step: int = 8) -> FrameStats:
    """
    Mean luma/saturation/value over a regular sample grid.

    Args:
        frame: BGR frame (uint8)
        hsv: HSV version of the same frame
        step: Grid stride in both axes

    Returns:
        FrameStats, or all-zero stats for a zero-area frame
    """
    sampled = frame[::step, ::step]
    if sampled.size == 0:
        return NEUTRAL_STATS

    bgr = sampled.astype(np.int32)
    b, g, r = bgr[..., 0], bgr[..., 1], bgr[..., 2]
    luma = (r * 77 + g * 150 + b * 29) >> 8  # 0..255 integer approximation

    hsv_sampled = hsv[::step, ::step]
    return FrameStats(
        luma_mean=float(luma.mean()),
        s_mean=float(hsv_sampled[..., 1].mean()),
        v_mean=float(hsv_sampled[..., 2].mean()),
    )


def select_profile(stats: FrameStats, ui_profile: str, night_luma_cutoff: float = 105.0) -> str:
    """Honor a forced profile, otherwise classify the frame as day or night."""
    if ui_profile in ("day", "night"):
        return ui_profile
    return "night" if stats.luma_mean < night_luma_cutoff else "day"


def lookup_preset(config: AdaptiveConfig, profile: str, tightness: str) -> Tuple[HSVPreset, StatsAnchor]:
    try:
        return config.presets[profile][tightness], config.anchors[profile]
    except KeyError:
        raise ValueError(f"No HSV preset for profile={profile!r}, tightness={tightness!r}") from None


def adapt_thresholds(
    stats: FrameStats,
    profile: str,
    tightness: str,
    config: AdaptiveConfig = AdaptiveConfig()
) -> ThresholdSet:
    """
    Adapt the preset's saturation/value floors to the observed frame.

    Deltas are (anchor - observed) / delta_scale, clamped to [-1, 1].
    A darker, duller frame than the anchor lowers both floors.
    """
    base, anchor = lookup_preset(config, profile, tightness)
    scale = config.delta_scale

    dl = clamp((anchor.luma_mean - stats.luma_mean) / scale, -1.0, 1.0)
    ds = clamp((anchor.s_mean - stats.s_mean) / scale, -1.0, 1.0)
    dv = clamp((anchor.v_mean - stats.v_mean) / scale, -1.0, 1.0)

    s_min = base.s_min + round_half_up(-ds * 10 + dl * -15)
    v_min = base.v_min + round_half_up(dl * -25 + -dv * 10)

    s_min = clamp(s_min, *config.s_min_range)
    v_min = clamp(v_min, *config.v_min_range)

    return ThresholdSet(h1=base.h1, h2=base.h2, s_min=s_min, v_min=v_min)
