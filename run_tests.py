#!/usr/bin/env python3
"""
Unit Tests for the RingSign Red Ring Detector

Synthetic frames only (a red annulus drawn with cv2.circle on a plain
background). Covers:
A. Adaptive thresholds (stats sampling, profile choice, clamping)
B. Segmentation (two-band mask, optional opening)
C. Ring strategies (hierarchy test, circle-fit fallback, fallback chain)
D. Persistence window (3-of-6 within 40px, per-frame existence counting)
E. Full pipeline and the threaded start/stop frame loop

Run with `python run_tests.py` or `pytest`.
"""

import sys
import os
import time
import threading
import numpy as np
import cv2

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from ringsign.adaptive_hsv import (
    FrameStats, adapt_thresholds, compute_frame_stats, select_profile,
)
from ringsign.config import (
    DetectorConfig, RingConfig, SegmentationConfig, UIConfig, UIConfigStore, ui_config_from_env,
    PROFILES, TIGHTNESS_LEVELS, ENV_PROFILE, ENV_TIGHTNESS,
)
from ringsign.detector import ConfirmedDetection, RedRingDetector
from ringsign.overlay import DetectionRenderer
from ringsign.persistence import PersistenceFilter
from ringsign.ring_detection import (
    Candidate, CircleFitStrategy, HierarchyRingStrategy, RingDetectorChain, RingStrategy,
    annulus_score, rect_from_circle,
)
from ringsign.segmentation import ContourSet, FrameBuffers, RedSegmenter, find_ring_contours
from ringsign.video_pipeline import ArrayFrameSource


RED = (0, 0, 255)  # BGR
BACKGROUND = (90, 90, 90)
DAY_MED = UIConfig(profile="day", tightness="med")


def make_ring_frame(size=200, center=(100, 100), outer=40, inner=26, bg=BACKGROUND):
    """Red annulus with a background-colored hole on a uniform background."""
    frame = np.zeros((size, size, 3), dtype=np.uint8)
    frame[:] = bg
    cv2.circle(frame, center, outer, RED, -1)
    cv2.circle(frame, center, inner, bg, -1)
    return frame


def make_candidate(x, y, score=1.0):
    return Candidate(rect=(int(x) - 20, int(y) - 20, 40, 40), center_x=x, center_y=y, score=score)


def ring_mask(frame, ui=DAY_MED):
    """Mask produced by a fresh detector for this frame."""
    detector = RedRingDetector(get_ui_config=lambda: ui)
    detector.process_frame(frame)
    return detector.debug_mask


def outer_contours_only(mask):
    """Contour primitive stub with no hierarchy information."""
    contours, _ = cv2.findContours(mask, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_SIMPLE)
    return ContourSet(contours=list(contours), hierarchy=None)


def wait_until(predicate, timeout=5.0):
    deadline = time.perf_counter() + timeout
    while time.perf_counter() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# =============================================================================
# A. ADAPTIVE THRESHOLDS
# =============================================================================

def test_frame_stats_on_uniform_red():
    frame = np.zeros((64, 64, 3), dtype=np.uint8)
    frame[:] = RED
    hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)

    stats = compute_frame_stats(frame, hsv)

    assert stats.luma_mean == (255 * 77) >> 8
    assert stats.s_mean == 255
    assert stats.v_mean == 255


def test_frame_stats_zero_area_is_neutral():
    frame = np.zeros((0, 0, 3), dtype=np.uint8)
    stats = compute_frame_stats(frame, frame)
    assert stats == FrameStats(0.0, 0.0, 0.0)


def test_frame_stats_samples_every_eighth_pixel():
    frame = np.zeros((16, 16, 3), dtype=np.uint8)
    # Only rows/cols 0 and 8 are sampled; paint everything else white
    frame[:] = 255
    frame[::8, ::8] = 0
    hsv = cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)

    stats = compute_frame_stats(frame, hsv, step=8)

    assert stats.luma_mean == 0
    assert stats.v_mean == 0


def test_select_profile():
    dark = FrameStats(luma_mean=60, s_mean=80, v_mean=70)
    bright = FrameStats(luma_mean=150, s_mean=80, v_mean=150)

    assert select_profile(dark, "auto") == "night"
    assert select_profile(bright, "auto") == "day"
    assert select_profile(FrameStats(105, 0, 0), "auto") == "day"
    assert select_profile(dark, "day") == "day"
    assert select_profile(bright, "night") == "night"


def test_anchor_stats_keep_preset_values():
    stats = FrameStats(luma_mean=140, s_mean=75, v_mean=135)
    thr = adapt_thresholds(stats, "day", "med")

    assert (thr.s_min, thr.v_min) == (110, 55)
    assert thr.h1 == (0, 16)
    assert thr.h2 == (164, 180)


def test_darker_frame_lowers_floors():
    stats = FrameStats(luma_mean=60, s_mean=75, v_mean=135)
    thr = adapt_thresholds(stats, "day", "med")

    # dl = 1.0: s_min -15, v_min -25
    assert thr.s_min == 95
    assert thr.v_min == 30


def test_threshold_clamping_extremes():
    print("\n" + "=" * 60)
    print("TEST: Threshold clamping on all-black / all-white frames")
    print("=" * 60)

    extremes = [FrameStats(0, 0, 0), FrameStats(255, 255, 255)]
    for color in ((0, 0, 0), (255, 255, 255)):
        frame = np.full((48, 64, 3), color, dtype=np.uint8)
        extremes.append(compute_frame_stats(frame, cv2.cvtColor(frame, cv2.COLOR_BGR2HSV)))

    for stats in extremes:
        for profile in PROFILES:
            for tightness in TIGHTNESS_LEVELS:
                thr = adapt_thresholds(stats, profile, tightness)
                assert 40 <= thr.s_min <= 200, (stats, profile, tightness, thr)
                assert 10 <= thr.v_min <= 200, (stats, profile, tightness, thr)

    print("  ✓ s_min in [40,200] and v_min in [10,200] for every preset")


def test_unknown_preset_raises():
    stats = FrameStats(100, 100, 100)
    try:
        adapt_thresholds(stats, "dusk", "med")
    except ValueError:
        pass
    else:
        raise AssertionError("Unknown profile should raise ValueError")


# =============================================================================
# B. SEGMENTATION
# =============================================================================

def test_no_red_means_empty_mask_and_no_candidates():
    frame = np.zeros((200, 200, 3), dtype=np.uint8)
    frame[:] = (40, 40, 40)
    cv2.circle(frame, (100, 100), 40, (255, 0, 0), -1)  # Blue disk, wrong hue
    cv2.circle(frame, (100, 100), 26, (40, 40, 40), -1)

    mask = ring_mask(frame)

    assert mask.shape == (200, 200)
    assert int(mask.max()) == 0

    contour_set = find_ring_contours(mask)
    assert HierarchyRingStrategy().find(contour_set, mask) == []
    assert CircleFitStrategy().find(contour_set, mask) == []


def test_mask_covers_both_hue_bands():
    frame = np.zeros((100, 200, 3), dtype=np.uint8)
    frame[:] = BACKGROUND
    frame[30:70, 20:60] = (0, 0, 255)      # hue 0 (band 1)
    frame[30:70, 120:160] = (60, 0, 255)   # hue ~172 (band 2)

    mask = ring_mask(frame)

    assert mask[50, 40] == 255
    assert mask[50, 140] == 255
    assert mask[50, 100] == 0
    assert set(np.unique(mask)) <= {0, 255}


def test_opening_is_a_config_flag():
    hsv = np.zeros((100, 100, 3), dtype=np.uint8)
    hsv[50, 10:90] = (0, 255, 255)  # one-pixel red line
    thr = adapt_thresholds(FrameStats(140, 75, 135), "day", "med")

    closed_only = RedSegmenter(SegmentationConfig())
    buffers = FrameBuffers()
    buffers.ensure(100, 100)
    mask = closed_only.segment(hsv, thr, buffers)
    assert mask[50, 50] == 255

    with_opening = RedSegmenter(SegmentationConfig(open_enabled=True))
    buffers = FrameBuffers()
    buffers.ensure(100, 100)
    mask = with_opening.segment(hsv, thr, buffers)
    assert int(mask.max()) == 0


def test_buffers_resize_only_on_dimension_change():
    buffers = FrameBuffers()
    assert buffers.ensure(64, 48)
    assert not buffers.ensure(64, 48)
    assert buffers.ensure(32, 32)
    assert buffers.mask.shape == (32, 32)

    buffers.release()
    assert not buffers.allocated


# =============================================================================
# C. RING STRATEGIES
# =============================================================================

def test_hierarchy_strategy_bounds_the_ring():
    print("\n" + "=" * 60)
    print("TEST: Hierarchy ring test on a clean annulus")
    print("=" * 60)

    mask = ring_mask(make_ring_frame())
    candidates = HierarchyRingStrategy().find(find_ring_contours(mask), mask)

    assert len(candidates) >= 1
    x, y, w, h = candidates[0].rect
    print(f"  Best candidate rect: {candidates[0].rect}, score={candidates[0].score:.2f}")

    assert abs(x - 60) <= 4 and abs(y - 60) <= 4
    assert abs(w - 80) <= 6 and abs(h - 80) <= 6
    assert abs(candidates[0].center_x - 100) <= 2
    assert abs(candidates[0].center_y - 100) <= 2


def test_hierarchy_strategy_rejects_solid_disk():
    frame = np.zeros((200, 200, 3), dtype=np.uint8)
    frame[:] = BACKGROUND
    cv2.circle(frame, (100, 100), 40, RED, -1)

    mask = ring_mask(frame)
    assert HierarchyRingStrategy().find(find_ring_contours(mask), mask) == []


def drawn_ring_mask(outer, inner, size=200):
    """Binary mask with a filled circle of radius `outer` minus a hole of radius `inner`."""
    mask = np.zeros((size, size), dtype=np.uint8)
    cv2.circle(mask, (size // 2, size // 2), outer, 255, -1)
    cv2.circle(mask, (size // 2, size // 2), inner, 0, -1)
    return mask


def hierarchy_find(mask, config=RingConfig()):
    return HierarchyRingStrategy(config).find(find_ring_contours(mask), mask)


def test_hierarchy_rejects_thin_ring():
    # Hole fills ~95% of the outer area: above ringness 0.85
    mask = drawn_ring_mask(40, 38)
    assert hierarchy_find(mask) == []
    assert len(hierarchy_find(mask, RingConfig(ringness_max=0.99))) == 1


def test_hierarchy_rejects_tiny_hole():
    # Hole is ~14% of the outer area: below ringness 0.18
    mask = drawn_ring_mask(40, 14)
    assert hierarchy_find(mask) == []
    assert len(hierarchy_find(mask, RingConfig(ringness_min=0.05))) == 1


def test_hierarchy_rejects_wide_aspect():
    mask = np.zeros((200, 200), dtype=np.uint8)
    cv2.ellipse(mask, (100, 100), (60, 25), 0, 0, 360, 255, -1)
    cv2.ellipse(mask, (100, 100), (45, 15), 0, 0, 360, 0, -1)

    x, y, w, h = cv2.boundingRect(max(find_ring_contours(mask).contours, key=cv2.contourArea))
    assert w / h > 1.35
    assert hierarchy_find(mask) == []


def test_hierarchy_rejects_non_circular_hole():
    mask = np.zeros((200, 200), dtype=np.uint8)
    cv2.circle(mask, (100, 100), 40, 255, -1)
    mask[90:110, 70:130] = 0  # 60x20 slot, circularity ~0.6

    assert hierarchy_find(mask) == []
    assert len(hierarchy_find(mask, RingConfig(hole_circularity_min=0.5))) == 1


def test_hierarchy_rejects_small_area():
    mask = drawn_ring_mask(14, 8)
    assert max(cv2.contourArea(c) for c in find_ring_contours(mask).contours) < 700
    assert hierarchy_find(mask) == []


def test_circle_fit_rejects_small_radius():
    # The hole contour (r ~17, area > 700) is a valid hollow ring except for its size
    mask = drawn_ring_mask(30, 16)
    contour_set = find_ring_contours(mask)

    assert CircleFitStrategy().find(contour_set, mask) == []

    relaxed = CircleFitStrategy(RingConfig(min_radius=10)).find(contour_set, mask)
    assert len(relaxed) >= 1
    assert all(c.rect[2] < 36 for c in relaxed)


def test_circle_fit_skips_small_area():
    mask = drawn_ring_mask(14, 8)
    assert CircleFitStrategy(RingConfig(min_radius=5)).find(find_ring_contours(mask), mask) == []


def test_annulus_score_on_drawn_ring():
    mask = np.zeros((200, 200), dtype=np.uint8)
    cv2.circle(mask, (100, 100), 40, 255, -1)
    cv2.circle(mask, (100, 100), 26, 0, -1)

    ring_frac, center_frac = annulus_score(mask, 100, 100, 33)

    assert ring_frac >= 0.95
    assert center_frac == 0.0


def test_annulus_score_center_outside_frame_counts_as_red():
    mask = np.zeros((50, 50), dtype=np.uint8)
    ring_frac, center_frac = annulus_score(mask, -500, -500, 20)
    assert ring_frac == 0.0
    assert center_frac == 1.0


def test_rect_from_circle_is_clamped():
    assert rect_from_circle(100, 100, 40, 200, 200) == (60, 60, 80, 80)
    assert rect_from_circle(10, 190, 30, 200, 200) == (0, 160, 40, 39)


def test_circle_fit_fallback_without_hierarchy():
    print("\n" + "=" * 60)
    print("TEST: Circle-fit fallback with the hierarchy stubbed out")
    print("=" * 60)

    detector = RedRingDetector(get_ui_config=lambda: DAY_MED, contour_extractor=outer_contours_only)
    result = detector.process_frame(make_ring_frame())

    print(f"  Strategy: {result.strategy}, candidates: {[c.rect for c in result.candidates]}")
    assert result.strategy == "circle_fit"
    assert len(result.candidates) >= 1

    best = result.candidates[0]
    assert best.strategy == "circle_fit"
    assert abs(best.center_x - 100) <= 3
    assert abs(best.center_y - 100) <= 3
    # Accepted means ring_frac >= 0.58 and center_frac <= 0.22
    assert best.score >= 0.58 - 0.22


def test_circle_fit_rejects_solid_disk():
    frame = np.zeros((200, 200, 3), dtype=np.uint8)
    frame[:] = BACKGROUND
    cv2.circle(frame, (100, 100), 40, RED, -1)

    mask = ring_mask(frame)
    assert CircleFitStrategy().find(outer_contours_only(mask), mask) == []


class _FixedStrategy(RingStrategy):
    def __init__(self, name, candidates):
        super().__init__()
        self.name = name
        self.candidates = candidates
        self.calls = 0

    def find(self, contour_set, mask):
        self.calls += 1
        return list(self.candidates)


def test_chain_uses_first_non_empty_strategy_and_caps_output():
    empty = _FixedStrategy("empty", [])
    many = _FixedStrategy("many", [make_candidate(10 * i, 10, score=1.0 - 0.1 * i) for i in range(9)])
    never = _FixedStrategy("never", [make_candidate(0, 0)])

    chain = RingDetectorChain([empty, many, never], max_candidates=6)
    candidates, name = chain.detect(ContourSet(contours=[]), np.zeros((10, 10), np.uint8))

    assert name == "many"
    assert len(candidates) == 6
    assert candidates[0].score == 1.0
    assert empty.calls == 1 and never.calls == 0


def test_strategies_keep_top_six():
    frame = np.zeros((220, 400, 3), dtype=np.uint8)
    frame[:] = BACKGROUND
    for cx in (50, 150, 250, 350):
        for cy in (55, 165):
            cv2.circle(frame, (cx, cy), 30, RED, -1)
            cv2.circle(frame, (cx, cy), 19, BACKGROUND, -1)

    mask = ring_mask(frame)
    candidates = HierarchyRingStrategy().find(find_ring_contours(mask), mask)

    assert len(candidates) == 6
    scores = [c.score for c in candidates]
    assert scores == sorted(scores, reverse=True)


def test_hierarchy_result_suppresses_fallback():
    detector = RedRingDetector(get_ui_config=lambda: DAY_MED)
    result = detector.process_frame(make_ring_frame())
    assert result.strategy == "hierarchy"


# =============================================================================
# D. PERSISTENCE
# =============================================================================

def test_persistence_law():
    print("\n" + "=" * 60)
    print("TEST: Persistence (3 of last 6 frames within 40px)")
    print("=" * 60)

    pf = PersistenceFilter()
    probe = make_candidate(100, 100)
    counts = []
    confirmed_at = []

    for i in range(1, 8):
        present = i <= 3
        confirmed = pf.update([probe] if present else [])
        counts.append(pf.occurrences(probe))
        if confirmed:
            confirmed_at.append(i)
        print(f"  Frame {i}: present={present}, occurrences={counts[-1]}, confirmed={bool(confirmed)}")

    assert confirmed_at == [3]
    assert counts == [1, 2, 3, 3, 3, 3, 2]

    # Back at frame 8: window is frames 3..8, only 2 of them hold the sign
    assert pf.update([probe]) == []
    assert len(pf) == 6


def test_persistence_counts_per_frame_existence():
    pf = PersistenceFilter()
    pf.update([make_candidate(100, 100)])
    pf.update([make_candidate(100, 100)])

    left, right = make_candidate(80, 100), make_candidate(120, 100)
    confirmed = pf.update([left, right])

    assert confirmed == [left, right]


def test_persistence_distance_is_strict():
    pf = PersistenceFilter()
    pf.update([make_candidate(100, 100)])
    pf.update([make_candidate(100, 100)])

    assert pf.update([make_candidate(140, 100)]) == []
    assert pf.update([make_candidate(100, 139.9)]) != []


# =============================================================================
# E. PIPELINE + FRAME LOOP
# =============================================================================

def test_pipeline_is_idempotent():
    frame = make_ring_frame()
    detector = RedRingDetector(get_ui_config=lambda: DAY_MED)

    first = detector.process_frame(frame)
    mask_first = detector.debug_mask
    second = detector.process_frame(frame.copy())

    assert first.candidates == second.candidates
    assert first.thresholds == second.thresholds
    assert np.array_equal(mask_first, detector.debug_mask)


def test_end_to_end_four_frames():
    print("\n" + "=" * 60)
    print("TEST: End-to-end, ring held for 4 frames (day / med)")
    print("=" * 60)

    detector = RedRingDetector(get_ui_config=lambda: DAY_MED)
    frame = make_ring_frame()

    results = [detector.process_frame(frame.copy()) for _ in range(4)]
    for r in results:
        print(f"  Frame {r.frame_index}: {r.status_line()} | confirmed={[d.rect for d in r.detections]}")

    assert [len(r.detections) for r in results[:2]] == [0, 0]
    assert len(results[2].detections) == 1

    final = results[3].detections
    assert len(final) == 1
    x, y, w, h = final[0].rect
    assert abs(x - 60) <= 5 and abs(y - 60) <= 5
    assert abs(w - 80) <= 6 and abs(h - 80) <= 6
    assert final[0].label == "TRAFFIC SIGN"
    assert results[3].profile == "day"


def test_ui_config_is_read_every_frame():
    store = UIConfigStore(UIConfig(profile="day"))
    detector = RedRingDetector(get_ui_config=store)
    frame = make_ring_frame()

    assert detector.process_frame(frame).profile == "day"
    store.set(profile="night", tightness="ultra")
    result = detector.process_frame(frame)
    assert result.profile == "night"
    assert result.tightness == "ultra"


def test_zero_area_frame_raises():
    detector = RedRingDetector()
    try:
        detector.process_frame(np.zeros((0, 10, 3), dtype=np.uint8))
    except ValueError:
        pass
    else:
        raise AssertionError("Zero-area frame should raise ValueError")


def test_start_stop_lifecycle():
    print("\n" + "=" * 60)
    print("TEST: Threaded frame loop start/stop")
    print("=" * 60)

    statuses = []
    delivered = []
    source = ArrayFrameSource([make_ring_frame()], loop=True)
    detector = RedRingDetector(
        frame_source=source,
        get_ui_config=lambda: DAY_MED,
        on_status=statuses.append,
        on_result=lambda frame, result: delivered.append((frame.shape, result)),
        config=DetectorConfig(target_fps=200),
    )

    detector.start()
    detector.start()  # idempotent
    assert detector.is_running
    assert detector.buffers_allocated

    assert wait_until(lambda: detector.frames_processed >= 4)
    result = detector.last_result
    assert result is not None and len(result.detections) == 1

    # Each result arrives with the frame it was computed from
    shape, first = delivered[0]
    assert shape == make_ring_frame().shape
    assert first.frame_index == 1

    detector.stop()
    assert not detector.is_running
    assert not detector.buffers_allocated
    assert detector.debug_mask is None

    detector.stop()  # idempotent
    print(f"  Statuses: {statuses}")
    assert statuses.count("System Active: Detecting...") == 1
    assert statuses.count("Stopped.") == 1

    # Restart clears history and allocates again
    detector.start()
    assert detector.is_running
    assert detector.buffers_allocated
    assert wait_until(lambda: detector.frames_processed >= 1)
    assert detector.history_length <= 6
    detector.stop()
    assert statuses.count("Stopped.") == 2


class _FlakyExtractor:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self, mask):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("contour backend hiccup")
        return find_ring_contours(mask)


def test_processing_error_keeps_loop_running():
    statuses = []
    detector = RedRingDetector(
        frame_source=ArrayFrameSource([make_ring_frame()], loop=True),
        get_ui_config=lambda: DAY_MED,
        on_status=statuses.append,
        contour_extractor=_FlakyExtractor(failures=2),
        config=DetectorConfig(target_fps=200),
    )

    with detector:
        assert wait_until(lambda: detector.frames_processed >= 3)
        assert detector.is_running

    errors = [s for s in statuses if s.startswith("Processing error")]
    assert len(errors) == 2
    assert "contour backend hiccup" in errors[0]
    assert detector.history_length == min(detector.frames_processed, 6)


def test_failed_frames_stay_out_of_history():
    statuses = []
    results = []
    frames = [make_ring_frame() for _ in range(5)]
    detector = RedRingDetector(
        frame_source=ArrayFrameSource(frames),
        get_ui_config=lambda: DAY_MED,
        on_status=statuses.append,
        on_result=lambda frame, result: results.append(result),
        contour_extractor=_FlakyExtractor(failures=2),
        config=DetectorConfig(target_fps=200),
    )

    with detector:
        assert wait_until(lambda: detector.frames_processed >= 3)
        time.sleep(0.05)
        assert detector.frames_processed == 3
        assert detector.history_length == 3

    # Confirmed on the 3rd successful frame, not earlier
    assert [len(r.detections) for r in results] == [0, 0, 1]
    assert len([s for s in statuses if s.startswith("Processing error")]) == 2


class _SlowExtractor:
    def __init__(self, slow_call, delay):
        self.slow_call = slow_call
        self.delay = delay
        self.calls = 0

    def __call__(self, mask):
        self.calls += 1
        if self.calls == self.slow_call:
            time.sleep(self.delay)
        return find_ring_contours(mask)


def _alive_frame_loops():
    return sum(1 for t in threading.enumerate() if t.name == "RedRingDetector" and t.is_alive())


def test_restart_waits_for_busy_frame_loop():
    print("\n" + "=" * 60)
    print("TEST: Restart while the previous loop is mid-frame")
    print("=" * 60)

    extractor = _SlowExtractor(slow_call=2, delay=1.5)
    detector = RedRingDetector(
        frame_source=ArrayFrameSource([make_ring_frame()], loop=True),
        get_ui_config=lambda: DAY_MED,
        contour_extractor=extractor,
        config=DetectorConfig(target_fps=200),
    )
    before = _alive_frame_loops()

    detector.start()
    assert wait_until(lambda: extractor.calls >= 2)
    detector.stop()  # returns while the slow frame is still running
    detector.start()

    alive = _alive_frame_loops() - before
    print(f"  Frame loops alive after restart: {alive}")
    assert alive == 1

    assert wait_until(lambda: detector.frames_processed >= 2)
    detector.stop()
    assert wait_until(lambda: _alive_frame_loops() == before)


def test_duplicate_frames_are_not_counted_twice():
    source = ArrayFrameSource([make_ring_frame()])  # no loop: the number stops at 1
    detector = RedRingDetector(
        frame_source=source,
        get_ui_config=lambda: DAY_MED,
        config=DetectorConfig(target_fps=200),
    )

    with detector:
        assert wait_until(lambda: detector.frames_processed >= 1)
        time.sleep(0.1)
        assert detector.frames_processed == 1
        assert detector.history_length == 1


def test_missing_frames_report_waiting():
    statuses = []
    detector = RedRingDetector(
        frame_source=ArrayFrameSource([]),
        on_status=statuses.append,
        config=DetectorConfig(target_fps=200),
    )

    with detector:
        assert not detector.buffers_allocated
        assert wait_until(lambda: "Waiting for frames..." in statuses)
        time.sleep(0.05)
        assert detector.is_running

    assert statuses.count("Waiting for frames...") == 1
    assert detector.frames_processed == 0


def test_start_requires_frame_source():
    try:
        RedRingDetector().start()
    except ValueError:
        pass
    else:
        raise AssertionError("start() without a frame source should raise ValueError")


# =============================================================================
# CONFIG + RENDERING
# =============================================================================

def test_ui_config_validation_and_cycling():
    try:
        UIConfig(tightness="extreme")
    except ValueError:
        pass
    else:
        raise AssertionError("Unknown tightness should raise ValueError")

    store = UIConfigStore()
    assert store() == UIConfig("auto", "med")
    assert store.cycle_profile().profile == "day"
    assert store.cycle_profile().profile == "night"
    assert store.cycle_profile().profile == "auto"
    assert store.cycle_tightness().tightness == "tight"
    assert store.cycle_tightness().tightness == "ultra"
    assert store.cycle_tightness().tightness == "loose"


def test_ui_config_from_env():
    saved = {k: os.environ.get(k) for k in (ENV_PROFILE, ENV_TIGHTNESS)}
    try:
        os.environ[ENV_PROFILE] = "Night"
        os.environ[ENV_TIGHTNESS] = "bogus"
        ui = ui_config_from_env()
        assert ui == UIConfig(profile="night", tightness="med")
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


def test_renderer_draws_box_and_label():
    frame = np.zeros((200, 200, 3), dtype=np.uint8)
    det = ConfirmedDetection(rect=(60, 60, 80, 80), label="TRAFFIC SIGN", score=0.9, center=(100, 100))

    DetectionRenderer().render(frame, [det])

    assert tuple(frame[100, 60]) == (0, 255, 0)
    assert tuple(frame[100, 100]) == (0, 0, 0)
    assert frame[40:55, 60:140].any()


def test_concurrent_cycling_keeps_every_step():
    store = UIConfigStore()
    workers = [
        threading.Thread(target=lambda: [store.cycle_tightness() for _ in range(200)])
        for _ in range(4)
    ]
    for t in workers:
        t.start()
    for t in workers:
        t.join()

    # 800 steps through 4 levels lands back on the start value
    assert store().tightness == "med"


class _ForbiddenCapture:
    """Capture stand-in that must not be read while the detector delivers frames."""

    is_running = True

    @property
    def latest_frame(self):
        raise AssertionError("display read the capture instead of the detector's frame")


def test_demo_draws_result_on_its_own_frame():
    from main_demo import RingSignDemo

    frame = make_ring_frame()
    detector = RedRingDetector(get_ui_config=lambda: DAY_MED)
    for _ in range(3):
        result = detector.process_frame(frame)
    assert len(result.detections) == 1

    demo = RingSignDemo(ui_config=DAY_MED)
    demo.video = _ForbiddenCapture()
    demo._on_result(frame, result)

    output = demo._compose_output()
    x, y, w, h = result.detections[0].rect
    assert tuple(output[y + h // 2, x]) == (0, 255, 0)
    # The delivered frame itself is left untouched
    assert np.array_equal(frame, make_ring_frame())


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("RingSign Detector - Unit Tests")
    print("=" * 60)

    tests = [
        (name, fn) for name, fn in globals().items()
        if name.startswith("test_") and callable(fn)
    ]
    results = []

    for name, fn in tests:
        try:
            fn()
            results.append((name, True))
        except AssertionError as e:
            print(f"\n✗ {name} FAILED: {e}")
            results.append((name, False))
        except Exception as e:
            print(f"\n✗ {name} ERROR: {e}")
            import traceback
            traceback.print_exc()
            results.append((name, False))

    # Summary
    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)
    for name, passed in results:
        status = "✓ PASSED" if passed else "✗ FAILED"
        print(f"  {name}: {status}")

    all_passed = all(passed for _, passed in results)
    print("\n" + ("=" * 60))
    if all_passed:
        print("✓ ALL TESTS PASSED")
    else:
        print("✗ SOME TESTS FAILED")
    print("=" * 60 + "\n")

    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
