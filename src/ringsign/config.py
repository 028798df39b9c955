"""
RingSign Configuration - Presets, Anchors and Tunable Thresholds

Every constant the detector relies on lives here as an immutable dataclass:
- HSV presets per (profile, tightness)
- Statistical anchors per profile (reference for adaptive thresholds)
- Ring geometry thresholds for both detection strategies
- Temporal persistence window

Defaults match the tuned values; pass your own instances to RedRingDetector
to override them for testing or tuning.
"""

import os
import logging
import threading
from pathlib import Path
from typing import Dict, Optional, Tuple
from dataclasses import dataclass, field, replace


logger = logging.getLogger(__name__)

PROFILES = ("day", "night")
UI_PROFILES = ("auto",) + PROFILES
TIGHTNESS_LEVELS = ("loose", "med", "tight", "ultra")

ENV_PROFILE = "RINGSIGN_PROFILE"
ENV_TIGHTNESS = "RINGSIGN_TIGHTNESS"


def _load_env():
    """Load environment variables from .env files."""
    from dotenv import load_dotenv

    possible_paths = [
        Path(__file__).resolve().parents[2] / ".env",  # src/ringsign/../../.env
        Path.cwd() / ".env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return str(env_path)

    load_dotenv()
    return "default"

_env_loaded = _load_env()


# =============================================================================
# HSV PRESETS & ANCHORS
# =============================================================================

@dataclass(frozen=True)
class HSVPreset:
    """Base HSV gate before adaptive adjustment (OpenCV hue range 0..180)."""
    s_min: int
    v_min: int
    h1: Tuple[int, int]  # low hues, red near 0
    h2: Tuple[int, int]  # high hues, red near 180


@dataclass(frozen=True)
class StatsAnchor:
    """Reference frame statistics for a lighting profile."""
    luma_mean: float
    s_mean: float
    v_mean: float


DEFAULT_PRESETS: Dict[str, Dict[str, HSVPreset]] = {
    "day": {
        "loose": HSVPreset(s_min=90, v_min=40, h1=(0, 18), h2=(162, 180)),
        "med": HSVPreset(s_min=110, v_min=55, h1=(0, 16), h2=(164, 180)),
        "tight": HSVPreset(s_min=130, v_min=70, h1=(0, 15), h2=(165, 180)),
        "ultra": HSVPreset(s_min=150, v_min=85, h1=(0, 13), h2=(167, 180)),
    },
    "night": {
        "loose": HSVPreset(s_min=70, v_min=25, h1=(0, 20), h2=(160, 180)),
        "med": HSVPreset(s_min=95, v_min=40, h1=(0, 18), h2=(162, 180)),
        "tight": HSVPreset(s_min=120, v_min=55, h1=(0, 16), h2=(164, 180)),
        "ultra": HSVPreset(s_min=140, v_min=70, h1=(0, 14), h2=(166, 180)),
    },
}

DEFAULT_ANCHORS: Dict[str, StatsAnchor] = {
    "day": StatsAnchor(luma_mean=140, s_mean=75, v_mean=135),
    "night": StatsAnchor(luma_mean=80, s_mean=95, v_mean=120),
}


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================

@dataclass(frozen=True)
class AdaptiveConfig:
    """Profile selection and adaptive threshold parameters."""
    presets: Dict[str, Dict[str, HSVPreset]] = field(default_factory=lambda: DEFAULT_PRESETS)
    anchors: Dict[str, StatsAnchor] = field(default_factory=lambda: DEFAULT_ANCHORS)
    night_luma_cutoff: float = 105.0
    delta_scale: float = 80.0
    s_min_range: Tuple[int, int] = (40, 200)
    v_min_range: Tuple[int, int] = (10, 200)
    sample_step: int = 8


@dataclass(frozen=True)
class SegmentationConfig:
    """Blur and morphology applied around the red HSV gate."""
    blur_ksize: int = 7
    close_ksize: int = 5
    # Light opening breaks thin pole attachments but can erase small signs
    open_enabled: bool = False
    open_ksize: int = 3


@dataclass(frozen=True)
class RingConfig:
    """Ring scoring thresholds for the hierarchy test and the circle-fit fallback."""
    min_outer_area: float = 700.0
    # Hierarchy ring (outer contour + hole)
    outer_circularity_min: float = 0.55  # loose: outer may attach to a pole
    outer_circularity_max: float = 1.30
    hole_circularity_min: float = 0.70   # strict: hole is usually clean
    ringness_min: float = 0.18           # holeArea / outerArea
    ringness_max: float = 0.85
    aspect_min: float = 0.65
    aspect_max: float = 1.35
    # Circle-fit fallback
    min_radius: float = 18.0
    annulus_thickness_frac: float = 0.14
    annulus_red_min: float = 0.58
    center_red_max: float = 0.22
    annulus_angles: int = 48
    annulus_radial_steps: int = 3
    center_disk_frac: float = 0.45


@dataclass(frozen=True)
class PersistenceConfig:
    """Temporal confirmation window."""
    max_history: int = 6
    min_occurrence: int = 3
    distance_threshold: float = 40.0


@dataclass(frozen=True)
class DetectorConfig:
    """Complete configuration for the ring-sign detector."""
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    ring: RingConfig = field(default_factory=RingConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    max_candidates: int = 6
    label: str = "TRAFFIC SIGN"
    target_fps: float = 60.0


# =============================================================================
# UI CONFIG (hot-reloadable)
# =============================================================================

@dataclass(frozen=True)
class UIConfig:
    """Operator selection, re-read by the detector on every frame."""
    profile: str = "auto"
    tightness: str = "med"

    def __post_init__(self):
        if self.profile not in UI_PROFILES:
            raise ValueError(
                f"Unknown profile '{self.profile}' (expected one of {', '.join(UI_PROFILES)})"
            )
        if self.tightness not in TIGHTNESS_LEVELS:
            raise ValueError(
                f"Unknown tightness '{self.tightness}' "
                f"(expected one of {', '.join(TIGHTNESS_LEVELS)})"
            )


class UIConfigStore:
    """
    Thread-safe holder for the current UIConfig.

    The store is itself the config accessor: call it to get the current value.
    The demo mutates it from the keyboard while the detector thread reads it.

    Usage:
        store = UIConfigStore(UIConfig(profile="day"))
        detector = RedRingDetector(source, get_ui_config=store)
        store.cycle_tightness()
    """

    def __init__(self, initial: Optional[UIConfig] = None):
        self._config = initial or UIConfig()
        self._lock = threading.Lock()

    def __call__(self) -> UIConfig:
        with self._lock:
            return self._config

    def set(self, profile: Optional[str] = None, tightness: Optional[str] = None) -> UIConfig:
        with self._lock:
            changes = {}
            if profile is not None:
                changes["profile"] = profile
            if tightness is not None:
                changes["tightness"] = tightness
            self._config = replace(self._config, **changes)
            return self._config

    def _cycle(self, name: str, choices: Tuple[str, ...]) -> UIConfig:
        with self._lock:
            current = getattr(self._config, name)
            nxt = choices[(choices.index(current) + 1) % len(choices)]
            self._config = replace(self._config, **{name: nxt})
            return self._config

    def cycle_profile(self) -> UIConfig:
        return self._cycle("profile", UI_PROFILES)

    def cycle_tightness(self) -> UIConfig:
        return self._cycle("tightness", TIGHTNESS_LEVELS)


def ui_config_from_env() -> UIConfig:
    """Build a UIConfig from RINGSIGN_PROFILE / RINGSIGN_TIGHTNESS."""
    profile = os.environ.get(ENV_PROFILE, "auto").strip().lower()
    tightness = os.environ.get(ENV_TIGHTNESS, "med").strip().lower()

    if profile not in UI_PROFILES:
        logger.warning(f"Ignoring {ENV_PROFILE}={profile!r}, using 'auto'")
        profile = "auto"
    if tightness not in TIGHTNESS_LEVELS:
        logger.warning(f"Ignoring {ENV_TIGHTNESS}={tightness!r}, using 'med'")
        tightness = "med"

    return UIConfig(profile=profile, tightness=tightness)
