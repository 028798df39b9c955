"""
RingSign - Real-Time Red Ring Traffic-Sign Detector

Classical color/shape detection of circular red-rimmed traffic signs
(no learned model), built for a live camera feed.

Features:
- Adaptive HSV thresholds (auto day/night + loose/med/tight/ultra presets)
- Two-band red segmentation with morphological closing
- Ring detection by contour hierarchy, with a circle-fit + annulus fallback
- Temporal persistence filter against one-frame false positives

Quick Start:
    from ringsign import RedRingDetector, ThreadedVideoCapture, DetectionRenderer

    video = ThreadedVideoCapture(source=0)
    video.start()

    renderer = DetectionRenderer()

    def on_result(frame, result):
        # Called on the detector thread with the frame the result belongs to
        display(renderer.render(frame.copy(), result.detections))

    detector = RedRingDetector(frame_source=video, on_status=print, on_result=on_result)
    detector.start()
    ...
    detector.stop()
    video.stop()
"""

__version__ = "1.0.0"

# Configuration
from .config import (
    HSVPreset,
    StatsAnchor,
    AdaptiveConfig,
    SegmentationConfig,
    RingConfig,
    PersistenceConfig,
    DetectorConfig,
    UIConfig,
    UIConfigStore,
    ui_config_from_env,
    DEFAULT_PRESETS,
    DEFAULT_ANCHORS,
)

# Pipeline stages
from .adaptive_hsv import (
    FrameStats,
    ThresholdSet,
    compute_frame_stats,
    select_profile,
    adapt_thresholds,
)
from .segmentation import (
    FrameBuffers,
    RedSegmenter,
    ContourSet,
    find_ring_contours,
)
from .ring_detection import (
    Candidate,
    RingStrategy,
    HierarchyRingStrategy,
    CircleFitStrategy,
    RingDetectorChain,
    annulus_score,
)
from .persistence import PersistenceFilter

# Detector
from .detector import (
    RedRingDetector,
    DetectionResult,
    ConfirmedDetection,
)

# Video + rendering
from .video_pipeline import (
    ThreadedVideoCapture,
    VideoFileReader,
    ArrayFrameSource,
    FrameSource,
    CaptureStats,
)
from .overlay import (
    DetectionRenderer,
    ColorScheme,
    PerformanceOverlay,
)

__all__ = [
    # Version
    "__version__",

    # Configuration
    "HSVPreset",
    "StatsAnchor",
    "AdaptiveConfig",
    "SegmentationConfig",
    "RingConfig",
    "PersistenceConfig",
    "DetectorConfig",
    "UIConfig",
    "UIConfigStore",
    "ui_config_from_env",
    "DEFAULT_PRESETS",
    "DEFAULT_ANCHORS",

    # Pipeline stages
    "FrameStats",
    "ThresholdSet",
    "compute_frame_stats",
    "select_profile",
    "adapt_thresholds",
    "FrameBuffers",
    "RedSegmenter",
    "ContourSet",
    "find_ring_contours",
    "Candidate",
    "RingStrategy",
    "HierarchyRingStrategy",
    "CircleFitStrategy",
    "RingDetectorChain",
    "annulus_score",
    "PersistenceFilter",

    # Detector
    "RedRingDetector",
    "DetectionResult",
    "ConfirmedDetection",

    # Video + rendering
    "ThreadedVideoCapture",
    "VideoFileReader",
    "ArrayFrameSource",
    "FrameSource",
    "CaptureStats",
    "DetectionRenderer",
    "ColorScheme",
    "PerformanceOverlay",
]
