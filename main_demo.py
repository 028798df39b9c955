#!/usr/bin/env python3
"""
RingSign - Live Traffic-Sign Detection Demo

Opens a camera or video file, runs the red ring detector on its own thread
and shows confirmed detections plus the binary mask.

Usage:
    python main_demo.py
    python main_demo.py --source drive.mp4 --profile night --tightness tight

Controls:
    - P: Cycle profile (auto / day / night)
    - T: Cycle tightness (loose / med / tight / ultra)
    - M: Toggle mask window
    - SPACE: Stop / restart the detector
    - Q/ESC: Quit

The profile and tightness can also come from RINGSIGN_PROFILE and
RINGSIGN_TIGHTNESS (environment or .env file).
"""

import sys
import time
import logging
import argparse
import threading
from dataclasses import replace
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from ringsign.config import DetectorConfig, UIConfig, UIConfigStore, ui_config_from_env
from ringsign.detector import DetectionResult, RedRingDetector
from ringsign.overlay import DetectionRenderer, PerformanceOverlay
from ringsign.video_pipeline import ThreadedVideoCapture, VideoFileReader

VIDEO_EXTENSIONS = {
    ".mp4", ".mov", ".avi", ".mkv", ".m4v", ".wmv", ".webm", ".mpeg", ".mpg"
}


class RingSignDemo:
    """
    Interactive demo of the red ring traffic-sign detector.
    """

    WINDOW_NAME = "RingSign Detector"
    MASK_WINDOW_NAME = "RingSign Mask"

    def __init__(
            self,
            source: int | str = 0,
            resolution: tuple = None,
            ui_config: Optional[UIConfig] = None,
            config: DetectorConfig = DetectorConfig(),
            show_mask: bool = True,
            loop: bool = False
    ):
        """
        Initialize demo.

        Args:
            source: Camera index or video file path
            resolution: Target resolution (width, height)
            ui_config: Initial profile/tightness
            config: Detector configuration
            show_mask: Show the binary mask window
            loop: Loop video files
        """
        self.source = source
        self.resolution = resolution
        self.config = config
        self.show_mask = show_mask
        self.loop = loop

        self.ui_store = UIConfigStore(ui_config or UIConfig())
        self.renderer = DetectionRenderer()
        self.perf = PerformanceOverlay()

        self.video = None
        self.detector: Optional[RedRingDetector] = None

        # Latest detector output, written from the detector thread
        self._result_lock = threading.Lock()
        self._latest_frame: Optional[np.ndarray] = None
        self._latest_result: Optional[DetectionResult] = None
        self._status = ""

        self._running = False
        self.logger = logging.getLogger("RingSignDemo")

    def _on_result(self, frame: np.ndarray, result: DetectionResult):
        with self._result_lock:
            self._latest_frame = frame
            self._latest_result = result

    def _on_status(self, message: str):
        with self._result_lock:
            self._status = message

    def _open_video(self) -> bool:
        if isinstance(self.source, str) and "://" not in self.source:
            source_path = Path(self.source).expanduser()
            if source_path.is_file():
                self.video = VideoFileReader(
                    filepath=str(source_path),
                    loop=self.loop,
                    resolution=self.resolution
                )
            elif source_path.suffix.lower() in VIDEO_EXTENSIONS:
                self.logger.error(f"Video file not found: {source_path}")
                return False
            else:
                self.video = ThreadedVideoCapture(source=self.source, resolution=self.resolution)
        else:
            if self.loop:
                self.logger.warning("Loop option ignored for camera/stream source")
            self.video = ThreadedVideoCapture(source=self.source, resolution=self.resolution)

        if not self.video.start():
            self.logger.error("Failed to start video capture")
            return False
        return True

    def _toggle_detector(self):
        if self.detector.is_running:
            self.detector.stop()
            with self._result_lock:
                self._latest_frame = None
                self._latest_result = None
        else:
            self.detector.start()

    def _handle_key(self, key: int):
        if key == -1 or key == 255:
            return

        if key in (ord('q'), 27):
            self._running = False
        elif key in (ord('p'), ord('P')):
            ui = self.ui_store.cycle_profile()
            self.logger.info(f"Profile: {ui.profile}")
        elif key in (ord('t'), ord('T')):
            ui = self.ui_store.cycle_tightness()
            self.logger.info(f"Tightness: {ui.tightness}")
        elif key in (ord('m'), ord('M')):
            self.show_mask = not self.show_mask
            if not self.show_mask:
                cv2.destroyWindow(self.MASK_WINDOW_NAME)
        elif key == ord(' '):
            self._toggle_detector()

    def _compose_output(self) -> Optional[np.ndarray]:
        """
        Display image: the detector's last frame with its own detections.

        The capture is only read directly while the detector is stopped, so
        boxes are never drawn on a newer frame than they were computed on.
        """
        with self._result_lock:
            frame = self._latest_frame
            result = self._latest_result
            status = self._status

        if frame is None:
            if self.detector is not None and self.detector.is_running:
                return None
            frame = self.video.latest_frame
            result = None
            if frame is None:
                return None

        output = frame.copy()
        if result is not None:
            output = self.renderer.render(output, result.detections)

        self.perf.update()
        return self.renderer.render_hud(
            output,
            fps=self.perf.fps,
            result=result,
            ui=self.ui_store(),
            status=status
        )

    def run(self):
        """Run the demo."""
        self.logger.info("Starting RingSign Demo...")

        if not self._open_video():
            return

        # Wait for first frame
        while self.video.latest_frame is None:
            if not self.video.is_running:
                self.logger.error("No frames received from video source")
                self.video.stop()
                return
            time.sleep(0.01)

        self.detector = RedRingDetector(
            frame_source=self.video,
            get_ui_config=self.ui_store,
            on_status=self._on_status,
            on_result=self._on_result,
            config=self.config,
        )
        self.detector.start()

        cv2.namedWindow(self.WINDOW_NAME)
        self._running = True

        try:
            while self._running:
                output = self._compose_output()
                if output is None:
                    if not self.video.is_running:
                        break
                    self._handle_key(cv2.waitKey(5) & 0xFF)
                    continue

                cv2.imshow(self.WINDOW_NAME, output)

                if self.show_mask:
                    mask = self.detector.debug_mask
                    if mask is not None:
                        cv2.imshow(self.MASK_WINDOW_NAME, self.renderer.render_mask(mask))

                self._handle_key(cv2.waitKey(1) & 0xFF)

                if not self.video.is_running:
                    self.logger.info("End of video")
                    break

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.detector.stop()
            self.video.stop()
            cv2.destroyAllWindows()
            self.logger.info("Demo stopped.")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="RingSign red ring traffic-sign detector demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls:
  P            Cycle profile (auto / day / night)
  T            Cycle tightness (loose / med / tight / ultra)
  M            Toggle mask window
  SPACE        Stop / restart the detector
  Q/ESC        Quit

Examples:
  python main_demo.py                          # Default webcam (0)
  python main_demo.py --source 1               # Webcam index 1
  python main_demo.py --source drive.mp4 --loop
  python main_demo.py --profile night --tightness loose
  python main_demo.py --open                   # Break thin pole attachments
        """
    )

    parser.add_argument(
        "--source", "-s",
        default=0,
        help="Video source: camera index (0, 1, ...), file path or stream URL"
    )
    parser.add_argument(
        "--resolution", "-r",
        type=str,
        default=None,
        help="Resolution as WxH (e.g., 1280x720)"
    )
    parser.add_argument(
        "--profile",
        choices=["auto", "day", "night"],
        default=None,
        help="Lighting profile (default: RINGSIGN_PROFILE or auto)"
    )
    parser.add_argument(
        "--tightness",
        choices=["loose", "med", "tight", "ultra"],
        default=None,
        help="Color gate strictness (default: RINGSIGN_TIGHTNESS or med)"
    )
    parser.add_argument(
        "--open",
        action="store_true",
        help="Enable the light morphological opening (hurts small signs)"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop video files when they reach the end"
    )
    parser.add_argument(
        "--no-mask",
        action="store_true",
        help="Do not show the binary mask window"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    source_arg = args.source
    if isinstance(source_arg, str) and source_arg.lower() == "camera":
        source = 0
    else:
        try:
            source = int(source_arg)
        except ValueError:
            source = source_arg

    resolution = None
    if args.resolution:
        try:
            w, h = args.resolution.lower().split('x')
            resolution = (int(w), int(h))
        except ValueError:
            print(f"Invalid resolution format: {args.resolution}")
            sys.exit(1)

    ui = ui_config_from_env()
    ui = replace(
        ui,
        profile=args.profile or ui.profile,
        tightness=args.tightness or ui.tightness
    )

    config = DetectorConfig()
    if args.open:
        config = replace(config, segmentation=replace(config.segmentation, open_enabled=True))

    print("\n" + "=" * 60)
    print("  RingSign - Red Ring Traffic-Sign Detector")
    print("=" * 60)
    print(f"  Source: {source}")
    print(f"  Profile: {ui.profile}")
    print(f"  Tightness: {ui.tightness}")
    print(f"  Opening: {'Enabled' if args.open else 'Disabled'}")
    print("=" * 60)
    print("\n  P profile | T tightness | M mask | SPACE stop/start | Q quit\n")

    demo = RingSignDemo(
        source=source,
        resolution=resolution,
        ui_config=ui,
        config=config,
        show_mask=not args.no_mask,
        loop=args.loop
    )
    demo.run()


if __name__ == "__main__":
    main()
