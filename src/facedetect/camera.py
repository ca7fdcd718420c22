"""
camera.py - Live webcam front end.
webcam → FramePipeline.on_frame every tick (~30 fps) → preview window
Run: python -m facedetect.camera
Keys:
  q     quit
  r     toggle recognition
  t     retrain from training_data/
  l     reload model from disk
"""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Callable

import cv2

from .annotate import draw_status
from .config import AppConfig, CameraConfig, load_config
from .context import FaceContext
from .errors import ConfigurationError
from .pipeline import FramePipeline

logger = logging.getLogger(__name__)


class TickScheduler:
    """
    Fixed-period pacing. `wait()` blocks until the next tick boundary.
    If work overran one or more ticks, it waits for the next boundary
    after now instead of firing the missed ones.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if interval <= 0:
            raise ConfigurationError(f"tick interval must be > 0, got {interval}")
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.overruns = 0
        self._next = clock() + interval

    def wait(self) -> None:
        now = self.clock()
        if now > self._next:
            missed = int((now - self._next) // self.interval) + 1
            self.overruns += missed
            self._next += missed * self.interval
        delay = self._next - now
        if delay > 0:
            self.sleep(delay)
        self._next += self.interval


def open_capture(cam: CameraConfig) -> cv2.VideoCapture:
    cap = cv2.VideoCapture(cam.index)
    if not cap.isOpened():
        raise ConfigurationError(f"Unable to open webcam {cam.index}. Try index 1 or 2.")
    cap.set(cv2.CAP_PROP_FRAME_WIDTH, cam.width)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, cam.height)
    return cap


def run_live(pipeline: FramePipeline, cam: CameraConfig, window: str = "Real-Time Face Detection") -> None:
    cap = open_capture(cam)
    ticker = TickScheduler(cam.tick_interval)

    print("Live detection running. q=quit, r=recognition on/off, t=train, l=reload model")

    fps = 0.0
    fps_frames = 0
    fps_t0 = time.time()

    try:
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                logger.warning("Failed to read frame; retrying next tick")
                ticker.wait()
                if (cv2.waitKey(1) & 0xFF) == ord("q"):
                    break
                continue

            out = pipeline.on_frame(frame)

            fps_frames += 1
            dt = time.time() - fps_t0
            if dt >= 1.0:
                fps = fps_frames / dt
                fps_frames = 0
                fps_t0 = time.time()

            model = "Model Ready" if pipeline.context.is_gallery_loaded() else "No Model"
            state = "on" if pipeline.recognition_enabled else "off"
            draw_status(out.image, [
                f"Frames: {pipeline.frame_count}  FPS: {fps:.1f}",
                f"Recognition: {state} ({model})",
            ])
            cv2.imshow(window, out.image)

            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            elif key == ord("r"):
                enabled = pipeline.set_recognition(not pipeline.recognition_enabled)
                print(f"Recognition → {'on' if enabled else 'off'}")
                if enabled:
                    print("Green <35 excellent | Yellow 35-65 good | Orange 65-100 maybe | Red 100+ unknown")
            elif key == ord("t"):
                print("Training...")
                result = pipeline.retrain()
                if result.ok:
                    print(f"Training completed: {result.report.summary()}")
                else:
                    print(f"Training failed: {result.reason}")
            elif key == ord("l"):
                loaded = pipeline.context.reload()
                print(f"Model reload → {'ok' if loaded else 'no model'}")

            ticker.wait()
    finally:
        cap.release()
        cv2.destroyAllWindows()
        if ticker.overruns:
            logger.info("Frame processing overran the tick %d times", ticker.overruns)


def main():
    parser = argparse.ArgumentParser(description="Live webcam face detection and recognition.")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--camera", type=int, default=None, help="camera index")
    parser.add_argument("--recognize", action="store_true", help="start with recognition on")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        cfg: AppConfig = load_config(args.config)
        if args.camera is not None:
            cfg.camera.index = args.camera
        ctx = FaceContext.from_config(cfg)
    except ConfigurationError as exc:
        print(f"Error initializing: {exc}")
        return

    pipeline = FramePipeline(ctx, cfg.bands, recognition_enabled=args.recognize)
    try:
        run_live(pipeline, cfg.camera)
    except ConfigurationError as exc:
        print(f"Camera error: {exc}")


if __name__ == "__main__":
    main()
