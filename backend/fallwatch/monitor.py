"""
Webcam fall monitor.

Reads frames from a camera or video file, runs pose estimation and the torso
angle check, and asks the call service to phone the caregiver when a fall is
seen. Ctrl+C (or `q` in the preview window) stops monitoring.

    fallwatch-monitor --phone +15551234567 --camera 0 --show
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Union

from .config import get_settings
from .debounce import AlertDebouncer
from .dispatch import HttpCallDispatcher
from .errors import FrameAcquisitionError
from .fall import FallClassifier
from .loop import DetectionLoop, frame_pacer
from .schemas import FallVerdict, PoseSnapshot

logger = logging.getLogger(__name__)

WINDOW_NAME = "Fall Detection System"


class PreviewWindow:
    """OpenCV preview with the skeleton overlay."""

    def __init__(self, min_confidence: float) -> None:
        self.min_confidence = min_confidence
        self.quit_requested = asyncio.Event()

    def __call__(self, frame, snapshot: PoseSnapshot, verdict: FallVerdict) -> None:
        import cv2

        from .draw import draw_pose

        draw_pose(frame, snapshot, verdict, self.min_confidence)
        cv2.imshow(WINDOW_NAME, frame)
        if cv2.waitKey(1) & 0xFF == ord("q"):
            self.quit_requested.set()

    def close(self) -> None:
        import cv2

        cv2.destroyWindow(WINDOW_NAME)


def _camera_source(value: str) -> Union[int, str]:
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="fallwatch-monitor", description="Watch a camera for falls and call a caregiver.")
    parser.add_argument("--camera", type=_camera_source, default=0, help="camera index, file path or stream URL")
    parser.add_argument("--phone", default=settings.caregiver_phone_number, help="caregiver phone number to call")
    parser.add_argument("--endpoint", default=settings.call_endpoint_url, help="URL of POST /api/call-caregiver")
    parser.add_argument("--device", default=settings.preferred_device, choices=["cpu", "cuda", "mps"])
    parser.add_argument("--cooldown-ms", type=int, default=settings.call_cooldown_ms)
    parser.add_argument("--min-confidence", type=float, default=settings.min_confidence)
    parser.add_argument("--low-angle", type=float, default=settings.fall_angle_low_deg)
    parser.add_argument("--high-angle", type=float, default=settings.fall_angle_high_deg)
    parser.add_argument("--fps", type=float, default=30.0, help="upper bound on cycles per second")
    parser.add_argument("--show", action="store_true", help="show a preview window with the skeleton overlay")
    return parser


async def monitor(args: argparse.Namespace) -> int:
    from .pose import PoseEstimator
    from .video import CameraFrameSource

    settings = get_settings()
    estimator = PoseEstimator(preferred_device=args.device)
    camera = CameraFrameSource(args.camera)
    dispatcher = HttpCallDispatcher(args.endpoint, timeout=settings.call_timeout_s)
    preview = PreviewWindow(args.min_confidence) if args.show else None

    loop = DetectionLoop(
        read_frame=camera.read,
        infer_poses=estimator.estimate_bgr,
        classifier=FallClassifier(args.min_confidence, args.low_angle, args.high_angle),
        debouncer=AlertDebouncer(args.cooldown_ms),
        dispatcher=dispatcher,
        recipient=args.phone or None,
        render=preview,
        wait_next=frame_pacer(1.0 / max(args.fps, 1.0)),
    )
    if not loop.recipient:
        logger.warning("No caregiver phone number set; falls will be shown but nobody will be called")

    stop_requested = asyncio.Event()
    event_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError) as e:
            logger.debug("Signal registration skipped: %s", e)

    task = loop.start()
    waiters = [asyncio.ensure_future(stop_requested.wait()), task]
    if preview is not None:
        waiters.append(asyncio.ensure_future(preview.quit_requested.wait()))
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        await loop.stop()
    finally:
        for waiter in waiters:
            if waiter is not task:
                waiter.cancel()
        camera.release()
        await dispatcher.aclose()
        if preview is not None:
            preview.close()

    if loop.last_error is not None:
        logger.error("Monitoring stopped: %s", loop.last_error)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format='%(asctime)s %(levelname)s [%(name)s] %(message)s')
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(monitor(args))
    except FrameAcquisitionError as e:
        logger.error("Could not start monitoring: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
