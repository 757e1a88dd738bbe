from __future__ import annotations

from typing import List, Tuple
import cv2

from .schemas import BodyPart, FallVerdict, PoseSnapshot

SKELETON_PAIRS: List[Tuple[BodyPart, BodyPart]] = [
    (BodyPart.LEFT_SHOULDER, BodyPart.RIGHT_SHOULDER),
    (BodyPart.LEFT_HIP, BodyPart.RIGHT_HIP),
    (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_HIP),
    (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_HIP),
    (BodyPart.LEFT_SHOULDER, BodyPart.LEFT_ELBOW),
    (BodyPart.LEFT_ELBOW, BodyPart.LEFT_WRIST),
    (BodyPart.RIGHT_SHOULDER, BodyPart.RIGHT_ELBOW),
    (BodyPart.RIGHT_ELBOW, BodyPart.RIGHT_WRIST),
    (BodyPart.LEFT_HIP, BodyPart.LEFT_KNEE),
    (BodyPart.LEFT_KNEE, BodyPart.LEFT_ANKLE),
    (BodyPart.RIGHT_HIP, BodyPart.RIGHT_KNEE),
    (BodyPart.RIGHT_KNEE, BodyPart.RIGHT_ANKLE),
]

# BGR
AQUA = (255, 255, 0)
RED = (0, 0, 255)


def draw_pose(frame_bgr, snapshot: PoseSnapshot, verdict: FallVerdict, min_confidence: float = 0.2) -> None:
    """Draw keypoints and skeleton in place; keypoints turn red on a fall."""
    h, w = frame_bgr.shape[:2]
    thickness = max(2, int(round(0.004 * max(h, w))))
    radius = max(2, int(round(0.006 * max(h, w))))
    kp_color = RED if verdict.is_fall else AQUA

    visible = {kp.name: kp for kp in snapshot.keypoints if kp.confidence >= min_confidence}
    for a, b in SKELETON_PAIRS:
        if a in visible and b in visible:
            cv2.line(
                frame_bgr,
                (int(round(visible[a].x)), int(round(visible[a].y))),
                (int(round(visible[b].x)), int(round(visible[b].y))),
                RED,
                thickness,
                lineType=cv2.LINE_AA,
            )
    for kp in visible.values():
        cv2.circle(frame_bgr, (int(round(kp.x)), int(round(kp.y))), radius, kp_color, -1, lineType=cv2.LINE_AA)

    if verdict.is_fall:
        cv2.putText(
            frame_bgr,
            "Fall Detected! Calling caregiver...",
            (10, 30),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.8,
            RED,
            2,
            lineType=cv2.LINE_AA,
        )
