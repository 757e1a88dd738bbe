from __future__ import annotations

from typing import Optional, Tuple
import math

from .schemas import BodyPart, FallVerdict, Keypoint, PoseSnapshot

DEFAULT_MIN_CONFIDENCE = 0.2
DEFAULT_LOW_ANGLE_DEG = 80.0
DEFAULT_HIGH_ANGLE_DEG = 110.0


class FallClassifier:
    """
    Torso-angle heuristic.

    The torso vector runs from the shoulder midpoint to the hip midpoint in
    image coordinates (y grows downward). Standing upright puts it near +/-90
    degrees; lying down puts it near 0 or +/-180. Anything outside the
    [low, high] band is reported as a fall.

    This is a geometric proxy, not a trained model. Known false positives:
    bending over, lying down on purpose, a camera mounted with a roll.
    When the shoulder and hip midpoints coincide the angle is 0 and the frame
    is reported as a fall.
    """

    def __init__(
        self,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        low_angle_deg: float = DEFAULT_LOW_ANGLE_DEG,
        high_angle_deg: float = DEFAULT_HIGH_ANGLE_DEG,
    ) -> None:
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be within [0, 1], got {min_confidence}")
        if not 0.0 <= low_angle_deg <= high_angle_deg <= 180.0:
            raise ValueError(
                f"angle thresholds must satisfy 0 <= low <= high <= 180, got {low_angle_deg}/{high_angle_deg}"
            )
        self.min_confidence = min_confidence
        self.low_angle_deg = low_angle_deg
        self.high_angle_deg = high_angle_deg

    @classmethod
    def from_settings(cls, settings) -> "FallClassifier":
        return cls(
            min_confidence=settings.min_confidence,
            low_angle_deg=settings.fall_angle_low_deg,
            high_angle_deg=settings.fall_angle_high_deg,
        )

    def _get_point(self, snapshot: PoseSnapshot, part: BodyPart) -> Optional[Keypoint]:
        kp = snapshot.get(part)
        if kp is None or kp.confidence < self.min_confidence:
            return None
        return kp

    def _center(self, a: Keypoint, b: Keypoint) -> Tuple[float, float]:
        return ((a.x + b.x) / 2.0, (a.y + b.y) / 2.0)

    def torso_angle_deg(self, snapshot: PoseSnapshot) -> float | None:
        left_shoulder = self._get_point(snapshot, BodyPart.LEFT_SHOULDER)
        right_shoulder = self._get_point(snapshot, BodyPart.RIGHT_SHOULDER)
        left_hip = self._get_point(snapshot, BodyPart.LEFT_HIP)
        right_hip = self._get_point(snapshot, BodyPart.RIGHT_HIP)
        if not (left_shoulder and right_shoulder and left_hip and right_hip):
            return None
        sx, sy = self._center(left_shoulder, right_shoulder)
        hx, hy = self._center(left_hip, right_hip)
        angle = math.degrees(math.atan2(hy - sy, hx - sx))
        # atan2 can return -180; fold it into (-180, 180]
        return 180.0 if angle == -180.0 else angle

    def is_horizontal(self, angle_deg: float) -> bool:
        magnitude = abs(angle_deg)
        return magnitude < self.low_angle_deg or magnitude > self.high_angle_deg

    def classify(self, snapshot: PoseSnapshot) -> FallVerdict:
        angle = self.torso_angle_deg(snapshot)
        if angle is None:
            return FallVerdict(is_fall=False, angle_degrees=None)
        return FallVerdict(is_fall=self.is_horizontal(angle), angle_degrees=angle)
