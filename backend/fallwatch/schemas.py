from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class BodyPart(str, Enum):
    NOSE = "nose"
    LEFT_SHOULDER = "leftShoulder"
    RIGHT_SHOULDER = "rightShoulder"
    LEFT_HIP = "leftHip"
    RIGHT_HIP = "rightHip"
    LEFT_ELBOW = "leftElbow"
    LEFT_WRIST = "leftWrist"
    RIGHT_ELBOW = "rightElbow"
    RIGHT_WRIST = "rightWrist"
    LEFT_KNEE = "leftKnee"
    LEFT_ANKLE = "leftAnkle"
    RIGHT_KNEE = "rightKnee"
    RIGHT_ANKLE = "rightAnkle"
    LEFT_EYE = "leftEye"
    RIGHT_EYE = "rightEye"
    LEFT_EAR = "leftEar"
    RIGHT_EAR = "rightEar"
    LEFT_EYE_INNER = "leftEyeInner"
    LEFT_EYE_OUTER = "leftEyeOuter"
    RIGHT_EYE_INNER = "rightEyeInner"
    RIGHT_EYE_OUTER = "rightEyeOuter"
    LEFT_CHEEK = "leftCheek"
    RIGHT_CHEEK = "rightCheek"
    MOUTH_LEFT = "mouthLeft"
    MOUTH_RIGHT = "mouthRight"


class Keypoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: BodyPart
    x: float
    y: float
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class PoseSnapshot(BaseModel):
    """Keypoints of one subject in one frame."""

    model_config = ConfigDict(frozen=True)

    keypoints: Tuple[Keypoint, ...] = ()
    score: float = Field(0.0, ge=0.0, le=1.0)
    bbox: Optional[Tuple[float, float, float, float]] = None  # [x1, y1, x2, y2]

    @classmethod
    def empty(cls) -> "PoseSnapshot":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.keypoints

    def get(self, part: BodyPart) -> Optional[Keypoint]:
        for kp in self.keypoints:
            if kp.name == part:
                return kp
        return None

    def mean_confidence(self) -> float:
        if not self.keypoints:
            return 0.0
        return sum(kp.confidence for kp in self.keypoints) / len(self.keypoints)


class FallVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_fall: bool
    angle_degrees: Optional[float] = None

    @property
    def insufficient_evidence(self) -> bool:
        return self.angle_degrees is None


class PoseClassifyRequest(BaseModel):
    poses: List[Any] = Field(default_factory=list)
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class FrameAnalyzeRequest(BaseModel):
    image_base64: str  # data URL or raw base64
    preferred_device: Optional[str] = None  # "mps" | "cuda" | "cpu"


class PoseAnalyzeResponse(BaseModel):
    verdict: FallVerdict
    snapshot: PoseSnapshot


class CallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to_phone_number: Optional[str] = Field(None, alias="toPhoneNumber")
    severity: Optional[str] = None


class CallResponse(BaseModel):
    status: str  # "initiated" | "suppressed"
    call_sid: Optional[str] = None
    detail: str = ""
