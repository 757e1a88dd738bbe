from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import MalformedFrame
from .schemas import BodyPart, Keypoint, PoseSnapshot

logger = logging.getLogger(__name__)

# Index order used by COCO-17 models (Keypoint R-CNN, MoveNet, YOLO pose)
COCO_KEYPOINT_PARTS: List[BodyPart] = [
    BodyPart.NOSE,
    BodyPart.LEFT_EYE,
    BodyPart.RIGHT_EYE,
    BodyPart.LEFT_EAR,
    BodyPart.RIGHT_EAR,
    BodyPart.LEFT_SHOULDER,
    BodyPart.RIGHT_SHOULDER,
    BodyPart.LEFT_ELBOW,
    BodyPart.RIGHT_ELBOW,
    BodyPart.LEFT_WRIST,
    BodyPart.RIGHT_WRIST,
    BodyPart.LEFT_HIP,
    BodyPart.RIGHT_HIP,
    BodyPart.LEFT_KNEE,
    BodyPart.RIGHT_KNEE,
    BodyPart.LEFT_ANKLE,
    BodyPart.RIGHT_ANKLE,
]

# "left_shoulder", "leftShoulder" and "LEFT_SHOULDER" all fold to "leftshoulder"
_PARTS_BY_FOLDED_NAME: Dict[str, BodyPart] = {part.value.lower(): part for part in BodyPart}

_NAME_KEYS = ("part", "name")
_SCORE_KEYS = ("score", "confidence", "visibility")


def resolve_part(name: Any) -> Optional[BodyPart]:
    if isinstance(name, BodyPart):
        return name
    if not isinstance(name, str):
        return None
    return _PARTS_BY_FOLDED_NAME.get(name.replace("_", "").replace("-", "").lower())


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool):
        raise MalformedFrame(f"{what} is not a number: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedFrame(f"{what} is not a number: {value!r}") from e
    if math.isnan(number) or math.isinf(number):
        raise MalformedFrame(f"{what} is not finite: {value!r}")
    return number


def _confidence(value: Any) -> float:
    if value is None:
        return 0.0
    return max(0.0, min(1.0, _number(value, "confidence")))


def _first_present(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def _position(record: Mapping[str, Any]) -> tuple[float, float]:
    position = record.get("position")
    if position is None:
        if "x" not in record or "y" not in record:
            raise MalformedFrame(f"keypoint has no position: {record!r}")
        return _number(record["x"], "x"), _number(record["y"], "y")
    if isinstance(position, Mapping):
        return _number(position.get("x"), "x"), _number(position.get("y"), "y")
    if isinstance(position, Sequence) and not isinstance(position, str) and len(position) >= 2:
        return _number(position[0], "x"), _number(position[1], "y")
    raise MalformedFrame(f"unsupported position: {position!r}")


def _parse_keypoint(raw: Any, index: int) -> Optional[Keypoint]:
    if isinstance(raw, Keypoint):
        return raw
    if isinstance(raw, Mapping):
        part = resolve_part(_first_present(raw, _NAME_KEYS))
        if part is None and index < len(COCO_KEYPOINT_PARTS) and _first_present(raw, _NAME_KEYS) is None:
            part = COCO_KEYPOINT_PARTS[index]
        if part is None:
            return None
        x, y = _position(raw)
        return Keypoint(name=part, x=x, y=y, confidence=_confidence(_first_present(raw, _SCORE_KEYS)))
    if isinstance(raw, Sequence) and not isinstance(raw, str):
        if len(raw) < 2:
            raise MalformedFrame(f"keypoint needs at least x and y: {raw!r}")
        if index >= len(COCO_KEYPOINT_PARTS):
            return None
        score = raw[2] if len(raw) > 2 else None
        return Keypoint(
            name=COCO_KEYPOINT_PARTS[index],
            x=_number(raw[0], "x"),
            y=_number(raw[1], "y"),
            confidence=_confidence(score),
        )
    raise MalformedFrame(f"unsupported keypoint record: {type(raw).__name__}")


def _parse_subject(raw: Any) -> PoseSnapshot:
    if isinstance(raw, PoseSnapshot):
        return raw
    score: Optional[float] = None
    bbox = None
    if isinstance(raw, Mapping):
        if "keypoints" not in raw:
            raise MalformedFrame("pose record has no keypoints")
        if raw.get("score") is not None:
            score = _confidence(raw["score"])
        if raw.get("bbox") is not None:
            box = raw["bbox"]
            if not isinstance(box, Sequence) or len(box) != 4:
                raise MalformedFrame(f"bbox must have four values: {box!r}")
            bbox = tuple(_number(v, "bbox") for v in box)
        items = raw["keypoints"]
    else:
        items = raw
    if items is None:
        items = []
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
        raise MalformedFrame(f"keypoints must be a list, got {type(items).__name__}")

    by_part: Dict[BodyPart, Keypoint] = {}
    for index, item in enumerate(items):
        kp = _parse_keypoint(item, index)
        if kp is None:
            continue
        current = by_part.get(kp.name)
        if current is None or kp.confidence > current.confidence:
            by_part[kp.name] = kp

    keypoints = tuple(by_part.values())
    if score is None:
        score = sum(kp.confidence for kp in keypoints) / len(keypoints) if keypoints else 0.0
    return PoseSnapshot(keypoints=keypoints, score=score, bbox=bbox)


def to_snapshot(raw: Any) -> PoseSnapshot:
    """
    Normalize one subject from any supported pose backend.

    Never raises for bad input: a malformed record yields an empty snapshot,
    which the classifier reads as insufficient evidence.
    """
    try:
        return _parse_subject(raw)
    except MalformedFrame as e:
        logger.warning("Malformed pose record, using empty snapshot: %s", e)
        return PoseSnapshot.empty()


def select_primary(poses: Any) -> PoseSnapshot:
    """Pick the single subject to act on this frame (highest score wins)."""
    if poses is None:
        return PoseSnapshot.empty()
    if isinstance(poses, (PoseSnapshot, Mapping)):
        poses = [poses]
    if not isinstance(poses, Sequence) or isinstance(poses, (str, bytes)):
        logger.warning("Malformed pose list of type %s, using empty snapshot", type(poses).__name__)
        return PoseSnapshot.empty()

    best: Optional[PoseSnapshot] = None
    for raw in poses:
        snapshot = to_snapshot(raw)
        if snapshot.is_empty:
            continue
        if best is None or (snapshot.score, snapshot.mean_confidence()) > (best.score, best.mean_confidence()):
            best = snapshot
    logger.debug("Selected primary subject from %d pose(s)", len(poses))
    return best if best is not None else PoseSnapshot.empty()
