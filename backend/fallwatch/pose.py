from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import logging
import math
import torch
from PIL import Image

from .utils import bgr_to_image

logger = logging.getLogger(__name__)

PoseRecord = Dict[str, Any]


def get_torch_device(preferred: str | None = None) -> Tuple[torch.device, str]:
    preferred_normalized = (preferred or "").strip().lower()

    if preferred_normalized in {"mps", "cuda", "cpu"}:
        device_type = preferred_normalized
    elif torch.backends.mps.is_available() and torch.backends.mps.is_built():
        device_type = "mps"
    elif torch.cuda.is_available():
        device_type = "cuda"
    else:
        device_type = "cpu"
    logger.debug("Pose device: %s (requested=%s)", device_type, preferred or "auto")
    return torch.device(device_type), device_type


def summarize_device(device: torch.device) -> dict:
    info: dict[str, object] = {"type": device.type}
    if device.type == "cuda":
        try:
            idx = torch.cuda.current_device()
            info["name"] = torch.cuda.get_device_name(idx)
        except RuntimeError as e:
            logger.debug("CUDA device info error: %s", e)
            info["name"] = "unknown"
    elif device.type == "mps":
        info["name"] = "Apple Metal (MPS)"
    else:
        info["name"] = "CPU"
    return info


class PoseEstimator:
    """
    torchvision Keypoint R-CNN wrapper.

    `estimate` returns raw subject records in COCO-17 order:
    ``{"score": float, "bbox": [x1, y1, x2, y2], "keypoints": [[x, y, score], ...]}``.
    `fallwatch.keypoints` turns them into snapshots.
    """

    def __init__(self, preferred_device: Optional[str] = None, score_threshold: float = 0.5, max_side: int = 640) -> None:
        from torchvision.models.detection import KeypointRCNN_ResNet50_FPN_Weights, keypointrcnn_resnet50_fpn

        self.device, self.device_type = get_torch_device(preferred_device)
        # torchvision detection models misbehave on MPS
        self.inference_device = torch.device("cpu") if self.device.type == "mps" else self.device
        self.score_threshold = score_threshold
        self.max_side = max_side

        self.weights = KeypointRCNN_ResNet50_FPN_Weights.DEFAULT
        self.model = keypointrcnn_resnet50_fpn(weights=self.weights)
        self.model.to(self.inference_device)
        self.model.eval()
        logger.debug("Loaded Keypoint R-CNN on %s", self.inference_device)

    def _resize_for_inference(self, image: Image.Image) -> Tuple[Image.Image, float]:
        w, h = image.size
        max_wh = max(w, h)
        if max_wh <= self.max_side:
            return image, 1.0
        scale = self.max_side / float(max_wh)
        new_w = max(1, int(round(w * scale)))
        new_h = max(1, int(round(h * scale)))
        logger.debug("Resized image from %dx%d to %dx%d for inference", w, h, new_w, new_h)
        return image.resize((new_w, new_h), Image.BILINEAR), scale

    @staticmethod
    def _keypoint_score(raw: float) -> float:
        # Keypoint R-CNN emits logits
        if 0.0 <= raw <= 1.0:
            return raw
        return 1.0 / (1.0 + math.exp(-raw))

    @torch.inference_mode()
    def estimate(self, image: Image.Image) -> List[PoseRecord]:
        image_resized, scale = self._resize_for_inference(image)
        tensor = self.weights.transforms()(image_resized).to(self.inference_device)
        outputs = self.model([tensor])[0]

        boxes = outputs.get("boxes")
        scores = outputs.get("scores")
        keypoints = outputs.get("keypoints")
        keypoints_scores = outputs.get("keypoints_scores")
        if boxes is None or scores is None or keypoints is None:
            logger.debug("No detections from Keypoint R-CNN")
            return []

        inv_scale = 1.0 / scale
        people: List[PoseRecord] = []
        for i in range(boxes.shape[0]):
            score = float(scores[i].item())
            if score < self.score_threshold:
                continue
            bbox = [v * inv_scale for v in boxes[i].tolist()]
            kps = []
            for j in range(keypoints.shape[1]):
                x, y, visible = keypoints[i, j].tolist()
                if keypoints_scores is not None:
                    kp_score = self._keypoint_score(float(keypoints_scores[i, j].item()))
                else:
                    kp_score = 1.0 if visible > 0 else 0.0
                kps.append([x * inv_scale, y * inv_scale, kp_score])
            people.append({"score": score, "bbox": bbox, "keypoints": kps})
        logger.debug("Keypoint R-CNN kept %d of %d detection(s)", len(people), int(boxes.shape[0]))
        return people

    def estimate_bgr(self, frame_bgr) -> List[PoseRecord]:
        return self.estimate(bgr_to_image(frame_bgr))
