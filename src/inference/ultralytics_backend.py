"""
Generic pretrained object detector (Ultralytics YOLO, COCO weights).

The detector knows nothing about dominoes; the heuristic strategy filters
its boxes by shape afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
import torch

from .backend import Candidate, ObjectDetector


@dataclass(frozen=True)
class UltralyticsConfig:
    model: str = "yolov8n.pt"
    # Keep the detector permissive; the strategy applies its own threshold
    conf_threshold: float = 0.05
    iou_threshold: float = 0.45
    device: str = "cpu"


class UltralyticsDetector(ObjectDetector):
    def __init__(self, cfg: UltralyticsConfig):
        self.cfg = cfg
        try:
            from ultralytics import YOLO  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "Ultralytics is not installed. Install with `pip install ultralytics` "
                "or enable the remote API strategy."
            ) from e

        self._model = YOLO(cfg.model)

    def detect(self, tensor: torch.Tensor) -> List[Candidate]:
        """
        Run detection on an HWC uint8 RGB tensor.

        Ultralytics expects BGR numpy frames for HWC input.
        """
        frame = np.ascontiguousarray(tensor.detach().cpu().numpy()[..., ::-1])
        results = self._model.predict(
            source=frame,
            conf=self.cfg.conf_threshold,
            iou=self.cfg.iou_threshold,
            device=self.cfg.device,
            verbose=False,
        )
        if not results:
            return []

        r0 = results[0]
        names = getattr(r0, "names", None) or {}
        boxes = getattr(r0, "boxes", None)
        if boxes is None:
            return []

        xyxy = boxes.xyxy.cpu().numpy() if hasattr(boxes.xyxy, "cpu") else np.asarray(boxes.xyxy)
        conf = boxes.conf.cpu().numpy() if hasattr(boxes.conf, "cpu") else np.asarray(boxes.conf)
        cls = boxes.cls.cpu().numpy() if hasattr(boxes.cls, "cpu") else np.asarray(boxes.cls)

        out: List[Candidate] = []
        for (x1, y1, x2, y2), c, k in zip(xyxy, conf, cls):
            class_id = int(k)
            out.append(
                Candidate(
                    x=float(x1),
                    y=float(y1),
                    width=float(x2 - x1),
                    height=float(y2 - y1),
                    score=float(c),
                    class_name=names.get(class_id) or str(class_id),
                )
            )

        return out


def load_ultralytics_detector(model: str, device: str) -> UltralyticsDetector:
    """Model factory used by the ModelLoader for the heuristic strategy."""
    return UltralyticsDetector(UltralyticsConfig(model=model, device=device))
