"""
Custom-trained domino model (TorchScript) loading and output parsing.

Asset layout, next to each other on disk:
    model.yaml                  descriptor
    group1-shard1of2.pt ...     TorchScript bytes, split into ordered shards

Descriptor keys:
    format: "yolo" or "ssd" (output tensor layout, see parse_model_output)
    input_size: [width, height] the model was exported for
    labels: class index -> label; "<left>-<right>" labels carry pip counts
    score_threshold: minimum score kept (default 0.5)
    weights: ordered list of shard file names
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import torch
import yaml

SUPPORTED_FORMATS = ("yolo", "ssd")


@dataclass(frozen=True)
class ModelDescriptor:
    format: str
    weights: Tuple[str, ...]
    labels: Tuple[str, ...] = ()
    input_size: Optional[Tuple[int, int]] = None
    score_threshold: float = 0.5
    base_dir: str = "."

    @classmethod
    def from_dict(cls, d: Dict[str, Any], base_dir: str = ".") -> "ModelDescriptor":
        fmt = d.get("format", "yolo")
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported model format '{fmt}' (expected one of {SUPPORTED_FORMATS})")
        weights = d.get("weights") or []
        if isinstance(weights, str):
            weights = [weights]
        if not weights:
            raise ValueError("Model descriptor lists no weight files")
        input_size = d.get("input_size")
        return cls(
            format=fmt,
            weights=tuple(weights),
            labels=tuple(str(label) for label in d.get("labels") or []),
            input_size=(int(input_size[0]), int(input_size[1])) if input_size else None,
            score_threshold=float(d.get("score_threshold", 0.5)),
            base_dir=base_dir,
        )

    @property
    def weight_paths(self) -> List[str]:
        return [os.path.join(self.base_dir, w) for w in self.weights]

    def label_for(self, class_index: int) -> str:
        if 0 <= class_index < len(self.labels):
            return self.labels[class_index]
        return str(class_index)


@dataclass(frozen=True)
class CustomDetection:
    """One parsed detection; bbox is (x, y, width, height) as image fractions."""
    bbox: Tuple[float, float, float, float]
    label: str
    score: float


@dataclass
class CustomModel:
    module: Any
    descriptor: ModelDescriptor
    device: str = "cpu"

    def predict(self, batch: torch.Tensor) -> Any:
        with torch.no_grad():
            return self.module(batch)


def read_descriptor(descriptor_path: str) -> ModelDescriptor:
    if not os.path.exists(descriptor_path):
        raise FileNotFoundError(f"Model descriptor not found: {descriptor_path}")
    with open(descriptor_path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return ModelDescriptor.from_dict(raw, base_dir=os.path.dirname(descriptor_path) or ".")


def load_custom_model(descriptor_path: str, device: str) -> CustomModel:
    """
    Read the descriptor, join the weight shards and load the TorchScript module.

    Raises:
        FileNotFoundError / ValueError / RuntimeError on a missing or broken asset.
    """
    descriptor = read_descriptor(descriptor_path)
    buffer = io.BytesIO()
    for path in descriptor.weight_paths:
        if not os.path.exists(path):
            raise FileNotFoundError(f"Model weight shard not found: {path}")
        with open(path, "rb") as f:
            buffer.write(f.read())
    buffer.seek(0)

    module = torch.jit.load(buffer, map_location=device)
    module.eval()
    logging.info(
        f"Custom model loaded from {descriptor_path} "
        f"(format={descriptor.format}, shards={len(descriptor.weights)}, labels={len(descriptor.labels)})"
    )
    return CustomModel(module=module, descriptor=descriptor, device=device)


def _to_numpy(value: Any) -> np.ndarray:
    if isinstance(value, torch.Tensor):
        return value.detach().cpu().numpy()
    return np.asarray(value)


def parse_model_output(output: Any, descriptor: ModelDescriptor) -> List[CustomDetection]:
    """
    Convert the model's native output into detections.

    yolo: one tensor [1, N, 5 + C], rows (cx, cy, w, h, objectness, class scores...)
          with box values as image fractions; score = objectness * best class score.
    ssd:  (boxes [1, N, 4] as (ymin, xmin, ymax, xmax) fractions,
           scores [1, N], classes [1, N]).
    """
    if descriptor.format == "ssd":
        detections = _parse_ssd(output, descriptor)
    else:
        detections = _parse_yolo(output, descriptor)
    return [d for d in detections if d.score >= descriptor.score_threshold and d.bbox[2] > 0 and d.bbox[3] > 0]


def _parse_yolo(output: Any, descriptor: ModelDescriptor) -> List[CustomDetection]:
    if isinstance(output, (list, tuple)):
        if len(output) != 1:
            raise ValueError(f"yolo format expects a single output tensor, got {len(output)}")
        output = output[0]
    rows = _to_numpy(output)
    if rows.ndim == 3:
        rows = rows[0]
    if rows.ndim != 2 or rows.shape[1] < 5:
        raise ValueError(f"Unexpected yolo output shape {tuple(rows.shape)}")

    out: List[CustomDetection] = []
    for row in rows:
        cx, cy, w, h, objectness = (float(v) for v in row[:5])
        class_scores = row[5:]
        if len(class_scores):
            class_index = int(np.argmax(class_scores))
            score = objectness * float(class_scores[class_index])
        else:
            class_index = 0
            score = objectness
        out.append(
            CustomDetection(
                bbox=(cx - w / 2, cy - h / 2, w, h),
                label=descriptor.label_for(class_index),
                score=score,
            )
        )
    return out


def _parse_ssd(output: Any, descriptor: ModelDescriptor) -> List[CustomDetection]:
    if not isinstance(output, (list, tuple)) or len(output) < 3:
        raise ValueError("ssd format expects (boxes, scores, classes) outputs")
    boxes, scores, classes = (_to_numpy(t) for t in output[:3])
    boxes = boxes.reshape(-1, 4)
    scores = scores.reshape(-1)
    classes = classes.reshape(-1)

    out: List[CustomDetection] = []
    for (ymin, xmin, ymax, xmax), score, class_index in zip(boxes, scores, classes):
        out.append(
            CustomDetection(
                bbox=(float(xmin), float(ymin), float(xmax - xmin), float(ymax - ymin)),
                label=descriptor.label_for(int(class_index)),
                score=float(score),
            )
        )
    return out
