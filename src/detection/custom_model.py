"""
Custom-trained model strategy.

The model is trained on dominoes directly, so there is no shape filter.
Labels of the form "<left>-<right>" carry the pip counts; other labels fall
back to the pip counter. Box coordinates come back as image fractions.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

import cv2
import numpy as np
import torch

from annotation.annotator import ImageAnnotator
from imaging.preprocessor import decode_image
from inference.custom_model import CustomDetection, CustomModel, parse_model_output
from inference.model_loader import ModelLoader
from inference.tensors import ScopedTensor, scoped_outputs
from models.detection import MAX_PIP_COUNT, BoundingBox, DetectedTile, DetectionResult
from models.errors import DetectionError, InferenceFailed
from models.image import RawImage
from ops.performance import measure_performance
from .base import DetectionStrategy, StrategyKind
from .pip_counter import PipCounter

PIP_LABEL_PATTERN = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


def parse_pip_label(label: str) -> Optional[Tuple[int, int]]:
    """'6-3' -> (6, 3), clamped to the pip range; None for any other label."""
    match = PIP_LABEL_PATTERN.match(label or "")
    if not match:
        return None
    left, right = (min(int(g), MAX_PIP_COUNT) for g in match.groups())
    return left, right


def build_input_tensor(pixels: np.ndarray, model: CustomModel) -> torch.Tensor:
    """BGR uint8 image -> float NCHW RGB batch in [0, 1], resized to the export size."""
    size = model.descriptor.input_size
    if size is not None:
        pixels = cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)
    rgb = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
    tensor = torch.from_numpy(np.ascontiguousarray(rgb)).to(model.device)
    return tensor.permute(2, 0, 1).unsqueeze(0).float().div(255.0)


def detection_to_tile(detection: CustomDetection, image_width: int, image_height: int) -> Optional[DetectedTile]:
    fx, fy, fw, fh = detection.bbox
    width = fw * image_width
    height = fh * image_height
    if width <= 0 or height <= 0:
        return None

    pips = parse_pip_label(detection.label) or (0, 0)
    return DetectedTile.create(
        bounding_box=BoundingBox(x=fx * image_width, y=fy * image_height, width=width, height=height),
        left_pips=pips[0],
        right_pips=pips[1],
        confidence=min(1.0, max(0.0, detection.score)),
    )


class CustomModelStrategy(DetectionStrategy):
    """Runs the domain-trained TorchScript model loaded through its own ModelLoader."""

    kind = StrategyKind.CUSTOM_MODEL

    def __init__(
        self,
        loader: ModelLoader,
        pip_counter: Optional[PipCounter] = None,
        annotator: Optional[ImageAnnotator] = None,
    ):
        self.loader = loader
        self.pip_counter = pip_counter or PipCounter()
        self.annotator = annotator or ImageAnnotator()

    def preload(self) -> None:
        self.loader.load_model()

    def run_inference(self, pixels: np.ndarray, model: CustomModel) -> List[CustomDetection]:
        try:
            with ScopedTensor(build_input_tensor(pixels, model)) as batch:
                output = model.predict(batch.tensor)
                with scoped_outputs(output):
                    return parse_model_output(output, model.descriptor)
        except DetectionError:
            raise
        except Exception as e:
            raise InferenceFailed(f"Custom model inference failed: {e}") from e

    def detect_dominoes(self, image: RawImage) -> List[DetectedTile]:
        model: CustomModel = self.loader.load_model()
        pixels = decode_image(image)
        image_height, image_width = pixels.shape[:2]

        detections = self.run_inference(pixels, model)
        tiles: List[DetectedTile] = []
        for detection in detections:
            tile = detection_to_tile(detection, image_width, image_height)
            if tile is None:
                continue
            if parse_pip_label(detection.label) is None:
                tile = self.pip_counter.count_pips(pixels, tile)
            tiles.append(tile)

        logging.info(f"Custom model detection: {len(tiles)} tiles from {len(detections)} detections")
        return tiles

    def detect_and_annotate(self, image: RawImage) -> DetectionResult:
        with measure_performance("Custom model detection"):
            tiles = self.detect_dominoes(image)
            total = sum(t.total_pips for t in tiles)
            annotated = self.annotator.annotate_image_with_summary(image, tiles, total)
            return DetectionResult.from_tiles(tiles, annotated)
