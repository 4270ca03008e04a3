"""
Heuristic detection: generic pretrained detector + domino shape filter.

The detector is not trained on dominoes, so its raw boxes are filtered by
confidence, size and aspect ratio (tiles are roughly 2:1), then pips are
counted on the surviving boxes in original-image coordinates.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from annotation.annotator import ImageAnnotator
from imaging.preprocessor import ImageInput, ImagePreprocessor, decode_image
from inference.backend import Candidate
from inference.model_loader import ModelLoader
from models.config import HeuristicConfig
from models.detection import BoundingBox, DetectedTile, DetectionResult
from models.errors import DetectionError, InferenceFailed
from models.image import RawImage
from ops.performance import measure_performance
from .base import DetectionStrategy, StrategyKind
from .pip_counter import PipCounter


def is_domino_shaped(candidate: Candidate, cfg: HeuristicConfig) -> bool:
    """Confidence, minimum side and aspect-ratio filter."""
    if candidate.score < cfg.min_confidence:
        return False
    if candidate.width < cfg.min_tile_size or candidate.height < cfg.min_tile_size:
        return False
    aspect_ratio = max(candidate.width, candidate.height) / min(candidate.width, candidate.height)
    return cfg.min_aspect_ratio <= aspect_ratio <= cfg.max_aspect_ratio


def estimate_rotation(width: float, height: float) -> float:
    return 90.0 if height > width else 0.0


def candidates_to_tiles(
    candidates: Sequence[Candidate], cfg: HeuristicConfig, scale_factor: float
) -> List[DetectedTile]:
    """Filter candidates and map survivors back to original-image coordinates."""
    tiles: List[DetectedTile] = []
    for c in candidates:
        if not is_domino_shaped(c, cfg):
            continue
        box = BoundingBox(
            x=c.x,
            y=c.y,
            width=c.width,
            height=c.height,
            rotation_degrees=estimate_rotation(c.width, c.height),
        )
        tiles.append(
            DetectedTile.create(
                bounding_box=box.divided_by(scale_factor),
                confidence=min(1.0, max(0.0, c.score)),
            )
        )
    return tiles


class HeuristicStrategy(DetectionStrategy):
    """
    Default strategy.

    Args:
        loader: ModelLoader whose model exposes detect(tensor) -> [Candidate].
        cfg: Shape filter thresholds.
        preprocessor: Resize/lighting/tensor step (scale factor source).
        pip_counter: Fills pip fields on the surviving tiles.
        annotator: Renders the review image.
    """

    kind = StrategyKind.HEURISTIC

    def __init__(
        self,
        loader: ModelLoader,
        cfg: Optional[HeuristicConfig] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        pip_counter: Optional[PipCounter] = None,
        annotator: Optional[ImageAnnotator] = None,
    ):
        self.loader = loader
        self.cfg = cfg or HeuristicConfig()
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.pip_counter = pip_counter or PipCounter()
        self.annotator = annotator or ImageAnnotator()

    def preload(self) -> None:
        self.loader.load_model()

    def detect_dominoes(self, image: ImageInput) -> List[DetectedTile]:
        """
        Detect domino-shaped boxes; pip fields are left at zero.

        Raises:
            ModelLoadFailed, ImageDecodeFailed, PreprocessFailed, InferenceFailed
        """
        model = self.loader.load_model()

        with self.preprocessor.preprocess(image, device=self.loader.device or "cpu") as processed:
            try:
                candidates = model.detect(processed.tensor)
            except DetectionError:
                raise
            except Exception as e:
                raise InferenceFailed(f"Inference failed: {e}") from e
            scale_factor = processed.scale_factor

        tiles = candidates_to_tiles(candidates, self.cfg, scale_factor)
        logging.info(f"Heuristic detection: {len(tiles)} of {len(candidates)} candidates look like dominoes")
        return tiles

    def detect_dominoes_with_pips(self, image: ImageInput) -> List[DetectedTile]:
        pixels = decode_image(image)
        tiles = self.detect_dominoes(pixels)
        return self.pip_counter.count_pips_on_tiles(pixels, tiles)

    def detect_and_annotate(self, image: RawImage) -> DetectionResult:
        with measure_performance("Heuristic detection"):
            # Decoded once; every later step takes the array
            pixels = decode_image(image)
            tiles = self.detect_dominoes_with_pips(pixels)
            total = sum(t.total_pips for t in tiles)
            annotated = self.annotator.annotate_image_with_summary(pixels, tiles, total)
            return DetectionResult.from_tiles(tiles, annotated)
