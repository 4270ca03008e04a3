"""
Remote inference API strategy (Roboflow-style hosted detection).

Request:  POST {endpoint}/{model}/{version}?api_key=KEY
          body = base64 image, Content-Type application/x-www-form-urlencoded
Response: {"predictions": [{"x", "y", "width", "height", "confidence", "class"}],
           "image": {"width", "height"}}

Prediction x/y are box centers. Every prediction is one domino half whose
class names its pip count ("pip-5"), so tiles produced here always have
right_pips == 0.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from annotation.annotator import ImageAnnotator
from imaging.preprocessor import decode_image
from models.config import RemoteApiConfig
from models.detection import MAX_PIP_COUNT, BoundingBox, DetectedTile, DetectionResult
from models.errors import InferenceFailed
from models.image import RawImage
from ops.performance import measure_performance
from .base import DetectionStrategy, StrategyKind

_FIRST_INT = re.compile(r"\d+")


def parse_pip_class(label: Any) -> Optional[int]:
    """'pip-5' -> 5, '5' -> 5; clamped to the pip range. None if no number."""
    match = _FIRST_INT.search(str(label))
    if not match:
        return None
    return min(int(match.group()), MAX_PIP_COUNT)


def prediction_to_tile(
    prediction: Dict[str, Any], scale_x: float = 1.0, scale_y: float = 1.0
) -> Optional[DetectedTile]:
    """Convert one center-based prediction into a single-half tile, or None if unusable."""
    pips = parse_pip_class(prediction.get("class"))
    if pips is None:
        logging.debug(f"Skipping prediction with unparsable class {prediction.get('class')!r}")
        return None

    width = float(prediction.get("width", 0)) * scale_x
    height = float(prediction.get("height", 0)) * scale_y
    if width <= 0 or height <= 0:
        return None

    box = BoundingBox.from_center(
        float(prediction.get("x", 0)) * scale_x,
        float(prediction.get("y", 0)) * scale_y,
        width,
        height,
    )
    return DetectedTile.create(
        bounding_box=box,
        left_pips=pips,
        right_pips=0,
        confidence=min(1.0, max(0.0, float(prediction.get("confidence", 0)))),
    )


class RemoteApiStrategy(DetectionStrategy):
    """
    Sends the image to the hosted model and converts its predictions.

    Args:
        cfg: Endpoint, model id, key and confidence cut-off.
        session: requests.Session (injectable for tests).
        annotator: Renders the review image.
    """

    kind = StrategyKind.REMOTE_API

    def __init__(
        self,
        cfg: RemoteApiConfig,
        session: Optional[requests.Session] = None,
        annotator: Optional[ImageAnnotator] = None,
    ):
        self.cfg = cfg
        self.session = session or requests.Session()
        self.annotator = annotator or ImageAnnotator()

    def call_api(self, image: RawImage) -> Dict[str, Any]:
        """
        Raises:
            InferenceFailed: No API key, transport error, non-2xx or bad JSON.
        """
        if not self.cfg.api_key:
            raise InferenceFailed("Remote API key is not configured")

        logging.info(f"Calling remote detection API: {self.cfg.url}?api_key=***")
        try:
            response = self.session.post(
                self.cfg.url,
                params={"api_key": self.cfg.api_key},
                data=image.base64_payload(),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.cfg.timeout_seconds,
            )
        except requests.RequestException as e:
            raise InferenceFailed(f"Remote API request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise InferenceFailed(f"Remote API error: {response.status_code} - {response.text}")

        try:
            payload = response.json()
        except ValueError as e:
            raise InferenceFailed(f"Remote API returned invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise InferenceFailed("Remote API returned an unexpected payload")
        return payload

    def detect_dominoes(self, image: RawImage) -> List[DetectedTile]:
        pixels = decode_image(image)
        source_height, source_width = pixels.shape[:2]

        payload = self.call_api(image)
        predictions = payload.get("predictions") or []

        reported = payload.get("image") or {}
        try:
            scale_x = source_width / float(reported.get("width") or source_width)
            scale_y = source_height / float(reported.get("height") or source_height)
        except (TypeError, ValueError, AttributeError, ZeroDivisionError) as e:
            raise InferenceFailed(f"Remote API returned a malformed image size: {e}") from e

        if not isinstance(predictions, list):
            raise InferenceFailed("Remote API returned malformed predictions: expected a list")

        tiles: List[DetectedTile] = []
        try:
            for prediction in predictions:
                if float(prediction.get("confidence", 0)) < self.cfg.min_confidence:
                    continue
                tile = prediction_to_tile(prediction, scale_x, scale_y)
                if tile is not None:
                    tiles.append(tile)
        except (TypeError, ValueError, AttributeError) as e:
            raise InferenceFailed(f"Remote API returned malformed predictions: {e}") from e

        logging.info(f"Remote API detection: {len(tiles)} of {len(predictions)} predictions kept")
        return tiles

    def detect_and_annotate(self, image: RawImage) -> DetectionResult:
        with measure_performance("Remote API detection"):
            tiles = self.detect_dominoes(image)
            total = sum(t.total_pips for t in tiles)
            annotated = self.annotator.annotate_image_with_summary(image, tiles, total)
            return DetectionResult.from_tiles(tiles, annotated)
