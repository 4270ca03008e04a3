"""
Pip counting on detected domino tiles.

Each tile is cropped, resized to a standard 200x100 region and split into
left/right halves. A half is grayscaled and binarized; the pip estimate is
the number of dark-to-bright transitions in the row-major pixel stream
divided by ten. It does not look for round blobs.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Sequence, Tuple

import cv2
import numpy as np

from imaging.preprocessor import ImageInput, decode_image
from models.detection import MAX_PIP_COUNT, DetectedTile
from models.errors import ImageDecodeFailed

MIN_PIP_CONFIDENCE = 0.4
# (width, height) every tile region is resized to before splitting
STANDARD_TILE_SIZE = (200, 100)
# Applied to raw 0-255 channel means
BINARY_THRESHOLD = 0.5
TRANSITIONS_PER_PIP = 10
FAILED_TILE_CONFIDENCE = 0.1


@dataclass(frozen=True)
class HalfCount:
    count: int
    confidence: float


def estimate_pip_count(binary: np.ndarray) -> int:
    """Count rising edges (dark -> bright) over the flattened mask, ten per pip."""
    flat = np.asarray(binary, dtype=bool).ravel()
    if flat.size == 0:
        return 0
    transitions = int(flat[0]) + int(np.count_nonzero(flat[1:] & ~flat[:-1]))
    return min(transitions // TRANSITIONS_PER_PIP, MAX_PIP_COUNT)


def calculate_confidence(pip_count: int, variance: float) -> float:
    confidence = 0.7 if 0 <= pip_count <= MAX_PIP_COUNT else 0.3

    # Higher variance means more visible structure in the half
    if variance > 0.1:
        confidence += 0.2
    elif variance < 0.05:
        confidence -= 0.2

    return max(0.0, min(1.0, confidence))


class PipCounter:
    """Fills pip fields and counting confidence on detected tiles."""

    def extract_tile_region(self, pixels: np.ndarray, tile: DetectedTile) -> np.ndarray:
        """
        Crop the tile (clamped to the image) and resize it to the standard size.

        Returns:
            float32 RGB array of shape (100, 200, 3) with 0-255 values.
        """
        img_h, img_w = pixels.shape[:2]
        box = tile.bounding_box

        x = max(0.0, min(box.x, img_w - 1))
        y = max(0.0, min(box.y, img_h - 1))
        w = min(box.width, img_w - x)
        h = min(box.height, img_h - y)

        x0, y0 = int(math.floor(x)), int(math.floor(y))
        x1, y1 = int(math.ceil(x + w)), int(math.ceil(y + h))
        crop = pixels[y0:y1, x0:x1]
        if crop.size == 0:
            raise ValueError(f"Tile region is empty after clamping ({x0},{y0})-({x1},{y1})")

        region = cv2.resize(crop, STANDARD_TILE_SIZE, interpolation=cv2.INTER_LINEAR)
        return cv2.cvtColor(region, cv2.COLOR_BGR2RGB).astype(np.float32)

    def split_tile_halves(self, region: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        midpoint = region.shape[1] // 2
        return region[:, :midpoint], region[:, midpoint:]

    def count_pips_on_half(self, half: np.ndarray) -> HalfCount:
        grayscale = half.mean(axis=-1)
        binary = grayscale > BINARY_THRESHOLD
        count = estimate_pip_count(binary)
        variance = float(np.var(half))
        return HalfCount(count=count, confidence=calculate_confidence(count, variance))

    def count_pips(self, image: ImageInput, tile: DetectedTile) -> DetectedTile:
        """
        Return a copy of tile with pips counted.

        Tile confidence becomes min(detection confidence, counting confidence).
        Any failure yields a zero-pip tile with confidence 0.1 instead of
        raising, so one bad tile never aborts a detection.
        """
        try:
            pixels = decode_image(image)
            region = self.extract_tile_region(pixels, tile)
            left_half, right_half = self.split_tile_halves(region)
            left = self.count_pips_on_half(left_half)
            right = self.count_pips_on_half(right_half)
        except Exception as e:
            logging.warning(f"Pip counting failed for tile {tile.id}: {e}")
            return replace(
                tile,
                left_pips=0,
                right_pips=0,
                total_pips=0,
                confidence=FAILED_TILE_CONFIDENCE,
            )

        counting_confidence = (left.confidence + right.confidence) / 2
        return replace(
            tile,
            left_pips=left.count,
            right_pips=right.count,
            total_pips=left.count + right.count,
            confidence=min(tile.confidence, counting_confidence),
        )

    def count_pips_on_tiles(self, image: ImageInput, tiles: Sequence[DetectedTile]) -> List[DetectedTile]:
        """Count pips tile by tile, decoding the source image once."""
        try:
            source = decode_image(image)
        except ImageDecodeFailed as e:
            logging.warning(f"Could not decode image for pip counting: {e}")
            source = image
        return [self.count_pips(source, tile) for tile in tiles]

    def validate_pip_counts(self, tile: DetectedTile) -> bool:
        """Standalone sanity check; count_pips never calls it."""
        return (
            0 <= tile.left_pips <= MAX_PIP_COUNT
            and 0 <= tile.right_pips <= MAX_PIP_COUNT
            and tile.total_pips == tile.left_pips + tile.right_pips
            and tile.confidence >= MIN_PIP_CONFIDENCE
        )
