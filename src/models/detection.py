"""
Detection models for domino tiles and per-image results.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Sequence, Tuple

MAX_PIP_COUNT = 12


@dataclass(frozen=True)
class BoundingBox:
    """
    A bounding box in source-image pixel coordinates.

    Attributes:
        x: Left edge x coordinate.
        y: Top edge y coordinate.
        width: Box width (must be positive).
        height: Box height (must be positive).
        rotation_degrees: Estimated tile rotation (0 horizontal, 90 vertical).
    """
    x: float
    y: float
    width: float
    height: float
    rotation_degrees: float = 0.0

    def __post_init__(self):
        if not (self.width > 0 and self.height > 0):
            raise ValueError(
                f"BoundingBox requires positive size, got {self.width}x{self.height}"
            )

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def aspect_ratio(self) -> float:
        """Long side over short side (always >= 1)."""
        return max(self.width, self.height) / min(self.width, self.height)

    def as_int_tuple(self) -> Tuple[int, int, int, int]:
        """Return as integer (x1, y1, x2, y2) tuple."""
        return (int(round(self.x)), int(round(self.y)), int(round(self.x2)), int(round(self.y2)))

    def scaled(self, factor: float) -> "BoundingBox":
        """Multiply position and size by factor; rotation is unchanged."""
        return BoundingBox(
            x=self.x * factor,
            y=self.y * factor,
            width=self.width * factor,
            height=self.height * factor,
            rotation_degrees=self.rotation_degrees,
        )

    def divided_by(self, factor: float) -> "BoundingBox":
        """Divide position and size by factor (inverse of a resize by factor)."""
        return BoundingBox(
            x=self.x / factor,
            y=self.y / factor,
            width=self.width / factor,
            height=self.height / factor,
            rotation_degrees=self.rotation_degrees,
        )

    @classmethod
    def from_center(cls, cx: float, cy: float, w: float, h: float) -> "BoundingBox":
        """Create from a center point and size."""
        return cls(x=cx - w / 2, y=cy - h / 2, width=w, height=h)

    def to_dict(self) -> Dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "rotation_degrees": self.rotation_degrees,
        }


def new_tile_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class DetectedTile:
    """
    One detected domino tile (or a single half, for the remote API strategy).

    Pip fields are zero until pip counting fills them in; use
    dataclasses.replace to derive the counted tile.
    """
    bounding_box: BoundingBox
    left_pips: int = 0
    right_pips: int = 0
    total_pips: int = 0
    confidence: float = 0.0
    id: str = field(default_factory=new_tile_id)

    def __post_init__(self):
        for name in ("left_pips", "right_pips"):
            value = getattr(self, name)
            if not 0 <= value <= MAX_PIP_COUNT:
                raise ValueError(f"{name} must be in [0, {MAX_PIP_COUNT}], got {value}")
        if self.total_pips != self.left_pips + self.right_pips:
            raise ValueError(
                f"total_pips ({self.total_pips}) != left_pips + right_pips "
                f"({self.left_pips} + {self.right_pips})"
            )
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @classmethod
    def create(
        cls,
        bounding_box: BoundingBox,
        left_pips: int = 0,
        right_pips: int = 0,
        confidence: float = 0.0,
    ) -> "DetectedTile":
        """Create a tile with total_pips derived from the two halves."""
        return cls(
            bounding_box=bounding_box,
            left_pips=left_pips,
            right_pips=right_pips,
            total_pips=left_pips + right_pips,
            confidence=confidence,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bounding_box": self.bounding_box.to_dict(),
            "left_pips": self.left_pips,
            "right_pips": self.right_pips,
            "total_pips": self.total_pips,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class DetectionResult:
    """
    Result of one detect call.

    Attributes:
        tiles: Detected tiles in detection order.
        total_score: Sum of total_pips over all tiles.
        confidence: Mean tile confidence, 0.0 when no tiles were found.
        annotated_image: JPEG data URI of the rendered review image.
    """
    tiles: Tuple[DetectedTile, ...]
    total_score: int
    confidence: float
    annotated_image: str

    @classmethod
    def from_tiles(cls, tiles: Sequence[DetectedTile], annotated_image: str) -> "DetectionResult":
        """Build a result whose score and confidence are derived from the tiles."""
        tiles = tuple(tiles)
        return cls(
            tiles=tiles,
            total_score=total_score(tiles),
            confidence=average_confidence(tiles),
            annotated_image=annotated_image,
        )

    def to_dict(self, include_image: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "tiles": [t.to_dict() for t in self.tiles],
            "total_score": self.total_score,
            "confidence": self.confidence,
        }
        if include_image:
            d["annotated_image"] = self.annotated_image
        return d


def total_score(tiles: Sequence[DetectedTile]) -> int:
    return sum(t.total_pips for t in tiles)


def average_confidence(tiles: Sequence[DetectedTile]) -> float:
    if not tiles:
        return 0.0
    return sum(t.confidence for t in tiles) / len(tiles)

