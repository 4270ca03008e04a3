"""
Renders detection results onto a copy of the source image for review.
"""

from __future__ import annotations

from typing import Sequence

import cv2
import numpy as np

from imaging.preprocessor import ImageInput, decode_image, encode_data_uri
from models.detection import DetectedTile
from models.errors import AnnotationFailed, ImageDecodeFailed

# Colors (BGR)
COLOR_BOX = (0, 255, 0)
COLOR_LABEL_BG = (0, 255, 0)
COLOR_LABEL_TEXT = (0, 0, 0)
COLOR_SUMMARY_BG = (51, 51, 51)  # #333333
COLOR_SUMMARY_TEXT = (255, 255, 255)

BOX_THICKNESS = 3
LABEL_FONT = cv2.FONT_HERSHEY_SIMPLEX
LABEL_FONT_SCALE = 0.6
LABEL_THICKNESS = 2
LABEL_PADDING = 8
LABEL_MARGIN = 5

SUMMARY_HEIGHT = 60
SUMMARY_FONT_SCALE = 0.9
SUMMARY_THICKNESS = 2

JPEG_QUALITY = 95


def format_label(tile: DetectedTile) -> str:
    """Single-half tiles show just the pip count, full tiles "left|right (total)"."""
    if tile.right_pips == 0:
        return f"{tile.left_pips}"
    return f"{tile.left_pips}|{tile.right_pips} ({tile.total_pips})"


def format_summary(total_score: int, tile_count: int) -> str:
    return f"Total Score: {total_score} ({tile_count} tiles)"


class ImageAnnotator:
    """Draws bounding boxes, pip labels and a score header."""

    format_label = staticmethod(format_label)

    def _draw_bounding_box(self, canvas: np.ndarray, tile: DetectedTile) -> None:
        x1, y1, x2, y2 = tile.bounding_box.as_int_tuple()
        cv2.rectangle(canvas, (x1, y1), (x2, y2), COLOR_BOX, BOX_THICKNESS)

    def _draw_label(self, canvas: np.ndarray, tile: DetectedTile) -> None:
        """Label sits centered above the box on an opaque background."""
        box = tile.bounding_box
        text = format_label(tile)
        (text_w, text_h), baseline = cv2.getTextSize(text, LABEL_FONT, LABEL_FONT_SCALE, LABEL_THICKNESS)

        label_x = int(round(box.x + (box.width - text_w) / 2 - LABEL_PADDING))
        label_y = int(round(box.y - text_h - LABEL_MARGIN - LABEL_PADDING * 2))
        label_w = text_w + LABEL_PADDING * 2
        label_h = text_h + LABEL_PADDING * 2

        cv2.rectangle(
            canvas,
            (label_x, label_y),
            (label_x + label_w, label_y + label_h),
            COLOR_LABEL_BG,
            -1,
        )
        cv2.putText(
            canvas,
            text,
            (label_x + LABEL_PADDING, label_y + LABEL_PADDING + text_h),
            LABEL_FONT,
            LABEL_FONT_SCALE,
            COLOR_LABEL_TEXT,
            LABEL_THICKNESS,
            cv2.LINE_AA,
        )

    def render_tiles(self, image: ImageInput, tiles: Sequence[DetectedTile]) -> np.ndarray:
        """Return a BGR copy of the image with every tile drawn on it."""
        canvas = decode_image(image).copy()
        for tile in tiles:
            self._draw_bounding_box(canvas, tile)
            self._draw_label(canvas, tile)
        return canvas

    def render_with_summary(
        self, image: ImageInput, tiles: Sequence[DetectedTile], total_score: int
    ) -> np.ndarray:
        """Per-tile rendering stacked beneath a fixed-height score header."""
        annotated = self.render_tiles(image, tiles)
        width = annotated.shape[1]

        header = np.empty((SUMMARY_HEIGHT, width, 3), dtype=np.uint8)
        header[:] = COLOR_SUMMARY_BG
        text = format_summary(total_score, len(tiles))
        (text_w, text_h), _ = cv2.getTextSize(text, LABEL_FONT, SUMMARY_FONT_SCALE, SUMMARY_THICKNESS)
        text_x = max(0, (width - text_w) // 2)
        text_y = (SUMMARY_HEIGHT + text_h) // 2
        cv2.putText(
            header,
            text,
            (text_x, text_y),
            LABEL_FONT,
            SUMMARY_FONT_SCALE,
            COLOR_SUMMARY_TEXT,
            SUMMARY_THICKNESS,
            cv2.LINE_AA,
        )
        return np.vstack([header, annotated])

    def annotate_image(self, image: ImageInput, tiles: Sequence[DetectedTile]) -> str:
        """
        Returns:
            JPEG data URI of the annotated image.

        Raises:
            AnnotationFailed: The image could not be decoded or rendered.
        """
        try:
            return encode_data_uri(self.render_tiles(image, tiles), quality=JPEG_QUALITY)
        except (ImageDecodeFailed, cv2.error, ValueError) as e:
            raise AnnotationFailed(f"Image annotation failed: {e}") from e

    def annotate_image_with_summary(
        self, image: ImageInput, tiles: Sequence[DetectedTile], total_score: int
    ) -> str:
        """
        Returns:
            JPEG data URI: score header band above the annotated image.

        Raises:
            AnnotationFailed: The image could not be decoded or rendered.
        """
        try:
            rendered = self.render_with_summary(image, tiles, total_score)
            return encode_data_uri(rendered, quality=JPEG_QUALITY)
        except (ImageDecodeFailed, cv2.error, ValueError) as e:
            raise AnnotationFailed(f"Image annotation with summary failed: {e}") from e
