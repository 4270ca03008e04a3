"""
Image decoding and preprocessing for detection.

Preprocessing resizes the photo to a bounded size, evens out lighting and
hands back a model-ready tensor plus the scale factor needed to map boxes
found on the resized image back to the original.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import cv2
import numpy as np
import torch

from inference.tensors import ScopedTensor
from models.errors import ImageDecodeFailed, PreprocessFailed
from models.image import RawImage
from ops.performance import get_optimal_image_settings

TARGET_BRIGHTNESS = 128.0
# Brightness factor band inside which pixels are left untouched
MIN_BRIGHTNESS_FACTOR = 0.7
MAX_BRIGHTNESS_FACTOR = 1.3

ImageInput = Union[RawImage, bytes, str, np.ndarray]


def decode_image(image: ImageInput) -> np.ndarray:
    """
    Decode an image into a BGR uint8 array.

    Accepts a RawImage, encoded bytes, a base64 data URI, or an array that is
    already decoded (returned as is).

    Raises:
        ImageDecodeFailed: The payload is not a decodable image.
    """
    if isinstance(image, np.ndarray):
        if image.ndim != 3 or image.size == 0:
            raise ImageDecodeFailed(f"Expected an HxWx3 image array, got shape {image.shape}")
        return image

    try:
        if isinstance(image, RawImage):
            data = image.encoded_bytes()
        elif isinstance(image, str):
            data = RawImage(pixels=image, width=0, height=0).encoded_bytes()
        else:
            data = image
    except (binascii.Error, ValueError) as e:
        raise ImageDecodeFailed(f"Failed to decode image: invalid base64 payload ({e})") from e

    if not data:
        raise ImageDecodeFailed("Failed to decode image: empty payload")

    pixels = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
    if pixels is None or pixels.size == 0:
        raise ImageDecodeFailed("Failed to decode image: unsupported or corrupt data")
    return pixels


def encode_data_uri(pixels: np.ndarray, quality: int = 95) -> str:
    """Encode a BGR array as a JPEG data URI."""
    ok, buffer = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("Failed to encode image")
    return "data:image/jpeg;base64," + base64.b64encode(buffer.tobytes()).decode("ascii")


def compute_resize_dimensions(width: int, height: int, max_dimension: int) -> Tuple[int, int, float]:
    """
    Fit (width, height) inside max_dimension, preserving aspect ratio.

    Returns:
        (target_width, target_height, scale_factor); scale_factor is 1 when the
        image already fits.
    """
    max_dim = max(width, height)
    if max_dim <= max_dimension:
        return width, height, 1.0

    scale_factor = max_dimension / max_dim
    return (
        max(1, int(round(width * scale_factor))),
        max(1, int(round(height * scale_factor))),
        scale_factor,
    )


def resize_image(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    h, w = pixels.shape[:2]
    if (w, h) == (width, height):
        return pixels
    # INTER_AREA gives the cleanest downscale; upscaling never happens here
    return cv2.resize(pixels, (width, height), interpolation=cv2.INTER_AREA)


def mean_luminance(pixels: np.ndarray) -> float:
    """Mean of the per-pixel channel average."""
    return float(pixels[..., :3].astype(np.float64).mean())


def normalize_lighting(pixels: np.ndarray, target_brightness: float = TARGET_BRIGHTNESS) -> np.ndarray:
    """
    Scale all channels toward the target brightness.

    Images whose brightness factor already lies in [0.7, 1.3] are returned
    unchanged.
    """
    avg = mean_luminance(pixels)
    if avg <= 0:
        return pixels

    factor = target_brightness / avg
    if MIN_BRIGHTNESS_FACTOR <= factor <= MAX_BRIGHTNESS_FACTOR:
        return pixels

    logging.debug(f"Adjusting lighting: mean={avg:.1f}, factor={factor:.2f}")
    adjusted = np.clip(np.rint(pixels.astype(np.float32) * factor), 0, 255)
    return adjusted.astype(np.uint8)


def to_tensor(pixels: np.ndarray, device: str = "cpu") -> torch.Tensor:
    """BGR uint8 array -> HWC uint8 RGB tensor on device."""
    rgb = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
    return torch.from_numpy(np.ascontiguousarray(rgb)).to(device)


@dataclass
class PreprocessedImage:
    """
    Output of one preprocessing call.

    Use as a context manager; the tensor is released on exit:

        with preprocessor.preprocess(image) as processed:
            candidates = model.detect(processed.tensor)
    """
    scoped_tensor: ScopedTensor
    original_width: int
    original_height: int
    scale_factor: float

    @property
    def tensor(self) -> torch.Tensor:
        return self.scoped_tensor.tensor

    def release(self) -> None:
        self.scoped_tensor.release()

    def __enter__(self) -> "PreprocessedImage":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.release()


class ImagePreprocessor:
    """
    Resize, light-normalize and tensorize images for the generic detector.

    Args:
        max_dimension: Longest side after resize. None picks a value from the
            host's capabilities; it is fixed for the life of the instance.
        target_brightness: Mean luminance the lighting step aims for.
    """

    def __init__(self, max_dimension: Optional[int] = None, target_brightness: float = TARGET_BRIGHTNESS):
        if max_dimension is None:
            max_dimension = int(get_optimal_image_settings()["max_dimension"])
        if max_dimension <= 0:
            raise ValueError("max_dimension must be positive")
        self.max_dimension = max_dimension
        self.target_brightness = target_brightness

    def preprocess(self, image: ImageInput, device: str = "cpu") -> PreprocessedImage:
        """
        Raises:
            ImageDecodeFailed: The image could not be decoded.
            PreprocessFailed: Any later step failed.
        """
        pixels = decode_image(image)
        try:
            height, width = pixels.shape[:2]
            target_w, target_h, scale_factor = compute_resize_dimensions(width, height, self.max_dimension)
            resized = resize_image(pixels, target_w, target_h)
            adjusted = normalize_lighting(resized, self.target_brightness)
            tensor = to_tensor(adjusted, device)
        except Exception as e:
            raise PreprocessFailed(f"Image preprocessing failed: {e}") from e

        logging.debug(
            f"Preprocessed {width}x{height} -> {target_w}x{target_h} (scale={scale_factor:.4f})"
        )
        return PreprocessedImage(
            scoped_tensor=ScopedTensor(tensor),
            original_width=width,
            original_height=height,
            scale_factor=scale_factor,
        )
