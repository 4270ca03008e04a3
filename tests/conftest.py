"""
Pytest configuration and shared fixtures.
"""

import os
import sys

import cv2
import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models.image import RawImage  # noqa: E402


def encode_jpeg(pixels: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".jpg", pixels, [int(cv2.IMWRITE_JPEG_QUALITY), 95])
    assert ok
    return buffer.tobytes()


@pytest.fixture
def jpeg():
    """Encoder for building RawImages from arrays inside tests."""
    return encode_jpeg


@pytest.fixture
def gray_pixels():
    """A 400x300 mid-gray BGR image."""
    return np.full((300, 400, 3), 128, dtype=np.uint8)


@pytest.fixture
def gray_image(gray_pixels):
    return RawImage.from_bytes(encode_jpeg(gray_pixels))


@pytest.fixture
def domino_pixels():
    """A 400x300 dark table with one white 120x60 tile carrying dark pips."""
    pixels = np.full((300, 400, 3), 30, dtype=np.uint8)
    cv2.rectangle(pixels, (100, 100), (220, 160), (240, 240, 240), -1)
    for cx, cy in ((125, 115), (145, 145), (185, 130)):
        cv2.circle(pixels, (cx, cy), 6, (10, 10, 10), -1)
    return pixels


@pytest.fixture
def domino_image(domino_pixels):
    return RawImage.from_bytes(encode_jpeg(domino_pixels))


@pytest.fixture
def temp_config_dir(tmp_path):
    """Create a temporary config directory with default.yaml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    default_yaml = config_dir / "default.yaml"
    default_yaml.write_text("""
detection:
  use_custom_model: false
  use_remote_api: false
  backend: "cpu"
  heuristic:
    model: "yolov8n.pt"
    min_confidence: 0.3
  remote_api:
    model_name: "domino-point-counter-ubn6u"
    model_version: "1"

worker:
  enabled: true
  timeout_seconds: 30

log_path: "logs/test.log"
log_level: "INFO"
""")

    return config_dir


@pytest.fixture
def valid_config():
    """Return a valid configuration dictionary."""
    return {
        "detection": {
            "use_custom_model": False,
            "use_remote_api": False,
            "backend": "auto",
            "heuristic": {
                "model": "yolov8n.pt",
                "min_confidence": 0.3,
                "min_tile_size": 20,
                "min_aspect_ratio": 1.5,
                "max_aspect_ratio": 2.5,
            },
            "custom_model": {"descriptor_path": "models/custom-domino/model.yaml"},
            "remote_api": {
                "model_name": "domino-point-counter-ubn6u",
                "model_version": "1",
                "min_confidence": 0.85,
                "timeout_seconds": 30,
            },
        },
        "preprocessing": {"max_dimension": 1024, "target_brightness": 128},
        "worker": {"enabled": True, "timeout_seconds": 30},
        "log_path": "logs/test.log",
        "log_level": "INFO",
    }
