"""
Typed models for the domino detection pipeline.

Data passed between the pipeline stages and handed back to callers.
"""

from .image import RawImage
from .detection import BoundingBox, DetectedTile, DetectionResult, MAX_PIP_COUNT
from .errors import (
    DetectionError,
    ModelLoadFailed,
    ImageDecodeFailed,
    PreprocessFailed,
    InferenceFailed,
    AnnotationFailed,
    DetectionTimeout,
    WorkerFatal,
)
from .config import (
    Config,
    DetectionConfig,
    HeuristicConfig,
    CustomModelConfig,
    RemoteApiConfig,
    PreprocessingConfig,
    WorkerConfig,
)

__all__ = [
    # Image
    "RawImage",
    # Detection
    "BoundingBox",
    "DetectedTile",
    "DetectionResult",
    "MAX_PIP_COUNT",
    # Errors
    "DetectionError",
    "ModelLoadFailed",
    "ImageDecodeFailed",
    "PreprocessFailed",
    "InferenceFailed",
    "AnnotationFailed",
    "DetectionTimeout",
    "WorkerFatal",
    # Config
    "Config",
    "DetectionConfig",
    "HeuristicConfig",
    "CustomModelConfig",
    "RemoteApiConfig",
    "PreprocessingConfig",
    "WorkerConfig",
]
