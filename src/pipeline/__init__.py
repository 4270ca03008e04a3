"""
Detection pipeline: strategy selection plus the optional background worker.
"""

from .facade import DetectionPipeline, create_pipeline, create_strategy
from .worker import DetectionWorker, DetectionWorkerService

__all__ = [
    "DetectionPipeline",
    "create_pipeline",
    "create_strategy",
    "DetectionWorker",
    "DetectionWorkerService",
]
