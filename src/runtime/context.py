from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, Optional

import requests

from annotation.annotator import ImageAnnotator
from detection.pip_counter import PipCounter
from imaging.preprocessor import ImagePreprocessor
from inference.custom_model import load_custom_model
from inference.model_loader import ModelLoader
from inference.ultralytics_backend import load_ultralytics_detector
from models.config import Config


@dataclass
class RuntimeContext:
    """Holds model handles and shared services for one process; avoids global singletons."""

    config: Config
    generic_loader: ModelLoader
    custom_loader: ModelLoader
    preprocessor: ImagePreprocessor
    pip_counter: PipCounter
    annotator: ImageAnnotator
    http_session: Any = None

    # Observability
    stats: Dict[str, Any] = field(default_factory=dict)
    stats_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_detection(self, tile_count: int, total_score: int):
        with self.stats_lock:
            self.stats["detections"] = self.stats.get("detections", 0) + 1
            self.stats["last_tile_count"] = tile_count
            self.stats["last_total_score"] = total_score
            self.stats["last_detection_ts"] = time.time()

    def get_stats_copy(self):
        with self.stats_lock:
            return dict(self.stats)


def create_context(config: Config, http_session: Optional[requests.Session] = None) -> RuntimeContext:
    """Build the runtime context. Loaders are lazy; nothing is loaded here."""
    detection = config.detection
    generic_loader = ModelLoader(
        partial(load_ultralytics_detector, detection.heuristic.model),
        name=f"generic detector ({detection.heuristic.model})",
        preferred_backend=detection.backend,
    )
    custom_loader = ModelLoader(
        partial(load_custom_model, detection.custom_model.descriptor_path),
        name="custom domino model",
        preferred_backend=detection.backend,
    )
    return RuntimeContext(
        config=config,
        generic_loader=generic_loader,
        custom_loader=custom_loader,
        preprocessor=ImagePreprocessor(
            max_dimension=config.preprocessing.max_dimension,
            target_brightness=config.preprocessing.target_brightness,
        ),
        pip_counter=PipCounter(),
        annotator=ImageAnnotator(),
        http_session=http_session,
    )
