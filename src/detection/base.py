"""
Detection strategy interface.

Three interchangeable backends produce a DetectionResult from a RawImage:
- heuristic: generic pretrained detector + shape filter + pip counting
- custom_model: domain-trained model whose labels may carry pip counts
- remote_api: hosted inference service returning one box per domino half
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from models.config import DetectionConfig
from models.detection import DetectionResult
from models.image import RawImage


class StrategyKind(str, Enum):
    HEURISTIC = "heuristic"
    CUSTOM_MODEL = "custom_model"
    REMOTE_API = "remote_api"


def select_strategy_kind(cfg: DetectionConfig) -> StrategyKind:
    """Custom model wins over the remote API; the heuristic is the default."""
    if cfg.use_custom_model:
        return StrategyKind.CUSTOM_MODEL
    if cfg.use_remote_api:
        return StrategyKind.REMOTE_API
    return StrategyKind.HEURISTIC


class DetectionStrategy(ABC):
    """Detects domino tiles and renders the annotated review image."""

    kind: StrategyKind

    @abstractmethod
    def detect_and_annotate(self, image: RawImage) -> DetectionResult:
        raise NotImplementedError

    def preload(self) -> None:
        """Warm up whatever the strategy needs (no-op by default)."""
