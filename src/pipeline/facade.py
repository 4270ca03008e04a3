"""
Detection pipeline facade.

One strategy is chosen at construction from the detection flags; detect()
goes through the background worker when it is running, detect_sync()
always runs on the caller's thread with the same strategy.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Optional

from detection.base import DetectionStrategy, StrategyKind, select_strategy_kind
from detection.custom_model import CustomModelStrategy
from detection.heuristic import HeuristicStrategy
from detection.remote_api import RemoteApiStrategy
from models.config import Config
from models.detection import DetectionResult
from models.errors import DetectionError
from models.image import RawImage
from runtime.context import RuntimeContext, create_context
from .worker import DetectionWorkerService


def create_strategy(ctx: RuntimeContext) -> DetectionStrategy:
    cfg = ctx.config.detection
    kind = select_strategy_kind(cfg)
    logging.info(f"Detection strategy: {kind.value}")

    if kind == StrategyKind.CUSTOM_MODEL:
        return CustomModelStrategy(ctx.custom_loader, ctx.pip_counter, ctx.annotator)
    if kind == StrategyKind.REMOTE_API:
        return RemoteApiStrategy(cfg.remote_api, ctx.http_session, ctx.annotator)
    return HeuristicStrategy(
        ctx.generic_loader,
        cfg.heuristic,
        ctx.preprocessor,
        ctx.pip_counter,
        ctx.annotator,
    )


class DetectionPipeline:
    """
    Entry point for callers.

    Example:
        pipeline = create_pipeline(config)
        pipeline.preload()
        result = pipeline.detect(RawImage.from_file("table.jpg"))
        pipeline.close()
    """

    def __init__(
        self,
        ctx: RuntimeContext,
        strategy: Optional[DetectionStrategy] = None,
        worker: Optional[DetectionWorkerService] = None,
    ):
        self.ctx = ctx
        self.strategy = strategy or create_strategy(ctx)
        self.worker = worker or DetectionWorkerService(
            self.detect_sync,
            timeout_seconds=ctx.config.worker.timeout_seconds,
            enabled=ctx.config.worker.enabled,
        )

    @property
    def strategy_kind(self) -> StrategyKind:
        return self.strategy.kind

    def start(self) -> None:
        self.worker.initialize()

    def close(self) -> None:
        self.worker.terminate()

    def preload(self) -> None:
        self.strategy.preload()

    def detect_sync(self, image: RawImage) -> DetectionResult:
        """Run the strategy on the caller's thread, bypassing the worker."""
        try:
            result = self.strategy.detect_and_annotate(image)
        except DetectionError as e:
            logging.error(f"Detection failed ({e.__class__.__name__}): {e}")
            raise
        self.ctx.record_detection(len(result.tiles), result.total_score)
        return result

    def detect_async(self, image: RawImage) -> Future:
        return self.worker.detect_async(image)

    def detect(self, image: RawImage) -> DetectionResult:
        return self.worker.detect(image)


def create_pipeline(config: Config, ctx: Optional[RuntimeContext] = None, start: bool = True) -> DetectionPipeline:
    """Build context, strategy and worker; start the worker unless start=False."""
    pipeline = DetectionPipeline(ctx or create_context(config))
    if start:
        pipeline.start()
    return pipeline
