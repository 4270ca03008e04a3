"""
Tests for strategy selection and the detection pipeline facade.
"""

import threading
from unittest.mock import MagicMock

import pytest

from detection.base import DetectionStrategy, StrategyKind, select_strategy_kind
from detection.custom_model import CustomModelStrategy
from detection.heuristic import HeuristicStrategy
from detection.remote_api import RemoteApiStrategy
from models.config import Config, DetectionConfig
from models.detection import BoundingBox, DetectedTile, DetectionResult
from models.errors import InferenceFailed
from pipeline.facade import DetectionPipeline, create_pipeline, create_strategy
from runtime.context import create_context


class FakeStrategy(DetectionStrategy):
    kind = StrategyKind.HEURISTIC

    def __init__(self, error=None):
        self.error = error
        self.threads = []
        self.preloaded = False

    def preload(self):
        self.preloaded = True

    def detect_and_annotate(self, image):
        self.threads.append(threading.current_thread().name)
        if self.error is not None:
            raise self.error
        tile = DetectedTile.create(BoundingBox(0, 0, 40, 20), left_pips=2, right_pips=3, confidence=0.7)
        return DetectionResult.from_tiles([tile], "data:image/jpeg;base64,AA==")


def config_with(**detection):
    return Config(detection=DetectionConfig(**detection))


class TestStrategySelection:
    @pytest.mark.parametrize(
        "custom,remote,expected",
        [
            (False, False, StrategyKind.HEURISTIC),
            (False, True, StrategyKind.REMOTE_API),
            (True, False, StrategyKind.CUSTOM_MODEL),
            (True, True, StrategyKind.CUSTOM_MODEL),
        ],
    )
    def test_precedence(self, custom, remote, expected):
        cfg = DetectionConfig(use_custom_model=custom, use_remote_api=remote)
        assert select_strategy_kind(cfg) == expected

    @pytest.mark.parametrize(
        "flags,strategy_type",
        [
            ({}, HeuristicStrategy),
            ({"use_remote_api": True}, RemoteApiStrategy),
            ({"use_custom_model": True, "use_remote_api": True}, CustomModelStrategy),
        ],
    )
    def test_create_strategy(self, flags, strategy_type):
        ctx = create_context(config_with(**flags))

        strategy = create_strategy(ctx)

        assert isinstance(strategy, strategy_type)
        assert strategy.kind == select_strategy_kind(ctx.config.detection)

    def test_context_does_not_load_models(self):
        ctx = create_context(Config())
        assert ctx.generic_loader.is_ready() is False
        assert ctx.custom_loader.is_ready() is False

    def test_remote_strategy_uses_context_session(self):
        session = MagicMock()
        ctx = create_context(config_with(use_remote_api=True), http_session=session)
        assert create_strategy(ctx).session is session


class TestDetectionPipeline:
    def _pipeline(self, strategy=None, **worker):
        config = Config()
        for key, value in worker.items():
            setattr(config.worker, key, value)
        return DetectionPipeline(create_context(config), strategy=strategy or FakeStrategy())

    def test_strategy_kind(self):
        assert self._pipeline().strategy_kind == StrategyKind.HEURISTIC

    def test_detect_sync_runs_inline_and_records_stats(self):
        strategy = FakeStrategy()
        pipeline = self._pipeline(strategy)

        result = pipeline.detect_sync("image")

        assert result.total_score == 5
        assert strategy.threads == [threading.current_thread().name]
        stats = pipeline.ctx.get_stats_copy()
        assert stats["detections"] == 1
        assert stats["last_total_score"] == 5

    def test_detect_uses_worker_once_started(self):
        strategy = FakeStrategy()
        pipeline = self._pipeline(strategy)
        pipeline.start()
        try:
            result = pipeline.detect("image")
            future_result = pipeline.detect_async("image").result(timeout=2)
        finally:
            pipeline.close()

        assert result.total_score == 5
        assert future_result.total_score == 5
        assert strategy.threads == ["detection-worker", "detection-worker"]

    def test_disabled_worker_runs_directly(self):
        strategy = FakeStrategy()
        pipeline = self._pipeline(strategy, enabled=False)
        pipeline.start()

        pipeline.detect("image")

        assert strategy.threads == [threading.current_thread().name]

    def test_errors_surface_unchanged(self, caplog):
        pipeline = self._pipeline(FakeStrategy(error=InferenceFailed("Remote API error: 500 - boom")))

        with caplog.at_level("ERROR"):
            with pytest.raises(InferenceFailed, match="500"):
                pipeline.detect_sync("image")
        assert "InferenceFailed" in caplog.text

    def test_preload_delegates(self):
        strategy = FakeStrategy()
        self._pipeline(strategy).preload()
        assert strategy.preloaded

    def test_create_pipeline_without_start(self):
        pipeline = create_pipeline(Config(), start=False)
        assert pipeline.worker.is_available is False
        assert pipeline.strategy_kind == StrategyKind.HEURISTIC

    def test_create_pipeline_starts_worker(self):
        ctx = create_context(Config())
        pipeline = create_pipeline(ctx.config, ctx=ctx)
        try:
            assert pipeline.worker.is_available
        finally:
            pipeline.close()


class TestRuntimeStats:
    def test_concurrent_detections_all_counted(self):
        ctx = create_context(Config())

        def record_many():
            for _ in range(500):
                ctx.record_detection(1, 3)

        threads = [threading.Thread(target=record_many) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = ctx.get_stats_copy()
        assert stats["detections"] == 4000
        assert stats["last_total_score"] == 3
