"""
Tests for device heuristics, timing and logging helpers.
"""

import base64
import logging

import pytest

from main import write_annotated_image
from ops import performance
from ops.logging import setup_logging
from ops.performance import get_optimal_image_settings, measure_performance


@pytest.fixture
def fresh_settings():
    get_optimal_image_settings.cache_clear()
    yield
    get_optimal_image_settings.cache_clear()


class TestImageSettings:
    def test_low_end_device(self, monkeypatch, fresh_settings):
        monkeypatch.setattr(performance.os, "cpu_count", lambda: 2)
        monkeypatch.setattr(performance.torch.cuda, "is_available", lambda: False)

        assert performance.is_low_end_device() is True
        assert get_optimal_image_settings()["max_dimension"] == 800

    def test_capable_device(self, monkeypatch, fresh_settings):
        monkeypatch.setattr(performance.os, "cpu_count", lambda: 16)

        assert performance.is_low_end_device() is False
        assert get_optimal_image_settings()["max_dimension"] == 1024

    def test_settings_fixed_for_the_run(self, monkeypatch, fresh_settings):
        monkeypatch.setattr(performance.os, "cpu_count", lambda: 16)
        first = get_optimal_image_settings()
        monkeypatch.setattr(performance.os, "cpu_count", lambda: 1)
        monkeypatch.setattr(performance.torch.cuda, "is_available", lambda: False)

        assert get_optimal_image_settings() is first


class TestMeasurePerformance:
    def test_logs_elapsed(self, caplog):
        with caplog.at_level("INFO"):
            with measure_performance("Unit step"):
                pass
        assert "[Performance] Unit step:" in caplog.text
        assert "ms" in caplog.text

    def test_logs_failure_and_reraises(self, caplog):
        with caplog.at_level("INFO"):
            with pytest.raises(ValueError):
                with measure_performance("Broken step"):
                    raise ValueError("nope")
        assert "[Performance] Broken step (failed):" in caplog.text


class TestSetupLogging:
    def test_creates_log_directory(self, tmp_path, monkeypatch):
        root = logging.getLogger()
        monkeypatch.setattr(root, "handlers", [])
        log_path = tmp_path / "logs" / "run.log"

        setup_logging(str(log_path), "debug")
        logging.info("hello from the test")
        for handler in root.handlers:
            handler.flush()

        assert log_path.exists()
        assert "hello from the test" in log_path.read_text()
        assert logging.getLogger("ultralytics").level == logging.WARNING
        for handler in root.handlers:
            handler.close()


class TestWriteAnnotatedImage:
    def test_writes_jpeg_bytes(self, tmp_path):
        payload = b"\xff\xd8fake-jpeg"
        uri = "data:image/jpeg;base64," + base64.b64encode(payload).decode("ascii")

        path = write_annotated_image(uri, str(tmp_path / "out"), "/photos/table one.jpg")

        assert path.endswith("table one_annotated.jpg")
        with open(path, "rb") as f:
            assert f.read() == payload
