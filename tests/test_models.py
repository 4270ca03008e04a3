"""
Smoke tests for typed models and adapters.
"""

import base64

import pytest

from models.detection import (
    BoundingBox,
    DetectedTile,
    DetectionResult,
    average_confidence,
    total_score,
)
from models.image import RawImage
from models.config import (
    Config,
    DetectionConfig,
    HeuristicConfig,
    RemoteApiConfig,
    WorkerConfig,
)


class TestBoundingBox:
    def test_properties(self):
        bbox = BoundingBox(x=100, y=100, width=100, height=50)
        assert bbox.x2 == 200
        assert bbox.y2 == 150
        assert bbox.center == (150.0, 125.0)
        assert bbox.aspect_ratio == 2.0

    def test_aspect_ratio_is_orientation_independent(self):
        assert BoundingBox(x=0, y=0, width=30, height=60).aspect_ratio == 2.0

    def test_as_int_tuple(self):
        bbox = BoundingBox(x=10.4, y=20.6, width=20, height=20)
        assert bbox.as_int_tuple() == (10, 21, 30, 41)

    def test_from_center(self):
        bbox = BoundingBox.from_center(100, 50, 40, 20)
        assert bbox.x == 80
        assert bbox.y == 40
        assert bbox.width == 40

    @pytest.mark.parametrize("w,h", [(0, 10), (10, 0), (-5, 10)])
    def test_non_positive_size_rejected(self, w, h):
        with pytest.raises(ValueError):
            BoundingBox(x=0, y=0, width=w, height=h)

    def test_rescale_round_trip_within_one_pixel(self):
        bbox = BoundingBox(x=123, y=457, width=211, height=97, rotation_degrees=90)
        for scale in (0.25, 0.3333, 0.78125, 1.0):
            resized = bbox.scaled(scale)
            back = BoundingBox(
                x=round(resized.x),
                y=round(resized.y),
                width=round(resized.width),
                height=round(resized.height),
            ).divided_by(scale)
            assert abs(back.x - bbox.x) <= 1 / scale
            restored = back.scaled(scale)
            assert abs(restored.x - resized.x) <= 1
            assert abs(restored.width - resized.width) <= 1
        assert bbox.scaled(0.5).rotation_degrees == 90


class TestDetectedTile:
    def _box(self):
        return BoundingBox(x=0, y=0, width=40, height=20)

    def test_create_derives_total(self):
        tile = DetectedTile.create(self._box(), left_pips=6, right_pips=4, confidence=0.8)
        assert tile.total_pips == 10
        assert tile.id

    def test_ids_are_unique(self):
        assert DetectedTile.create(self._box()).id != DetectedTile.create(self._box()).id

    def test_inconsistent_total_rejected(self):
        with pytest.raises(ValueError):
            DetectedTile(self._box(), left_pips=1, right_pips=1, total_pips=3)

    @pytest.mark.parametrize("left,right", [(13, 0), (0, 13), (-1, 0)])
    def test_pips_out_of_range_rejected(self, left, right):
        with pytest.raises(ValueError):
            DetectedTile.create(self._box(), left_pips=left, right_pips=right)

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            DetectedTile.create(self._box(), confidence=1.5)

    def test_to_dict(self):
        d = DetectedTile.create(self._box(), left_pips=2, right_pips=3, confidence=0.5).to_dict()
        assert d["total_pips"] == 5
        assert d["bounding_box"]["width"] == 40


class TestDetectionResult:
    def _tile(self, left, right, confidence):
        return DetectedTile.create(
            BoundingBox(x=0, y=0, width=40, height=20),
            left_pips=left,
            right_pips=right,
            confidence=confidence,
        )

    def test_from_tiles_derives_score_and_confidence(self):
        tiles = [self._tile(6, 6, 0.8), self._tile(0, 3, 0.4)]
        result = DetectionResult.from_tiles(tiles, "data:image/jpeg;base64,AA==")
        assert result.total_score == 15
        assert result.confidence == pytest.approx(0.6)
        assert isinstance(result.tiles, tuple)

    def test_empty_result(self):
        result = DetectionResult.from_tiles([], "data:image/jpeg;base64,AA==")
        assert result.tiles == ()
        assert result.total_score == 0
        assert result.confidence == 0.0

    def test_helpers(self):
        tiles = [self._tile(1, 2, 0.2), self._tile(3, 0, 0.6)]
        assert total_score(tiles) == 6
        assert average_confidence(tiles) == pytest.approx(0.4)
        assert average_confidence([]) == 0.0

    def test_to_dict_can_omit_image(self):
        result = DetectionResult.from_tiles([self._tile(1, 1, 0.5)], "data:image/jpeg;base64,AA==")
        assert "annotated_image" in result.to_dict()
        d = result.to_dict(include_image=False)
        assert "annotated_image" not in d
        assert d["total_score"] == 2


class TestRawImage:
    def test_from_bytes_reads_dimensions(self, gray_image):
        assert gray_image.width == 400
        assert gray_image.height == 300

    def test_data_uri_round_trip(self, gray_image):
        uri = gray_image.to_data_uri()
        assert uri.startswith("data:image/jpeg;base64,")
        again = RawImage.from_data_uri(uri)
        assert again.is_data_uri
        assert again.width == 400
        assert again.encoded_bytes() == gray_image.encoded_bytes()

    def test_base64_payload_has_no_prefix(self, gray_image):
        payload = gray_image.base64_payload()
        assert not payload.startswith("data:")
        assert base64.b64decode(payload) == gray_image.pixels

    def test_from_data_uri_rejects_plain_text(self):
        with pytest.raises(ValueError):
            RawImage.from_data_uri("not a uri")

    def test_from_file(self, tmp_path, gray_image):
        path = tmp_path / "table.jpg"
        path.write_bytes(gray_image.pixels)
        image = RawImage.from_file(str(path))
        assert (image.width, image.height) == (400, 300)


class TestConfigModels:
    def test_defaults(self):
        cfg = Config.from_dict({})
        assert cfg.detection.use_custom_model is False
        assert cfg.detection.use_remote_api is False
        assert cfg.detection.heuristic.min_confidence == 0.3
        assert cfg.detection.remote_api.min_confidence == 0.85
        assert cfg.worker.timeout_seconds == 30.0
        assert cfg.preprocessing.max_dimension is None

    def test_from_dict(self, valid_config):
        cfg = Config.from_dict(valid_config)
        assert isinstance(cfg.detection, DetectionConfig)
        assert isinstance(cfg.detection.heuristic, HeuristicConfig)
        assert isinstance(cfg.worker, WorkerConfig)
        assert cfg.preprocessing.max_dimension == 1024
        assert cfg.log_level == "INFO"

    def test_remote_url(self):
        cfg = RemoteApiConfig(endpoint="https://detect.roboflow.com/", model_name="m", model_version="3")
        assert cfg.url == "https://detect.roboflow.com/m/3"

    def test_api_key_never_serialized(self):
        cfg = RemoteApiConfig.from_dict({"api_key": "secret"})
        assert cfg.api_key == "secret"
        assert "api_key" not in cfg.to_dict()
        assert "secret" not in str(Config(detection=DetectionConfig(remote_api=cfg)).to_dict())

    def test_to_dict_round_trip(self, valid_config):
        cfg = Config.from_dict(valid_config)
        assert Config.from_dict(cfg.to_dict()) == cfg
