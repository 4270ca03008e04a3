"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class HeuristicConfig:
    """Generic-detector heuristic strategy configuration."""
    model: str = "yolov8n.pt"
    min_confidence: float = 0.3
    min_tile_size: int = 20
    min_aspect_ratio: float = 1.5
    max_aspect_ratio: float = 2.5

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HeuristicConfig":
        return cls(
            model=d.get("model", "yolov8n.pt"),
            min_confidence=d.get("min_confidence", 0.3),
            min_tile_size=d.get("min_tile_size", 20),
            min_aspect_ratio=d.get("min_aspect_ratio", 1.5),
            max_aspect_ratio=d.get("max_aspect_ratio", 2.5),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "min_confidence": self.min_confidence,
            "min_tile_size": self.min_tile_size,
            "min_aspect_ratio": self.min_aspect_ratio,
            "max_aspect_ratio": self.max_aspect_ratio,
        }


@dataclass
class CustomModelConfig:
    """Custom-trained model asset location."""
    descriptor_path: str = "models/custom-domino/model.yaml"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CustomModelConfig":
        return cls(descriptor_path=d.get("descriptor_path", "models/custom-domino/model.yaml"))

    def to_dict(self) -> Dict[str, Any]:
        return {"descriptor_path": self.descriptor_path}


@dataclass
class RemoteApiConfig:
    """Hosted inference API configuration."""
    api_key: Optional[str] = None
    model_name: str = "domino-point-counter-ubn6u"
    model_version: str = "1"
    endpoint: str = "https://detect.roboflow.com"
    min_confidence: float = 0.85
    timeout_seconds: float = 30.0

    @property
    def url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/{self.model_name}/{self.model_version}"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RemoteApiConfig":
        return cls(
            api_key=d.get("api_key"),
            model_name=d.get("model_name", "domino-point-counter-ubn6u"),
            model_version=str(d.get("model_version", "1")),
            endpoint=d.get("endpoint", "https://detect.roboflow.com"),
            min_confidence=d.get("min_confidence", 0.85),
            timeout_seconds=d.get("timeout_seconds", 30.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        # api_key is never serialized
        return {
            "model_name": self.model_name,
            "model_version": self.model_version,
            "endpoint": self.endpoint,
            "min_confidence": self.min_confidence,
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class DetectionConfig:
    """Detection strategy selection and per-strategy settings."""
    use_custom_model: bool = False
    use_remote_api: bool = False
    backend: str = "auto"
    heuristic: HeuristicConfig = field(default_factory=HeuristicConfig)
    custom_model: CustomModelConfig = field(default_factory=CustomModelConfig)
    remote_api: RemoteApiConfig = field(default_factory=RemoteApiConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DetectionConfig":
        return cls(
            use_custom_model=bool(d.get("use_custom_model", False)),
            use_remote_api=bool(d.get("use_remote_api", False)),
            backend=d.get("backend", "auto"),
            heuristic=HeuristicConfig.from_dict(d.get("heuristic") or {}),
            custom_model=CustomModelConfig.from_dict(d.get("custom_model") or {}),
            remote_api=RemoteApiConfig.from_dict(d.get("remote_api") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "use_custom_model": self.use_custom_model,
            "use_remote_api": self.use_remote_api,
            "backend": self.backend,
            "heuristic": self.heuristic.to_dict(),
            "custom_model": self.custom_model.to_dict(),
            "remote_api": self.remote_api.to_dict(),
        }


@dataclass
class PreprocessingConfig:
    """Image preprocessing configuration."""
    max_dimension: Optional[int] = None  # None = pick from device capabilities
    target_brightness: float = 128.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PreprocessingConfig":
        return cls(
            max_dimension=d.get("max_dimension"),
            target_brightness=d.get("target_brightness", 128.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_dimension": self.max_dimension,
            "target_brightness": self.target_brightness,
        }


@dataclass
class WorkerConfig:
    """Background detection worker configuration."""
    enabled: bool = True
    timeout_seconds: float = 30.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WorkerConfig":
        return cls(
            enabled=bool(d.get("enabled", True)),
            timeout_seconds=d.get("timeout_seconds", 30.0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "timeout_seconds": self.timeout_seconds}


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure.
    """
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    log_path: str = "logs/domino_vision.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            detection=DetectionConfig.from_dict(d.get("detection") or {}),
            preprocessing=PreprocessingConfig.from_dict(d.get("preprocessing") or {}),
            worker=WorkerConfig.from_dict(d.get("worker") or {}),
            log_path=d.get("log_path", "logs/domino_vision.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detection": self.detection.to_dict(),
            "preprocessing": self.preprocessing.to_dict(),
            "worker": self.worker.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }
