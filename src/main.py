"""
Domino tile detection from the command line.

Runs the configured detection strategy on one or more photos, prints one JSON
result per image and writes the annotated review images.

Usage:
    python src/main.py --image table.jpg [--image other.jpg] --output-dir output

Arguments:
    --image: Photo to analyze (repeatable)
    --config: Path to configuration file
    --output-dir: Directory for annotated JPEGs
    --sync: Run on the calling thread instead of the background worker
    --preload: Load the detection model before the first image
"""

import os
import sys
import argparse
import base64
import json
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from inference.backend import VALID_BACKENDS
from models.config import Config
from models.errors import DetectionError
from models.image import RawImage
from ops.logging import setup_logging
from pipeline.facade import create_pipeline

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
TRUE_VALUES = ('1', 'true', 'yes', 'on')

# Environment variable -> (config key path, is boolean)
ENV_OVERRIDES = {
    'DOMINO_USE_CUSTOM_MODEL': (('detection', 'use_custom_model'), True),
    'DOMINO_USE_REMOTE_API': (('detection', 'use_remote_api'), True),
    'ROBOFLOW_API_KEY': (('detection', 'remote_api', 'api_key'), False),
    'ROBOFLOW_MODEL_NAME': (('detection', 'remote_api', 'model_name'), False),
    'ROBOFLOW_MODEL_VERSION': (('detection', 'remote_api', 'model_version'), False),
    'DOMINO_BACKEND': (('detection', 'backend'), False),
    'DOMINO_LOG_LEVEL': (('log_level',), False),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        config_dir = os.path.dirname(config_path)
        base_path = os.path.join(config_dir, "default.yaml")
        local_overrides_path = os.path.join(config_dir, "config.yaml")

        merged: Dict[str, Any] = _read_yaml(base_path) if os.path.exists(base_path) else {}
        if os.path.exists(local_overrides_path):
            merged = _deep_merge(merged, _read_yaml(local_overrides_path))

        if os.path.exists(config_path) and os.path.abspath(config_path) not in (
            os.path.abspath(local_overrides_path),
            os.path.abspath(base_path),
        ):
            merged = _deep_merge(merged, _read_yaml(config_path))

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Apply DOMINO_* / ROBOFLOW_* environment variables on top of the merged config."""
    environ = os.environ if environ is None else environ
    for var, (path, is_bool) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == '':
            continue
        value: Any = raw.strip().lower() in TRUE_VALUES if is_bool else raw

        node = config
        for key in path[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[path[-1]] = value
    return config


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_fraction(value: Any) -> bool:
    return _is_number(value) and 0 <= value <= 1


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    # Required top-level sections
    required_sections = ['detection', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    detection = config.get('detection') or {}
    if not isinstance(detection, dict):
        return False, "detection must be a mapping"

    for flag in ('use_custom_model', 'use_remote_api'):
        if flag in detection and not isinstance(detection[flag], bool):
            return False, f"detection.{flag} must be a boolean"

    backend = detection.get('backend', 'auto')
    if backend not in VALID_BACKENDS:
        return False, f"detection.backend must be one of: {', '.join(VALID_BACKENDS)}"

    heuristic = detection.get('heuristic') or {}
    if 'model' in heuristic and (not isinstance(heuristic['model'], str) or not heuristic['model']):
        return False, "detection.heuristic.model must be a non-empty string"
    if 'min_confidence' in heuristic and not _is_fraction(heuristic['min_confidence']):
        return False, "detection.heuristic.min_confidence must be between 0 and 1"
    if 'min_tile_size' in heuristic:
        size = heuristic['min_tile_size']
        if not _is_number(size) or size <= 0:
            return False, "detection.heuristic.min_tile_size must be a positive number"
    min_ar = heuristic.get('min_aspect_ratio', 1.5)
    max_ar = heuristic.get('max_aspect_ratio', 2.5)
    if not _is_number(min_ar) or not _is_number(max_ar) or min_ar < 1:
        return False, "detection.heuristic aspect ratios must be numbers >= 1"
    if min_ar > max_ar:
        return False, "detection.heuristic.min_aspect_ratio must not exceed max_aspect_ratio"

    custom = detection.get('custom_model') or {}
    if 'descriptor_path' in custom and not isinstance(custom['descriptor_path'], str):
        return False, "detection.custom_model.descriptor_path must be a string"

    remote = detection.get('remote_api') or {}
    if 'min_confidence' in remote and not _is_fraction(remote['min_confidence']):
        return False, "detection.remote_api.min_confidence must be between 0 and 1"
    if 'timeout_seconds' in remote:
        timeout = remote['timeout_seconds']
        if not _is_number(timeout) or timeout <= 0:
            return False, "detection.remote_api.timeout_seconds must be a positive number"
    # Custom model takes precedence, so a key is only needed when the remote API is selected
    if detection.get('use_remote_api') and not detection.get('use_custom_model'):
        if not remote.get('api_key'):
            return False, "detection.remote_api.api_key is required when use_remote_api is enabled"

    preprocessing = config.get('preprocessing') or {}
    max_dimension = preprocessing.get('max_dimension')
    if max_dimension is not None and (not isinstance(max_dimension, int) or isinstance(max_dimension, bool) or max_dimension <= 0):
        return False, "preprocessing.max_dimension must be a positive integer"
    if 'target_brightness' in preprocessing:
        brightness = preprocessing['target_brightness']
        if not _is_number(brightness) or not (0 < brightness <= 255):
            return False, "preprocessing.target_brightness must be between 0 and 255"

    worker = config.get('worker') or {}
    if 'enabled' in worker and not isinstance(worker['enabled'], bool):
        return False, "worker.enabled must be a boolean"
    if 'timeout_seconds' in worker:
        timeout = worker['timeout_seconds']
        if not _is_number(timeout) or timeout <= 0:
            return False, "worker.timeout_seconds must be a positive number"

    # Validate log settings
    if config['log_level'] not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    return True, None


def write_annotated_image(data_uri: str, output_dir: str, source_path: str) -> str:
    os.makedirs(output_dir, exist_ok=True)
    name = os.path.splitext(os.path.basename(source_path))[0]
    output_path = os.path.join(output_dir, f"{name}_annotated.jpg")
    with open(output_path, "wb") as f:
        f.write(base64.b64decode(data_uri.split(",", 1)[1]))
    return output_path


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description='Domino tile detection')
    parser.add_argument('--image', action='append', required=True,
                        help='Image file to analyze (repeatable)')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--output-dir', type=str, default='output',
                        help='Directory for annotated images')
    parser.add_argument('--sync', action='store_true',
                        help='Run detection on the main thread (no background worker)')
    parser.add_argument('--preload', action='store_true',
                        help='Load the detection model before processing images')
    args = parser.parse_args()

    load_dotenv()
    raw_config = apply_env_overrides(load_config(args.config))

    is_valid, error_msg = validate_config(raw_config)
    if not is_valid:
        # Logging is not configured yet
        print(f"Configuration validation failed: {error_msg}", file=sys.stderr)
        sys.exit(1)

    config = Config.from_dict(raw_config)
    setup_logging(config.log_path, config.log_level)
    logging.info("Starting domino detection")

    pipeline = create_pipeline(config, start=not args.sync)
    logging.info(f"Using {pipeline.strategy_kind.value} strategy")

    exit_code = 0
    try:
        if args.preload:
            try:
                pipeline.preload()
            except DetectionError as e:
                logging.error(f"Preload failed: {e}")
                sys.exit(1)

        for path in args.image:
            try:
                image = RawImage.from_file(path)
                result = pipeline.detect_sync(image) if args.sync else pipeline.detect(image)
            except (OSError, DetectionError) as e:
                logging.error(f"Detection failed for {path}: {e}")
                exit_code = 1
                continue

            output_path = write_annotated_image(result.annotated_image, args.output_dir, path)
            logging.info(f"Annotated image written to {output_path}")
            payload = {"image": path, "annotated_path": output_path}
            payload.update(result.to_dict(include_image=False))
            print(json.dumps(payload))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    finally:
        pipeline.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
