"""
Device capability heuristics and timing helpers.
"""

from __future__ import annotations

import functools
import logging
import os
import time
from contextlib import contextmanager
from typing import Dict, Iterator

import torch

LOW_END_MAX_DIMENSION = 800
DEFAULT_MAX_DIMENSION = 1024
LOW_END_CPU_COUNT = 4


def is_low_end_device() -> bool:
    """A host with few CPU cores and no CUDA device counts as constrained."""
    cpu_count = os.cpu_count() or 1
    return cpu_count < LOW_END_CPU_COUNT and not torch.cuda.is_available()


@functools.lru_cache(maxsize=1)
def get_optimal_image_settings() -> Dict[str, float]:
    """
    Image processing limits for this host.

    Cached for the life of the process so every detection in a run uses the
    same max dimension.
    """
    if is_low_end_device():
        settings = {"max_dimension": LOW_END_MAX_DIMENSION, "quality": 0.7}
    else:
        settings = {"max_dimension": DEFAULT_MAX_DIMENSION, "quality": 0.85}
    logging.info(f"Image settings: max_dimension={settings['max_dimension']}")
    return settings


@contextmanager
def measure_performance(name: str) -> Iterator[None]:
    """Log how long the wrapped block took, whether it succeeded or not."""
    start = time.perf_counter()
    try:
        yield
    except Exception:
        elapsed = (time.perf_counter() - start) * 1000
        logging.info(f"[Performance] {name} (failed): {elapsed:.2f}ms")
        raise
    elapsed = (time.perf_counter() - start) * 1000
    logging.info(f"[Performance] {name}: {elapsed:.2f}ms")
