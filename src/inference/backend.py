"""
Inference backend interface and numeric backend initialization.

Backends return candidate boxes in the pixel space of the tensor they were
given; callers map them back to source-image coordinates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

import torch

ACCELERATED_BACKENDS = ("cuda", "mps")
VALID_BACKENDS = ("auto", "cuda", "mps", "cpu")


@dataclass(frozen=True)
class Candidate:
    """A raw detector output in (x, y, width, height) pixel form."""
    x: float
    y: float
    width: float
    height: float
    score: float
    class_name: Optional[str] = None


class ObjectDetector(Protocol):
    def detect(self, tensor: torch.Tensor) -> List[Candidate]:
        ...


def _accelerator_available(name: str) -> bool:
    if name == "cuda":
        return torch.cuda.is_available()
    if name == "mps":
        mps = getattr(torch.backends, "mps", None)
        return bool(mps is not None and mps.is_available())
    return False


def initialize_backend(preferred: str = "auto") -> str:
    """
    Pick the compute device for inference.

    Tries a hardware-accelerated device first ("auto" tries CUDA then MPS).
    Any failure degrades to "cpu" with a warning; this never raises.

    Returns:
        Device string usable with torch ("cuda", "mps" or "cpu").
    """
    if preferred == "cpu":
        logging.info("Inference backend: cpu (requested)")
        return "cpu"

    candidates = ACCELERATED_BACKENDS if preferred == "auto" else (preferred,)
    errors = []
    for name in candidates:
        try:
            if not _accelerator_available(name):
                raise RuntimeError(f"{name} not available")
            # A tiny allocation proves the device is usable, not just present
            torch.zeros(1, device=name)
            logging.info(f"Inference backend: {name}")
            return name
        except Exception as e:
            errors.append(f"{name}: {e}")

    logging.warning(
        f"Hardware-accelerated backend failed, falling back to CPU ({'; '.join(errors)})"
    )
    return "cpu"
