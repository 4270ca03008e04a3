"""
Scoped tensor ownership.

Tensors created for one detection are never shared. Wrapping them in a
ScopedTensor ties their release to a `with` block so every exit path,
including exceptions, drops the reference and returns accelerator memory.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import torch

_live_lock = threading.Lock()
_live_count = 0


def live_tensor_count() -> int:
    """Number of ScopedTensors acquired and not yet released (process-wide)."""
    with _live_lock:
        return _live_count


def _adjust_live(delta: int) -> None:
    global _live_count
    with _live_lock:
        _live_count += delta


class ScopedTensor:
    """
    Owns one tensor until release() (or the end of a `with` block).

    Example:
        with ScopedTensor(torch.from_numpy(pixels)) as t:
            model(t.tensor)
    """

    def __init__(self, tensor: torch.Tensor):
        self._tensor: Optional[torch.Tensor] = tensor
        self._device = tensor.device
        _adjust_live(1)

    @property
    def tensor(self) -> torch.Tensor:
        if self._tensor is None:
            raise RuntimeError("Tensor already released")
        return self._tensor

    @property
    def released(self) -> bool:
        return self._tensor is None

    def release(self) -> None:
        """Drop the tensor; safe to call more than once."""
        if self._tensor is None:
            return
        self._tensor = None
        _adjust_live(-1)
        if self._device.type == "cuda":
            torch.cuda.empty_cache()

    def __enter__(self) -> "ScopedTensor":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.release()


def _iter_tensors(value: Any) -> Iterator[torch.Tensor]:
    if isinstance(value, torch.Tensor):
        yield value
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_tensors(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_tensors(item)


@contextmanager
def scoped_outputs(output: Any) -> Iterator[Any]:
    """Release every tensor in a model output (tensor, sequence or dict) on exit."""
    handles = [ScopedTensor(t) for t in _iter_tensors(output)]
    try:
        yield output
    finally:
        for handle in handles:
            handle.release()
