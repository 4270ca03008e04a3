"""
Model lifecycle management.

A ModelLoader owns one model handle and its load state. Loading is lazy,
memoized and safe to call from many threads at once: while a load is in
flight every caller waits on the same future, so the model is loaded once.

State machine:
    idle -> loading -> loaded | error
    error -> loading   (explicit retry by calling load_model again)
    loaded -> idle     (unload)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import torch

from models.errors import ModelLoadFailed
from .backend import initialize_backend

ModelFactory = Callable[[str], Any]
BackendInitializer = Callable[[str], str]


class ModelLoadingState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class ModelLoaderStatus:
    state: ModelLoadingState
    error: Optional[str] = None


class ModelLoader:
    """
    Lazily initializes the compute backend and loads a model.

    Args:
        model_factory: Called with the device string; returns the model.
        name: Human-readable model name for log lines.
        preferred_backend: "auto", "cuda", "mps" or "cpu".
        backend_initializer: Device selection function (never raises).
    """

    def __init__(
        self,
        model_factory: ModelFactory,
        name: str = "model",
        preferred_backend: str = "auto",
        backend_initializer: BackendInitializer = initialize_backend,
    ):
        self.name = name
        self._model_factory = model_factory
        self._preferred_backend = preferred_backend
        self._backend_initializer = backend_initializer
        self._lock = threading.Lock()
        self._model: Any = None
        self._state = ModelLoadingState.IDLE
        self._error: Optional[str] = None
        self._inflight: Optional[Future] = None
        self.device: Optional[str] = None

    def load_model(self) -> Any:
        """
        Return the loaded model, loading it first if needed.

        Raises:
            ModelLoadFailed: The backend came up but the model failed to load.
        """
        with self._lock:
            if self._model is not None and self._state == ModelLoadingState.LOADED:
                return self._model
            if self._inflight is not None:
                future = self._inflight
                owner = False
            else:
                future = Future()
                self._inflight = future
                self._state = ModelLoadingState.LOADING
                self._error = None
                owner = True

        if not owner:
            return future.result()

        try:
            device = self._backend_initializer(self._preferred_backend)
            logging.info(f"Loading {self.name} on {device}...")
            model = self._model_factory(device)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            with self._lock:
                self._state = ModelLoadingState.ERROR
                self._error = message
                self._inflight = None
            logging.error(f"Failed to load {self.name}: {message}")
            error = ModelLoadFailed(f"Model loading failed: {message}")
            future.set_exception(error)
            raise error from e

        with self._lock:
            self._model = model
            self.device = device
            self._state = ModelLoadingState.LOADED
            self._inflight = None
        logging.info(f"{self.name} loaded successfully")
        future.set_result(model)
        return model

    def get_status(self) -> ModelLoaderStatus:
        with self._lock:
            return ModelLoaderStatus(state=self._state, error=self._error)

    def get_model(self) -> Any:
        """Return the loaded model without triggering a load."""
        with self._lock:
            if self._model is None or self._state != ModelLoadingState.LOADED:
                raise ModelLoadFailed("Model not loaded. Call load_model() first.")
            return self._model

    def is_ready(self) -> bool:
        with self._lock:
            return self._state == ModelLoadingState.LOADED and self._model is not None

    def unload(self) -> None:
        """Drop the model handle and free accelerator memory."""
        with self._lock:
            if self._model is None:
                return
            device = self.device
            self._model = None
            self.device = None
            self._state = ModelLoadingState.IDLE
            self._error = None
        if device == "cuda":
            torch.cuda.empty_cache()
        logging.info(f"{self.name} unloaded and memory freed")
