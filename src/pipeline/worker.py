"""
Background detection worker.

The worker is a single daemon thread reachable only through its inbox
queue. Each request carries an id ("req_N"); the service keeps a pending
table of id -> (future, timer) and resolves the future when the matching
response arrives, when the worker reports an error, or when the timer
fires. Every path removes the pending entry.

If the worker thread dies, every pending request is rejected with
WorkerFatal and the service runs detections directly (on the caller's
thread) until initialize() is called again.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from models.detection import DetectionResult
from models.errors import DetectionError, DetectionTimeout, InferenceFailed, WorkerFatal
from models.image import RawImage

DetectHandler = Callable[[RawImage], DetectionResult]
MessageCallback = Callable[[str, str, Any], None]
FatalCallback = Callable[[BaseException], None]

DEFAULT_TIMEOUT_SECONDS = 30.0

_STOP = object()


def drain_inbox(inbox: "queue.Queue[Any]") -> int:
    """Remove every queued message; returns how many were dropped."""
    dropped = 0
    while True:
        try:
            inbox.get_nowait()
        except queue.Empty:
            return dropped
        dropped += 1


@dataclass
class PendingRequest:
    future: Future
    timer: threading.Timer


class DetectionWorker(threading.Thread):
    """
    Single-threaded actor: takes ("detect", request_id, image) messages off
    its inbox and answers each with ("result" | "error", request_id, payload).
    """

    def __init__(self, handler: DetectHandler, on_message: MessageCallback, on_fatal: FatalCallback):
        super().__init__(name="detection-worker", daemon=True)
        self.inbox: "queue.Queue[Any]" = queue.Queue()
        self._handler = handler
        self._on_message = on_message
        self._on_fatal = on_fatal

    def stop(self) -> None:
        self.inbox.put(_STOP)

    def run(self) -> None:
        try:
            while True:
                message = self.inbox.get()
                if message is _STOP:
                    return
                self._process(message)
        except Exception as e:
            self._on_fatal(e)

    def _process(self, message: Any) -> None:
        kind, request_id, image = message
        if kind != "detect":
            raise ValueError(f"Unknown worker message type: {kind!r}")

        try:
            result = self._handler(image)
        except DetectionError as e:
            self._on_message("error", request_id, e)
            return
        except Exception as e:
            self._on_message("error", request_id, InferenceFailed(f"Detection failed: {e}"))
            return
        self._on_message("result", request_id, result)


class DetectionWorkerService:
    """
    Dispatches detections to the background worker with per-request timeouts.

    Args:
        handler: The synchronous detection function run by the worker.
        timeout_seconds: Time allowed for each request before DetectionTimeout.
        enabled: When False the service always runs detections directly.
    """

    def __init__(
        self,
        handler: DetectHandler,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        enabled: bool = True,
    ):
        self._handler = handler
        self.timeout_seconds = timeout_seconds
        self.enabled = enabled
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingRequest] = {}
        self._ids = itertools.count(1)
        self._worker: Optional[DetectionWorker] = None
        self._usable = False

    @property
    def is_available(self) -> bool:
        with self._lock:
            return self._usable and self._worker is not None and self._worker.is_alive()

    def initialize(self) -> bool:
        """Start (or restart) the worker thread. Returns False when disabled."""
        if not self.enabled:
            logging.info("Detection worker disabled, running detections directly")
            return False

        with self._lock:
            if self._usable and self._worker is not None and self._worker.is_alive():
                return True
            previous = self._worker
            self._worker = DetectionWorker(self._handler, self._handle_message, self._handle_fatal)
            self._worker.start()
            self._usable = True

        if previous is not None and previous.is_alive():
            previous.stop()
        logging.info("Detection worker started")
        return True

    def terminate(self) -> None:
        """Stop the worker; requests still pending are rejected."""
        with self._lock:
            worker = self._worker
            self._worker = None
            self._usable = False
            pending = list(self._pending.values())
            self._pending.clear()

        if worker is not None:
            discarded = drain_inbox(worker.inbox)
            if discarded:
                logging.info(f"Discarded {discarded} queued detection request(s)")
            worker.stop()
        for request in pending:
            request.timer.cancel()
            request.future.set_exception(WorkerFatal("Detection worker terminated"))
        logging.info("Detection worker terminated")

    def pending_request_ids(self) -> List[str]:
        with self._lock:
            return list(self._pending.keys())

    def detect_async(self, image: RawImage) -> Future:
        """Submit a detection; the returned future resolves to a DetectionResult."""
        with self._lock:
            worker = self._worker if self._usable else None
            if worker is not None and worker.is_alive():
                request_id = f"req_{next(self._ids)}"
                future: Future = Future()
                # Callers cannot cancel a request once it is queued
                future.set_running_or_notify_cancel()
                timer = threading.Timer(self.timeout_seconds, self._expire, args=(request_id,))
                timer.daemon = True
                self._pending[request_id] = PendingRequest(future=future, timer=timer)
            else:
                worker = None

        if worker is None:
            return self._run_direct(image)

        timer.start()
        worker.inbox.put(("detect", request_id, image))
        return future

    def detect(self, image: RawImage) -> DetectionResult:
        return self.detect_async(image).result()

    def _run_direct(self, image: RawImage) -> Future:
        future: Future = Future()
        try:
            future.set_result(self._handler(image))
        except Exception as e:
            future.set_exception(e)
        return future

    def _take(self, request_id: str) -> Optional[PendingRequest]:
        with self._lock:
            return self._pending.pop(request_id, None)

    def _expire(self, request_id: str) -> None:
        request = self._take(request_id)
        if request is None:
            return
        logging.warning(f"Detection request {request_id} timed out after {self.timeout_seconds}s")
        request.future.set_exception(
            DetectionTimeout(f"Detection timed out after {self.timeout_seconds} seconds")
        )

    def _handle_message(self, kind: str, request_id: str, payload: Any) -> None:
        request = self._take(request_id)
        if request is None:
            # Already timed out
            logging.debug(f"Dropping late {kind} for {request_id}")
            return
        request.timer.cancel()
        if kind == "result":
            request.future.set_result(payload)
        else:
            request.future.set_exception(payload)

    def _handle_fatal(self, error: BaseException) -> None:
        logging.error(f"Detection worker crashed: {error}")
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
            self._usable = False

        for request_id, request in pending:
            request.timer.cancel()
            request.future.set_exception(WorkerFatal(f"Detection worker failed: {error}"))
        if pending:
            logging.error(f"Rejected {len(pending)} pending detection request(s)")
