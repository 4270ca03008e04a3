"""
Tests for the background detection worker and its request bookkeeping.
"""

import threading
import time

import pytest

from models.detection import DetectionResult
from models.errors import DetectionTimeout, ImageDecodeFailed, InferenceFailed, WorkerFatal
from pipeline.worker import DetectionWorkerService


def result_for(tag):
    return DetectionResult.from_tiles([], f"data:image/jpeg;base64,{tag}")


def wait_until(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def service_factory():
    services = []

    def make(handler, **kwargs):
        service = DetectionWorkerService(handler, **kwargs)
        services.append(service)
        return service

    yield make
    for service in services:
        service.terminate()


class TestDirectExecution:
    def test_uninitialized_runs_directly(self):
        calls = []

        def handler(image):
            calls.append(threading.current_thread().name)
            return result_for(image)

        service = DetectionWorkerService(handler)

        assert service.detect("a").annotated_image.endswith("a")
        assert calls == [threading.current_thread().name]
        assert service.pending_request_ids() == []

    def test_disabled_never_starts(self):
        service = DetectionWorkerService(lambda image: result_for(image), enabled=False)

        assert service.initialize() is False
        assert service.is_available is False
        assert service.detect("b").annotated_image.endswith("b")

    def test_direct_errors_propagate(self):
        def handler(image):
            raise ImageDecodeFailed("bad bytes")

        with pytest.raises(ImageDecodeFailed):
            DetectionWorkerService(handler).detect("x")


class TestBackgroundExecution:
    def test_runs_on_worker_thread(self, service_factory):
        threads = []

        def handler(image):
            threads.append(threading.current_thread().name)
            return result_for(image)

        service = service_factory(handler)
        assert service.initialize() is True

        assert service.detect("img").annotated_image.endswith("img")
        assert threads == ["detection-worker"]
        assert service.pending_request_ids() == []

    def test_concurrent_requests_get_distinct_ids(self, service_factory):
        gate = threading.Event()

        def handler(image):
            gate.wait(2)
            return result_for(image)

        service = service_factory(handler)
        service.initialize()

        futures = [service.detect_async(tag) for tag in ("a", "b", "c")]
        ids = service.pending_request_ids()
        assert len(set(ids)) == 3
        assert all(i.startswith("req_") for i in ids)

        gate.set()
        assert [f.result(timeout=2).annotated_image[-1] for f in futures] == ["a", "b", "c"]
        assert wait_until(lambda: service.pending_request_ids() == [])

    def test_detection_error_passes_through(self, service_factory):
        def handler(image):
            raise ImageDecodeFailed("bad bytes")

        service = service_factory(handler)
        service.initialize()

        with pytest.raises(ImageDecodeFailed):
            service.detect("x")
        assert service.pending_request_ids() == []
        assert service.is_available

    def test_unexpected_error_wrapped(self, service_factory):
        def handler(image):
            raise KeyError("oops")

        service = service_factory(handler)
        service.initialize()

        with pytest.raises(InferenceFailed):
            service.detect("x")

    def test_timeout_rejects_and_clears_pending(self, service_factory):
        release = threading.Event()

        def handler(image):
            release.wait(2)
            return result_for(image)

        service = service_factory(handler, timeout_seconds=0.1)
        service.initialize()

        future = service.detect_async("slow")
        with pytest.raises(DetectionTimeout):
            future.result(timeout=2)
        assert service.pending_request_ids() == []

        # A late response for the expired id is dropped
        release.set()
        assert service.detect("next").annotated_image.endswith("next")

    def test_fatal_error_rejects_every_pending_request(self, service_factory):
        gate = threading.Event()

        def handler(image):
            gate.wait(2)
            return result_for(image)

        service = service_factory(handler)
        service.initialize()
        futures = [service.detect_async(tag) for tag in ("a", "b")]

        service._handle_fatal(RuntimeError("thread crashed"))

        for future in futures:
            with pytest.raises(WorkerFatal, match="thread crashed"):
                future.result(timeout=1)
        assert service.pending_request_ids() == []
        assert service.is_available is False
        gate.set()

    def test_malformed_message_kills_worker(self, service_factory):
        gate = threading.Event()

        def handler(image):
            gate.wait(2)
            return result_for(image)

        service = service_factory(handler)
        service.initialize()
        pending = service.detect_async("a")
        service._worker.inbox.put("garbage")
        gate.set()

        # The queued request is answered, then the bad message is fatal
        assert pending.result(timeout=2).annotated_image.endswith("a")
        assert wait_until(lambda: not service.is_available)

    def test_falls_back_to_direct_after_fatal_until_reinitialized(self, service_factory):
        threads = []

        def handler(image):
            threads.append(threading.current_thread().name)
            return result_for(image)

        service = service_factory(handler)
        service.initialize()
        service._handle_fatal(RuntimeError("boom"))

        service.detect("direct")
        assert threads[-1] == threading.current_thread().name

        assert service.initialize() is True
        service.detect("background")
        assert threads[-1] == "detection-worker"

    def test_terminate_rejects_pending(self):
        gate = threading.Event()

        def handler(image):
            gate.wait(2)
            return result_for(image)

        service = DetectionWorkerService(handler)
        service.initialize()
        future = service.detect_async("a")

        service.terminate()

        with pytest.raises(WorkerFatal):
            future.result(timeout=1)
        assert service.is_available is False
        gate.set()

    def test_cancel_is_refused_and_other_requests_unaffected(self, service_factory):
        gate = threading.Event()

        def handler(image):
            gate.wait(2)
            return result_for(image)

        service = service_factory(handler)
        service.initialize()
        futures = [service.detect_async(tag) for tag in ("a", "b", "c")]

        assert futures[1].cancel() is False
        gate.set()

        assert [f.result(timeout=2).annotated_image[-1] for f in futures] == ["a", "b", "c"]
        assert service.is_available

    def test_terminate_discards_queued_requests(self):
        started = threading.Event()
        gate = threading.Event()
        seen = []

        def handler(image):
            seen.append(image)
            started.set()
            gate.wait(2)
            return result_for(image)

        service = DetectionWorkerService(handler)
        service.initialize()
        futures = [service.detect_async(tag) for tag in ("a", "b", "c")]
        assert started.wait(2)

        service.terminate()
        gate.set()

        for future in futures:
            with pytest.raises(WorkerFatal):
                future.result(timeout=1)
        time.sleep(0.1)
        assert seen == ["a"]
