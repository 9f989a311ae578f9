import threading
import unittest
from concurrent.futures import Future, ThreadPoolExecutor
from unittest.mock import MagicMock, patch

from history_store import D1HistoryStore
from scan_filter import ScanFilter, IDLE, COOLDOWN
from scan_pipeline import ScanResolutionPipeline, Found, NotFound, Failed, LOOKUP
from scanner_controller import ScannerController

SETTINGS = {"feedback_display_seconds": 1.0, "not_found_handoff_seconds": 0.8}
PRODUCT = {"id": "p-1", "name": "Coffee 500g", "code": "7701234567890", "stock_quantity": 5}


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeCameraBackend:
    def __init__(self, open_error=None):
        self.open_error = open_error
        self.on_code = None
        self.release_count = 0

    def open(self, device, on_code):
        if self.open_error:
            raise self.open_error
        self.on_code = on_code
        return "camera-handle"

    def release(self, handle):
        self.release_count += 1

    def emit(self, code):
        self.on_code(code)


class ImmediateExecutor:
    def submit(self, fn, *args):
        future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        return future


class DeferredExecutor:
    """Holds submitted jobs until the test runs them."""
    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args):
        future = Future()
        self.jobs.append((future, fn, args))
        return future

    def run_all(self):
        for future, fn, args in self.jobs:
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)
        self.jobs = []


class BlockingPipeline:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []
        self.started = threading.Event()
        self.release = threading.Event()

    def resolve(self, code):
        self.calls.append(code)
        self.started.set()
        self.release.wait(5)
        return self.outcome


class TestScannerController(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.filter = ScanFilter(cooldown_seconds=1.0, rearm_delay_seconds=1.0, clock=self.clock)
        self.backend = FakeCameraBackend()
        self.pipeline = MagicMock()
        self.on_close = MagicMock()
        self.on_not_found = MagicMock()
        self.on_updated = MagicMock()

    def make_controller(self, pipeline=None, executor=None, backend=None):
        return ScannerController(
            pipeline or self.pipeline, self.filter, backend or self.backend, SETTINGS,
            on_close=self.on_close, on_product_not_found=self.on_not_found, on_stock_updated=self.on_updated,
            executor=executor or ImmediateExecutor(),
        )

    def test_stock_updated_notice_shows_before_and_after(self):
        self.pipeline.resolve.return_value = Found(dict(PRODUCT), 4, 5)
        controller = self.make_controller()
        self.assertTrue(controller.open())

        self.backend.emit(b"7701234567890")

        self.assertEqual(controller.notice.level, "success")
        self.assertIn("4", controller.notice.message)
        self.assertIn("5", controller.notice.message)
        self.on_updated.assert_called_once_with()
        self.assertEqual(len(controller.history), 1)
        entry = controller.history[0]
        self.assertEqual((entry.barcode, entry.stock_before, entry.stock_after), ("7701234567890", 4, 5))
        self.assertEqual(self.filter.state.name, COOLDOWN)

    def test_not_found_hands_off_and_stays_disarmed(self):
        self.pipeline.resolve.return_value = NotFound("7701234567890")
        controller = self.make_controller()
        controller.open()

        self.backend.emit("7701234567890")

        self.on_not_found.assert_called_once_with("7701234567890")
        self.assertEqual(self.backend.release_count, 1)
        self.assertFalse(controller.is_open)
        self.assertEqual(controller.notice.level, "info")

        self.clock.now += 5
        self.backend.emit("7701234567890")
        self.backend.emit("other")
        self.assertEqual(self.pipeline.resolve.call_count, 1)

    def test_lookup_network_error_cools_down_then_idles(self):
        self.pipeline.resolve.return_value = Failed("network", LOOKUP, "offline", code="123")
        controller = self.make_controller()
        controller.open()

        self.backend.emit("123")

        self.assertEqual(controller.notice.level, "error")
        self.assertEqual(controller.notice.error_kind, "network")
        self.assertEqual(self.filter.state.name, COOLDOWN)
        self.clock.now += 1.0
        self.assertEqual(self.filter.state.name, IDLE)
        self.assertTrue(controller.is_open)

    def test_pipeline_exception_does_not_wedge(self):
        self.pipeline.resolve.side_effect = RuntimeError("boom")
        controller = self.make_controller()
        controller.open()

        self.backend.emit("123")

        self.assertEqual(controller.notice.error_kind, "processing")
        self.clock.now += 1.0
        self.assertEqual(self.filter.state.name, IDLE)

    def test_same_code_100ms_apart_resolves_once(self):
        self.pipeline.resolve.return_value = Found(dict(PRODUCT), 4, 5)
        controller = self.make_controller()
        controller.open()

        self.assertTrue(controller.handle_decoded("7701234567890"))
        self.clock.now += 0.1
        self.assertFalse(controller.handle_decoded("7701234567890"))

        self.assertEqual(self.pipeline.resolve.call_count, 1)

    def test_blank_codes_are_ignored(self):
        controller = self.make_controller()
        controller.open()
        self.assertFalse(controller.handle_decoded(b"\r\n"))
        self.pipeline.resolve.assert_not_called()

    def test_no_second_resolution_while_processing(self):
        pipeline = BlockingPipeline(Found(dict(PRODUCT), 4, 5))
        executor = ThreadPoolExecutor(max_workers=1)
        self.addCleanup(executor.shutdown, wait=True)
        controller = self.make_controller(pipeline=pipeline, executor=executor)
        controller.open()

        controller.handle_decoded("A")
        self.assertTrue(pipeline.started.wait(5))
        for code in ("A", "B", "C", "A"):
            self.clock.now += 2
            self.assertFalse(controller.handle_decoded(code))

        pipeline.release.set()
        controller.wait(timeout=5)
        self.assertEqual(pipeline.calls, ["A"])

    def test_close_during_resolution_discards_result(self):
        pipeline = BlockingPipeline(Found(dict(PRODUCT), 4, 5))
        executor = ThreadPoolExecutor(max_workers=1)
        self.addCleanup(executor.shutdown, wait=True)
        controller = self.make_controller(pipeline=pipeline, executor=executor)
        controller.open()

        controller.handle_decoded("A")
        self.assertTrue(pipeline.started.wait(5))
        controller.close()
        self.assertEqual(self.backend.release_count, 1)

        pipeline.release.set()
        controller.wait(timeout=5)

        self.on_updated.assert_not_called()
        self.assertIsNone(controller.notice)
        self.assertEqual(controller.history, [])
        self.assertEqual(self.filter.state.name, IDLE)

    def test_job_from_before_reopen_is_dropped_quietly(self):
        executor = DeferredExecutor()
        controller = self.make_controller(executor=executor)
        controller.open()
        self.assertTrue(controller.handle_decoded("A"))

        controller.close()
        controller.open()
        executor.run_all()

        self.assertIsNone(controller.wait(timeout=1))
        self.pipeline.resolve.assert_not_called()
        self.assertEqual(self.filter.state.name, IDLE)
        self.assertTrue(controller.handle_decoded("A"))

    def test_history_store_garbage_still_reports_success(self):
        product = dict(PRODUCT, stock_quantity=4)
        context = MagicMock()
        context.user_id = "user-1"
        context.client.find_product_by_code.return_value = {"success": True, "data": product}
        context.client.increment_product_stock.return_value = {"success": True, "data": dict(product, stock_quantity=5)}
        context.history = D1HistoryStore("acct", "db-1", "token")
        d1_response = MagicMock(ok=True, status_code=200, text="<html>bad gateway</html>")
        d1_response.json.side_effect = ValueError("Expecting value: line 1 column 1")
        controller = self.make_controller(pipeline=ScanResolutionPipeline(context))
        controller.open()

        with patch("history_store.requests.post", return_value=d1_response):
            self.backend.emit("7701234567890")

        context.client.increment_product_stock.assert_called_once_with("p-1")
        self.assertEqual(controller.notice.level, "success")
        self.on_updated.assert_called_once_with()
        self.assertEqual(len(controller.history), 1)

    def test_close_is_idempotent(self):
        controller = self.make_controller()
        controller.open()
        controller.close()
        controller.close()
        self.assertEqual(self.backend.release_count, 1)
        self.on_close.assert_called_once_with()

    def test_camera_permission_error_sets_notice(self):
        backend = FakeCameraBackend(open_error=PermissionError("Permission denied"))
        controller = self.make_controller(backend=backend)

        self.assertFalse(controller.open())

        self.assertEqual(controller.notice.error_kind, "permission")
        self.assertFalse(controller.is_open)

    def test_retry_reopens_after_handoff(self):
        self.pipeline.resolve.return_value = NotFound("123")
        controller = self.make_controller()
        controller.open()
        self.backend.emit("123")
        self.assertFalse(controller.is_open)

        self.assertTrue(controller.retry())
        self.assertTrue(controller.is_open)
        self.assertIsNone(controller.notice)


if __name__ == '__main__':
    unittest.main()
