# scanner_controller.py (v1.5)
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from camera_session import CameraSession, CameraError
from inventory_error_handler import PROCESSING
from parsers import normalize_scanned_code
from scan_filter import InvalidTransition
from scan_pipeline import Found, NotFound, Failed, LOOKUP
from scanner_feedback import notice_for, notice_for_camera_error


class ScanHistoryEntry:
    def __init__(self, product_id, name, barcode, stock_before, stock_after, timestamp=None):
        self.product_id = product_id
        self.name = name
        self.barcode = barcode
        self.stock_before = stock_before
        self.stock_after = stock_after
        self.timestamp = timestamp or datetime.now(timezone.utc)


class ScannerController:
    """
    Glue between the camera, the decode filter, the resolution pipeline and
    the feedback layer. Decoded codes come in on the media thread; accepted
    scans are resolved on a single background worker so frame handling
    never waits on the network.

    Callbacks: on_close(), on_product_not_found(code), on_stock_updated().
    """
    def __init__(self, pipeline, scan_filter, camera_backend, scanner_settings,
                 on_close=None, on_product_not_found=None, on_stock_updated=None,
                 devices=None, secure_context=True, executor=None):
        self.pipeline = pipeline
        self.filter = scan_filter
        self.settings = scanner_settings
        self.on_close = on_close
        self.on_product_not_found = on_product_not_found
        self.on_stock_updated = on_stock_updated
        self.camera = CameraSession(camera_backend, self.handle_decoded, devices=devices, secure_context=secure_context)
        self.history = []
        self.notice = None
        self.scanned_code = None
        self.scan_count = 0
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="scan-worker")
        self._pending = None
        self._generation = 0
        self._closed = True
        self._lock = threading.Lock()

    @property
    def is_open(self):
        return not self._closed

    def open(self):
        """Starts the camera. Returns False and sets a notice if it could not start."""
        with self._lock:
            self._generation += 1
            self._closed = False
            self.filter.reset()
        self.notice = None
        self.scanned_code = None
        try:
            self.camera.start()
        except CameraError as e:
            logging.error(f"Scanner could not open the camera: {e.kind}")
            self.notice = notice_for_camera_error(e, self.settings["feedback_display_seconds"])
            with self._lock:
                self._closed = True
            return False
        return True

    def close(self):
        """
        Releases the camera right away. A resolution already in flight is
        allowed to finish but its result is dropped.
        """
        with self._lock:
            was_open = not self._closed
            self._closed = True
            self._generation += 1
            self.filter.reset()
        self.camera.stop()
        self.history = []
        self.scanned_code = None
        if was_open and self.on_close:
            self._fire(self.on_close)

    def handle_decoded(self, raw_code):
        """Decode callback. Returns True if the code was accepted for resolution."""
        code = normalize_scanned_code(raw_code)
        if not code:
            return False
        with self._lock:
            if self._closed:
                return False
            generation = self._generation
            if not self.filter.offer(code):
                return False
            self.scanned_code = code
            self.scan_count += 1
        self._pending = self._executor.submit(self._process, code, generation)
        return True

    def _stale(self, generation):
        return self._closed or generation != self._generation

    def _process(self, code, generation):
        with self._lock:
            if self._stale(generation):
                return None
            try:
                self.filter.begin_processing()
            except InvalidTransition as e:
                logging.warning(f"Dropping scan of {code}: {e}")
                return None
        try:
            outcome = self.pipeline.resolve(code)
        except Exception as e:
            logging.error(f"Error processing code {code}: {e}", exc_info=True)
            outcome = Failed(PROCESSING, LOOKUP, str(e), code=code)

        with self._lock:
            if self._stale(generation):
                logging.info(f"Scanner closed while resolving {code}, result discarded")
                return outcome
            self.notice = notice_for(outcome, self.settings["feedback_display_seconds"], self.settings["not_found_handoff_seconds"])
            self.filter.finish()
            self.scanned_code = None
            if isinstance(outcome, NotFound):
                self._closed = True

        if isinstance(outcome, Found):
            self.history.insert(0, ScanHistoryEntry(
                outcome.product.get("id"), outcome.product.get("name"), code,
                outcome.stock_before, outcome.stock_after,
            ))
            if self.on_stock_updated:
                self._fire(self.on_stock_updated)
        elif isinstance(outcome, NotFound):
            # Hand off to product creation; the camera stays off until reopened
            self.camera.stop()
            if self.on_product_not_found:
                self._fire(self.on_product_not_found, code)
        return outcome

    def _fire(self, callback, *args):
        try:
            callback(*args)
        except Exception as e:
            logging.error(f"Scanner callback {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)

    def wait(self, timeout=None):
        """Blocks until the current resolution, if any, has completed."""
        pending = self._pending
        if pending is not None:
            return pending.result(timeout=timeout)
        return None

    def retry(self):
        """Manual re-arm after an error notice; also reopens a stopped camera."""
        self.notice = None
        if self._closed:
            return self.open()
        with self._lock:
            if not self.filter.in_flight:
                self.filter.reset()
        return True
