# scan_filter.py (v1.3)
import logging
import threading
import time

IDLE = "idle"
LOCKED = "locked"
PROCESSING = "processing"
COOLDOWN = "cooldown"


class ScanState:
    """Immutable snapshot of the filter. Only ScanFilter creates these."""
    __slots__ = ("name", "code", "since", "until")

    def __init__(self, name, code=None, since=None, until=None):
        self.name = name
        self.code = code
        self.since = since
        self.until = until

    def __repr__(self):
        if self.name == LOCKED:
            return f"Locked({self.code!r}, since={self.since})"
        if self.name == PROCESSING:
            return f"Processing({self.code!r})"
        if self.name == COOLDOWN:
            return f"Cooldown(until={self.until})"
        return "Idle"


class InvalidTransition(Exception):
    pass


class ScanFilter:
    """
    Decode event filter. Camera decode callbacks fire many times per second
    while a code stays in frame; this lets through at most one accepted scan
    per presentation of a code and at most one scan in flight.

    Idle --offer(code)--> Locked --begin_processing--> Processing
    --finish--> Cooldown --(rearm delay elapses)--> Idle
    """
    def __init__(self, cooldown_seconds=1.0, rearm_delay_seconds=1.0, clock=time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self.rearm_delay_seconds = rearm_delay_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._state = ScanState(IDLE)
        self._last_code = None
        self._last_accepted_at = None

    @property
    def state(self):
        with self._lock:
            self._expire_cooldown(self.clock())
            return self._state

    def _expire_cooldown(self, now):
        if self._state.name == COOLDOWN and now >= self._state.until:
            self._state = ScanState(IDLE)

    def _is_duplicate(self, code, now):
        return (code == self._last_code and self._last_accepted_at is not None
                and now - self._last_accepted_at < self.cooldown_seconds)

    def offer(self, code, timestamp=None):
        """
        Feeds one decode event. Returns True when the code is accepted, which
        moves the filter to Locked; every other event is dropped.
        """
        now = self.clock() if timestamp is None else timestamp
        with self._lock:
            self._expire_cooldown(now)
            if self._state.name != IDLE:
                return False
            if self._is_duplicate(code, now):
                return False
            self._state = ScanState(LOCKED, code=code, since=now)
            self._last_code = code
            self._last_accepted_at = now
        logging.info(f"Accepted scan: {code}")
        return True

    def begin_processing(self):
        with self._lock:
            if self._state.name != LOCKED:
                raise InvalidTransition(f"begin_processing from {self._state!r}")
            self._state = ScanState(PROCESSING, code=self._state.code)
            return self._state.code

    def finish(self, timestamp=None):
        """Ends processing, success or failure, and starts the re-arm delay."""
        now = self.clock() if timestamp is None else timestamp
        with self._lock:
            if self._state.name not in (LOCKED, PROCESSING):
                raise InvalidTransition(f"finish from {self._state!r}")
            self._state = ScanState(COOLDOWN, until=now + self.rearm_delay_seconds)
            return self._state.until

    def reset(self):
        """Back to Idle with the last-code memo cleared. Used on teardown and manual retry."""
        with self._lock:
            self._state = ScanState(IDLE)
            self._last_code = None
            self._last_accepted_at = None

    @property
    def in_flight(self):
        return self.state.name in (LOCKED, PROCESSING)
