"""Change detection via the bucket's logical clock.

Listing a bucket to find out whether anything changed is expensive, so
every writer bumps a single ``mtime`` value after it mutates the bucket.
Readers cache the last value they saw and poll for a different one.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import NoReturn, Protocol

from cloud_transfer.services.errors import ClockMissingError, InitializationError
from cloud_transfer.services.log_service import get_log_service

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]


class ClockStore(Protocol):
    def get_clock(self) -> str: ...

    def set_clock(self, value: str) -> None: ...


class ChangeDetector:
    """Caches one bucket's logical clock and polls the remote for changes.

    Independent instances (one per bucket) share nothing. The cache is
    written without a lock: a stale value is corrected by the next poll.
    """

    def __init__(self, store: ClockStore) -> None:
        self.store = store
        self.last_mod = "0"
        self.initialized = False
        self._listeners: list[ChangeListener] = []
        self._poll_thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()

    # -- Listeners --

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a no-argument callable fired once per detected change."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Change listener %r failed", listener)

    # -- Clock --

    def poll_init(self) -> None:
        """Adopt the remote clock, creating it if the bucket has none.

        Raises:
            InitializationError: If the clock can't be read for any other reason
        """
        logger.info("Poll init")
        try:
            self.last_mod = self.store.get_clock()
        except ClockMissingError:
            logger.info("Bucket has no mtime, it will be created")
            try:
                self.advance_clock()
            except Exception as e:
                self._init_failed(e)
        except Exception as e:
            self._init_failed(e)
        self.initialized = True

    def _init_failed(self, error: Exception) -> NoReturn:
        logger.error("Error getting mtime: %s", error)
        get_log_service().error(
            "poll", "poll_init_failed", f"Error getting mtime: {error}", {"error": str(error)}
        )
        raise InitializationError("Error getting mtime from cloud store") from error

    def advance_clock(self) -> str:
        """Issue a new clock value after a mutation and push it to the remote.

        The value is a millisecond timestamp, bumped past the cached value if
        the wall clock hasn't moved on. It's cached before the push; if the
        push fails the cache stays ahead of the remote until the next write.
        """
        try:
            previous = int(self.last_mod)
        except ValueError:
            previous = 0
        mtime = str(max(time.time_ns() // 1_000_000, previous + 1))

        logger.info("Updating last mod time to %s", mtime)
        self.last_mod = mtime
        self.store.set_clock(mtime)
        return mtime

    def check_for_update(self) -> bool:
        """Run one poll tick.

        Returns:
            True if the remote clock differed and listeners were notified
        """
        mtime = self.store.get_clock()
        if mtime == self.last_mod:
            return False

        logger.info("Cloud data changed: %s -> %s", self.last_mod, mtime)
        get_log_service().info(
            "poll",
            "cloud_changed",
            "Cloud data changed",
            {"previous": self.last_mod, "current": mtime},
        )
        self.last_mod = mtime
        self._notify()
        return True

    # -- Polling --

    @property
    def polling(self) -> bool:
        return self._poll_thread is not None and self._poll_thread.is_alive()

    def start_polling(self, interval_seconds: float) -> None:
        """Poll every ``interval_seconds`` on a background thread.

        Any existing poller is stopped first. Ticks run one at a time; a
        failing tick is logged and the next one runs as scheduled.
        """
        self.stop_polling()
        logger.info("Start polling for updates every %ss", interval_seconds)

        stop_event = threading.Event()
        self._stop_event = stop_event
        thread = threading.Thread(
            target=self._poll_loop,
            args=(interval_seconds, stop_event),
            name="cloud-poll",
            daemon=True,
        )
        self._poll_thread = thread
        thread.start()

    def _poll_loop(self, interval_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval_seconds):
            # A stopped poller may still be mid-tick when its replacement starts
            with self._tick_lock:
                if stop_event.is_set():
                    break
                try:
                    self.check_for_update()
                except Exception as e:
                    logger.warning("Poll for updates failed: %s", e)

    def stop_polling(self, timeout: float | None = 5) -> None:
        """Stop the poller if one is running; safe to call repeatedly."""
        thread = self._poll_thread
        if thread is None:
            return
        logger.info("Stop polling for updates")
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        self._poll_thread = None
