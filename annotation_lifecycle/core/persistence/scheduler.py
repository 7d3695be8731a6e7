"""
Cancelable periodic timers for auto-save and backups.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs a callback every ``interval`` seconds on a daemon thread.

    Starting an already running task is a no-op and ``restart`` always
    stops the old thread before arming a new one, so timers never stack.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], None]):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self._lock:
            if self.running:
                return
            if self.interval <= 0:
                raise ValueError(f"{self.name} interval must be positive, got {self.interval}")
            # Each run gets its own event so a thread still winding down
            # cannot observe the next run's state
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=self.name,
                daemon=True,
            )
            self._thread.start()
        logger.debug(f"Started {self.name} every {self.interval}s")

    def stop(self, timeout: float = 5.0):
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"{self.name} did not stop within {timeout}s")
        logger.debug(f"Stopped {self.name}")

    def restart(self, interval: Optional[float] = None):
        self.stop()
        if interval is not None:
            self.interval = interval
        self.start()

    def _run(self, stop_event: threading.Event):
        while not stop_event.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception(f"{self.name} callback failed")
