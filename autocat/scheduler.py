from __future__ import annotations

import logging
import threading
from typing import Optional

from autocat.config_manager import ConfigManager
from autocat.scan_engine import ScanEngine

logger = logging.getLogger(__name__)


class ScanScheduler:
    """One repeating timer that runs a normal scan every ``interval_minutes``."""

    def __init__(self, scan_engine: ScanEngine, config_manager: ConfigManager) -> None:
        self.scan_engine = scan_engine
        self.config_manager = config_manager
        self.interval_minutes = 0
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.RLock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, run_immediately: bool = False) -> None:
        config = self.config_manager.load()
        with self._lock:
            if self.is_running:
                return
            self._start_locked(config.interval_minutes, run_immediately)

    def stop(self) -> None:
        with self._lock:
            previous = self._detach_locked()
        if previous is not None and previous is not threading.current_thread():
            previous.join(timeout=5)

    def reconfigure(self, interval_minutes: int) -> None:
        # Not joined: a replaced thread finishes its running scan, then sees its stop event.
        with self._lock:
            self._detach_locked()
            self._start_locked(interval_minutes, run_immediately=False)

    def _start_locked(self, interval_minutes: int, run_immediately: bool) -> None:
        self.interval_minutes = max(0, int(interval_minutes))
        if self.interval_minutes == 0 and not run_immediately:
            logger.info("Scan interval disabled (0 minutes)")
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            args=(self._stop_event, self.interval_minutes * 60, run_immediately),
            name="autocat-scan-scheduler",
            daemon=True,
        )
        self._thread.start()
        if self.interval_minutes:
            logger.info("Scan interval set to %d minutes", self.interval_minutes)

    def _detach_locked(self) -> Optional[threading.Thread]:
        self._stop_event.set()
        previous, self._thread = self._thread, None
        return previous

    def _run_scan(self, trigger: str, ensure: bool) -> None:
        try:
            self.scan_engine.run_once(trigger=trigger, force=False, ensure=ensure)
        except Exception:
            logger.exception("%s scan failed", trigger.capitalize())

    def _loop(self, stop_event: threading.Event, interval_seconds: int, run_immediately: bool) -> None:
        if run_immediately:
            self._run_scan("startup", ensure=True)
        if interval_seconds <= 0:
            return
        while not stop_event.wait(timeout=interval_seconds):
            self._run_scan("scheduled", ensure=False)
