# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Trailing-edge debouncing on threading.Timer.

Each schedule() call replaces the previously scheduled call, so a burst
of calls arriving within the window runs the callback once, one window
after the last call.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Runs the most recently scheduled callback after a quiet period."""

    def __init__(self, window: float):
        """Initialize the debouncer.

        Args:
            window: Default delay in seconds.
        """
        self.window = window
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    def schedule(self, fn: Callable[[], None],
                 window: Optional[float] = None) -> Callable[[], bool]:
        """Schedule fn, replacing any call still waiting.

        Args:
            fn: Callback run on the timer thread.
            window: Delay override in seconds.

        Returns:
            A cancel function. It returns True if it stopped the call
            before it ran.
        """
        delay = self.window if window is None else window

        def run():
            with self._lock:
                if self._timer is not timer:
                    return
                self._timer = None
            try:
                fn()
            except Exception:
                logger.exception("Debounced callback failed")

        timer = threading.Timer(delay, run)
        timer.daemon = True  # Don't prevent process exit

        with self._lock:
            if self._timer is not None:
                # Don't join here - it could block if the timer is executing
                self._timer.cancel()
            self._timer = timer
            timer.start()

        def cancel() -> bool:
            with self._lock:
                if self._timer is not timer:
                    return False
                timer.cancel()
                self._timer = None
                return True

        return cancel

    def cancel(self) -> bool:
        """Cancel whatever call is waiting.

        Returns:
            True if a waiting call was cancelled.
        """
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
            self._timer = None
            return True

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None
