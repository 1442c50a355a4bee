"""Debounced change notifications.

Writers call ``changes.publish(table)``; subscribers receive one callback per
burst with the set of tables that changed during the debounce window.
"""

import logging
import os
import threading
from typing import Callable, List, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[Set[str]], None]


class ChangeFeed:
    def __init__(self, debounce: float = 0.15):
        self.debounce = debounce
        self._subscribers: List[Callback] = []
        self._pending: Set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it.

        A callback that is already registered is not added a second time.
        """
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, table: str) -> None:
        with self._lock:
            self._pending.add(table)
            if self.debounce <= 0:
                timer = None
            elif self._timer is None:
                timer = self._timer = threading.Timer(self.debounce, self.flush)
                timer.daemon = True
            else:
                return
        if timer is None:
            self.flush()
        else:
            timer.start()

    def flush(self) -> None:
        """Deliver pending changes now (also called by the debounce timer)."""
        with self._lock:
            tables, self._pending = self._pending, set()
            self._timer = None
            subscribers = list(self._subscribers)
        if not tables:
            return
        for callback in subscribers:
            try:
                callback(set(tables))
            except Exception:  # pylint: disable=broad-except
                logger.exception("Change subscriber failed for %s", sorted(tables))

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = set()
            self._subscribers = []


def _debounce_seconds() -> float:
    try:
        return int(os.environ.get("REALTIME_DEBOUNCE_MS", "150")) / 1000.0
    except ValueError:
        return 0.15


changes = ChangeFeed(debounce=_debounce_seconds())
