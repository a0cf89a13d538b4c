"""
============================================================
 WakeWatch — Batched State Notifier
 Per-frame updates are merged and delivered to subscribers
 at most once per flush interval.
============================================================
"""

import logging
from typing import Callable, Dict, List, Optional

from wakewatch import config

logger = logging.getLogger(__name__)


class StateNotifier:
    def __init__(self, interval: float = config.NOTIFY_INTERVAL):
        self.interval = interval
        self._pending: Dict = {}
        self._last_flush: Optional[float] = None
        self._subscribers: List[Callable[[dict], None]] = []

    def subscribe(self, callback: Callable[[dict], None]) -> Callable[[dict], None]:
        self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Callable[[dict], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def queue(self, **updates) -> None:
        self._pending.update(updates)

    @property
    def pending(self) -> dict:
        return dict(self._pending)

    def flush_if_due(self, now: float) -> bool:
        if not self._pending:
            return False
        if self._last_flush is not None and now - self._last_flush < self.interval:
            return False
        self.flush(now)
        return True

    def flush(self, now: Optional[float] = None) -> None:
        payload, self._pending = self._pending, {}
        self._last_flush = now
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception:
                logger.exception("[NOTIFY] Subscriber %r failed", callback)

    def reset(self) -> None:
        self._pending = {}
        self._last_flush = None
