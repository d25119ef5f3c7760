"""
Cache invalidation signals.

The engine publishes a tag after writes that change what read caches hold
(e.g. "leaderboard" after balances move). Delivery is best effort: a
failing subscriber is logged and never affects the write that triggered it.
"""

import logging
from collections import defaultdict
from threading import Lock
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

LEADERBOARD_TAG = "leaderboard"


class InvalidationBus:
    """Fire-and-forget tag publisher."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[str], None]]] = defaultdict(list)
        self._lock = Lock()

    def subscribe(self, tag: str, callback: Callable[[str], None]):
        with self._lock:
            self._subscribers[tag].append(callback)

    def publish(self, tag: str):
        with self._lock:
            callbacks = list(self._subscribers.get(tag, []))

        for callback in callbacks:
            try:
                callback(tag)
            except Exception as e:
                logger.warning(f"Invalidation callback for '{tag}' failed: {e}")
