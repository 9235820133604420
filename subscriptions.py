"""
Listener registry with explicit unsubscribe handles, shared by the auth event
stream and the realtime vehicle feed.
"""

import itertools
import logging
import threading
from typing import Callable, Dict, Generic, List, TypeVar

logger = logging.getLogger(__name__)

L = TypeVar("L", bound=Callable)


class Subscription:
    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class Listeners(Generic[L]):
    def __init__(self):
        self._items: Dict[int, L] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()

    def add(self, listener: L) -> Subscription:
        with self._lock:
            key = next(self._ids)
            self._items[key] = listener

        def cancel():
            with self._lock:
                self._items.pop(key, None)

        return Subscription(cancel)

    def snapshot(self) -> List[L]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def notify(self, *args) -> None:
        """Call every listener; one failing listener does not starve the rest."""
        for listener in self.snapshot():
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener %r failed", listener)
