"""
Observable query results.

A LiveQuery re-runs its query whenever the backing store reports a
committed change and hands the fresh result to every subscriber.
"""

import logging
import threading
from typing import Callable, Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChangeSource(Protocol):
    def add_listener(self, listener: Callable[[], None]) -> None: ...

    def remove_listener(self, listener: Callable[[], None]) -> None: ...


class LiveQuery(Generic[T]):
    """
    A live view of ``query()`` over ``source``.

    Reading ``value`` always runs the query. Subscribers get the current
    value on subscribe and again after each change; the store listener
    is only registered while at least one subscriber exists.
    """

    def __init__(self, query: Callable[[], T], source: ChangeSource):
        self._query = query
        self._source = source
        self._subscribers: list[Callable[[T], None]] = []
        self._lock = threading.Lock()

    @property
    def value(self) -> T:
        return self._query()

    def _on_change(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        try:
            current = self._query()
        except Exception:
            logger.exception("LiveQuery refresh failed")
            return
        for callback in subscribers:
            try:
                callback(current)
            except Exception:
                logger.exception("LiveQuery subscriber failed")

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Receive the current value now and after every change.

        Returns:
            A function that cancels the subscription
        """
        with self._lock:
            if not self._subscribers:
                self._source.add_listener(self._on_change)
            self._subscribers.append(callback)
        callback(self._query())

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
                    if not self._subscribers:
                        self._source.remove_listener(self._on_change)

        return unsubscribe
