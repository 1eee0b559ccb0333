"""
Most-recent-value holders shared between discovery threads and sessions.

Writers replace the whole value under a lock; readers get whatever value
was last published and never observe a half-updated collection. Lists are
published as tuples so a reader's snapshot cannot change under it.
"""
import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar('T')


class StateFlow(Generic[T]):
    """A thread-safe observable value with blocking waits"""

    def __init__(self, initial: T):
        self._value = initial
        self._cond = threading.Condition()
        self._listeners = []

    @property
    def value(self) -> T:
        with self._cond:
            return self._value

    def set(self, value: T):
        with self._cond:
            self._value = value
            listeners = list(self._listeners)
            self._cond.notify_all()
        for listener in listeners:
            listener(value)

    def update(self, fn: Callable[[T], T]) -> T:
        """Atomically replace the value with fn(current)"""
        with self._cond:
            new_value = fn(self._value)
            self._value = new_value
            listeners = list(self._listeners)
            self._cond.notify_all()
        for listener in listeners:
            listener(new_value)
        return new_value

    def subscribe(self, listener: Callable[[T], None]):
        with self._cond:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[T], None]):
        with self._cond:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def wait_for(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> Optional[T]:
        """
        Block until predicate(value) holds.

        Returns:
            The matching value, or None on timeout
        """
        with self._cond:
            if self._cond.wait_for(lambda: predicate(self._value), timeout=timeout):
                return self._value
            return None
