import logging
import threading
from typing import Callable

log = logging.getLogger(__name__)


class Observable:
    """Listener registry. Listeners run on the emitting thread."""

    def __init__(self):
        self._listeners: list[Callable] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)
        return _unsubscribe

    def emit(self, *args):
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(*args)
            except Exception:
                log.exception("listener %r failed", cb)
