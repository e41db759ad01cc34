import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from .api import fetch_usage
from .config import DEFAULT_REFRESH, clamp_interval
from .errors import ErrorKind, UsageBarError
from .events import Observable
from .models import UsageSnapshot

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollState:
    snapshot: UsageSnapshot
    is_loading: bool
    last_error: ErrorKind | None
    last_error_message: str | None
    last_updated: datetime | None
    interval: int

    @property
    def needs_reauth(self) -> bool:
        return self.last_error is ErrorKind.UNAUTHORIZED


def _spawn_thread(fn):
    threading.Thread(target=fn, daemon=True).start()


class PollingController:
    """
    Keeps a UsageSnapshot fresh on a fixed interval.

    At most one fetch is in flight: refresh() while loading is a no-op.
    Fetches run off the caller's thread (``spawn``) and credentials are
    read from the store at the start of each one. Failures keep the
    previous snapshot and record ``last_error``.
    """

    def __init__(self, store, *, interval: float = DEFAULT_REFRESH,
                 fetch=fetch_usage, spawn=_spawn_thread,
                 timer_factory=threading.Timer):
        self._store = store
        self._fetch = fetch
        self._spawn = spawn
        self._timer_factory = timer_factory

        self.snapshot = UsageSnapshot.placeholder()
        self.is_loading = False
        self.last_error: ErrorKind | None = None
        self.last_error_message: str | None = None
        self.last_updated: datetime | None = None
        self.interval = clamp_interval(interval)
        self.changes = Observable()

        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0
        self._closed = False

    def state(self) -> PollState:
        with self._lock:
            return self._state_locked()

    def _state_locked(self) -> PollState:
        return PollState(
            snapshot=self.snapshot,
            is_loading=self.is_loading,
            last_error=self.last_error,
            last_error_message=self.last_error_message,
            last_updated=self.last_updated,
            interval=self.interval,
        )

    # ── fetch ─────────────────────────────────────────────────────────────────

    def refresh(self) -> bool:
        """Start a fetch unless one is already running. True if started."""
        with self._lock:
            if self._closed or self.is_loading:
                return False
            self.is_loading = True
            self.last_error = None
            self.last_error_message = None
            state = self._state_locked()
        self.changes.emit(state)
        self._spawn(self._run_fetch)
        return True

    def _run_fetch(self):
        try:
            snapshot = self._fetch(self._store.get())
        except UsageBarError as e:
            log.info("usage fetch failed: %s", e)
            self._finish(error=e)
        except Exception as e:
            log.exception("usage fetch failed")
            self._finish(error=e)
        else:
            self._finish(snapshot=snapshot)

    def _finish(self, snapshot: UsageSnapshot | None = None,
                error: BaseException | None = None):
        with self._lock:
            self.is_loading = False
            if self._closed:
                log.debug("controller closed, discarding fetch result")
                return
            if error is None:
                self.snapshot = snapshot
                self.last_updated = snapshot.fetched_at or datetime.now(timezone.utc)
                self.last_error = None
                self.last_error_message = None
            else:
                self.last_error = ErrorKind.from_exception(error)
                self.last_error_message = str(error)
            state = self._state_locked()
        self.changes.emit(state)

    # ── timer ─────────────────────────────────────────────────────────────────

    def start_auto_refresh(self):
        with self._lock:
            if self._closed:
                return
            self._cancel_timer_locked()
            self._generation += 1
            generation = self._generation
        self.refresh()
        self._arm(generation)

    def stop_auto_refresh(self):
        with self._lock:
            self._generation += 1
            self._cancel_timer_locked()

    def set_interval(self, seconds: float) -> int:
        with self._lock:
            self.interval = clamp_interval(seconds)
        log.info("refresh interval set to %ss", self.interval)
        self.start_auto_refresh()
        return self.interval

    def close(self):
        """Tear down; a fetch still in flight finishes but is not applied."""
        self.stop_auto_refresh()
        with self._lock:
            self._closed = True

    def _cancel_timer_locked(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, generation: int):
        with self._lock:
            if self._closed or generation != self._generation:
                return
            timer = self._timer_factory(self.interval, self._tick, args=(generation,))
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _tick(self, generation: int):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        self.refresh()
        self._arm(generation)
