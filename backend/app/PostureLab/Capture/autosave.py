import functools
import logging
import threading
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_AUTOSAVE_DELAY_S = 0.4


class Debouncer:
    """
    Trailing-edge debounce around a single timer handle.

    Every schedule() cancels the pending timer and starts a new one, so only the
    payload of the last call inside the window is delivered. Intermediate
    payloads are dropped, never written out of order.
    """

    def __init__(
        self,
        fn: Callable[[Any], None],
        delay: float = DEFAULT_AUTOSAVE_DELAY_S,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.fn = fn
        self.delay = delay
        self._timer_factory = timer_factory
        self._timer = None
        self._payload = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self, payload: Any):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._payload = payload
            self._generation += 1
            timer = self._timer_factory(self.delay, functools.partial(self._fire, self._generation))
            # Timers must not keep the interpreter alive on shutdown.
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._payload = None

    def flush(self):
        """Deliver the pending payload now, if any."""
        with self._lock:
            if self._timer is None:
                return
            self._timer.cancel()
            self._timer = None
            payload, self._payload = self._payload, None
        self.fn(payload)

    def _fire(self, generation: int):
        with self._lock:
            # A timer cancelled after it already started running is stale.
            if self._timer is None or generation != self._generation:
                return
            self._timer = None
            payload, self._payload = self._payload, None
        self.fn(payload)


class DraftAutosaver:
    """
    Writes capture session snapshots to the draft store on a debounce.

    The snapshot is taken when the change happens, so the timer thread never
    reads the live session. Writes and discard() share one lock, and a write
    scheduled before a discard is dropped, so a cleared draft stays cleared.
    """

    def __init__(self, store, draft_key: str, delay: float = DEFAULT_AUTOSAVE_DELAY_S, timer_factory=threading.Timer):
        self.store = store
        self.draft_key = draft_key
        self.last_saved_at: Optional[float] = None
        self._epoch = 0
        self._write_lock = threading.Lock()
        self._debouncer = Debouncer(self._write, delay=delay, timer_factory=timer_factory)

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def schedule(self, snapshot: dict):
        self._debouncer.schedule((self._epoch, snapshot))

    def flush(self):
        self._debouncer.flush()

    def cancel(self):
        self._debouncer.cancel()

    def discard(self):
        """Cancel pending writes and delete the stored draft."""
        self._debouncer.cancel()
        with self._write_lock:
            self._epoch += 1
            self.store.clear(self.draft_key)

    def _write(self, payload):
        epoch, snapshot = payload
        with self._write_lock:
            if epoch != self._epoch:
                return
            try:
                self.store.set(self.draft_key, snapshot)
            except Exception as exc:
                # Autosave is best-effort; the next change schedules another write.
                logger.warning("draft autosave failed for %s: %s", self.draft_key, exc)
                return
            self.last_saved_at = time.time()
