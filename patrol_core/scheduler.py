"""Single-threaded timer dispatch for the patrol loop.

Every delayed or repeating action of a patrol (settle delay, sweep ticks,
capture pacing) and every platform event is run by one ``Scheduler``,
so patrol callbacks never execute concurrently.  Nothing sleeps: the
dispatch thread waits on a condition until the next deadline or until new
work is queued.

``run_due`` can also be driven by hand with an injected clock, which is
how the tests step through a sweep without real delays.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """A scheduled callback.  ``cancel()`` is safe from any thread."""

    def __init__(
        self,
        when: float,
        callback: Callable[..., None],
        args: tuple,
        interval: Optional[float] = None,
    ) -> None:
        self.when = when
        self.callback = callback
        self.args = args
        self.interval = interval
        self._cancelled = False
        self._done = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """True while the callback may still fire."""
        return not self._cancelled and not self._done

    def __repr__(self) -> str:
        name = getattr(self.callback, "__qualname__", repr(self.callback))
        kind = f"every {self.interval}s" if self.interval is not None else "once"
        state = "active" if self.active else ("cancelled" if self._cancelled else "done")
        return f"<TimerHandle {name} at {self.when:.3f} {kind} {state}>"


class Scheduler:
    """One-shot and repeating callbacks on a single dispatch thread.

    Usage::

        sched = Scheduler()
        sched.start()
        handle = sched.call_later(10.0, begin_sweep, generation)
        handle.cancel()
        sched.stop()
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "patrol-scheduler",
    ) -> None:
        self._clock = clock
        self._name = name
        self._heap: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    # ── Scheduling ───────────────────────────────────────────────────

    def call_soon(self, callback: Callable[..., None], *args) -> TimerHandle:
        """Run *callback* on the dispatch thread as soon as possible."""
        return self.call_later(0.0, callback, *args)

    def call_later(self, delay: float, callback: Callable[..., None], *args) -> TimerHandle:
        """Run *callback* once, *delay* seconds from now."""
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        with self._cond:
            handle = TimerHandle(self._clock() + delay, callback, args)
            self._push(handle)
        return handle

    def call_repeating(
        self,
        interval: float,
        callback: Callable[..., None],
        *args,
        initial_delay: Optional[float] = None,
    ) -> TimerHandle:
        """Run *callback* every *interval* seconds until the handle is cancelled.

        The first run happens after *initial_delay* (defaults to *interval*).
        """
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        first = interval if initial_delay is None else initial_delay
        if first < 0:
            raise ValueError(f"initial_delay must be >= 0, got {first}")
        with self._cond:
            handle = TimerHandle(self._clock() + first, callback, args, interval=interval)
            self._push(handle)
        return handle

    def cancel_all(self) -> None:
        """Cancel every pending callback."""
        with self._cond:
            for _, _, handle in self._heap:
                handle.cancel()
            self._heap.clear()
            self._cond.notify_all()

    @property
    def pending(self) -> int:
        """Number of callbacks that may still fire."""
        with self._cond:
            return sum(1 for _, _, h in self._heap if h.active)

    def next_deadline(self) -> Optional[float]:
        """Clock time of the earliest live callback, or None."""
        with self._cond:
            self._drop_cancelled()
            return self._heap[0][0] if self._heap else None

    # ── Dispatch ─────────────────────────────────────────────────────

    def run_due(self) -> int:
        """Run every callback whose time has come.  Returns how many ran.

        Callbacks run outside the scheduler lock so they may schedule or
        cancel freely.  A raising callback is logged and does not affect
        the others.
        """
        ran = 0
        while True:
            with self._cond:
                self._drop_cancelled()
                now = self._clock()
                if not self._heap or self._heap[0][0] > now:
                    return ran
                _, _, handle = heapq.heappop(self._heap)
                if handle.interval is not None:
                    handle.when += handle.interval
                    if handle.when <= now:
                        # fell behind; skip missed ticks instead of bursting
                        handle.when = now + handle.interval
                    self._push(handle)
                else:
                    handle._done = True
            try:
                handle.callback(*handle.args)
            except Exception:
                logger.exception("Scheduled callback %r raised", handle)
            ran += 1

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the dispatch thread.  No-op if already running."""
        if self.is_running:
            return
        with self._cond:
            self._stopping = False
        self._thread = threading.Thread(target=self._run, daemon=True, name=self._name)
        self._thread.start()
        logger.info("Scheduler %s started", self._name)

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the dispatch thread.  Pending callbacks are kept.  No-op if not running."""
        if not self.is_running:
            return
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        assert self._thread is not None
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler %s did not stop within timeout", self._name)
            else:
                logger.info("Scheduler %s stopped", self._name)

    # ── Internal ─────────────────────────────────────────────────────

    def _push(self, handle: TimerHandle) -> None:
        # caller holds self._cond
        heapq.heappush(self._heap, (handle.when, next(self._seq), handle))
        self._cond.notify_all()

    def _drop_cancelled(self) -> None:
        # caller holds self._cond
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                self._drop_cancelled()
                if self._heap:
                    timeout = self._heap[0][0] - self._clock()
                else:
                    timeout = None
                if timeout is None or timeout > 0:
                    self._cond.wait(timeout)
                    continue
            self.run_due()
