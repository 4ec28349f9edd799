"""Photo capture for patrol sweeps.

``PhotoCapture.capture_photo()`` returns immediately; the frame is fetched
and written on a daemon thread.  Errors are logged and counted but never
reach the caller, so a flaky camera cannot stall a patrol.

``PeriodicCapture`` is the host-side continuous capture loop: a fast poll
tick that only checks a busy flag, and a slower minimum interval between
actual captures.
"""

from __future__ import annotations

import itertools
import logging
import os
import threading
import time
from typing import Callable, Optional

from .connection import KachakaConnection
from .error_handling import with_retry
from .errors import CollaboratorFailure
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

_VALID_CAMERAS = {"front", "back"}


class PhotoCapture:
    """Grab a JPEG from the robot camera and store it under *output_dir*.

    Usage::

        conn = KachakaConnection.get("192.168.1.100")
        cam = PhotoCapture(conn, "photos", on_photo=upload)
        cam.capture_photo()   # non-blocking
    """

    def __init__(
        self,
        conn: KachakaConnection,
        output_dir: str,
        camera: str = "front",
        on_photo: Optional[Callable[[str], None]] = None,
    ) -> None:
        if camera not in _VALID_CAMERAS:
            raise ValueError(
                f"Invalid camera {camera!r}; must be one of {_VALID_CAMERAS}"
            )
        self._conn = conn
        self._output_dir = output_dir
        self._camera = camera
        self._on_photo = on_photo

        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []

        # Counters (written under self._lock)
        self._requested = 0
        self._saved = 0
        self._failed = 0
        self._last_path: Optional[str] = None

    # ── Public API ───────────────────────────────────────────────────

    def capture_photo(self) -> None:
        """Start one capture in the background."""
        with self._lock:
            self._requested += 1
            seq = next(self._seq)
            self._threads = [t for t in self._threads if t.is_alive()]
            thread = threading.Thread(
                target=self._capture_and_store, args=(seq,), daemon=True
            )
            self._threads.append(thread)
        thread.start()

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Wait for in-flight captures.  Returns False if any is still running."""
        deadline = time.monotonic() + timeout
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        return not any(t.is_alive() for t in threads)

    @property
    def last_path(self) -> Optional[str]:
        with self._lock:
            return self._last_path

    @property
    def stats(self) -> dict:
        """Capture counters: requested, saved, failed."""
        with self._lock:
            return {
                "requested": self._requested,
                "saved": self._saved,
                "failed": self._failed,
            }

    @staticmethod
    def image_name(seq: int, now: Optional[float] = None) -> str:
        """File name like ``IMG_20241004_112030_003.jpg``."""
        stamp = time.strftime("%Y%m%d_%H%M%S", time.localtime(now))
        return f"IMG_{stamp}_{seq:03d}.jpg"

    # ── Internal ─────────────────────────────────────────────────────

    @with_retry(max_attempts=2, base_delay=0.2)
    def _grab_frame(self) -> dict:
        sdk = self._conn.client
        if self._camera == "front":
            img = sdk.get_front_camera_ros_compressed_image()
        else:
            img = sdk.get_back_camera_ros_compressed_image()
        return {"ok": True, "data": img.data, "format": img.format or "jpeg"}

    def _capture_and_store(self, seq: int) -> None:
        try:
            frame = self._grab_frame()
            if not frame["ok"]:
                raise CollaboratorFailure(f"capture failed: {frame['error']}")
            os.makedirs(self._output_dir, exist_ok=True)
            path = os.path.join(self._output_dir, self.image_name(seq))
            with open(path, "wb") as f:
                f.write(frame["data"])
        except Exception:
            with self._lock:
                self._failed += 1
            logger.warning("Photo capture %d failed (camera=%s)", seq, self._camera, exc_info=True)
            return

        with self._lock:
            self._saved += 1
            self._last_path = path
        logger.info("Saved photo %s (%d bytes)", path, len(frame["data"]))

        if self._on_photo is not None:
            try:
                self._on_photo(path)
            except Exception:
                logger.warning("on_photo callback raised for %s", path, exc_info=True)


class PeriodicCapture:
    """Continuous capture, at most one every *min_interval* seconds.

    A poll tick every *poll_interval* checks a busy flag.  When the flag is
    clear the tick sets it, requests a capture and schedules the flag to be
    cleared *min_interval* later.
    """

    def __init__(
        self,
        capture: PhotoCapture,
        scheduler: Scheduler,
        *,
        min_interval: float = 5.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._capture = capture
        self._scheduler = scheduler
        self._min_interval = min_interval
        self._poll_interval = poll_interval

        self._lock = threading.RLock()
        self._running = False
        self._busy = False
        self._generation = 0
        self._poll_handle: Optional[TimerHandle] = None
        self._release_handle: Optional[TimerHandle] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._busy

    def start(self) -> None:
        """Begin polling.  No-op if already running."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._busy = False
            self._generation += 1
            self._poll_handle = self._scheduler.call_repeating(
                self._poll_interval, self._poll, self._generation, initial_delay=0.0
            )
        logger.info(
            "Periodic capture started (min_interval=%.1fs, poll=%.2fs)",
            self._min_interval,
            self._poll_interval,
        )

    def stop(self) -> None:
        """Stop polling and drop the pending flag release.  No-op if not running."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._busy = False
            self._generation += 1
            for handle in (self._poll_handle, self._release_handle):
                if handle is not None:
                    handle.cancel()
            self._poll_handle = self._release_handle = None
        logger.info("Periodic capture stopped")

    def _poll(self, generation: int) -> None:
        with self._lock:
            if not self._running or generation != self._generation or self._busy:
                return
            self._busy = True
            self._release_handle = self._scheduler.call_later(
                self._min_interval, self._release, generation
            )
        try:
            self._capture.capture_photo()
        except Exception:
            logger.warning("capture_photo raised during periodic capture", exc_info=True)

    def _release(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._busy = False
            self._release_handle = None
