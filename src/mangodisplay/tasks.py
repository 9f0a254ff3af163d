"""Run blocking wlr-randr calls off the UI thread, one at a time."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from .errors import OperationInProgress

log = logging.getLogger(__name__)

Dispatch = Callable[..., None]
Completion = Callable[[Any, "BaseException | None"], None]


def glib_dispatch(func: Callable[..., Any], *args: Any) -> None:
    """Schedule ``func(*args)`` once on the GLib main loop."""
    import gi
    gi.require_version("GLib", "2.0")
    from gi.repository import GLib

    def _once() -> bool:
        func(*args)
        return GLib.SOURCE_REMOVE

    GLib.idle_add(_once)


def call_directly(func: Callable[..., Any], *args: Any) -> None:
    """Run the completion on the worker thread itself (no UI loop)."""
    func(*args)


class _Job:
    def __init__(self, name: str) -> None:
        self.name = name
        self.cancelled = False
        self.thread: threading.Thread | None = None


class BackgroundRunner:
    """Runs a single job at a time on a worker thread.

    The job's outcome is handed to ``on_done(result, error)`` through
    *dispatch*, which by default queues it on the GLib main loop so the
    caller sees it on the UI thread.  The slot stays taken until that
    delivery happens, so two jobs never overlap.
    """

    def __init__(self, dispatch: Dispatch | None = None) -> None:
        self._dispatch = dispatch or glib_dispatch
        self._lock = threading.Lock()
        self._job: _Job | None = None

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._job is not None

    @property
    def current(self) -> str | None:
        with self._lock:
            return self._job.name if self._job else None

    def submit(self, name: str, fn: Callable[[], Any], on_done: Completion) -> None:
        """Start *fn* in the background, or raise OperationInProgress."""
        with self._lock:
            if self._job is not None:
                raise OperationInProgress(f"{self._job.name} is still running")
            job = _Job(name)
            self._job = job

        job.thread = threading.Thread(
            target=self._run, args=(job, fn, on_done),
            daemon=True, name=f"mangodisplay-{name}",
        )
        log.debug("Starting background %s", name)
        job.thread.start()

    def _run(self, job: _Job, fn: Callable[[], Any], on_done: Completion) -> None:
        result = None
        error: BaseException | None = None
        try:
            result = fn()
        except Exception as e:
            error = e
        self._dispatch(self._finish, job, result, error, on_done)

    def _finish(self, job: _Job, result: Any, error: BaseException | None, on_done: Completion) -> None:
        with self._lock:
            if self._job is job:
                self._job = None
        if job.cancelled:
            log.info("Discarding result of cancelled %s", job.name)
            return
        if error is not None:
            log.warning("Background %s failed: %s", job.name, error)
        on_done(result, error)

    def cancel(self) -> bool:
        """Drop the running job's result. Returns False if nothing was running.

        The external call itself still ends on its own timeout.
        """
        with self._lock:
            if self._job is None:
                return False
            self._job.cancelled = True
            log.info("Cancelled %s", self._job.name)
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the worker thread exits. Returns False on timeout."""
        with self._lock:
            thread = self._job.thread if self._job else None
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()
