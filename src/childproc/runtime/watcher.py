"""Exit monitoring: the write-once exit cell and the per-handle watcher.

State machine of one watcher:

    RUNNING --child terminated--> EXITED(code)   (code written to the cell)
    RUNNING --stop requested----> STOPPED        (nothing written)

Stopping a watcher never signals the child; it only ends the monitoring.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from .backend import ChildState, ProcessBackend

__all__ = [
    "ExitCell",
    "Watcher",
    "PollingWatcher",
]

logger = logging.getLogger(__name__)


class ExitCell:
    """Write-once holder of an exit code.

    Empty until ``set()`` succeeds once; never reverts. ``abandon()`` marks
    that nobody will ever fill the cell, so waiters can give up instead of
    blocking forever.
    """

    def __init__(self, code: int | None = None) -> None:
        self._cond = threading.Condition()
        self._code = code
        self._abandoned = False

    @property
    def code(self) -> int | None:
        return self._code

    @property
    def abandoned(self) -> bool:
        return self._abandoned and self._code is None

    def set(self, code: int) -> bool:
        """Store the exit code. Returns False if a code was already stored."""
        with self._cond:
            if self._code is not None:
                return False
            self._code = code
            self._cond.notify_all()
            return True

    def abandon(self) -> None:
        with self._cond:
            self._abandoned = True
            self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the cell is set or abandoned.

        Returns:
            True if an exit code is present
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._code is not None or self._abandoned, timeout
            )
            return self._code is not None

    def __repr__(self) -> str:
        if self._code is not None:
            return f"ExitCell(code={self._code})"
        return "ExitCell(abandoned)" if self._abandoned else "ExitCell(empty)"


class Watcher(ABC):
    """Monitor bound to exactly one pid and one exit cell."""

    def __init__(self, pid: int, cell: ExitCell) -> None:
        self.pid = pid
        self.cell = cell

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        """Request a stop and return once the watcher has halted."""

    @property
    @abstractmethod
    def is_alive(self) -> bool:
        ...


class PollingWatcher(Watcher):
    """One background thread polling ``waitpid(pid, WNOHANG)``.

    Attributes:
        poll_interval: Seconds between polls, 0 = tight busy-wait
    """

    def __init__(
        self,
        pid: int,
        cell: ExitCell,
        backend: ProcessBackend,
        poll_interval: float = 0.0,
    ) -> None:
        super().__init__(pid, cell)
        self.backend = backend
        self.poll_interval = poll_interval
        self._stop_requested = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"Watcher for pid={self.pid} already started")
        self._thread = threading.Thread(
            target=self._run, daemon=True, name=f"childproc-watch-{self.pid}"
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_requested.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        try:
            while not self._stop_requested.is_set():
                status = self.backend.poll_status(self.pid)
                if status.state is ChildState.RUNNING:
                    if self.poll_interval:
                        self._stop_requested.wait(self.poll_interval)
                    continue
                if status.state is ChildState.EXITED:
                    self.cell.set(status.code)
                    logger.debug(f"pid={self.pid} exited with code={status.code}")
                else:
                    logger.debug(f"pid={self.pid} is not a waitable child, watcher halts")
                return
            logger.debug(f"Watcher for pid={self.pid} stopped before exit")
        except Exception as e:
            logger.warning(f"Watcher for pid={self.pid} failed: {e}")
        finally:
            if self.cell.code is None:
                self.cell.abandon()
