"""Process handle: spawn a child, watch for its exit, talk to it over pipes.

Key design points:
- A handle exclusively owns its pid, its three pipe ends and its watcher;
  copying or pickling a handle is refused
- Ownership moves with ``Process.take(source)``: the source's watcher is
  stopped and joined and the destination's watcher is running before the
  call returns
- The exit code is written once, by the watcher, and read by anyone
- Closing a handle stops the monitoring and releases the pipes; the child
  itself is never signalled

Known ambiguity: when ``execve`` fails inside the child, the child exits
with the OS error number as its status. A program that legitimately exits
with, say, 2 looks exactly like a binary that was not found (ENOENT).

Example:
    executable = Executable.of("/bin/cat")
    with Process.create(executable) as process:
        process.stdin("hello\\n")
        process.close_stdin()
        print(process.wait().exit_code, process.stdout())
"""

from __future__ import annotations

import functools
import logging
import threading
from typing import Any, NoReturn

import anyio

from .config import WatchMode, get_config
from .errors import ProcessStateError
from .executable import Executable, argv_of, envp_of
from .runtime.backend import Capability, ProcessBackend, get_backend
from .runtime.pipes import close_fd, read_from, write_into
from .runtime.reaper import ReaperWatcher, get_reaper
from .runtime.watcher import ExitCell, PollingWatcher, Watcher

__all__ = ["Process"]

logger = logging.getLogger(__name__)


class Process:
    """Handle to an operating-system process.

    A handle built with ``Process()`` is empty: pid 0, no pipes, no watcher.
    Use ``Process.current()`` or ``Process.create()`` to get a live one.
    """

    def __init__(self) -> None:
        self._pid = 0
        self._backend: ProcessBackend | None = None
        self._watch_mode = WatchMode.THREAD
        self._cell = ExitCell()
        self._watcher: Watcher | None = None
        self._stdin_fd: int | None = None
        self._stdout_fd: int | None = None
        self._stderr_fd: int | None = None
        self._lock = threading.RLock()
        self._closed = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def current(
        cls,
        *,
        watch_mode: WatchMode | None = None,
        backend: ProcessBackend | None = None,
    ) -> "Process":
        """Wrap the calling process.

        The caller is not its own child, so the watcher halts at once and
        the exit code stays empty.

        Raises:
            UnsupportedOperationError: If the backend cannot report a pid
        """
        backend = backend if backend is not None else get_backend()
        backend.require(Capability.CURRENT)

        process = cls()
        process._backend = backend
        process._pid = backend.current_pid()
        process._watch_mode = watch_mode or get_config().watch_mode
        if backend.supports(Capability.EXIT_STATUS):
            process._start_watcher()
        return process

    @classmethod
    def create(
        cls,
        executable: Executable,
        *,
        watch_mode: WatchMode | None = None,
        backend: ProcessBackend | None = None,
    ) -> "Process | None":
        """Spawn a child running the executable.

        Args:
            executable: Program, arguments and complete environment
            watch_mode: Exit monitoring mode (default from CHP_WATCH_MODE)
            backend: Process backend (default: the platform backend)

        Returns:
            The running process, or None if the OS refused to create it.
            A binary that cannot be executed still yields a Process whose
            exit code becomes the OS error number (e.g. ENOENT).

        Raises:
            UnsupportedOperationError: If the backend cannot spawn processes
        """
        backend = backend if backend is not None else get_backend()
        backend.require(Capability.CREATE)

        child = backend.spawn(argv_of(executable), envp_of(executable))
        if child is None:
            return None

        process = cls()
        process._backend = backend
        process._pid = child.pid
        process._stdin_fd = child.stdin_fd
        process._stdout_fd = child.stdout_fd
        process._stderr_fd = child.stderr_fd
        process._watch_mode = watch_mode or get_config().watch_mode
        if backend.supports(Capability.EXIT_STATUS):
            process._start_watcher()
        return process

    @classmethod
    def take(cls, source: "Process") -> "Process":
        """Move everything ``source`` owns into a new handle.

        The source's watcher is stopped and joined, then a watcher bound to
        the new handle is started; both happen before this returns. The
        source is left empty (pid 0, no pipes, no watcher).
        """
        process = cls()
        with source._lock:
            watcher, source._watcher = source._watcher, None
            was_watching = watcher is not None and watcher.is_alive
            if watcher is not None:
                watcher.stop()

            process._backend = source._backend
            process._pid = source._pid
            process._watch_mode = source._watch_mode
            process._cell = ExitCell(source._cell.code)
            process._stdin_fd, source._stdin_fd = source._stdin_fd, None
            process._stdout_fd, source._stdout_fd = source._stdout_fd, None
            process._stderr_fd, source._stderr_fd = source._stderr_fd, None
            source._pid = 0

            if was_watching and process._cell.code is None:
                process._start_watcher()

        logger.debug(f"Moved pid={process._pid} to a new handle")
        return process

    def move(self) -> "Process":
        """Shorthand for ``Process.take(self)``."""
        return type(self).take(self)

    def _start_watcher(self) -> None:
        config = get_config()
        if self._watch_mode is WatchMode.REAPER:
            reaper = get_reaper(self._backend, poll_interval=config.poll_interval)
            watcher: Watcher = ReaperWatcher(self._pid, self._cell, reaper)
        else:
            watcher = PollingWatcher(
                self._pid, self._cell, self._backend, poll_interval=config.poll_interval
            )
        watcher.start()
        self._watcher = watcher

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def exit_code(self) -> int | None:
        """Exit status once the process has terminated, else None.

        Negative values mean the child was killed by that signal number.
        """
        return self._cell.code

    returncode = exit_code

    @property
    def is_running(self) -> bool:
        """True while a watcher is monitoring a process that has not exited."""
        watcher = self._watcher
        return self._cell.code is None and watcher is not None and watcher.is_alive

    def wait(self, timeout: float | None = None) -> "Process":
        """Block until the process has terminated.

        Safe to call from several threads and more than once; every caller
        sees the same exit code. Does not stop the watcher.

        Args:
            timeout: Seconds to wait (None = no limit)

        Returns:
            This process, so calls chain: ``process.wait().exit_code``

        Raises:
            TimeoutError: If the timeout elapses first
            ProcessStateError: If nobody is monitoring the process (empty,
                closed or moved-from handle, or ``Process.current()``)
        """
        if self._cell.code is None and self._watcher is None:
            self._raise_unmonitored()
        if self._cell.wait(timeout):
            return self
        if self._cell.abandoned:
            self._raise_unmonitored()
        raise TimeoutError(f"pid={self._pid} still running after {timeout}s")

    async def wait_async(self, timeout: float | None = None) -> "Process":
        """Async version of ``wait()``; blocks a worker thread, not the loop."""
        await anyio.to_thread.run_sync(
            functools.partial(self.wait, timeout), abandon_on_cancel=True
        )
        return self

    def _raise_unmonitored(self) -> NoReturn:
        raise ProcessStateError(self._pid, "exit status is not being monitored")

    # ------------------------------------------------------------------
    # Stdio
    # ------------------------------------------------------------------

    def stdin(self, data: str | bytes, chunk_size: int | None = None) -> int:
        """Write data to the child's standard input.

        Args:
            data: Text (encoded with CHP_ENCODING) or bytes
            chunk_size: Bytes per write call (default CHP_WRITE_CHUNK_SIZE)

        Returns:
            Number of bytes written; fewer than offered only if the child
            stopped reading
        """
        config = get_config()
        if isinstance(data, str):
            data = data.encode(config.encoding)
        return write_into(self._stdin_fd, data, chunk_size or config.write_chunk_size)

    def close_stdin(self) -> None:
        """Close the child's standard input so it reads end-of-file."""
        with self._lock:
            fd, self._stdin_fd = self._stdin_fd, None
        close_fd(fd)

    def stdout_bytes(self, chunk_size: int | None = None) -> bytes:
        return read_from(self._stdout_fd, chunk_size or get_config().read_chunk_size)

    def stderr_bytes(self, chunk_size: int | None = None) -> bytes:
        return read_from(self._stderr_fd, chunk_size or get_config().read_chunk_size)

    def stdout(self, chunk_size: int | None = None) -> str:
        """Everything the child has written to stdout and not yet been read."""
        return self.stdout_bytes(chunk_size).decode(get_config().encoding, errors="replace")

    def stderr(self, chunk_size: int | None = None) -> str:
        """Everything the child has written to stderr and not yet been read."""
        return self.stderr_bytes(chunk_size).decode(get_config().encoding, errors="replace")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop monitoring and release the pipes. Idempotent."""
        lock = getattr(self, "_lock", None)
        if lock is None:
            return  # __init__ never ran
        with lock:
            if self._closed:
                return
            self._closed = True
            watcher, self._watcher = self._watcher, None
            fds = (self._stdin_fd, self._stdout_fd, self._stderr_fd)
            self._stdin_fd = self._stdout_fd = self._stderr_fd = None

        if watcher is not None:
            watcher.stop()
        for fd in fds:
            close_fd(fd)
        if self._pid:
            logger.debug(f"Closed handle pid={self._pid} exit_code={self._cell.code}")

    def __enter__(self) -> "Process":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __del__(self) -> None:
        self.close()

    # A pid and its descriptors have exactly one owner
    def __copy__(self) -> NoReturn:
        raise TypeError("Process handles cannot be copied; use Process.take()")

    def __deepcopy__(self, memo: dict) -> NoReturn:
        raise TypeError("Process handles cannot be copied; use Process.take()")

    def __reduce_ex__(self, protocol: Any) -> NoReturn:
        raise TypeError("Process handles cannot be pickled")

    def __repr__(self) -> str:
        if self._cell.code is not None:
            status = f"exited({self._cell.code})"
        elif self.is_running:
            status = "running"
        else:
            status = "unmonitored"
        return f"Process(pid={self._pid}, status={status})"
