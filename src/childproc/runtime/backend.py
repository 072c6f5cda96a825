"""Capability-gated OS backend for process creation and status queries.

childproc runtime module

This module provides:
- ProcessBackend: the interface the Process handle talks to
- PosixBackend: fork/exec, pipes and non-blocking waitpid
- UnsupportedBackend: placeholder for platforms without a process model;
  every operation raises UnsupportedOperationError

Key design points:
- A backend declares its capabilities up front; callers check them with
  ``require()`` instead of discovering a missing feature by accident
- exec failure inside the child is reported as the child's exit status,
  equal to the OS error number of the failure
"""

from __future__ import annotations

import errno
import logging
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, NoReturn

from ..errors import UnsupportedOperationError
from .pipes import close_fd

__all__ = [
    "Capability",
    "ChildState",
    "ChildStatus",
    "SpawnedChild",
    "ProcessBackend",
    "PosixBackend",
    "UnsupportedBackend",
    "get_backend",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_POSIX = os.name == "posix" and hasattr(os, "fork")


class Capability(Enum):
    """Operations a backend may or may not support."""

    CURRENT = "current"  # wrap the calling process
    CREATE = "create"  # spawn a child with piped stdio
    EXIT_STATUS = "exit_status"  # non-blocking child status query


class ChildState(Enum):
    RUNNING = "running"
    EXITED = "exited"
    GONE = "gone"  # not a waitable child of ours (never was, or already reaped)


class ChildStatus(NamedTuple):
    state: ChildState
    code: int | None = None


@dataclass(frozen=True)
class SpawnedChild:
    """Parent-side result of a successful spawn.

    Attributes:
        pid: Process id of the child
        stdin_fd: Write end of the child's stdin pipe
        stdout_fd: Read end of the child's stdout pipe
        stderr_fd: Read end of the child's stderr pipe
    """

    pid: int
    stdin_fd: int
    stdout_fd: int
    stderr_fd: int


class ProcessBackend(ABC):
    """OS primitives used by the Process handle."""

    name: str = "abstract"
    capabilities: frozenset[Capability] = frozenset()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        """Raise UnsupportedOperationError if the capability is missing."""
        if capability not in self.capabilities:
            raise UnsupportedOperationError(capability.value, self.name)

    @abstractmethod
    def current_pid(self) -> int:
        """Return the process id of the calling process."""

    @abstractmethod
    def spawn(self, argv: list[bytes], envp: dict[bytes, bytes]) -> SpawnedChild | None:
        """Start a child running ``argv[0]`` with stdio bound to new pipes.

        Returns:
            The spawned child, or None when the process could not be created
            (no descriptors are left open in that case)
        """

    @abstractmethod
    def poll_status(self, pid: int) -> ChildStatus:
        """Query the child's status without blocking."""


class PosixBackend(ProcessBackend):
    """fork + execve backend for POSIX systems."""

    name = "posix"
    capabilities = frozenset(
        {Capability.CURRENT, Capability.CREATE, Capability.EXIT_STATUS}
    )

    def current_pid(self) -> int:
        return os.getpid()

    def spawn(self, argv: list[bytes], envp: dict[bytes, bytes]) -> SpawnedChild | None:
        fds: list[int] = []
        try:
            for _ in range(3):
                fds.extend(os.pipe())
        except OSError as e:
            logger.warning(f"Cannot create stdio pipes: {e}")
            for fd in fds:
                close_fd(fd)
            return None

        stdin_r, stdin_w, stdout_r, stdout_w, stderr_r, stderr_w = fds

        try:
            pid = os.fork()
        except OSError as e:
            logger.warning(f"fork failed for {argv[0]!r}: {e}")
            for fd in fds:
                close_fd(fd)
            return None

        if pid == 0:
            _exec_child(argv, envp, stdin_r, stdout_w, stderr_w)

        # Parent keeps the opposite ends only
        for fd in (stdin_r, stdout_w, stderr_w):
            close_fd(fd)

        logger.debug(f"Spawned pid={pid} binary={argv[0]!r}")
        return SpawnedChild(pid=pid, stdin_fd=stdin_w, stdout_fd=stdout_r, stderr_fd=stderr_r)

    def poll_status(self, pid: int) -> ChildStatus:
        try:
            waited, status = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            return ChildStatus(ChildState.GONE)
        if waited == 0:
            return ChildStatus(ChildState.RUNNING)
        # Signal deaths come back as -signum, like subprocess.Popen.returncode
        return ChildStatus(ChildState.EXITED, os.waitstatus_to_exitcode(status))


def _exec_child(
    argv: list[bytes],
    envp: dict[bytes, bytes],
    stdin_fd: int,
    stdout_fd: int,
    stderr_fd: int,
) -> NoReturn:
    """Runs in the forked child: rebind stdio and replace the program image.

    Only async-signal-safe work happens here: no logging, no locks.
    """
    code = errno.EINVAL
    try:
        # A pipe end may sit on 0, 1 or 2 when the parent's own stdio was
        # closed; lift every source above the targets before rebinding
        sources = []
        for fd in (stdin_fd, stdout_fd, stderr_fd):
            while fd < 3:
                fd = os.dup(fd)
            sources.append(fd)
        for target, fd in enumerate(sources):
            os.dup2(fd, target)
        # Remaining pipe descriptors are close-on-exec (PEP 446)
        if not argv[0]:
            # execve("") fails with ENOENT; os.execve refuses an empty argv[0]
            code = errno.ENOENT
        else:
            os.execve(argv[0], argv, envp)
    except OSError as e:
        code = e.errno or errno.EINVAL
    except ValueError:
        # Embedded NUL bytes and the like, rejected before reaching the OS
        code = errno.EINVAL
    finally:
        # Never return into the parent's Python code
        os._exit(code)


class UnsupportedBackend(ProcessBackend):
    """Backend for platforms without a supported process model."""

    def __init__(self, name: str = sys.platform) -> None:
        self.name = name

    def current_pid(self) -> int:
        raise UnsupportedOperationError(Capability.CURRENT.value, self.name)

    def spawn(self, argv: list[bytes], envp: dict[bytes, bytes]) -> SpawnedChild | None:
        raise UnsupportedOperationError(Capability.CREATE.value, self.name)

    def poll_status(self, pid: int) -> ChildStatus:
        raise UnsupportedOperationError(Capability.EXIT_STATUS.value, self.name)


_backend: ProcessBackend | None = None


def get_backend() -> ProcessBackend:
    """Return the backend for the running platform."""
    global _backend
    if _backend is None:
        _backend = PosixBackend() if IS_POSIX else UnsupportedBackend()
        logger.debug(f"Using process backend: {_backend.name}")
    return _backend
