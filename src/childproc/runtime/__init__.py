"""Runtime module for OS process primitives and exit monitoring.

This module provides the backend that spawns and queries children, chunked
pipe I/O, and the watchers that fill a handle's exit code.
"""

from __future__ import annotations

from .backend import Capability, ProcessBackend, get_backend
from .pipes import read_from, write_into
from .reaper import Reaper, get_reaper
from .watcher import ExitCell, PollingWatcher, Watcher

__all__ = [
    "Capability",
    "ExitCell",
    "PollingWatcher",
    "ProcessBackend",
    "Reaper",
    "Watcher",
    "get_backend",
    "get_reaper",
    "read_from",
    "write_into",
]
