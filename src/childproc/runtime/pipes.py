"""Chunked reads and writes on pipe file descriptors.

The chunk size only changes how many ``os.read``/``os.write`` calls are
made; the bytes transferred are the same for every chunk size.
"""

from __future__ import annotations

import logging
import os
import select

__all__ = [
    "read_from",
    "write_into",
    "close_fd",
]

logger = logging.getLogger(__name__)


def _readable(fd: int) -> bool:
    """Whether a read on fd would return without blocking (data or EOF)."""
    poller = select.poll()
    poller.register(fd, select.POLLIN)
    return bool(poller.poll(0))


def read_from(fd: int | None, chunk_size: int) -> bytes:
    """Read everything currently available from a pipe.

    Reads ``chunk_size`` bytes at a time until the pipe reports end-of-stream
    or no further byte is available right now.

    Args:
        fd: Read end of a pipe (None = no pipe, returns b"")
        chunk_size: Maximum bytes per read call

    Returns:
        Accumulated bytes
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if fd is None:
        return b""

    chunks: list[bytes] = []
    try:
        while _readable(fd):
            chunk = os.read(fd, chunk_size)
            if not chunk:
                break  # EOF
            chunks.append(chunk)
    except OSError as e:
        # EBADF after close, EIO on a dead pty-like fd: nothing more to read
        logger.debug(f"Read from fd={fd} stopped: {e}")

    return b"".join(chunks)


def write_into(fd: int | None, data: bytes, chunk_size: int) -> int:
    """Write all of data into a pipe, ``chunk_size`` bytes at a time.

    A single ``os.write`` may accept fewer bytes than offered; the loop
    continues from wherever the previous call stopped.

    Args:
        fd: Write end of a pipe (None = no pipe, nothing is written)
        data: Bytes to write
        chunk_size: Maximum bytes per write call

    Returns:
        Number of bytes accepted by the pipe. Less than ``len(data)`` only
        when the reader has gone away.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if fd is None:
        return 0

    view = memoryview(data)
    written = 0
    try:
        while written < len(view):
            written += os.write(fd, view[written:written + chunk_size])
    except BrokenPipeError:
        logger.debug(
            f"Reader of fd={fd} is gone, wrote {written}/{len(view)} bytes"
        )
    return written


def close_fd(fd: int | None) -> None:
    """Close a descriptor, ignoring one that is already closed."""
    if fd is None:
        return
    try:
        os.close(fd)
    except OSError as e:
        logger.debug(f"Close of fd={fd} ignored: {e}")
