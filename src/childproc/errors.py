"""childproc 异常类。"""

from __future__ import annotations

__all__ = [
    "ChildProcError",
    "UnsupportedOperationError",
    "ProcessStateError",
]


class ChildProcError(Exception):
    """childproc 基础异常。"""
    pass


class UnsupportedOperationError(ChildProcError):
    """当前平台的后端不具备所需能力。

    Attributes:
        capability: 缺失的能力名称
        backend: 后端名称
    """

    def __init__(self, capability: str, backend: str = "") -> None:
        self.capability = capability
        self.backend = backend
        where = f" on backend {backend!r}" if backend else ""
        super().__init__(f"{capability} is not supported{where}")


class ProcessStateError(ChildProcError):
    """进程句柄的当前状态不允许该操作（例如等待一个无人监控的进程）。

    Attributes:
        pid: 进程 ID
    """

    def __init__(self, pid: int, message: str) -> None:
        self.pid = pid
        super().__init__(f"pid={pid}: {message}")
