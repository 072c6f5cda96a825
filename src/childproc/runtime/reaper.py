"""共享回收线程。

用一个后台线程监控所有已登记的子进程，替代"每个进程一个轮询线程"：
- Reaper: 子进程登记表 + 回收线程
- ReaperWatcher: 绑定到 Reaper 的 Watcher 实现

对外契约与 PollingWatcher 相同：退出码只写一次，stop() 同步返回，
返回后 Reaper 不会再写入该进程的退出码。
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from .backend import ChildState, ProcessBackend, get_backend
from .watcher import ExitCell, Watcher

__all__ = ["Reaper", "ReaperWatcher", "get_reaper"]

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    """登记的子进程。

    Attributes:
        pid: 子进程 ID
        cell: 退出码存放位置
    """

    pid: int
    cell: ExitCell


class Reaper:
    """子进程回收器。

    管理所有被监控的子进程，提供：
    - 登记和注销（注销是同步的）
    - 单线程轮询所有子进程的状态
    - 没有登记的子进程时线程阻塞，不占用 CPU

    线程安全：登记表由 ``_lock`` 保护，一次完整的扫描在持有锁的情况下进行。

    Example:
        ```python
        reaper = Reaper()
        cell = ExitCell()
        token = reaper.register(pid, cell)

        cell.wait()
        print(cell.code)

        # 不再关心时注销
        reaper.unregister(token)
        ```
    """

    def __init__(
        self,
        backend: Optional[ProcessBackend] = None,
        poll_interval: float = 0.001,
    ) -> None:
        """初始化回收器。

        Args:
            backend: 进程后端（默认使用当前平台的后端）
            poll_interval: 两次扫描之间的间隔（秒），0 表示不休眠
        """
        self.backend = backend if backend is not None else get_backend()
        self.poll_interval = poll_interval
        self._entries: Dict[int, _Entry] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def register(self, pid: int, cell: ExitCell) -> int:
        """登记子进程。

        Args:
            pid: 子进程 ID
            cell: 退出码存放位置

        Returns:
            注销时使用的令牌

        Raises:
            RuntimeError: 如果回收器已关闭
        """
        with self._wakeup:
            if self._closed:
                raise RuntimeError("Reaper is closed")
            token = next(self._tokens)
            self._entries[token] = _Entry(pid=pid, cell=cell)
            self._ensure_thread()
            self._wakeup.notify_all()
        logger.debug(f"Registered pid={pid} token={token}")
        return token

    def unregister(self, token: int) -> bool:
        """注销子进程。

        返回后回收线程不会再写入对应的退出码。

        Returns:
            是否成功注销（令牌仍在登记表中则返回 True）
        """
        with self._wakeup:
            entry = self._entries.pop(token, None)
        if entry is None:
            return False
        logger.debug(f"Unregistered pid={entry.pid} token={token}")
        return True

    def is_registered(self, token: int) -> bool:
        """检查令牌是否仍在登记表中。"""
        with self._lock:
            return token in self._entries

    @property
    def active_count(self) -> int:
        """获取被监控的子进程数量。"""
        with self._lock:
            return len(self._entries)

    def close(self) -> None:
        """关闭回收器。

        剩余的子进程不再被监控，它们的退出码单元被标记为放弃。
        """
        with self._wakeup:
            self._closed = True
            entries = list(self._entries.values())
            self._entries.clear()
            self._wakeup.notify_all()
            thread = self._thread

        for entry in entries:
            entry.cell.abandon()

        if thread is not None and thread is not threading.current_thread():
            thread.join()
        logger.debug(f"Reaper closed, abandoned {len(entries)} child(ren)")

    def _ensure_thread(self) -> None:
        """按需启动回收线程（调用方持有锁）。"""
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(
                target=self._run, daemon=True, name="childproc-reaper"
            )
            self._thread.start()

    def _run(self) -> None:
        """回收线程主循环。"""
        with self._wakeup:
            while not self._closed:
                if not self._entries:
                    self._wakeup.wait()
                    continue
                self._scan()
                if self.poll_interval:
                    self._wakeup.wait(self.poll_interval)
                else:
                    # 让出锁，使 register/unregister 有机会执行
                    self._wakeup.wait(0)

    def _scan(self) -> None:
        """检查所有登记的子进程（调用方持有锁）。"""
        for token, entry in list(self._entries.items()):
            try:
                status = self.backend.poll_status(entry.pid)
            except Exception as e:
                logger.warning(f"Status query for pid={entry.pid} failed: {e}")
                del self._entries[token]
                entry.cell.abandon()
                continue

            if status.state is ChildState.RUNNING:
                continue

            del self._entries[token]
            if status.state is ChildState.EXITED:
                entry.cell.set(status.code)
                logger.debug(f"pid={entry.pid} exited with code={status.code}")
            else:
                entry.cell.abandon()
                logger.debug(f"pid={entry.pid} is not a waitable child, dropped")


class ReaperWatcher(Watcher):
    """把单个子进程的监控交给共享的 Reaper。"""

    def __init__(self, pid: int, cell: ExitCell, reaper: Reaper) -> None:
        super().__init__(pid, cell)
        self.reaper = reaper
        self._token: Optional[int] = None

    def start(self) -> None:
        if self._token is not None:
            raise RuntimeError(f"Watcher for pid={self.pid} already started")
        self._token = self.reaper.register(self.pid, self.cell)

    def stop(self) -> None:
        if self._token is None:
            return
        if self.reaper.unregister(self._token) and self.cell.code is None:
            self.cell.abandon()

    @property
    def is_alive(self) -> bool:
        return self._token is not None and self.reaper.is_registered(self._token)


# 全局回收器实例（延迟创建）
_reapers: Dict[int, Reaper] = {}
_reapers_lock = threading.Lock()


def get_reaper(
    backend: Optional[ProcessBackend] = None,
    poll_interval: float = 0.001,
) -> Reaper:
    """获取指定后端的全局回收器。

    每个后端对象共享一个回收器；poll_interval 只在首次创建时生效。
    """
    backend = backend if backend is not None else get_backend()
    with _reapers_lock:
        reaper = _reapers.get(id(backend))
        if reaper is None or reaper._closed:
            reaper = Reaper(backend, poll_interval=poll_interval)
            _reapers[id(backend)] = reaper
        return reaper
