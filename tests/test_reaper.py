"""Reaper 模块测试。

测试共享回收线程的基本功能：
- 登记和注销
- 退出码写入
- 同步注销语义
- 与真实子进程配合
"""

from __future__ import annotations

import time

import pytest

from childproc.config import WatchMode
from childproc.process import Process
from childproc.runtime.backend import ChildState, ChildStatus
from childproc.runtime.reaper import Reaper, ReaperWatcher, get_reaper
from childproc.runtime.watcher import ExitCell

from test_watcher import ScriptedBackend, wait_until


class MultiBackend(ScriptedBackend):
    """每个 pid 单独设置状态的后端。"""

    def __init__(self) -> None:
        super().__init__()
        self.statuses: dict[int, ChildStatus] = {}

    def poll_status(self, pid: int) -> ChildStatus:
        self.polls += 1
        return self.statuses.get(pid, ChildStatus(ChildState.RUNNING))


@pytest.fixture
def backend() -> MultiBackend:
    return MultiBackend()


@pytest.fixture
def reaper(backend: MultiBackend):
    reaper = Reaper(backend, poll_interval=0.001)
    yield reaper
    reaper.close()


class TestRegistration:
    """登记与注销测试。"""

    def test_register_returns_unique_tokens(self, reaper: Reaper):
        """令牌唯一。"""
        first = reaper.register(1, ExitCell())
        second = reaper.register(2, ExitCell())
        assert first != second
        assert reaper.active_count == 2

    def test_unregister(self, reaper: Reaper):
        """注销后不再被监控。"""
        token = reaper.register(1, ExitCell())
        assert reaper.unregister(token) is True
        assert reaper.unregister(token) is False
        assert reaper.is_registered(token) is False
        assert reaper.active_count == 0

    def test_register_after_close(self, reaper: Reaper):
        """关闭后拒绝登记。"""
        reaper.close()
        with pytest.raises(RuntimeError):
            reaper.register(1, ExitCell())


class TestReaping:
    """退出码写入测试。"""

    def test_many_children_one_thread(self, reaper: Reaper, backend: MultiBackend):
        """一个线程监控多个子进程，只写入已退出的那些。"""
        cells = {pid: ExitCell() for pid in (10, 11, 12)}
        for pid, cell in cells.items():
            reaper.register(pid, cell)

        backend.statuses[11] = ChildStatus(ChildState.EXITED, 5)

        assert cells[11].wait(5) is True
        assert cells[11].code == 5
        assert cells[10].code is None
        assert cells[12].code is None
        assert wait_until(lambda: reaper.active_count == 2)

    def test_gone_child_is_abandoned(self, reaper: Reaper, backend: MultiBackend):
        backend.statuses[20] = ChildStatus(ChildState.GONE)
        cell = ExitCell()
        reaper.register(20, cell)

        assert cell.wait(5) is False
        assert cell.abandoned is True

    def test_unregistered_cell_never_written(self, reaper: Reaper, backend: MultiBackend):
        """注销返回后回收线程不再写入。"""
        cell = ExitCell()
        token = reaper.register(30, cell)
        reaper.unregister(token)

        backend.statuses[30] = ChildStatus(ChildState.EXITED, 1)
        time.sleep(0.05)

        assert cell.code is None

    def test_close_abandons_remaining(self, reaper: Reaper):
        cell = ExitCell()
        reaper.register(40, cell)
        reaper.close()
        assert cell.abandoned is True

    def test_idle_thread_does_not_poll(self, reaper: Reaper, backend: MultiBackend):
        """没有登记的子进程时不轮询。"""
        token = reaper.register(50, ExitCell())
        assert wait_until(lambda: backend.polls > 0)
        reaper.unregister(token)
        time.sleep(0.02)
        polls = backend.polls
        time.sleep(0.05)
        assert backend.polls == polls


class TestReaperWatcher:
    """ReaperWatcher 测试。"""

    def test_stop_abandons_cell(self, reaper: Reaper):
        cell = ExitCell()
        watcher = ReaperWatcher(60, cell, reaper)
        watcher.start()
        assert watcher.is_alive is True

        watcher.stop()

        assert watcher.is_alive is False
        assert cell.abandoned is True

    def test_stop_after_exit_keeps_code(self, reaper: Reaper, backend: MultiBackend):
        cell = ExitCell()
        watcher = ReaperWatcher(61, cell, reaper)
        watcher.start()
        backend.statuses[61] = ChildStatus(ChildState.EXITED, 0)
        assert cell.wait(5) is True

        watcher.stop()

        assert cell.code == 0
        assert watcher.is_alive is False


class TestWithProcesses:
    """与真实子进程配合的测试。"""

    def test_get_reaper_is_shared(self):
        assert get_reaper() is get_reaper()

    @pytest.mark.timeout(30)
    def test_reaper_mode_exit_codes(self, echo_child):
        """reaper 模式与 thread 模式的退出码一致。"""
        processes = [
            Process.create(echo_child(str(code)), watch_mode=WatchMode.REAPER)
            for code in (0, 1, 2, 3)
        ]
        try:
            codes = [process.wait().exit_code for process in processes]
            assert codes == [0, 1, 2, 3]
            assert processes[2].stdout() == "2"
            assert processes[2].stderr() == "22"
        finally:
            for process in processes:
                process.close()
