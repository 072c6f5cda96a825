"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from childproc.config import reload_config  # noqa: E402
from childproc.executable import Executable  # noqa: E402

# 测试用子进程脚本
ECHO_CHILD = Path(__file__).parent / "fixtures" / "echo_child.py"

_CHP_VARS = (
    "CHP_READ_CHUNK_SIZE",
    "CHP_WRITE_CHUNK_SIZE",
    "CHP_POLL_INTERVAL",
    "CHP_WATCH_MODE",
    "CHP_ENCODING",
    "CHP_LOG_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """每个测试使用不受外部 CHP_* 变量影响的配置。"""
    for name in _CHP_VARS:
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def echo_child() -> Callable[..., Executable]:
    """构造运行 echo_child.py 的 Executable。"""

    def build(*arguments: str, **environment: str) -> Executable:
        return Executable(
            binary=Path(sys.executable),
            arguments=(str(ECHO_CHILD), *arguments),
            environment=environment,
        )

    return build


@pytest.fixture
def reap_pid():
    """测试结束时终止并回收仍在运行的子进程。"""
    pids: list[int] = []
    yield pids.append
    for pid in pids:
        try:
            os.kill(pid, 9)
            os.waitpid(pid, 0)
        except (ProcessLookupError, ChildProcessError):
            pass
