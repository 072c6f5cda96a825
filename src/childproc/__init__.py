"""childproc - 子进程句柄：创建、退出监控、管道通信。

环境变量:
    CHP_READ_CHUNK_SIZE: stdout/stderr 单次读取字节数 (默认 8192)
    CHP_WRITE_CHUNK_SIZE: stdin 单次写入字节数 (默认 8192)
    CHP_POLL_INTERVAL: 子进程状态轮询间隔 (默认 0.001s)
    CHP_WATCH_MODE: 退出监控模式 thread/reaper (默认 thread)

用法:
    from childproc import Executable, Process

    process = Process.create(Executable.of("/bin/echo", "hello"))
    print(process.wait().exit_code, process.stdout())
"""

__version__ = "0.1.0"

from .config import WatchMode
from .errors import ChildProcError, ProcessStateError, UnsupportedOperationError
from .executable import Executable, argv_of, envp_of, find_by
from .process import Process

__all__ = [
    "__version__",
    "ChildProcError",
    "Executable",
    "Process",
    "ProcessStateError",
    "UnsupportedOperationError",
    "WatchMode",
    "argv_of",
    "envp_of",
    "find_by",
]
