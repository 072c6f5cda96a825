"""CHP 环境变量配置管理。

环境变量:
    CHP_READ_CHUNK_SIZE: stdout/stderr 单次读取的字节数
        - 默认 8192
        - 限制在 1-1048576 范围

    CHP_WRITE_CHUNK_SIZE: stdin 单次写入的字节数
        - 默认 8192
        - 限制在 1-1048576 范围

    CHP_POLL_INTERVAL: 子进程状态轮询间隔（秒）
        - 默认 0.001 秒
        - 0 = 忙等待（不休眠）
        - 限制在 0-1 秒范围

    CHP_WATCH_MODE: 退出监控模式
        - thread = 每个进程一个轮询线程 (默认)
        - reaper = 所有进程共享一个回收线程

    CHP_ENCODING: stdin/stdout/stderr 文本编码
        - 默认 utf-8

    CHP_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "WatchMode", "load_config", "get_config", "reload_config"]

DEFAULT_CHUNK_SIZE = 8192
MAX_CHUNK_SIZE = 1024 * 1024
DEFAULT_POLL_INTERVAL = 0.001
DEFAULT_ENCODING = "utf-8"


class WatchMode(Enum):
    """退出监控模式。

    - THREAD: 每个 Process 独占一个轮询线程
    - REAPER: 所有 Process 共享一个回收线程
    """

    THREAD = "thread"
    REAPER = "reaper"

    @classmethod
    def from_string(cls, value: str) -> "WatchMode":
        """从字符串解析模式。

        Args:
            value: 模式字符串 (thread/reaper)

        Returns:
            对应的 WatchMode 枚举值，无效值返回 THREAD
        """
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.THREAD  # 默认值


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_chunk_size(value: str | None) -> int:
    """解析块大小环境变量。"""
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        size = int(value)
        return max(1, min(size, MAX_CHUNK_SIZE))
    except ValueError:
        return DEFAULT_CHUNK_SIZE


def _parse_poll_interval(value: str | None) -> float:
    """解析轮询间隔环境变量。"""
    if not value:
        return DEFAULT_POLL_INTERVAL
    try:
        interval = float(value)
        return max(0.0, min(interval, 1.0))  # 限制在 0-1 秒范围
    except ValueError:
        return DEFAULT_POLL_INTERVAL


def _parse_watch_mode(value: str | None) -> WatchMode:
    """解析监控模式环境变量。"""
    if not value:
        return WatchMode.THREAD
    return WatchMode.from_string(value)


def _parse_encoding(value: str | None) -> str:
    """解析编码环境变量，未知编码回退到 utf-8。"""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


@dataclass
class Config:
    """CHP 配置。

    Attributes:
        read_chunk_size: stdout/stderr 单次读取字节数
        write_chunk_size: stdin 单次写入字节数
        poll_interval: 子进程状态轮询间隔（秒）
        watch_mode: 退出监控模式
        encoding: 文本编码
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    read_chunk_size: int = DEFAULT_CHUNK_SIZE
    write_chunk_size: int = DEFAULT_CHUNK_SIZE
    poll_interval: float = DEFAULT_POLL_INTERVAL
    watch_mode: WatchMode = WatchMode.THREAD
    encoding: str = DEFAULT_ENCODING
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(read_chunk_size={self.read_chunk_size}, "
            f"write_chunk_size={self.write_chunk_size}, "
            f"poll_interval={self.poll_interval}, "
            f"watch_mode={self.watch_mode.value}, "
            f"encoding={self.encoding}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "childproc"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"chp_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CHP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        read_chunk_size=_parse_chunk_size(os.environ.get("CHP_READ_CHUNK_SIZE")),
        write_chunk_size=_parse_chunk_size(os.environ.get("CHP_WRITE_CHUNK_SIZE")),
        poll_interval=_parse_poll_interval(os.environ.get("CHP_POLL_INTERVAL")),
        watch_mode=_parse_watch_mode(os.environ.get("CHP_WATCH_MODE")),
        encoding=_parse_encoding(os.environ.get("CHP_ENCODING")),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
