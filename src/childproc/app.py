"""childproc 命令行入口。

包含日志配置和主入口点。

用法:
    childproc [--input TEXT] [--env KEY=VALUE]... BINARY [ARGS...]
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from .config import Config, WatchMode, get_config
from .executable import Executable
from .process import Process

__all__ = ["configure_logging", "build_parser", "run", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# 子进程无法创建时的退出码（与 shell 的 "command not found" 一致）
SPAWN_FAILED_EXIT_CODE = 127

# 等待子进程退出时读取管道的间隔（秒）
DRAIN_INTERVAL = 0.05


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - CHP_LOG_DEBUG 模式：DEBUG 级别输出到临时文件
    - 默认模式：WARNING 级别输出到 stderr
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.WARNING

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 childproc 命名空间设置日志级别
    logging.getLogger("childproc").setLevel(log_level)


def _parse_env_item(item: str) -> tuple[str, str]:
    """解析 KEY=VALUE 形式的环境变量参数。"""
    key, sep, value = item.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {item!r}")
    return key, value


def _parse_chunk_size(value: str) -> int:
    """解析正整数形式的块大小参数。"""
    try:
        size = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if size < 1:
        raise argparse.ArgumentTypeError(f"chunk size must be at least 1, got {size}")
    return size


def build_parser() -> argparse.ArgumentParser:
    """构建命令行参数解析器。"""
    parser = argparse.ArgumentParser(
        prog="childproc",
        description="Run a program, feed it stdin and report its output and exit code",
    )
    parser.add_argument("--input", default=None, help="Text written to the child's stdin")
    parser.add_argument(
        "--env",
        action="append",
        type=_parse_env_item,
        default=[],
        metavar="KEY=VALUE",
        help="Environment entry for the child (repeatable; nothing is inherited)",
    )
    parser.add_argument("--chunk-size", type=_parse_chunk_size, default=None, help="Bytes per pipe read/write")
    parser.add_argument(
        "--watch-mode",
        type=WatchMode.from_string,
        default=None,
        help="Exit monitoring mode: thread or reaper",
    )
    parser.add_argument("binary", help="Path to the program")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the program")
    return parser


def run(argv: Sequence[str] | None = None) -> int:
    """执行命令行请求。

    Returns:
        子进程的退出码；子进程无法创建时返回 127
    """
    args = build_parser().parse_args(argv)
    executable = Executable(
        binary=args.binary,
        arguments=tuple(args.args),
        environment=dict(args.env),
    )

    process = Process.create(executable, watch_mode=args.watch_mode)
    if process is None:
        logger.error(f"Failed to create process for {args.binary}")
        return SPAWN_FAILED_EXIT_CODE

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    with process:
        if args.input is not None:
            process.stdin(args.input, chunk_size=args.chunk_size)
            process.close_stdin()

        # 等待期间持续读取，避免子进程写满管道缓冲区后阻塞
        while True:
            try:
                process.wait(timeout=DRAIN_INTERVAL)
                break
            except TimeoutError:
                stdout_chunks.append(process.stdout_bytes(args.chunk_size))
                stderr_chunks.append(process.stderr_bytes(args.chunk_size))
        stdout_chunks.append(process.stdout_bytes(args.chunk_size))
        stderr_chunks.append(process.stderr_bytes(args.chunk_size))
        exit_code = process.exit_code

    sys.stdout.buffer.write(b"".join(stdout_chunks))
    sys.stdout.flush()
    sys.stderr.buffer.write(b"".join(stderr_chunks))
    sys.stderr.flush()

    logger.debug(f"pid={process.pid} finished with exit_code={exit_code}")
    if exit_code is None:
        return 1
    # 被信号终止时沿用 shell 约定 128 + signum
    return exit_code if exit_code >= 0 else 128 - exit_code


def main() -> None:
    """主入口点。"""
    config = get_config()
    configure_logging(config)
    sys.exit(run())


if __name__ == "__main__":
    main()
