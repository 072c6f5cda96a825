"""Executable descriptor and its marshalling into exec-ready buffers.

This module provides:
- Executable: immutable description of a program to run
- argv_of / envp_of: conversion into the arguments ``os.execve`` expects
- find_by: non-recursive lookup of a program by name in one directory
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

__all__ = [
    "Executable",
    "argv_of",
    "envp_of",
    "find_by",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Executable:
    """Description of a program to run.

    Attributes:
        binary: Path to the program (None = no program; exec fails with ENOENT)
        arguments: Arguments passed after the binary itself
        environment: Complete environment of the child (nothing is inherited)
    """

    binary: Path | None = None
    arguments: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.binary is not None and not isinstance(self.binary, Path):
            object.__setattr__(self, "binary", Path(self.binary))
        object.__setattr__(self, "arguments", tuple(self.arguments))

        environment = {str(k): str(v) for k, v in dict(self.environment).items()}
        for key in environment:
            if not key or "=" in key or "\0" in key:
                raise ValueError(f"Illegal environment variable name: {key!r}")
        object.__setattr__(self, "environment", MappingProxyType(environment))

    @classmethod
    def of(cls, binary: str | os.PathLike[str], *arguments: str, **environment: str) -> "Executable":
        """Shorthand constructor: ``Executable.of("/bin/echo", "hi", LANG="C")``."""
        return cls(binary=Path(binary), arguments=arguments, environment=environment)

    def with_arguments(self, arguments: Iterable[str]) -> "Executable":
        return Executable(self.binary, tuple(arguments), self.environment)

    def with_environment(self, environment: Mapping[str, str]) -> "Executable":
        return Executable(self.binary, self.arguments, environment)

    def __bool__(self) -> bool:
        return self.binary is not None


def argv_of(executable: Executable) -> list[bytes]:
    """Build the argument vector: binary followed by the arguments.

    Args:
        executable: Program description

    Returns:
        File-system encoded argument list, ``argv[0]`` is the binary
        (empty when the executable has no binary)
    """
    binary = os.fsencode(executable.binary) if executable.binary is not None else b""
    return [binary, *(os.fsencode(arg) for arg in executable.arguments)]


def envp_of(executable: Executable) -> dict[bytes, bytes]:
    """Build the child environment.

    ``os.execve`` serializes each entry as ``key=value``; keys are emitted in
    sorted order.
    """
    return {
        os.fsencode(key): os.fsencode(executable.environment[key])
        for key in sorted(executable.environment)
    }


def find_by(name: str, directory: str | os.PathLike[str]) -> Executable:
    """Find a program by name in a single directory (non-recursive).

    Args:
        name: File name to look for
        directory: Directory to scan

    Returns:
        Executable whose binary is the first matching entry, with no
        arguments and an empty environment; an empty Executable when
        nothing matches or the directory cannot be read
    """
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name == name:
                    return Executable(binary=Path(entry.path))
    except OSError as e:
        logger.debug(f"Cannot scan {directory}: {e}")
    return Executable()
