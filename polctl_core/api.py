"""Command registration API used by builtin commands."""

from __future__ import annotations

from abc import ABC, abstractmethod
from argparse import ArgumentParser
from pathlib import Path
from typing import Any, Callable, ClassVar, TypeVar

_COMMANDS: dict[str, type["PolctlAbstractCommand"]] = {}

CommandType = TypeVar("CommandType", bound=type["PolctlAbstractCommand"])


class PolctlAbstractCommand(ABC):
    name: ClassVar[str] = ""
    help: ClassVar[str | None] = None

    def __init__(self, start_dir: Path | None = None) -> None:
        self.start_dir = (start_dir or Path.cwd()).resolve()

    @classmethod
    def configure(cls, parser: ArgumentParser) -> None:
        """Add command-specific arguments."""

    @abstractmethod
    def run(self, argv: Any) -> int: ...


def polctlcommand(*, name: str, help: str | None = None) -> Callable[[CommandType], CommandType]:
    def decorator(cls: CommandType) -> CommandType:
        if name in _COMMANDS and _COMMANDS[name] is not cls:
            raise ValueError(f"command '{name}' is already registered")
        cls.name = name
        doc = (cls.__doc__ or "").strip().splitlines()
        cls.help = help or (doc[0] if doc else None)
        _COMMANDS[name] = cls
        return cls

    return decorator


def registered_commands() -> dict[str, type[PolctlAbstractCommand]]:
    return dict(_COMMANDS)
