"""CLI utilities and types for icemelter."""

import os
import re
from enum import Enum
from shutil import which
from typing import Any, Generic, TypeVar

import click


DEFAULT_CHECK = ("rustc",)


def validate_check(ctx: Any, param: Any, value: tuple[str, ...]) -> list[str]:
    """Resolve the compiler command. Its arguments are passed through as given."""
    parts = list(value) or list(DEFAULT_CHECK)
    command = parts[0]

    if os.path.sep in command and os.path.exists(command):
        command = os.path.abspath(command)
    else:
        what = which(command)
        if what is None:
            raise click.BadParameter(f"{command}: command not found")
        command = os.path.abspath(what)
    return [command] + parts[1:]


def validate_regex(ctx: Any, param: Any, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        re.compile(value)
    except re.error as e:
        raise click.BadParameter(f"invalid regex {value!r}: {e}")
    return value


def validate_jobs(ctx: Any, param: Any, value: int) -> int:
    if value < 0:
        raise click.BadParameter(f"must be at least 0 (got {value})")
    if value == 0:
        return os.cpu_count() or 1
    return value


EnumType = TypeVar("EnumType", bound=Enum)


class EnumChoice(click.Choice, Generic[EnumType]):
    """A click Choice that works with Enums."""

    def __init__(self, enum: type[EnumType]) -> None:
        self.enum = enum
        choices = [str(e.name) for e in enum]
        self.__values = {e.name: e for e in enum}
        super().__init__(choices)

    def convert(self, value: Any, param: Any, ctx: Any) -> EnumType:
        if isinstance(value, self.enum):
            return value
        return self.__values[super().convert(value, param, ctx)]
