"""Formatting the reduced file, without ever losing the failure.

The formatter (rustfmt by default) rewrites a file in place. Its output is
only kept if the oracle still finds it interesting; any failure of the
formatter itself just means the unformatted candidate is used.
"""

import os
import tempfile
from collections.abc import Sequence
from enum import Enum
from shutil import which

import trio

from icemelter.oracle import Oracle
from icemelter.process import run_captured


DEFAULT_FORMATTER = "rustfmt"


class FormatResult(Enum):
    could_not_format = "❌ Couldn't format"
    no_change = "✅ No change, already formatted"
    broke_reproduction = "❌ Formatting removed the failure"
    formatted = "✅ Formatted!"

    @property
    def description(self) -> str:
        return self.value

    @property
    def changed(self) -> bool:
        return self == FormatResult.formatted


def determine_formatter_command(formatter: str) -> list[str] | None:
    """Resolve the --formatter setting. 'none' turns formatting off."""
    if formatter.lower() == "none":
        return None
    if formatter.lower() == "default":
        formatter = DEFAULT_FORMATTER
    resolved = which(formatter)
    return [resolved if resolved is not None else formatter]


async def run_formatter(formatter: Sequence[str], candidate: bytes, suffix: str) -> bytes | None:
    """Format ``candidate``; None if the formatter could not do it.

    Raises OSError if the formatter cannot be spawned.
    """
    with tempfile.TemporaryDirectory(prefix="icemelter-fmt-") as d:
        path = os.path.join(d, "melted" + suffix)
        async with await trio.open_file(path, "wb") as o:
            await o.write(candidate)
        result = await run_captured([*formatter, path])
        if result.returncode != 0:
            return None
        async with await trio.open_file(path, "rb") as i:
            formatted = await i.read()
    try:
        formatted.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return formatted


async def format_and_revalidate(
    oracle: Oracle,
    candidate: bytes,
    formatter: Sequence[str] | None,
) -> tuple[FormatResult, bytes]:
    """Returns the outcome and the bytes to keep."""
    if formatter is None:
        return FormatResult.could_not_format, candidate
    try:
        formatted = await run_formatter(formatter, candidate, oracle.config.suffix)
    except OSError:
        return FormatResult.could_not_format, candidate
    if formatted is None:
        return FormatResult.could_not_format, candidate
    if formatted == candidate:
        return FormatResult.no_change, candidate
    if not await oracle.is_interesting(formatted):
        return FormatResult.broke_reproduction, candidate
    return FormatResult.formatted, formatted
