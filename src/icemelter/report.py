"""Human readable output: the end-of-run summary and the Markdown report."""

import shlex
import sys
import time
from collections.abc import Sequence
from datetime import timedelta
from importlib.metadata import PackageNotFoundError, version

import humanize

from icemelter.formatting import FormatResult
from icemelter.process import run_captured


def icemelter_version() -> str:
    try:
        return version("icemelter")
    except PackageNotFoundError:
        return "unknown"


async def compiler_version(check: Sequence[str]) -> str:
    try:
        result = await run_captured([*check, "--version", "--verbose"])
    except OSError:
        return "<unknown>"
    return result.stdout.decode("utf-8", errors="replace").strip() or "<unknown>"


def summary(initial: bytes, final: bytes, start_time: float) -> str:
    if initial == final:
        return "Test case was already maximally reduced."
    if len(final) < len(initial):
        return (
            f"Deleted {humanize.naturalsize(len(initial) - len(final))} "
            f"out of {humanize.naturalsize(len(initial))} "
            f"({(1.0 - len(final) / len(initial)) * 100:.2f}% reduction) "
            f"in {humanize.precisedelta(timedelta(seconds=time.time() - start_time))}"
        )
    if len(final) == len(initial):
        return "Some changes were made but no bytes were deleted"
    return f"Formatting resulted in an increase of {humanize.naturalsize(len(final) - len(initial))}."


def edited_label(did_reduce: bool, did_format: bool) -> str:
    if did_reduce and did_format:
        return "Reduced, formatted"
    if did_reduce:
        return "Reduced"
    if did_format:
        return "Formatted"
    return "Unchanged"


def markdown_report(
    final: bytes,
    did_reduce: bool,
    format_result: FormatResult,
    bisect_report: str | None,
    rustc_version: str,
    argv: Sequence[str] | None = None,
) -> str:
    if argv is None:
        argv = sys.argv
    did_format = format_result.changed
    if did_reduce or did_format:
        code = (
            f"{edited_label(did_reduce, did_format)}:\n"
            f"```rust\n{final.decode('utf-8', errors='replace').rstrip()}\n```\n"
        )
    else:
        code = ""
    return f"""Triaged with [Icemelter](https://github.com/langston-barrett/icemelter). Steps performed:

- Reproduced: ✅
- Formatted: {format_result.description}
- Reduced: {"✅" if did_reduce else "❌"}
- Bisected: {"✅" if bisect_report is not None else "❌"}

{code}
{bisect_report or ""}

<details><summary>Details</summary>
<p>

rustc version:
```
{rustc_version}
```

Icemelter version: v{icemelter_version()}

Icemelter command line:

```sh
{" ".join(shlex.quote(a) for a in argv)}
```

@rustbot label +S-bug-has-mcve

Do you have feedback about this report? Please [file an issue](https://github.com/langston-barrett/icemelter/issues)!

</p>
</details>
"""
