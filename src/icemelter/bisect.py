"""Finding the nightly that introduced the failure with cargo-bisect-rustc.

cargo-bisect-rustc decides whether a toolchain is "bad" by running a script.
The script generated here re-expresses the interesting-stderr pattern as an
exit status: it exits 1 when the compiler output matches. Before handing it
over, the script is run once against a toolchain known to be bad, because a
script that never fails would make the bisection meaningless.
"""

import os
import shlex
import stat
import tempfile
from collections.abc import Sequence

import trio
from attrs import define

from icemelter.errors import BisectionError
from icemelter.process import run_captured


BISECT_COMMAND = "cargo-bisect-rustc"
BISECT_STDOUT = "cargo-bisect-rustc.stdout.txt"
BISECT_STDERR = "cargo-bisect-rustc.stderr.txt"
KNOWN_BAD_TOOLCHAIN = "nightly"
RUSTC = 'rustup run "${RUSTUP_TOOLCHAIN}" rustc'

# cargo-bisect-rustc prints its conclusion after the second of these rulers.
RULER = "=" * 82


def bisect_args(check: Sequence[str]) -> list[str]:
    """The rustc arguments of a check command, without any +toolchain."""
    args = list(check[1:])
    if args and args[0].startswith("+"):
        args = args[1:]
    return args


def bisection_script(
    args: Sequence[str], source_path: str, stderr_regex: str, rustc: str = RUSTC
) -> str:
    quoted = " ".join(shlex.quote(a) for a in [*args, source_path])
    return f"""#!/usr/bin/env bash
if {rustc} {quoted} 2>&1 | grep -E -e {shlex.quote(stderr_regex)}; then
  exit 1
fi
exit 0
"""


def write_to_script(text: str, filename: str) -> None:
    with open(filename, "w") as f:
        f.write(text)
    os.chmod(filename, os.stat(filename).st_mode | stat.S_IRWXU)


def extract_bisect_report(stderr: str) -> str:
    lines = []
    rulers = 0
    for line in stderr.splitlines():
        if line.startswith(RULER):
            rulers += 1
        elif rulers >= 2:
            lines.append(line)
    return "\n".join(lines)


@define(frozen=True)
class BisectResult:
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    @property
    def report(self) -> str:
        return extract_bisect_report(self.stderr.decode("utf-8", errors="replace"))


async def bisect(
    args: Sequence[str],
    candidate: bytes,
    stderr_regex: str,
    output_dir: str = ".",
    bisect_command: Sequence[str] = (BISECT_COMMAND,),
    rustc: str = RUSTC,
    known_bad_toolchain: str = KNOWN_BAD_TOOLCHAIN,
) -> BisectResult:
    """Run the bisection, saving its raw output next to ``output_dir``.

    Raises BisectionError if the script does not fail on the known-bad
    toolchain, and OSError if the bisection tool cannot be spawned.
    """
    with tempfile.TemporaryDirectory(prefix="icemelter-bisect-") as d:
        source_path = os.path.join(d, "melted.rs")
        async with await trio.open_file(source_path, "wb") as o:
            await o.write(candidate)
        script_path = os.path.join(d, "bisect.sh")
        write_to_script(
            bisection_script(args, source_path, stderr_regex, rustc=rustc), script_path
        )

        check = await run_captured(
            [script_path], env={"RUSTUP_TOOLCHAIN": known_bad_toolchain}
        )
        if check.returncode == 0:
            raise BisectionError(
                f"The bisection script does not reproduce the failure on {known_bad_toolchain}"
            )

        result = await run_captured(
            [*bisect_command, "--script", script_path, "--preserve"]
        )

    async with await trio.open_file(os.path.join(output_dir, BISECT_STDOUT), "wb") as o:
        await o.write(result.stdout)
    async with await trio.open_file(os.path.join(output_dir, BISECT_STDERR), "wb") as o:
        await o.write(result.stderr)
    return BisectResult(
        returncode=result.returncode, stdout=result.stdout, stderr=result.stderr
    )
