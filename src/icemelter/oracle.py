"""The interestingness oracle.

An Oracle runs the compiler under test on one candidate and decides whether
the candidate still shows the failure being minimized. Everything the rest of
icemelter knows about the compiler comes through here: an exit status and two
captured output streams.

Evaluation is split into ``start`` and ``wait_with_output`` so that the
reducer can launch a candidate and collect it later, or abandon it by
cancelling the waiting task. Each invocation gets its own temporary
directory, so any number of evaluations can run at once.
"""

import os
import re
import shutil
import subprocess
import sys
import tempfile
from collections.abc import Iterable
from enum import Enum, auto

import attrs
import trio
from attrs import define, field

from icemelter.errors import OracleError, SetupError
from icemelter.process import interrupt_wait_and_kill


# Stands for the path of the candidate file in a check command.
PLACEHOLDER = "@@"


def compile_pattern(
    pattern: "str | re.Pattern[str] | None",
) -> "re.Pattern[str] | None":
    """Compile a user supplied pattern, reporting bad ones as setup errors."""
    if pattern is None or isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern)
    except re.error as e:
        raise SetupError(f"Invalid regex {pattern!r}: {e}") from e


def decode_output(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def absolute_argument(arg: str, cwd: str) -> str:
    """Anchor a check argument that names a path relative to ``cwd``.

    Handles plain paths, ``@file`` argument files, ``-Lpath`` and the
    value of ``name=path`` forms such as ``--extern foo=libfoo.rlib``. Anything
    that does not exist relative to ``cwd`` is left alone.
    """

    def existing(path: str) -> str | None:
        if not path or os.path.isabs(path):
            return None
        full = os.path.join(cwd, path)
        return os.path.abspath(full) if os.path.exists(full) else None

    if arg == PLACEHOLDER:
        return arg
    resolved = existing(arg)
    if resolved is not None:
        return resolved
    if arg.startswith("@"):
        resolved = existing(arg[1:])
        if resolved is not None:
            return "@" + resolved
    if "=" in arg:
        head, _, tail = arg.rpartition("=")
        resolved = existing(tail)
        if resolved is not None:
            return f"{head}={resolved}"
    elif arg.startswith("-L"):
        resolved = existing(arg[2:])
        if resolved is not None:
            return "-L" + resolved
    return arg


def _require_command(instance, attribute, value) -> None:
    if not value:
        raise SetupError("Empty interestingness check command")


@define(frozen=True)
class OracleConfig:
    command: tuple[str, ...] = field(converter=tuple, validator=_require_command)
    timeout: float | None = None
    interesting_exit_codes: frozenset[int] = field(
        default=frozenset(), converter=frozenset
    )
    interesting_stdout: "re.Pattern[str] | None" = field(
        default=None, converter=compile_pattern
    )
    interesting_stderr: "re.Pattern[str] | None" = field(
        default=None, converter=compile_pattern
    )
    uninteresting_stdout: "re.Pattern[str] | None" = field(
        default=None, converter=compile_pattern
    )
    uninteresting_stderr: "re.Pattern[str] | None" = field(
        default=None, converter=compile_pattern
    )
    echo_stdout: bool = False
    echo_stderr: bool = False
    suffix: str = ".rs"

    @classmethod
    def for_check(
        cls, check: Iterable[str], cwd: str | None = None, **kwargs
    ) -> "OracleConfig":
        """Build a config for ``<check...> <candidate file>``.

        The check runs in a private directory, so arguments naming paths
        relative to ``cwd`` (by default the current directory) are made
        absolute here.
        """
        check = list(check)
        if not check:
            raise SetupError("Empty interestingness check command")
        if cwd is None:
            cwd = os.getcwd()
        args = [absolute_argument(arg, cwd) for arg in check[1:]]
        return cls(command=(check[0], *args, PLACEHOLDER), **kwargs)

    def with_uninteresting_stderr(
        self, pattern: "str | re.Pattern[str] | None"
    ) -> "OracleConfig":
        return attrs.evolve(self, uninteresting_stderr=pattern)

    @property
    def has_interesting_constraints(self) -> bool:
        return bool(
            self.interesting_exit_codes
            or self.interesting_stdout is not None
            or self.interesting_stderr is not None
        )

    def argv(self, path: str) -> list[str]:
        return [path if part == PLACEHOLDER else part for part in self.command]


class Verdict(Enum):
    interesting = auto()
    not_interesting = auto()
    # The process timed out. Treated as not interesting, but kept apart so
    # that statistics can tell hangs from genuine non-reproductions.
    inconclusive = auto()


def classify(
    config: OracleConfig,
    exit_code: int | None,
    stdout: bytes,
    stderr: bytes,
    timed_out: bool = False,
) -> Verdict:
    """Decide the verdict for one finished (or killed) invocation.

    The rules are applied in order and the first one that decides wins, so an
    uninteresting match always beats an interesting one.
    """
    if timed_out:
        return Verdict.inconclusive

    out = decode_output(stdout)
    err = decode_output(stderr)

    if config.uninteresting_stdout is not None and config.uninteresting_stdout.search(
        out
    ):
        return Verdict.not_interesting
    if config.uninteresting_stderr is not None and config.uninteresting_stderr.search(
        err
    ):
        return Verdict.not_interesting

    if not config.has_interesting_constraints:
        return Verdict.interesting if exit_code == 0 else Verdict.not_interesting

    if config.interesting_exit_codes and exit_code not in config.interesting_exit_codes:
        return Verdict.not_interesting
    if config.interesting_stdout is not None and not config.interesting_stdout.search(
        out
    ):
        return Verdict.not_interesting
    if config.interesting_stderr is not None and not config.interesting_stderr.search(
        err
    ):
        return Verdict.not_interesting
    return Verdict.interesting


@define(frozen=True)
class OracleRun:
    verdict: Verdict
    exit_code: int | None
    stdout: bytes
    stderr: bytes
    timed_out: bool = False

    @property
    def interesting(self) -> bool:
        return self.verdict == Verdict.interesting

    @property
    def stderr_text(self) -> str:
        return decode_output(self.stderr)


@define
class OracleHandle:
    """A started evaluation. Owned by whoever awaits wait_with_output."""

    process: "trio.Process"
    workdir: str
    deadline: float

    @property
    def stdout_path(self) -> str:
        return os.path.join(self.workdir, "stdout")

    @property
    def stderr_path(self) -> str:
        return os.path.join(self.workdir, "stderr")

    def cleanup(self) -> None:
        shutil.rmtree(self.workdir, ignore_errors=True)


async def _read(path: str) -> bytes:
    async with await trio.open_file(path, "rb") as i:
        return await i.read()


class Oracle:
    def __init__(self, config: OracleConfig):
        self.config = config

    async def start(self, candidate: bytes) -> OracleHandle:
        """Write the candidate to a private directory and spawn the check."""
        workdir = tempfile.mkdtemp(prefix="icemelter-")
        working = os.path.join(workdir, "candidate" + self.config.suffix)
        timeout = self.config.timeout
        try:
            async with await trio.open_file(working, "wb") as o:
                await o.write(candidate)
            with (
                open(os.path.join(workdir, "stdout"), "wb") as out,
                open(os.path.join(workdir, "stderr"), "wb") as err,
            ):
                # rustc writes its artifacts to the working directory, so
                # that is the private directory too.
                process = await trio.lowlevel.open_process(
                    self.config.argv(working),
                    stdin=subprocess.DEVNULL,
                    stdout=out,
                    stderr=err,
                    cwd=workdir,
                    preexec_fn=os.setsid,
                )
        except OSError as e:
            shutil.rmtree(workdir, ignore_errors=True)
            raise OracleError(f"Failed to run {self.config.command[0]}: {e}") from e
        except BaseException:
            shutil.rmtree(workdir, ignore_errors=True)
            raise

        deadline = (
            float("inf") if timeout is None else trio.current_time() + timeout
        )
        return OracleHandle(process=process, workdir=workdir, deadline=deadline)

    async def wait_with_output(self, handle: OracleHandle) -> OracleRun:
        """Wait for a started evaluation and classify it.

        A process still running at the deadline is killed and the run is
        inconclusive. If this task is cancelled the process group is still
        reaped before the cancellation propagates.
        """
        sp = handle.process
        try:
            with trio.move_on_at(handle.deadline):
                await sp.wait()
            timed_out = sp.returncode is None
            if timed_out:
                await interrupt_wait_and_kill(sp)
            stdout = await _read(handle.stdout_path)
            stderr = await _read(handle.stderr_path)
        finally:
            if sp.returncode is None:
                with trio.CancelScope(shield=True):
                    await interrupt_wait_and_kill(sp)
            handle.cleanup()

        if self.config.echo_stdout:
            sys.stdout.buffer.write(stdout)
            sys.stdout.flush()
        if self.config.echo_stderr:
            sys.stderr.buffer.write(stderr)
            sys.stderr.flush()

        exit_code = None if timed_out else sp.returncode
        return OracleRun(
            verdict=classify(self.config, exit_code, stdout, stderr, timed_out),
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )

    async def run(self, candidate: bytes) -> OracleRun:
        handle = await self.start(candidate)
        return await self.wait_with_output(handle)

    async def is_interesting(self, candidate: bytes) -> bool:
        return (await self.run(candidate)).interesting
