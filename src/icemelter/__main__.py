"""Main entry point for icemelter."""

import signal
import sys
import traceback
from random import Random
from typing import Any

import click
import trio

from icemelter.cli import EnumChoice, validate_check, validate_jobs, validate_regex
from icemelter.errors import IcemelterError, first_error
from icemelter.filters import DEFAULT_MAX_ERROR_CODE
from icemelter.formatting import DEFAULT_FORMATTER, determine_formatter_command
from icemelter.pipeline import DEFAULT_INTERESTING_STDERR, MeltSettings, melt
from icemelter.retrieval import ISSUE_NUMBER, GitHubClient
from icemelter.work import Volume, WorkContext


@click.command(
    help="""
Minimize a Rust program that makes the compiler crash.

SOURCE is a path to a Rust file, or a rust-lang/rust issue number written as
#1234 (this needs GITHUB_TOKEN). CHECK is the compiler command, which is run
with the candidate file appended (default: rustc).
""".strip()
)
@click.version_option()
@click.option(
    "--allow-errors",
    is_flag=True,
    default=False,
    help="""
Allow the reduced program to have errors that the original did not. Without
this, any candidate showing a new error code (or a new uncoded error) is
rejected, which keeps the reduction on the original bug.
""",
)
@click.option(
    "-b",
    "--bisect",
    is_flag=True,
    default=False,
    help="Run cargo-bisect-rustc on the result to find the nightly that introduced the failure.",
)
@click.option(
    "-d",
    "--debug",
    is_flag=True,
    default=False,
    help="Run one job at a time and show the compiler's stdout and stderr.",
)
@click.option(
    "--interesting-stderr",
    default=DEFAULT_INTERESTING_STDERR,
    callback=validate_regex,
    help="Regex a candidate's stderr must match to count as a reproduction.",
)
@click.option(
    "--uninteresting-stderr",
    default=None,
    callback=validate_regex,
    help="Regex rejecting any candidate whose stderr matches it.",
)
@click.option(
    "-j",
    "--jobs",
    type=click.INT,
    default=0,
    callback=validate_jobs,
    help="Number of compiler runs to do in parallel. 0 means the number of CPUs.",
)
@click.option(
    "--markdown",
    is_flag=True,
    default=False,
    help="Also write a Markdown report suitable for a GitHub comment next to the output.",
)
@click.option(
    "-o",
    "--output",
    default="melted.rs",
    type=click.Path(dir_okay=False),
    help="Where to write the reduced program.",
)
@click.option(
    "--timeout",
    type=click.IntRange(min=0),
    default=2000,
    help="Time out each compiler run after this many milliseconds. 0 means no timeout.",
)
@click.option(
    "--max-error-code",
    type=click.IntRange(0, 9999),
    default=DEFAULT_MAX_ERROR_CODE,
    envvar="ICEMELTER_MAX_ERROR_CODE",
    show_default=True,
    help="Highest rustc error code the new-error filter knows about.",
)
@click.option(
    "--max-passes",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many rounds of reduction passes. By default runs until nothing changes.",
)
@click.option(
    "--min-reduction",
    type=click.IntRange(min=1),
    default=1,
    help="Don't try edits that remove fewer than this many bytes.",
)
@click.option(
    "--formatter",
    default=DEFAULT_FORMATTER,
    help="""
Formatter to run on the result, rustfmt by default. It is kept only if the
formatted program still reproduces the failure. 'none' turns off formatting.
""",
)
@click.option(
    "--volume",
    default="normal",
    type=EnumChoice(Volume),
    help="Level of output to provide.",
)
@click.argument("source")
@click.argument("check", nargs=-1, callback=validate_check)
def main(
    source: str,
    check: list[str],
    allow_errors: bool,
    bisect: bool,
    debug: bool,
    interesting_stderr: str,
    uninteresting_stderr: str | None,
    jobs: int,
    markdown: bool,
    output: str,
    timeout: int,
    max_error_code: int,
    max_passes: int | None,
    min_reduction: int,
    formatter: str,
    volume: Volume,
) -> None:
    if debug:
        jobs = 1

    settings = MeltSettings(
        check=check,
        interesting_stderr=interesting_stderr,
        uninteresting_stderr=uninteresting_stderr,
        allow_errors=allow_errors,
        debug=debug,
        jobs=jobs,
        timeout=timeout / 1000 if timeout > 0 else None,
        max_error_code=max_error_code,
        max_passes=max_passes,
        min_reduction=min_reduction,
        formatter=determine_formatter_command(formatter),
        bisect=bisect,
        output=output,
        markdown=markdown,
    )
    work = WorkContext(random=Random(0), parallelism=jobs, volume=volume)

    # Ctrl-\ shows what a long reduction is up to.
    def dump_trace(signum: int, frame: Any) -> None:  # pragma: no cover
        traceback.print_stack()

    signal.signal(signal.SIGQUIT, dump_trace)

    failure: BaseException | None = None
    try:
        client = GitHubClient.from_env() if ISSUE_NUMBER.match(source) else None
        trio.run(lambda: melt(source, settings, work, client))
    except* IcemelterError as eg:
        failure = first_error(eg)

    if failure is not None:
        print(f"error: {failure}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main(prog_name="icemelter")
