"""The melt: every stage from the failing source to the written result.

Stages run strictly in order. The differential filter is fully built from
the initial run before the reduction oracle exists, and is never rebuilt.
"""

import os
import time

import attrs
import trio
from attrs import define

from icemelter.bisect import BISECT_STDERR, BISECT_STDOUT, bisect, bisect_args
from icemelter.errors import BisectionError, IcemelterError, SetupError
from icemelter.filters import DEFAULT_MAX_ERROR_CODE, differential_filter
from icemelter.formatting import DEFAULT_FORMATTER, FormatResult, format_and_revalidate
from icemelter.oracle import Oracle, OracleConfig, compile_pattern
from icemelter.reducer import ReductionConfig, ReductionResult, reduce_source
from icemelter.report import compiler_version, markdown_report, summary
from icemelter.retrieval import GitHubClient, retrieve
from icemelter.validation import InitialCheck, check_initial_failure
from icemelter.work import WorkContext


STEPS = 5

DEFAULT_INTERESTING_STDERR = (
    r"(internal compiler error:|error: the compiler unexpectedly panicked\. this is a bug\.)"
)


@define
class MeltSettings:
    check: list[str] = attrs.Factory(lambda: ["rustc"])
    interesting_stderr: str = DEFAULT_INTERESTING_STDERR
    uninteresting_stderr: str | None = None
    allow_errors: bool = False
    # One job, compiler output echoed to the terminal.
    debug: bool = False
    jobs: int = 1
    timeout: float | None = 2.0
    max_error_code: int = DEFAULT_MAX_ERROR_CODE
    max_passes: int | None = None
    min_reduction: int = 1
    formatter: list[str] | None = attrs.Factory(lambda: [DEFAULT_FORMATTER])
    bisect: bool = False
    output: str = "melted.rs"
    markdown: bool = False

    def oracle_config(self, uninteresting_stderr: str | None) -> OracleConfig:
        return OracleConfig.for_check(
            self.check,
            timeout=self.timeout,
            interesting_stderr=self.interesting_stderr,
            uninteresting_stderr=uninteresting_stderr,
            echo_stdout=self.debug,
            echo_stderr=self.debug,
        )

    @property
    def effective_jobs(self) -> int:
        return 1 if self.debug else max(self.jobs, 1)

    @property
    def markdown_path(self) -> str:
        return os.path.splitext(self.output)[0] + ".md"


@define(frozen=True)
class MeltResult:
    source: bytes
    final: bytes
    initial: InitialCheck
    reduction: ReductionResult
    format_result: FormatResult
    bisect_report: str | None

    @property
    def did_reduce(self) -> bool:
        return self.reduction.did_reduce


def reduction_filter(
    initial: InitialCheck, settings: MeltSettings, work: WorkContext
) -> str | None:
    """The uninteresting-stderr pattern for the reduction oracle."""
    if settings.allow_errors:
        work.warn(
            "--allow-errors given: the result may trigger a different bug than the original"
        )
        return settings.uninteresting_stderr
    for code in sorted(initial.error_codes):
        work.debug(f"Found error code E{code}")
    pattern = differential_filter(
        initial.error_codes,
        settings.uninteresting_stderr,
        max_error_code=settings.max_error_code,
    )
    work.debug(f"Initial stderr:\n{initial.stderr}")
    work.debug(f"Error regex: {pattern}")
    if compile_pattern(pattern).search(initial.stderr):
        raise SetupError(
            "The original failure already shows an error that would disqualify "
            "every candidate. Try --allow-errors."
        )
    return pattern


async def write_bytes(path: str, data: bytes) -> None:
    try:
        async with await trio.open_file(path, "wb") as o:
            await o.write(data)
    except OSError as e:
        raise IcemelterError(f"Failed to write file to {path}: {e}") from e


async def run_bisection(
    settings: MeltSettings, final: bytes, work: WorkContext
) -> str | None:
    output_dir = os.path.dirname(settings.output) or "."
    try:
        result = await bisect(
            bisect_args(settings.check), final, settings.interesting_stderr, output_dir
        )
    except (BisectionError, OSError) as e:
        work.warn(f"Bisection failed: {e}")
        return None
    work.note(f"Wrote to {BISECT_STDOUT} and {BISECT_STDERR}")
    if not result.succeeded:
        work.warn("cargo-bisect-rustc failed")
    return result.report


async def melt(
    source: str,
    settings: MeltSettings,
    work: WorkContext,
    client: GitHubClient | None = None,
) -> MeltResult:
    start_time = time.time()

    work.note(f"Step 1/{STEPS}: Retrieving...")
    text = await trio.to_thread.run_sync(retrieve, source, client)
    src = text.encode("utf-8")

    work.note(f"Step 2/{STEPS}: Configuring...")
    initial_oracle = Oracle(settings.oracle_config(settings.uninteresting_stderr))
    initial = await check_initial_failure(initial_oracle, src)
    uninteresting = reduction_filter(initial, settings, work)

    work.note(f"Step 3/{STEPS}: Reducing...")
    oracle = Oracle(settings.oracle_config(uninteresting))
    reduction = await reduce_source(
        src,
        oracle,
        ReductionConfig(
            jobs=settings.effective_jobs,
            min_reduction=settings.min_reduction,
            max_passes=settings.max_passes,
        ),
        work,
    )
    if reduction.did_reduce:
        work.verbose(reduction.stats.display_stats())
    elif settings.allow_errors:
        work.note("Unable to reduce! Sorry.")
    else:
        work.note("Unable to reduce, try --allow-errors.")

    work.note(f"Step 4/{STEPS}: Formatting...")
    format_result, final = await format_and_revalidate(
        oracle, reduction.reduced, settings.formatter
    )
    if settings.formatter is None:
        work.verbose("Formatting disabled")
    elif format_result == FormatResult.could_not_format:
        work.warn(format_result.description)
    else:
        work.note(format_result.description)

    bisect_report = None
    if settings.bisect:
        work.note(f"Step 5/{STEPS}: Bisecting (this can take a very long time)...")
        bisect_report = await run_bisection(settings, final, work)
    else:
        work.note("Skipping bisection! Try adding --bisect.")

    await write_bytes(settings.output, final)
    work.note(f"Result written to {settings.output}")
    work.note(summary(src, final, start_time))

    if settings.markdown:
        report = markdown_report(
            final,
            reduction.did_reduce,
            format_result,
            bisect_report,
            await compiler_version(settings.check),
        )
        await write_bytes(settings.markdown_path, report.encode("utf-8"))
        work.note(f"Wrote Markdown report to {settings.markdown_path}")

    return MeltResult(
        source=src,
        final=final,
        initial=initial,
        reduction=reduction,
        format_result=format_result,
        bisect_report=bisect_report,
    )
