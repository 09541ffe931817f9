"""The tree reduction engine and the driver that runs it against an oracle."""

from collections.abc import Mapping

import attrs
import trio
from attrs import define

from icemelter.errors import IcemelterError, ReductionError, first_error
from icemelter.oracle import Oracle
from icemelter.passes import DEFAULT_REPLACEMENTS, ReductionPass, tree_passes
from icemelter.problem import BasicReductionProblem, ReductionProblem, ReductionStats
from icemelter.syntax import parse
from icemelter.work import WorkContext


@define
class PassStats:
    """Statistics for a single reduction pass."""

    pass_name: str
    call_count: int = 0
    bytes_deleted: int = 0


@define
class TreeReducer:
    """Runs rounds of passes until a round changes nothing.

    ``max_passes`` bounds the number of rounds; None means run to a fixpoint.
    """

    target: ReductionProblem[bytes]
    reduction_passes: list[ReductionPass]
    max_passes: int | None = None

    rounds: int = attrs.field(default=0, init=False)
    pass_stats: dict[str, PassStats] = attrs.field(factory=dict, init=False)
    current_reduction_pass: ReductionPass | None = attrs.field(default=None, init=False)

    @property
    def status(self) -> str:
        if self.current_reduction_pass is None:
            return "Selecting reduction pass"
        return f"Running reduction pass {self.current_reduction_pass.__name__}"

    async def run_pass(self, rp: ReductionPass) -> None:
        stats = self.pass_stats.setdefault(rp.__name__, PassStats(rp.__name__))
        size = self.target.current_size
        try:
            assert self.current_reduction_pass is None
            self.current_reduction_pass = rp
            self.target.work.debug(self.status)
            await rp(self.target)
        finally:
            self.current_reduction_pass = None
        stats.call_count += 1
        stats.bytes_deleted += size - self.target.current_size

    async def run(self) -> None:
        await self.target.setup()

        while self.max_passes is None or self.rounds < self.max_passes:
            prev = self.target.current_test_case
            for rp in self.reduction_passes:
                await self.run_pass(rp)
            self.rounds += 1
            self.target.work.verbose(
                f"Round {self.rounds} done, {self.target.current_size} bytes left"
            )
            if self.target.current_test_case == prev:
                break


@define
class ReductionConfig:
    jobs: int = 1
    # Edits removing fewer bytes than this are not tried.
    min_reduction: int = 1
    max_passes: int | None = None
    replacements: Mapping[str, bytes] = attrs.Factory(lambda: dict(DEFAULT_REPLACEMENTS))


@define(frozen=True)
class ReductionResult:
    original: bytes
    reduced: bytes
    stats: ReductionStats
    rounds: int
    pass_stats: list[PassStats]

    @property
    def did_reduce(self) -> bool:
        return self.reduced != self.original


async def reduce_source(
    source: bytes,
    oracle: Oracle,
    config: ReductionConfig,
    work: WorkContext,
) -> ReductionResult:
    """Reduce ``source`` as far as the oracle allows.

    The oracle must already carry the differential filter. Any engine failure
    is raised as ReductionError; nothing is returned partially.
    """
    tree = parse(source)
    if tree.root_node.has_error:
        work.warn("The source has syntax errors, reducing it anyway")

    stats = ReductionStats()
    is_interesting_limiter = trio.CapacityLimiter(max(config.jobs, 1))

    async def is_interesting(candidate: bytes) -> bool:
        async with is_interesting_limiter:
            run = await oracle.run(candidate)
        if run.timed_out:
            stats.timeouts += 1
        return run.interesting

    problem = BasicReductionProblem(
        initial=source,
        is_interesting=is_interesting,
        work=work,
        stats=stats,
    )

    @problem.on_reduce
    async def _(test_case: bytes) -> None:
        work.debug(f"Reduced to {len(test_case)} bytes")

    reducer = TreeReducer(
        target=problem,
        reduction_passes=tree_passes(config.min_reduction, config.replacements),
        max_passes=config.max_passes,
    )

    failure: BaseException | None = None
    try:
        await reducer.run()
    except* IcemelterError as eg:
        failure = first_error(eg)
    if failure is not None:
        raise ReductionError(f"Failed when reducing the program: {failure}") from failure

    return ReductionResult(
        original=source,
        reduced=problem.current_test_case,
        stats=stats,
        rounds=reducer.rounds,
        pass_stats=list(reducer.pass_stats.values()),
    )
