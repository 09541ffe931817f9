"""Core abstractions for test-case reduction.

- ReductionProblem[T]: the current best candidate plus an interestingness
  predicate and an ordering on candidates.
- BasicReductionProblem[T]: the in-memory implementation with a result cache,
  statistics and reduction callbacks.

Reduction passes only ever talk to a problem: they propose candidates through
``is_interesting`` and the problem adopts any that are smaller.
"""

import hashlib
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sized
from datetime import timedelta
from typing import Any, Generic, TypeVar

import attrs
import trio
from attrs import define
from humanize import naturalsize, precisedelta

from icemelter.errors import IcemelterError
from icemelter.work import WorkContext


T = TypeVar("T")
SizedT = TypeVar("SizedT", bound=Sized)


def shortlex(value: SizedT) -> tuple[int, SizedT]:
    """Return a comparison key for shortlex ordering.

    Shorter candidates always win; among equal lengths the lexicographically
    smaller one does, so the final result does not depend on which reduction
    path got there.
    """
    return (len(value), value)


def default_size(value: Any) -> int:
    try:
        return len(value)
    except TypeError:
        return 0


def default_cache_key(value: Any) -> str:
    if not isinstance(value, bytes):
        if not isinstance(value, str):
            value = repr(value)
        value = value.encode("utf-8")

    hex = hashlib.sha1(value).hexdigest()[:8]
    return f"{len(value)}:{hex}"


@define
class ReductionStats:
    reductions: int = 0
    failed_reductions: int = 0

    calls: int = 0
    interesting_calls: int = 0
    wasted_interesting_calls: int = 0
    # Calls that hit the oracle timeout. These also count as failed.
    timeouts: int = 0

    time_of_last_reduction: float = 0.0
    start_time: float = attrs.Factory(time.time)

    initial_test_case_size: int = 0
    current_test_case_size: int = 0

    def display_stats(self) -> str:
        runtime = max(time.time() - self.start_time, 1e-6)
        lines = []
        if self.reductions > 0:
            reduction_percentage = (
                1.0 - self.current_test_case_size / self.initial_test_case_size
            ) * 100
            lines.append(
                f"Current test case size: {naturalsize(self.current_test_case_size)} "
                f"({reduction_percentage:.2f}% reduction)"
            )
        else:
            lines.append(
                f"Current test case size: {self.current_test_case_size} bytes"
            )
        lines.append(f"Total runtime: {precisedelta(timedelta(seconds=runtime))}")
        if self.calls > 0:
            lines.append(
                f"Calls to the compiler: {self.calls} "
                f"({self.calls / runtime:.2f} calls / second, "
                f"{self.interesting_calls / self.calls * 100.0:.2f}% interesting, "
                f"{self.timeouts} timed out)"
            )
        else:
            lines.append("Not yet called the compiler")
        return "\n".join(lines)


@define(slots=False)
class ReductionProblem(ABC, Generic[T]):
    work: WorkContext

    async def setup(self) -> None:  # noqa: B027
        """Initialize the problem before reduction begins."""

    @property
    @abstractmethod
    def current_test_case(self) -> T: ...

    @property
    @abstractmethod
    def stats(self) -> ReductionStats: ...

    @abstractmethod
    async def is_interesting(self, test_case: T) -> bool:
        pass

    async def is_reduction(self, test_case: T) -> bool:
        """Check if test_case would be a valid reduction from current state."""
        if test_case == self.current_test_case:
            return True
        if self.sort_key(test_case) > self.sort_key(self.current_test_case):
            return False
        return await self.is_interesting(test_case)

    @abstractmethod
    def sort_key(self, test_case: T) -> Any: ...

    @abstractmethod
    def size(self, test_case: T) -> int: ...

    @property
    def current_size(self) -> int:
        return self.size(self.current_test_case)


class InvalidInitialExample(IcemelterError):
    pass


class BasicReductionProblem(ReductionProblem[T]):
    """In-memory reduction problem.

    Results are cached by content hash. The cache is cleared whenever a
    reduction succeeds, since candidates derived from the old best are no
    longer going to be proposed.
    """

    def __init__(
        self,
        initial: T,
        is_interesting: Callable[[T], Awaitable[bool]],
        work: WorkContext,
        sort_key: Callable[[T], Any] = shortlex,
        size: Callable[[T], int] = default_size,
        stats: ReductionStats | None = None,
        cache_key: Callable[[Any], str] = default_cache_key,
    ):
        super().__init__(work=work)
        self.__current = initial
        self.__sort_key = sort_key
        self.__size = size
        self._stats = stats if stats is not None else ReductionStats()
        self._stats.initial_test_case_size = self.size(initial)
        self._stats.current_test_case_size = self.size(initial)

        self.__is_interesting_cache: dict[str, bool] = {}
        self.__cache_key = cache_key
        self.__is_interesting = is_interesting
        self.__on_reduce_callbacks: list[Callable[[T], Awaitable[None]]] = []
        self.__has_set_up = False

    async def setup(self) -> None:
        if self.__has_set_up:
            return
        self.__has_set_up = True
        if not await self.__is_interesting(self.current_test_case):
            raise InvalidInitialExample(
                f"Initial example (size {self.current_size}) does not satisfy "
                "the interestingness test."
            )

    @property
    def stats(self) -> ReductionStats:
        return self._stats

    def sort_key(self, test_case: T) -> Any:
        return self.__sort_key(test_case)

    def size(self, test_case: T) -> int:
        return self.__size(test_case)

    def on_reduce(self, callback: Callable[[T], Awaitable[None]]) -> None:
        """Every time `is_interesting` is called with a successful reduction,
        call `callback` with the new value."""
        self.__on_reduce_callbacks.append(callback)

    async def is_interesting(self, test_case: T) -> bool:
        await trio.lowlevel.checkpoint()
        if test_case == self.current_test_case:
            return True
        cache_key = self.__cache_key(test_case)
        try:
            return self.__is_interesting_cache[cache_key]
        except KeyError:
            pass
        result = await self.__is_interesting(test_case)
        self.__is_interesting_cache[cache_key] = result
        self.stats.failed_reductions += 1
        self.stats.calls += 1

        if result:
            self.stats.interesting_calls += 1
            if self.sort_key(test_case) < self.sort_key(self.current_test_case):
                self.__is_interesting_cache.clear()
                self.stats.failed_reductions -= 1
                self.stats.reductions += 1
                self.stats.time_of_last_reduction = time.time()
                self.stats.current_test_case_size = self.size(test_case)
                self.__current = test_case
                for f in self.__on_reduce_callbacks:
                    await f(test_case)
            else:
                self.stats.wasted_interesting_calls += 1
        return result

    @property
    def current_test_case(self) -> T:
        return self.__current
