"""Concurrent application of independent edits to a candidate.

A pass expresses its ideas as patches against the candidate it started from.
Patches are tried concurrently; every one that keeps the candidate
interesting is merged into the running patch, and later patches are tried on
top of everything merged so far.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Generic, TypeVar

import trio

from icemelter.problem import ReductionProblem


PatchType = TypeVar("PatchType")
TargetType = TypeVar("TargetType")


class Conflict(Exception):
    pass


class Patches(ABC, Generic[PatchType, TargetType]):
    @property
    @abstractmethod
    def empty(self) -> PatchType: ...

    @abstractmethod
    def combine(self, *patches: PatchType) -> PatchType: ...

    @abstractmethod
    def apply(self, patch: PatchType, target: TargetType) -> TargetType: ...

    @abstractmethod
    def size(self, patch: PatchType) -> int: ...


# (start, end, replacement) byte spans; deletions have an empty replacement.
Edit = tuple[int, int, bytes]
EditPatch = tuple[Edit, ...]


class Edits(Patches[EditPatch, bytes]):
    """Span replacements over a byte string.

    Overlapping deletions merge, and a deletion swallows anything nested
    inside it. Any other overlap is a Conflict.
    """

    @property
    def empty(self) -> EditPatch:
        return ()

    def combine(self, *patches: EditPatch) -> EditPatch:
        result: list[Edit] = []
        for start, end, replacement in sorted({e for p in patches for e in p}):
            if result and result[-1][1] > start:
                prev_start, prev_end, prev_replacement = result[-1]
                if prev_replacement == b"" and end <= prev_end:
                    continue
                if replacement == b"" and start == prev_start:
                    result[-1] = (start, end, b"")
                    continue
                if prev_replacement == b"" and replacement == b"":
                    result[-1] = (prev_start, max(prev_end, end), b"")
                    continue
                raise Conflict()
            result.append((start, end, replacement))
        return tuple(result)

    def apply(self, patch: EditPatch, target: bytes) -> bytes:
        parts = []
        prev = 0
        for start, end, replacement in patch:
            parts.append(target[prev:start])
            parts.append(replacement)
            prev = end
        parts.append(target[prev:])
        return b"".join(parts)

    def size(self, patch: EditPatch) -> int:
        return sum(end - start - len(replacement) for start, end, replacement in patch)


class PatchApplier(Generic[PatchType, TargetType]):
    def __init__(
        self,
        patches: Patches[PatchType, TargetType],
        problem: ReductionProblem[TargetType],
    ):
        self.__patches = patches
        self.__problem = problem
        self.__current_patch = self.__patches.empty
        self.__initial_test_case = problem.current_test_case

    @property
    def current_patch(self) -> PatchType:
        return self.__current_patch

    async def try_apply_patch(self, patch: PatchType) -> bool:
        """Try ``patch`` on top of everything merged so far.

        If another task merges while our candidate is being tested, the
        result says nothing about the new base, so the patch is retried on
        top of it.
        """
        while True:
            base = self.__current_patch
            try:
                combined = self.__patches.combine(base, patch)
            except Conflict:
                return False
            if combined == base:
                return True
            attempt = self.__patches.apply(combined, self.__initial_test_case)
            interesting = await self.__problem.is_reduction(attempt)
            if self.__current_patch is not base:
                continue
            if interesting:
                self.__current_patch = combined
            return interesting


async def apply_patches(
    problem: ReductionProblem[TargetType],
    patch_info: Patches[PatchType, TargetType],
    patches: Iterable[PatchType],
) -> None:
    patches = list(patches)
    if not patches:
        return
    try:
        if await problem.is_reduction(
            patch_info.apply(patch_info.combine(*patches), problem.current_test_case)
        ):
            return
    except Conflict:
        pass

    applier = PatchApplier(patch_info, problem)

    send_patches, receive_patches = trio.open_memory_channel(float("inf"))

    # Largest first, ties in random order.
    problem.work.random.shuffle(patches)
    patches.sort(key=patch_info.size, reverse=True)
    for patch in patches:
        send_patches.send_nowait(patch)
    send_patches.close()

    async with trio.open_nursery() as nursery:
        for _i in range(max(problem.work.parallelism, 1)):

            @nursery.start_soon
            async def worker() -> None:
                while True:
                    try:
                        patch = await receive_patches.receive()
                    except trio.EndOfChannel:
                        break
                    await applier.try_apply_patch(patch)
