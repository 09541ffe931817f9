"""Parallelism budget and progress reporting for a melt.

WorkContext is handed to everything that needs to know how many oracle
evaluations may run at once, where randomness comes from, or how chatty to
be. Reports go to stderr so that stdout stays free for echoed compiler output.
"""

import sys
from enum import IntEnum
from random import Random


class Volume(IntEnum):
    """Logging verbosity levels."""

    quiet = 0
    normal = 1
    verbose = 2
    debug = 3


class WorkContext:
    def __init__(
        self,
        random: Random | None = None,
        parallelism: int = 1,
        volume: Volume = Volume.normal,
    ):
        self.random = random or Random(0)
        self.parallelism = parallelism
        self.volume = volume

    def warn(self, msg: str) -> None:
        self.report(f"warning: {msg}", Volume.quiet)

    def note(self, msg: str) -> None:
        self.report(msg, Volume.normal)

    def verbose(self, msg: str) -> None:
        self.report(msg, Volume.verbose)

    def debug(self, msg: str) -> None:
        self.report(msg, Volume.debug)

    def report(self, msg: str, level: Volume) -> None:
        if level <= self.volume:
            print(msg, file=sys.stderr, flush=True)
