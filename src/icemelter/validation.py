"""Initial validation of the failing source before any reduction happens.

A single run of the oracle on the untouched source has to reproduce the
failure. If it does not, the setup is wrong and reducing would be pointless,
so there is no retry. A successful run is also where the set of diagnostic
codes that belong to the original failure gets harvested.
"""

import re

from attrs import define

from icemelter.oracle import Oracle, OracleRun
from icemelter.problem import InvalidInitialExample


ERROR_CODE = re.compile(r"^error\[E(?P<code>\d{4})\]: ", re.MULTILINE)

# How much of the compiler's stderr to quote when the source does not reproduce.
STDERR_EXCERPT_LINES = 20


def error_codes_in(stderr: str) -> frozenset[str]:
    """The distinct four digit diagnostic codes (without the E) in stderr."""
    return frozenset(m.group("code") for m in ERROR_CODE.finditer(stderr))


class DoesNotReproduce(InvalidInitialExample):
    def __init__(self, run: OracleRun) -> None:
        self.run = run
        lines = ["The source doesn't seem to produce the target failure."]
        if run.timed_out:
            lines.append("The compiler timed out; try raising --timeout.")
        else:
            lines.append(f"The compiler exited with code {run.exit_code}.")
        excerpt = run.stderr_text.strip().splitlines()[-STDERR_EXCERPT_LINES:]
        if excerpt:
            lines.append("Last lines of stderr:")
            lines.extend("    " + line for line in excerpt)
        super().__init__("\n".join(lines))


@define(frozen=True)
class InitialCheck:
    run: OracleRun
    error_codes: frozenset[str]

    @property
    def stderr(self) -> str:
        return self.run.stderr_text


async def check_initial_failure(oracle: Oracle, source: bytes) -> InitialCheck:
    run = await oracle.run(source)
    if not run.interesting:
        raise DoesNotReproduce(run)
    return InitialCheck(run=run, error_codes=error_codes_in(run.stderr_text))
