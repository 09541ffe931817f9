"""Process management utilities for icemelter."""

import os
import random
import signal
import subprocess
from collections.abc import Mapping, Sequence

import trio


def signal_group(sp: "trio.Process", sig: int) -> None:
    """Send a signal to a process group."""
    gid = os.getpgid(sp.pid)
    assert gid != os.getpgrp()
    os.killpg(gid, sig)


async def interrupt_wait_and_kill(sp: "trio.Process", delay: float = 0.1) -> None:
    """Interrupt a process, wait for it to exit, and kill it if necessary.

    rustc spawns linkers and other helpers, so the whole process group is
    signalled rather than just the direct child.
    """
    await trio.lowlevel.checkpoint()
    if sp.returncode is None:
        try:
            for pipe in [sp.stdout, sp.stderr, sp.stdin]:
                if pipe:
                    await pipe.aclose()
            signal_group(sp, signal.SIGINT)
            for n in range(10):
                if sp.poll() is not None:
                    return
                await trio.sleep(delay * 1.5**n * random.random())
        except ProcessLookupError:  # pragma: no cover
            # The process exited between poll() and killpg().
            pass

        if sp.returncode is None:
            try:
                signal_group(sp, signal.SIGKILL)
            except ProcessLookupError:
                pass

        with trio.move_on_after(delay):
            await sp.wait()

        if sp.returncode is None:
            raise ValueError(
                f"Could not kill subprocess with pid {sp.pid}. Something has gone seriously wrong."
            )


async def run_captured(
    command: Sequence[str],
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
) -> subprocess.CompletedProcess:
    """Run a helper tool (formatter, bisector, rustc --version) to completion.

    Output is captured and a non-zero exit status is returned rather than
    raised. Failure to spawn raises OSError.
    """
    if env is not None:
        env = {**os.environ, **env}
    return await trio.run_process(
        list(command),
        stdin=b"",
        capture_stdout=True,
        capture_stderr=True,
        check=False,
        env=env,
        cwd=cwd,
    )
