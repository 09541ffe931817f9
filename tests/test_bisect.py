import os
import re

import pytest

from icemelter.bisect import (
    BISECT_STDERR,
    BISECT_STDOUT,
    RULER,
    BisectResult,
    bisect,
    bisect_args,
    bisection_script,
    extract_bisect_report,
)
from icemelter.errors import BisectionError

from tests.helpers import ICE, write_script


def test_bisect_args_drop_the_command():
    assert bisect_args(["/usr/bin/rustc", "--edition=2021"]) == ["--edition=2021"]


def test_bisect_args_drop_the_toolchain():
    assert bisect_args(["rustc", "+nightly", "-Zmir-opt-level=4"]) == [
        "-Zmir-opt-level=4"
    ]


def test_bisect_args_empty():
    assert bisect_args(["rustc"]) == []


def test_script_quotes_its_arguments():
    script = bisection_script(["--cfg", "a b"], "/tmp/x y/melted.rs", "error: (ice)")
    assert script.startswith("#!/usr/bin/env bash\n")
    assert "'a b'" in script
    assert "'/tmp/x y/melted.rs'" in script
    assert "grep -E -e 'error: (ice)'" in script
    assert 'rustup run "${RUSTUP_TOOLCHAIN}" rustc' in script


def test_extract_report_keeps_what_follows_the_second_ruler():
    stderr = "\n".join(
        [
            "searching nightlies",
            RULER,
            "searched nightlies: from nightly-2023-01-01 to nightly-2023-02-01",
            RULER,
            "Regression in nightly-2023-01-15",
            "commit abc",
        ]
    )
    assert extract_bisect_report(stderr) == "Regression in nightly-2023-01-15\ncommit abc"


def test_extract_report_without_rulers_is_empty():
    assert extract_bisect_report("oops") == ""


def test_bisect_result():
    stderr = f"{RULER}\n{RULER}\nfound it\n".encode()
    result = BisectResult(returncode=0, stdout=b"", stderr=stderr)
    assert result.succeeded
    assert result.report == "found it"


def fake_rustc_for_script(tmp_path, crashes: bool) -> str:
    """Stands in for ``rustup run <toolchain> rustc`` in the bisection script."""
    if crashes:
        body = f"import sys\nprint({ICE!r}, file=sys.stderr)\nsys.exit(101)\n"
    else:
        body = "import sys\nsys.exit(0)\n"
    return write_script(tmp_path, "toolchain-rustc", body)


def fake_bisector(tmp_path) -> list[str]:
    """Runs the script it is given, then reports like cargo-bisect-rustc."""
    return [
        write_script(
            tmp_path,
            "fake-bisect",
            f"""
import os, subprocess, sys
script = sys.argv[sys.argv.index("--script") + 1]
assert "--preserve" in sys.argv
env = {{**os.environ, "RUSTUP_TOOLCHAIN": "nightly-2023-01-15"}}
status = subprocess.run([script], env=env).returncode
print("bisecting", file=sys.stderr)
print({RULER!r}, file=sys.stderr)
print("searched", file=sys.stderr)
print({RULER!r}, file=sys.stderr)
print("Regression in nightly-2023-01-15, script exited " + str(status), file=sys.stderr)
print("done")
""",
        )
    ]


ICE_REGEX = "internal compiler error:"


async def test_bisect_end_to_end(tmp_path):
    out = tmp_path / "out"
    out.mkdir()
    result = await bisect(
        ["--edition=2021"],
        b"fn main() {}",
        ICE_REGEX,
        output_dir=str(out),
        bisect_command=fake_bisector(tmp_path),
        rustc=fake_rustc_for_script(tmp_path, crashes=True),
    )
    assert result.succeeded
    assert result.report == "Regression in nightly-2023-01-15, script exited 1"
    assert (out / BISECT_STDOUT).read_bytes().endswith(b"done\n")
    assert b"bisecting" in (out / BISECT_STDERR).read_bytes()


async def test_bisect_refuses_a_script_that_never_fails(tmp_path):
    with pytest.raises(BisectionError, match="does not reproduce"):
        await bisect(
            [],
            b"fn main() {}",
            ICE_REGEX,
            output_dir=str(tmp_path),
            bisect_command=fake_bisector(tmp_path),
            rustc=fake_rustc_for_script(tmp_path, crashes=False),
        )
    assert not os.path.exists(tmp_path / BISECT_STDOUT)


async def test_missing_bisector_is_oserror(tmp_path):
    with pytest.raises(OSError):
        await bisect(
            [],
            b"fn main() {}",
            ICE_REGEX,
            output_dir=str(tmp_path),
            bisect_command=[str(tmp_path / "no-cargo-bisect-rustc")],
            rustc=fake_rustc_for_script(tmp_path, crashes=True),
        )


def test_ruler_is_recognised():
    assert re.fullmatch("=+", RULER)
