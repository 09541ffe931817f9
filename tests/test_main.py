import pathlib

import pytest
from click.testing import CliRunner

from icemelter.__main__ import main

from tests.helpers import ICE, crashes_when, fake_rustc


SOURCE = "fn main() { boom(); }\n\nfn other(x: u32) -> u32 {\n    x + 1\n}\n"


@pytest.fixture
def bug(tmp_path) -> pathlib.Path:
    path = tmp_path / "bug.rs"
    path.write_text(SOURCE)
    return path


def run(*args: str, **kwargs):
    return CliRunner().invoke(main, list(args), catch_exceptions=False, **kwargs)


def test_melts_even_when_the_formatter_is_missing(tmp_path, bug):
    output = tmp_path / "melted.rs"
    result = run(
        str(bug),
        crashes_when(tmp_path, "boom"),
        "--formatter",
        "/nonexistent/rustfmt",
        "--output",
        str(output),
        "--jobs",
        "2",
    )
    assert result.exit_code == 0, result.output
    reduced = output.read_bytes()
    assert b"boom" in reduced
    assert len(reduced) < len(SOURCE)
    assert "Step 1/5: Retrieving" in result.output
    assert "Step 4/5: Formatting" in result.output
    assert "Couldn't format" in result.output
    assert "Skipping bisection" in result.output
    assert f"Result written to {output}" in result.output


def test_source_that_does_not_crash_exits_1(tmp_path, bug):
    rustc = fake_rustc(tmp_path, "sys.exit(0)\n")
    output = tmp_path / "melted.rs"
    result = run(str(bug), rustc, "--output", str(output))
    assert result.exit_code == 1
    assert "doesn't seem to produce the target failure" in result.output
    assert not output.exists()


def test_missing_source_exits_1(tmp_path):
    result = run(str(tmp_path / "missing.rs"), crashes_when(tmp_path, "boom"))
    assert result.exit_code == 1
    assert "Failed to read file" in result.output


def test_new_errors_are_not_allowed_by_default(tmp_path):
    bug = tmp_path / "bug.rs"
    bug.write_text("fn helper() {}\nfn main() { boom(); }\n")
    rustc = fake_rustc(
        tmp_path,
        f"""
        if b"fn helper" not in src:
            sys.stderr.write("error[E0425]: cannot find function `helper`\\n")
        if b"boom" in src:
            sys.stderr.write({ICE + chr(10)!r})
            sys.exit(101)
        """,
    )
    strict = tmp_path / "strict.rs"
    assert run(str(bug), rustc, "--formatter", "none", "-o", str(strict)).exit_code == 0
    assert b"fn helper" in strict.read_bytes()

    loose = tmp_path / "loose.rs"
    result = run(
        str(bug), rustc, "--formatter", "none", "-o", str(loose), "--allow-errors"
    )
    assert result.exit_code == 0, result.output
    assert b"fn helper" not in loose.read_bytes()
    assert "--allow-errors given" in result.output


def test_markdown_report(tmp_path, bug):
    output = tmp_path / "melted.rs"
    result = run(
        str(bug),
        crashes_when(tmp_path, "boom"),
        "--formatter",
        "none",
        "-o",
        str(output),
        "--markdown",
    )
    assert result.exit_code == 0, result.output
    report = (tmp_path / "melted.md").read_text()
    assert "- Reproduced: ✅" in report
    assert "- Reduced: ✅" in report
    assert "boom" in report


def test_debug_echoes_compiler_output(tmp_path, bug):
    result = run(
        str(bug),
        crashes_when(tmp_path, "boom"),
        "--formatter",
        "none",
        "-o",
        str(tmp_path / "melted.rs"),
        "--debug",
        "--max-passes",
        "1",
    )
    assert result.exit_code == 0, result.output
    assert "internal compiler error:" in result.output


def test_quiet_prints_nothing_on_success(tmp_path, bug):
    result = run(
        str(bug),
        crashes_when(tmp_path, "boom"),
        "--formatter",
        "none",
        "-o",
        str(tmp_path / "melted.rs"),
        "--volume",
        "quiet",
    )
    assert result.exit_code == 0
    assert result.output == ""


def test_custom_interesting_stderr(tmp_path, bug):
    rustc = fake_rustc(
        tmp_path,
        """
        if b"boom" in src:
            sys.stderr.write("thread 'rustc' panicked at custom\\n")
            sys.exit(101)
        """,
    )
    output = tmp_path / "melted.rs"
    result = run(
        str(bug),
        rustc,
        "--formatter",
        "none",
        "-o",
        str(output),
        "--interesting-stderr",
        "panicked at custom",
    )
    assert result.exit_code == 0, result.output
    assert b"boom" in output.read_bytes()


def test_invalid_regex_is_a_usage_error(tmp_path, bug):
    result = run(str(bug), crashes_when(tmp_path, "boom"), "--interesting-stderr", "(")
    assert result.exit_code == 2
    assert "invalid regex" in result.output


def test_unknown_compiler_is_a_usage_error(bug):
    result = run(str(bug), "no-such-rustc-xyz")
    assert result.exit_code == 2
    assert "command not found" in result.output


def test_max_error_code_from_the_environment_is_validated(tmp_path, bug):
    result = run(
        str(bug),
        crashes_when(tmp_path, "boom"),
        env={"ICEMELTER_MAX_ERROR_CODE": "20000"},
    )
    assert result.exit_code == 2


def test_issue_source_needs_a_token(tmp_path, monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    result = run("#1234", crashes_when(tmp_path, "boom"))
    assert result.exit_code == 1
    assert "GITHUB_TOKEN" in result.output
