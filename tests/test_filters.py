import re

import pytest
from hypothesis import given, strategies as st

from icemelter.filters import (
    DEFAULT_MAX_ERROR_CODE,
    differential_filter,
    error_code_space,
    fresh_error_regex,
)
from icemelter.oracle import OracleConfig, Verdict, classify

from tests.helpers import ABORTING, ICE, PANIC


codes = st.integers(min_value=0, max_value=DEFAULT_MAX_ERROR_CODE).map(
    lambda n: f"{n:04}"
)


def rejects(pattern: str, stderr: str) -> bool:
    return re.search(pattern, stderr) is not None


def test_error_code_space():
    space = error_code_space(12)
    assert space[0] == "0000"
    assert space[-1] == "0012"
    assert len(space) == 13


@pytest.mark.parametrize("bad", [-1, 10000])
def test_error_code_space_is_four_digits(bad):
    with pytest.raises(ValueError):
        error_code_space(bad)


def test_only_the_original_code_is_allowed():
    pattern = differential_filter({"0999"})
    config = OracleConfig.for_check(
        ["rustc"],
        interesting_stderr="internal compiler error:",
        uninteresting_stderr=pattern,
    )

    def verdict(stderr: str) -> Verdict:
        return classify(config, 101, b"", stderr.encode())

    assert verdict(f"error[E0999]: bad thing\n{ICE}\n") == Verdict.interesting
    assert verdict(f"{ICE}\n") == Verdict.interesting
    assert verdict(f"error[E0308]: mismatched types\n{ICE}\n") == Verdict.not_interesting


@given(st.frozensets(codes, max_size=20), codes)
def test_codes_outside_the_set_are_rejected(allowed, code):
    pattern = differential_filter(allowed)
    line = f"error[E{code}]: something\n"
    assert rejects(pattern, line) == (code not in allowed)


@pytest.mark.parametrize("line", [ICE, PANIC, ABORTING])
def test_failure_lines_are_never_rejected(line):
    assert not rejects(differential_filter(set()), line + "\n")


def test_bare_errors_are_rejected():
    pattern = differential_filter({"0308"})
    assert rejects(pattern, "error: expected one of `!` or `::`, found `;`\n")


def test_only_matches_at_line_start():
    pattern = differential_filter(set())
    assert not rejects(pattern, "note: see error[E0308]: here\n")
    assert not rejects(pattern, "  = note: error: nested\n")


def test_warnings_are_not_rejected():
    pattern = differential_filter(set())
    assert not rejects(pattern, "warning: unused variable: `x`\n")
    assert not rejects(pattern, "warning[E0170]: pattern binding\n")


def test_user_pattern_is_kept():
    pattern = differential_filter({"0308"}, "custom nope")
    assert pattern.startswith("custom nope|")
    assert rejects(pattern, "this is custom nope\n")
    assert not rejects(pattern, "error[E0308]: mismatched types\n")


def test_user_pattern_may_start_with_global_flags():
    pattern = differential_filter({"0308"}, "(?i)unrelated")
    re.compile(pattern)
    assert rejects(pattern, "UNRELATED failure\n")
    assert rejects(pattern, "note: x\nerror[E0425]: cannot find value\n")
    assert not rejects(pattern, "error[E0308]: mismatched types\n")


def test_full_code_space_leaves_only_the_bare_clause():
    regex = fresh_error_regex(error_code_space(5), max_error_code=5)
    assert "E(?:" not in regex
    assert rejects("(?m)" + regex, "error: oops\n")


def test_codes_above_the_maximum_are_not_rejected_by_number():
    pattern = differential_filter(set(), max_error_code=100)
    assert rejects(pattern, "error[E0100]: x\n")
    assert not rejects(pattern, "error[E0101]: x\n")
