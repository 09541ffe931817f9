"""Synthesis of the differential "uninteresting" filter.

Left to itself, a tree reducer will happily delete code until the compiler
crashes for some new reason: a type error or a syntax error that happens to
crash too. Those candidates are not the bug being chased. The filter built
here rejects any candidate whose stderr carries a diagnostic that the
original failing run did not have:

* any ``error[E####]: `` whose code is not in the original set, and
* any bare ``error: `` line other than the two ICE phrasings and the
  closing "aborting due to" summary, which every failing run prints.

The numbered part needs the whole code space spelled out, because the set of
allowed codes is arbitrary. The top of that space, ``max_error_code``, is
configuration: raise it when rustc's error index grows past it (see
https://doc.rust-lang.org/error_codes/error-index.html). Codes above it are
not rejected, they are just not rejected by number.
"""

import re
from collections.abc import Iterable


DEFAULT_MAX_ERROR_CODE = 999

EXEMPT_PHRASES = (
    "internal compiler error:",
    "the compiler unexpectedly panicked",
    "aborting due to",
)


def error_code_space(max_error_code: int = DEFAULT_MAX_ERROR_CODE) -> list[str]:
    if not 0 <= max_error_code <= 9999:
        raise ValueError(f"Error codes have four digits, got {max_error_code}")
    return [f"{n:04}" for n in range(max_error_code + 1)]


def fresh_error_regex(
    codes: Iterable[str], max_error_code: int = DEFAULT_MAX_ERROR_CODE
) -> str:
    """Regex matching diagnostics absent from ``codes``. Use in multiline mode."""
    allowed = set(codes)
    fresh = [c for c in error_code_space(max_error_code) if c not in allowed]
    exempt = "|".join(re.escape(p) for p in EXEMPT_PHRASES)
    clauses = [rf"^error: (?!{exempt})"]
    if fresh:
        clauses.append(r"^error\[E(?:" + "|".join(fresh) + r")\]: ")
    return "(?:" + "|".join(clauses) + ")"


def differential_filter(
    codes: Iterable[str],
    uninteresting: str | None = None,
    max_error_code: int = DEFAULT_MAX_ERROR_CODE,
) -> str:
    """The final uninteresting-stderr pattern for the reduction stage.

    Multiline mode is scoped to the synthesized part. The user's pattern
    comes first so that any global flags it starts with stay at the start.
    """
    fresh = f"(?m:{fresh_error_regex(codes, max_error_code)})"
    if uninteresting is None:
        return fresh
    return f"{uninteresting}|{fresh}"
