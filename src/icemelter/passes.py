"""Syntax-tree reduction passes.

The tree passes parse the current candidate, turn nodes of the tree into span
edits, and hand them to ``apply_patches``. Parsing happens at the start of
every pass, so the spans always refer to the candidate the pass started from.

Passes are created by factories taking the minimum number of bytes an edit
has to remove to be worth a compiler run.
"""

from collections.abc import Awaitable, Callable, Mapping

from icemelter.patching import Edits, EditPatch, apply_patches
from icemelter.problem import ReductionProblem
from icemelter.syntax import named_descendants, nearest_of_kind, parse


ReductionPass = Callable[[ReductionProblem[bytes]], Awaitable[None]]


# Smallest stand-ins for common Rust node kinds.
DEFAULT_REPLACEMENTS: dict[str, bytes] = {
    "block": b"{}",
    "declaration_list": b"{}",
    "field_declaration_list": b"{}",
    "enum_variant_list": b"{}",
    "field_initializer_list": b"{}",
    "arguments": b"()",
    "parameters": b"()",
    "type_arguments": b"<>",
    "tuple_expression": b"()",
    "array_expression": b"[]",
    "string_literal": b'""',
    "raw_string_literal": b'""',
    "char_literal": b"'a'",
    "integer_literal": b"0",
    "float_literal": b"0.0",
}


def delete_subtrees(min_reduction: int = 1) -> ReductionPass:
    """Try deleting each named node outright."""

    async def apply(problem: ReductionProblem[bytes]) -> None:
        tree = parse(problem.current_test_case)
        patches: list[EditPatch] = [
            ((n.start_byte, n.end_byte, b""),)
            for n in named_descendants(tree.root_node)
            if n.end_byte - n.start_byte >= min_reduction
        ]
        await apply_patches(problem, Edits(), patches)

    apply.__name__ = "delete_subtrees"
    return apply


def replace_subtrees(
    replacements: Mapping[str, bytes] = DEFAULT_REPLACEMENTS,
    min_reduction: int = 1,
) -> ReductionPass:
    """Try replacing nodes of known kinds with a minimal node of that kind."""

    async def apply(problem: ReductionProblem[bytes]) -> None:
        source = problem.current_test_case
        tree = parse(source)
        patches: list[EditPatch] = []
        for n in named_descendants(tree.root_node):
            replacement = replacements.get(n.type)
            if replacement is None:
                continue
            if n.end_byte - n.start_byte - len(replacement) < min_reduction:
                continue
            if source[n.start_byte : n.end_byte] == replacement:
                continue
            patches.append(((n.start_byte, n.end_byte, replacement),))
        await apply_patches(problem, Edits(), patches)

    apply.__name__ = "replace_subtrees"
    return apply


def hoist_subtrees(min_reduction: int = 1) -> ReductionPass:
    """Try replacing a node with one of its descendants of the same kind.

    This is what turns ``foo(bar(baz(x)))`` into ``baz(x)``, or a nested
    module into its innermost body.
    """

    async def apply(problem: ReductionProblem[bytes]) -> None:
        source = problem.current_test_case
        tree = parse(source)
        patches: list[EditPatch] = []
        for n in named_descendants(tree.root_node):
            for d in nearest_of_kind(n):
                if (n.end_byte - n.start_byte) - (d.end_byte - d.start_byte) < min_reduction:
                    continue
                patches.append(
                    ((n.start_byte, n.end_byte, source[d.start_byte : d.end_byte]),)
                )
        await apply_patches(problem, Edits(), patches)

    apply.__name__ = "hoist_subtrees"
    return apply


def collapse_whitespace(min_reduction: int = 1) -> ReductionPass:
    """Try deleting each run of whitespace, or all of it but the first byte.

    Deleting nodes leaves their surrounding blank lines behind; this cleans
    them up.
    """

    async def apply(problem: ReductionProblem[bytes]) -> None:
        source = problem.current_test_case
        patches: list[EditPatch] = []
        i = 0
        while i < len(source):
            if not source[i : i + 1].isspace():
                i += 1
                continue
            j = i + 1
            while j < len(source) and source[j : j + 1].isspace():
                j += 1
            if j - i >= min_reduction:
                patches.append(((i, j, b""),))
            if j - i - 1 >= min_reduction:
                patches.append(((i + 1, j, b""),))
            i = j
        await apply_patches(problem, Edits(), patches)

    apply.__name__ = "collapse_whitespace"
    return apply


def tree_passes(
    min_reduction: int = 1,
    replacements: Mapping[str, bytes] = DEFAULT_REPLACEMENTS,
) -> list[ReductionPass]:
    return [
        delete_subtrees(min_reduction),
        hoist_subtrees(min_reduction),
        replace_subtrees(replacements, min_reduction),
        collapse_whitespace(min_reduction),
    ]
