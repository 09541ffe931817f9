"""Parsing Rust with tree-sitter."""

from collections.abc import Iterator

import tree_sitter_rust
from tree_sitter import Language, Node, Parser, Tree

from icemelter.errors import ReductionError


RUST = Language(tree_sitter_rust.language())


class ParseError(ReductionError):
    pass


def parse(source: bytes) -> Tree:
    parser = Parser(RUST)
    try:
        tree = parser.parse(source)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Failed to parse code: {e}") from e
    if tree is None:
        raise ParseError("Failed to parse code")
    return tree


def named_descendants(node: Node) -> Iterator[Node]:
    """Every named node strictly below ``node``, in source order."""
    stack = list(reversed(node.named_children))
    while stack:
        n = stack.pop()
        yield n
        stack.extend(reversed(n.named_children))


def nearest_of_kind(node: Node) -> Iterator[Node]:
    """Named descendants of the same kind as ``node``, not looking inside them."""
    stack = list(reversed(node.named_children))
    while stack:
        n = stack.pop()
        if n.type == node.type:
            yield n
        else:
            stack.extend(reversed(n.named_children))
