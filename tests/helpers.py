import pathlib
import sys
import textwrap


ICE = "error: internal compiler error: compiler/rustc_middle/src/ty/mod.rs:42: boom"
PANIC = "error: the compiler unexpectedly panicked. this is a bug."
ABORTING = "error: aborting due to 1 previous error"


def write_script(directory: pathlib.Path, name: str, body: str) -> str:
    """Write an executable Python script and return its path."""
    path = directory / name
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return str(path)


def fake_rustc(directory: pathlib.Path, body: str, name: str = "fake-rustc") -> str:
    """A stand-in compiler. ``body`` sees the candidate's bytes as ``src``."""
    prelude = """
    import sys
    src = open(sys.argv[-1], "rb").read()
    """
    return write_script(
        directory, name, textwrap.dedent(prelude) + textwrap.dedent(body)
    )


def crashes_when(directory: pathlib.Path, marker: str, errors: str = "") -> str:
    """A compiler that ICEs whenever ``marker`` is in the source.

    ``errors`` is printed to stderr before the ICE.
    """
    return fake_rustc(
        directory,
        f"""
        if {marker.encode()!r} in src:
            sys.stderr.write({errors!r})
            sys.stderr.write({ICE + chr(10)!r})
            sys.exit(101)
        sys.exit(0)
        """,
    )


def syntax_checking_rustc(directory: pathlib.Path, condition: str) -> str:
    """A compiler that ICEs when ``condition`` holds, and reports a syntax
    error (in addition) when the source does not parse.

    ``condition`` is a Python expression over ``src`` and ``lines``, the set
    of stripped source lines.
    """
    return fake_rustc(
        directory,
        f"""
        import tree_sitter_rust
        from tree_sitter import Language, Parser

        tree = Parser(Language(tree_sitter_rust.language())).parse(src)
        if tree.root_node.has_error:
            sys.stderr.write("error: expected one of `!` or `::`, found `;`\\n")
        lines = {{line.strip() for line in src.decode("utf-8", "replace").splitlines()}}
        if {condition}:
            sys.stderr.write({ICE + chr(10)!r})
            sys.stderr.write({ABORTING + chr(10)!r})
            sys.exit(101)
        sys.exit(1 if tree.root_node.has_error else 0)
        """,
    )


def line_checking_rustc(directory: pathlib.Path, required: list[str]) -> str:
    """ICEs when every line of ``required`` is a line of the source."""
    return syntax_checking_rustc(directory, f"lines.issuperset({required!r})")


def filler_functions(n: int) -> list[str]:
    return [
        f"fn filler_{i}(x: u32) -> u32 {{\n    let y = x + {i};\n    y * 2\n}}\n"
        for i in range(n)
    ]
