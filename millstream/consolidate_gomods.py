"""Merge the requirements of every nested go.mod into one text and remove the nested files."""

from __future__ import annotations

import os
import posixpath
import sys
from typing import Iterator, Sequence


def _walk(root: str, rel: str = "") -> Iterator[str]:
    """Yield paths below ``root``, relative to it, in lexical order, depth first."""
    base = os.path.join(root, rel) if rel else root
    try:
        entries = sorted(os.listdir(base))
    except OSError:
        return
    for name in entries:
        child = f"{rel}/{name}" if rel else name
        yield child
        full = os.path.join(root, child)
        if os.path.isdir(full) and not os.path.islink(full):
            yield from _walk(root, child)


def find_gomods(root: str = ".") -> list[str]:
    """Return the go.mod files below ``root`` (relative, '/'-separated), skipping nested vendor trees."""
    root = os.fspath(root)
    return [
        path
        for path in _walk(root)
        if "/vendor/" not in path
        and "go.mod" in path
        and os.path.isfile(os.path.join(root, path))
    ]


def _requirements_text(path: str) -> str:
    kept = []
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            line = line.rstrip("\n")
            if line.endswith("\r"):
                line = line[:-1]
            if line.startswith("go ") or line.startswith("module "):
                continue
            kept.append(line + "\n")
    return "".join(kept)


def consolidate(root: str = ".") -> str:
    """Collect every nested go.mod's lines except ``module`` and ``go``, deleting each nested file.

    The go.mod at ``root`` itself is left alone. Each non-empty section is headed by
    a ``// <path>`` comment.
    """
    root = os.fspath(root)
    sections = []
    for rel in find_gomods(root):
        if (posixpath.dirname(rel) or ".") == ".":
            continue
        full = os.path.join(root, rel)
        text = _requirements_text(full)
        if text:
            sections.append(f"// {rel}\n{text}\n")
        # Nested go.mods are removed so vendoring sees every dependency as needed.
        os.remove(full)
    return "".join(sections)


def main(argv: Sequence[str] | None = None) -> None:
    """Print the consolidated requirements of the tree at the given root (default: current directory)."""
    args = sys.argv[1:] if argv is None else list(argv)
    root = args[0] if args else "."
    print(consolidate(root))


if __name__ == "__main__":
    main()