"""Update the dependencies of every nested Go module in a tree, several at a time."""

from __future__ import annotations

import os
import posixpath
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

WORKERS = 5
FRAMEWORK_VERSION = "v1.2.0-rc.11"
GO_VERSION = "1.21"


def find_gomods(root: str = ".") -> list[str]:
    """Return every path below ``root`` (relative, '/'-separated) naming a go.mod file."""
    root = os.fspath(root)
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = os.path.relpath(dirpath, root)
        for name in sorted(filenames):
            rel = name if rel_dir == "." else os.path.join(rel_dir, name)
            rel = rel.replace(os.sep, "/")
            if "go.mod" in rel:
                found.append(rel)
    return found


def _run(args: list[str], directory: str) -> None:
    subprocess.run(args, cwd=directory, check=True)


def _module_name(gomod_path: str) -> str | None:
    try:
        with open(gomod_path, encoding="utf-8") as handle:
            for line in handle:
                if line.startswith("module "):
                    return line[len("module "):].strip()
    except OSError:
        return None
    return None


def _framework_requirement(directory: str) -> str | None:
    """Pin of the module enclosing ``directory``, pinned to FRAMEWORK_VERSION, if any."""
    current = os.path.dirname(os.path.abspath(directory))
    while True:
        candidate = os.path.join(current, "go.mod")
        if os.path.isfile(candidate):
            name = _module_name(candidate)
            return f"{name}@{FRAMEWORK_VERSION}" if name else None
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def update_module(directory: str) -> list[list[str]]:
    """Upgrade all dependencies of the module in ``directory``, pin the enclosing module, then tidy.

    Returns the commands that were run, in order.
    """
    directory = os.fspath(directory)
    commands: list[list[str]] = []

    upgrade = ["go", "get", "-u", "./..."]
    _run(upgrade, directory)
    commands.append(upgrade)

    requirement = _framework_requirement(directory)
    if requirement:
        pin = ["go", "get", "-u", requirement]
        try:
            _run(pin, directory)
        except (subprocess.CalledProcessError, OSError) as err:
            raise RuntimeError(f"failed to update {directory}: {err}") from err
        commands.append(pin)

    tidy = ["go", "mod", "tidy", f"-go={GO_VERSION}"]
    _run(tidy, directory)
    commands.append(tidy)
    return commands


def main(argv: Sequence[str] | None = None) -> None:
    """Update every module below the given root (default: current directory).

    Each nested module gets the module enclosing it pinned to FRAMEWORK_VERSION.
    """
    args = sys.argv[1:] if argv is None else list(argv)
    root = args[0] if args else "."

    def work(rel: str) -> None:
        rel_dir = posixpath.dirname(rel) or "."
        if rel_dir == ".":
            return
        print("update of", rel, "@", rel_dir)
        update_module(os.path.join(root, rel_dir))

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(work, rel) for rel in find_gomods(root)]
    for future in futures:
        future.result()


if __name__ == "__main__":
    main()