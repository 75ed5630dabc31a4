"""Run example programs and check that each prints its expected output in time."""

from __future__ import annotations

import fnmatch
import os
import queue
import re
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Sequence

import yaml

CONFIG_PATTERN = ".validate_example*.yml"


def _colour(code: str, text: str) -> str:
    if sys.stdout.isatty():
        return f"\x1b[{code}m{text}\x1b[0m"
    return text


@dataclass
class ExampleConfig:
    """How to validate one example."""

    validation_cmd: str = ""
    teardown_cmd: str = ""
    timeout: int = 0
    expected_output: str = ""

    @classmethod
    def load_from(cls, path: str) -> "ExampleConfig":
        """Read a config from a YAML file."""
        with open(path, encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise TypeError(f"{path}: expected a mapping")
        return cls(
            validation_cmd=str(data.get("validation_cmd") or ""),
            teardown_cmd=str(data.get("teardown_cmd") or ""),
            timeout=int(data.get("timeout") or 0),
            expected_output=str(data.get("expected_output") or ""),
        )


def _teardown(command: str, directory: str) -> None:
    args = command.split()
    if not args:
        return
    try:
        subprocess.run(args, cwd=directory)
    except OSError:
        pass


def _matcher(pattern: str):
    try:
        compiled = re.compile(pattern)
    except re.error:
        return lambda line: False
    return lambda line: compiled.search(line) is not None


def validate(path: str) -> None:
    """Run the example described by the config at ``path``; raise RuntimeError if it fails."""
    path = os.fspath(path)
    try:
        config = ExampleConfig.load_from(path)
    except (OSError, yaml.YAMLError, TypeError, ValueError) as err:
        raise RuntimeError(f"could not load config, err: {err}") from err

    directory = os.path.dirname(path) or "."
    dir_name = os.path.basename(os.path.abspath(directory))

    print("\n")
    print("Validating example:", dir_name)
    print("Waiting for output: ", _colour("32", config.expected_output))

    args = config.validation_cmd.split()
    if not args:
        raise RuntimeError("validation command is empty")

    try:
        print(f"running: [{' '.join(args)}]")
        try:
            proc = subprocess.Popen(
                args,
                cwd=directory,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except OSError as err:
            raise RuntimeError(f"could not start validation, err: {err}") from err

        matches = _matcher(config.expected_output)
        results: queue.Queue = queue.Queue()

        def read() -> None:
            for line in proc.stdout:
                line = line.rstrip("\r\n")
                print(f"[{_colour('36', dir_name)}] > {line}")
                if matches(line):
                    results.put(None)
                    return
            results.put(RuntimeError(f"could not find expected output: {config.expected_output}"))

        reader = threading.Thread(target=read, daemon=True)
        reader.start()
        try:
            try:
                outcome = results.get(timeout=max(config.timeout, 0))
            except queue.Empty:
                raise RuntimeError("validation command timed out") from None
            if outcome is not None:
                raise outcome
        finally:
            try:
                proc.kill()
            except OSError as err:
                print(f"could not kill process in {dir_name}, err: {err}")
            proc.wait()
            reader.join(timeout=1)
            if not reader.is_alive():
                proc.stdout.close()
    finally:
        _teardown(config.teardown_cmd, directory)


def main(argv: Sequence[str] | None = None) -> None:
    """Validate every example config found below the given root (default: ``../..``)."""
    args = sys.argv[1:] if argv is None else list(argv)
    root = args[0] if args else os.path.join("..", "..")
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if not fnmatch.fnmatchcase(name, CONFIG_PATTERN):
                continue
            print(f"validating {dirpath}")
            try:
                validate(os.path.join(dirpath, name))
            except RuntimeError as err:
                raise RuntimeError(f"validation for {dirpath} failed, err: {err}") from err


if __name__ == "__main__":
    main()