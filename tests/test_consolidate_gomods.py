import os

import pytest

from millstream.consolidate_gomods import consolidate, find_gomods, main

SUB_GOMOD = "module example.com/sub\n\ngo 1.21\n\nrequire example.com/dep v1.0.0\n"


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.fixture
def tree(tmp_path):
    _write(tmp_path / "go.mod", "module example.com/root\n\ngo 1.21\n")
    _write(tmp_path / "sub" / "go.mod", SUB_GOMOD)
    _write(tmp_path / "only" / "go.mod", "module example.com/only\ngo 1.21\n")
    _write(tmp_path / "a" / "vendor" / "x" / "go.mod", "module example.com/vendored\n")
    _write(tmp_path / "sub" / "main.go", "package main\n")
    return tmp_path


def test_find_gomods_lists_go_mod_files_in_lexical_order(tree):
    assert find_gomods(tree) == ["go.mod", "only/go.mod", "sub/go.mod"]


def test_find_gomods_skips_nested_vendor(tree):
    assert all("/vendor/" not in path for path in find_gomods(tree))


def test_consolidate_keeps_requirements_and_headers(tree):
    out = consolidate(tree)
    assert out.startswith("// sub/go.mod\n")
    assert "require example.com/dep v1.0.0\n" in out
    assert "module " not in out
    assert "go 1.21" not in out


def test_consolidate_skips_files_with_nothing_left(tree):
    out = consolidate(tree)
    assert "only/go.mod" not in out


def test_consolidate_removes_nested_files_but_keeps_root(tree):
    consolidate(tree)
    assert (tree / "go.mod").exists()
    assert not (tree / "sub" / "go.mod").exists()
    assert not (tree / "only" / "go.mod").exists()
    assert (tree / "a" / "vendor" / "x" / "go.mod").exists()


def test_consolidate_section_is_lines_without_module_and_go(tmp_path):
    _write(tmp_path / "sub" / "go.mod", SUB_GOMOD)
    out = consolidate(tmp_path)
    expected_lines = "".join(
        line + "\n"
        for line in SUB_GOMOD.splitlines()
        if not line.startswith(("module ", "go "))
    )
    assert out == "// sub/go.mod\n" + expected_lines + "\n"


def test_consolidate_strips_carriage_returns(tmp_path):
    _write(tmp_path / "sub" / "go.mod", "module m\r\nrequire example.com/dep v1.0.0\r\n")
    assert "\r" not in consolidate(tmp_path)


def test_main_prints_result(tree, capsys):
    main([str(tree)])
    printed = capsys.readouterr().out
    assert "require example.com/dep v1.0.0" in printed
    assert printed.endswith("\n\n")


def test_empty_tree_gives_empty_text(tmp_path):
    assert consolidate(tmp_path) == ""
    assert os.listdir(tmp_path) == []