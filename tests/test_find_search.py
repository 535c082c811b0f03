"""Tests for the findFiles and searchFileContents tools."""

import json
import shutil
from types import SimpleNamespace

import pytest

from cairn import tools
from cairn.tools import (
    expand_braces,
    find_files,
    glob_match,
    read_file,
    search_file_contents,
)

requires_grep = pytest.mark.skipif(shutil.which("grep") is None, reason="grep not on PATH")


@pytest.fixture
def sandbox(tmp_path):
    """Create a project tree with test files and dependency directories."""
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "x.test.js").write_text("test('x', () => {});\n")
    (tmp_path / "b").mkdir()
    (tmp_path / "b" / "y.js").write_text("// TODO: tidy\nconst y = 1;\n")
    (tmp_path / "README.md").write_text("Hello World\nhello again\n")

    (tmp_path / "node_modules" / "dep").mkdir(parents=True)
    (tmp_path / "node_modules" / "dep" / "z.test.js").write_text("ignored\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD.test.js").write_text("ignored\n")
    return tmp_path


# --- glob matching ---


class TestGlobMatch:
    def test_double_star_spans_directories(self):
        assert glob_match("a/b/c.js", "**/*.js")

    def test_double_star_matches_zero_directories(self):
        assert glob_match("c.js", "**/*.js")

    def test_single_star_stays_in_one_segment(self):
        assert not glob_match("a/c.js", "*.js")
        assert glob_match("c.js", "*.js")

    def test_prefix_directory(self):
        assert glob_match("src/lib/x.ts", "src/**/*.ts")
        assert not glob_match("test/lib/x.ts", "src/**/*.ts")

    def test_leading_dot_slash_ignored(self):
        assert glob_match("a/x.js", "./a/*.js")

    def test_brace_alternatives(self):
        assert glob_match("src/a.js", "**/*.{js,ts}")
        assert glob_match("b.ts", "**/*.{js,ts}")
        assert not glob_match("c.py", "**/*.{js,ts}")

    def test_brace_alternatives_across_segments(self):
        assert glob_match("lib/x.py", "{src,lib}/*.py")
        assert not glob_match("test/x.py", "{src,lib}/*.py")


class TestExpandBraces:
    def test_plain_pattern_unchanged(self):
        assert expand_braces("**/*.js") == ["**/*.js"]

    def test_nested_and_repeated(self):
        assert expand_braces("{a,b{c,d}}.{x,y}") == [
            "a.x",
            "a.y",
            "bc.x",
            "bc.y",
            "bd.x",
            "bd.y",
        ]

    def test_group_without_comma_is_literal(self):
        assert expand_braces("{a}.{js,ts}") == ["{a}.js", "{a}.ts"]


# --- findFiles ---


class TestFindFiles:
    def test_matches_only_test_files(self, sandbox):
        result = json.loads(find_files("**/*.test.js", base_dir=str(sandbox)))
        assert result == [str((sandbox / "a" / "x.test.js").resolve())]

    def test_paths_are_absolute(self, sandbox):
        result = json.loads(find_files("**/*.js", base_dir=str(sandbox)))
        assert all(p.startswith("/") for p in result)
        assert len(result) == 2

    def test_excludes_dependency_dirs(self, sandbox):
        result = find_files("**/*", base_dir=str(sandbox))
        assert "node_modules" not in result
        assert ".git" not in result

    def test_sorted(self, sandbox):
        result = json.loads(find_files("**/*.js", base_dir=str(sandbox)))
        assert result == sorted(result)

    def test_no_matches_is_empty_array(self, sandbox):
        assert find_files("**/*.rs", base_dir=str(sandbox)) == "[]"

    def test_missing_base_dir_is_empty_array(self, tmp_path):
        assert find_files("*", base_dir=str(tmp_path / "missing")) == "[]"

    def test_brace_pattern(self, tmp_path):
        (tmp_path / "a.js").write_text("", encoding="utf-8")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "b.ts").write_text("", encoding="utf-8")
        (tmp_path / "c.py").write_text("", encoding="utf-8")
        result = json.loads(find_files("**/*.{js,ts}", base_dir=str(tmp_path)))
        root = tmp_path.resolve()
        assert result == [str(root / "a.js"), str(root / "src" / "b.ts")]

    def test_absolute_pattern_ignores_base_dir(self, tmp_path):
        project = tmp_path / "project"
        (project / "pkg").mkdir(parents=True)
        (project / "pkg" / "a.py").write_text("", encoding="utf-8")
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()

        pattern = str(project.resolve()) + "/**/*.py"
        result = json.loads(find_files(pattern, base_dir=str(elsewhere)))
        assert result == [str(project.resolve() / "pkg" / "a.py")]

    def test_absolute_file_path(self, tmp_path):
        (tmp_path / "one.txt").write_text("", encoding="utf-8")
        (tmp_path / "two.txt").write_text("", encoding="utf-8")
        target = str(tmp_path.resolve() / "one.txt")
        assert json.loads(find_files(target)) == [target]


class TestSplitAbsoluteGlob:
    def test_splits_before_first_wildcard(self):
        assert tools._split_absolute_glob("/opt/lib/**/*.zig") == ("/opt/lib", "**/*.zig")

    def test_brace_component_starts_the_glob(self):
        assert tools._split_absolute_glob("/srv/{a,b}/*.py") == ("/srv", "{a,b}/*.py")


# --- searchFileContents ---


@requires_grep
class TestSearchFileContents:
    def test_line_numbered_matches(self, sandbox):
        result = search_file_contents("TODO", base_dir=str(sandbox))
        assert "b/y.js:1:// TODO: tidy" in result

    def test_no_matches(self, sandbox):
        assert search_file_contents("zzz_nothing", base_dir=str(sandbox)) == (
            "No matches found."
        )

    def test_case_insensitive(self, sandbox):
        sensitive = search_file_contents("hello", "README.md", base_dir=str(sandbox))
        assert sensitive == "2:hello again"
        insensitive = search_file_contents(
            "hello", ".", case_insensitive=True, base_dir=str(sandbox)
        )
        assert "README.md:1:Hello World" in insensitive
        assert "README.md:2:hello again" in insensitive

    def test_glob_pattern_filters_files(self, sandbox):
        result = search_file_contents(
            "e", ".", glob_pattern="*.md", base_dir=str(sandbox)
        )
        assert "README.md" in result
        assert "y.js" not in result

    def test_missing_search_path_is_no_matches(self, sandbox):
        result = search_file_contents("x", "does-not-exist", base_dir=str(sandbox))
        assert result == "No matches found."

    def test_line_numbers_agree_with_read_file(self, sandbox):
        (sandbox / "f.txt").write_text("alpha\x0cbeta\nneedle\n", encoding="utf-8")
        hit = search_file_contents("needle", "f.txt", base_dir=str(sandbox))
        assert hit == "2:needle"
        assert "2 | needle" in read_file("f.txt", base_dir=str(sandbox))

    def test_pattern_starting_with_dash(self, sandbox):
        (sandbox / "flags.txt").write_text("use -rf carefully\n")
        result = search_file_contents("-rf", base_dir=str(sandbox))
        assert "flags.txt:1:use -rf carefully" in result


class TestSearchCommand:
    def test_builds_grep_argv(self, monkeypatch):
        seen = {}

        def fake_run(command, **kwargs):
            seen["command"] = command
            seen["cwd"] = kwargs["cwd"]
            return SimpleNamespace(stdout="src/a.js:3:hit\n", stderr="", returncode=0)

        monkeypatch.setattr(tools.subprocess, "run", fake_run)
        result = search_file_contents(
            "hit", "src", glob_pattern="*.js", case_insensitive=True, base_dir="/proj"
        )
        assert result == "src/a.js:3:hit"
        assert seen["command"] == [
            "grep",
            "-rni",
            "--include",
            "*.js",
            "-e",
            "hit",
            "src",
        ]
        assert seen["cwd"] == "/proj"

    def test_stderr_without_output_is_no_matches(self, monkeypatch):
        monkeypatch.setattr(
            tools.subprocess,
            "run",
            lambda *a, **k: SimpleNamespace(
                stdout="", stderr="grep: Unmatched [", returncode=2
            ),
        )
        assert search_file_contents("[") == "No matches found."

    def test_output_with_error_exit_still_returned(self, monkeypatch):
        monkeypatch.setattr(
            tools.subprocess,
            "run",
            lambda *a, **k: SimpleNamespace(
                stdout="a.txt:1:x\n", stderr="grep: b.txt: Permission denied", returncode=2
            ),
        )
        assert search_file_contents("x") == "a.txt:1:x"

    def test_launch_failure_is_error_string(self, monkeypatch):
        def fail(*a, **k):
            raise FileNotFoundError(2, "No such file or directory", "grep")

        monkeypatch.setattr(tools.subprocess, "run", fail)
        result = search_file_contents("x")
        assert result.startswith("error: failed to run grep")
