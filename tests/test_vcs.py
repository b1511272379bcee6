from __future__ import annotations

from pathlib import Path
import os
import shutil
import subprocess

import pytest

from thoth.exceptions import VcsError
from thoth.vcs import Diff, FileChange, GitAdapter, detect_language, parse_touch_target


def test_parse_touch_target_forms() -> None:
    assert parse_touch_target(None) == ("HEAD", None)
    assert parse_touch_target("  ") == ("HEAD", None)
    assert parse_touch_target("abc123") == ("abc123^", "abc123")
    assert parse_touch_target("main..feature") == ("main", "feature")
    assert parse_touch_target("..feature") == ("HEAD", "feature")
    assert parse_touch_target("main..") == ("main", None)


def test_detect_language() -> None:
    assert detect_language("pkg/api/service.go") == "go"
    assert detect_language("app/users.PY") == "python"
    assert detect_language("README.md") is None


def test_diff_orders_and_normalizes_paths() -> None:
    diff = Diff(
        files=(
            FileChange("./b.py", b"a", b"b", "python"),
            FileChange("a.go", None, b"x", "go"),
        )
    )
    assert diff.paths == ["a.go", "b.py"]
    assert [item.status for item in diff.files] == ["added", "modified"]


def test_diff_from_contents_skips_identical_files() -> None:
    diff = Diff.from_contents({"same.py": b"1", "gone.go": b"x"}, {"same.py": b"1", "new.py": b"y"})
    assert [(item.path, item.status, item.lang) for item in diff.files] == [
        ("gone.go", "deleted", "go"),
        ("new.py", "added", "python"),
    ]


def test_git_errors_become_vcs_errors(tmp_path: Path) -> None:
    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 128, stdout=b"", stderr=b"fatal: not a git repository")

    with pytest.raises(VcsError, match="not a git repository"):
        GitAdapter(tmp_path, runner=runner).current_rev()


def test_missing_git_binary_is_a_vcs_error(tmp_path: Path) -> None:
    def runner(cmd, **kwargs):
        raise FileNotFoundError("git")

    with pytest.raises(VcsError):
        GitAdapter(tmp_path, runner=runner).log(None)


def test_worktree_diff_includes_untracked_files(tmp_path: Path) -> None:
    (tmp_path / "a.go").write_bytes(b"package a\n\nfunc A() {}\n")
    (tmp_path / "new.py").write_bytes(b"x = 1\n")
    calls: list[list[str]] = []

    def runner(cmd, **kwargs):
        calls.append(cmd)
        outputs = {
            "diff": b"M\0a.go\0",
            "ls-files": b"new.py\0a.go\0",
            "show": b"package a\n",
        }
        return subprocess.CompletedProcess(cmd, 0, stdout=outputs[cmd[1]], stderr=b"")

    diff = GitAdapter(tmp_path, runner=runner).diff()
    assert [(item.path, item.status, item.new) for item in diff.files] == [
        ("a.go", "modified", b"package a\n\nfunc A() {}\n"),
        ("new.py", "added", b"x = 1\n"),
    ]
    assert ["git", "ls-files", "--others", "--exclude-standard", "-z"] in calls

    calls.clear()
    GitAdapter(tmp_path, runner=runner).diff("r1", "r2")
    assert all(cmd[1] != "ls-files" for cmd in calls)


def test_non_utf8_paths_are_vcs_errors(tmp_path: Path) -> None:
    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout=b"M\0caf\xe9.go\0", stderr=b"")

    with pytest.raises(VcsError, match="not UTF-8"):
        GitAdapter(tmp_path, runner=runner).changed_paths("r1", "r2")


def _git(root: Path, *args: str, stamp: int = 1_700_000_000) -> str:
    env = {
        **os.environ,
        "GIT_AUTHOR_NAME": "Tester",
        "GIT_AUTHOR_EMAIL": "tester@example.com",
        "GIT_COMMITTER_NAME": "Tester",
        "GIT_COMMITTER_EMAIL": "tester@example.com",
        "GIT_AUTHOR_DATE": f"@{stamp} +0000",
        "GIT_COMMITTER_DATE": f"@{stamp} +0000",
    }
    proc = subprocess.run(["git", *args], cwd=root, env=env, check=True, capture_output=True, text=True)
    return proc.stdout.strip()


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_git_adapter_against_real_repository(tmp_path: Path) -> None:
    _git(tmp_path, "init", "-q")
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "a.go").write_text("package pkg\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("one\n", encoding="utf-8")
    _git(tmp_path, "add", "-A")
    _git(tmp_path, "commit", "-q", "-m", "first", stamp=1_700_000_000)
    first = _git(tmp_path, "rev-parse", "HEAD")

    (tmp_path / "pkg" / "a.go").write_text("package pkg\n\nfunc A() {}\n", encoding="utf-8")
    (tmp_path / "notes.txt").unlink()
    (tmp_path / "b.py").write_text("x = 1\n", encoding="utf-8")
    _git(tmp_path, "add", "-A")
    _git(tmp_path, "commit", "-q", "-m", "second", stamp=1_700_000_100)
    second = _git(tmp_path, "rev-parse", "HEAD")

    adapter = GitAdapter(tmp_path)
    assert adapter.current_rev() == second

    diff = adapter.diff(first, second)
    assert [(item.path, item.status) for item in diff.files] == [
        ("b.py", "added"),
        ("notes.txt", "deleted"),
        ("pkg/a.go", "modified"),
    ]
    assert adapter.changed_paths(first, second) == ["b.py", "notes.txt", "pkg/a.go"]
    assert adapter.file_at_rev("pkg/a.go", first) == b"package pkg\n"
    assert adapter.file_at_rev("notes.txt", second) is None

    history = adapter.log(f"{first}..{second}")
    assert [(item.rev_id, item.timestamp, item.summary) for item in history] == [
        (second, 1_700_000_100, "second")
    ]
    assert [item.rev_id for item in adapter.log(None, limit=5)] == [second, first]

    snapshot = adapter.snapshot("HEAD")
    assert snapshot.rev_id == second
    assert sorted(snapshot.files) == ["b.py", "pkg/a.go"]

    (tmp_path / "b.py").write_text("x = 2\n", encoding="utf-8")
    (tmp_path / ".git" / "info").mkdir(exist_ok=True)
    (tmp_path / ".git" / "info" / "exclude").write_text("*.log\n", encoding="utf-8")
    (tmp_path / "c.py").write_text("y = 1\n", encoding="utf-8")
    (tmp_path / "debug.log").write_text("noise\n", encoding="utf-8")
    worktree = adapter.diff()
    assert [(item.path, item.status, item.new) for item in worktree.files] == [
        ("b.py", "modified", b"x = 2\n"),
        ("c.py", "added", b"y = 1\n"),
    ]
    assert adapter.changed_paths("HEAD", None) == ["b.py", "c.py"]
    assert worktree.target is None
