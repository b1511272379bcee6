"""Version-control adapter contract and the git implementation.

The core only consumes the ``VcsAdapter`` protocol; ``GitAdapter`` shells out
to ``git`` the same way every other repo-local tool here does.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Callable, Mapping, Protocol
import logging
import subprocess

from thoth.exceptions import VcsError
from thoth.globs import normalize_path
from thoth.order_contract import OrderPolicy, ordered_or_sorted

logger = logging.getLogger(__name__)

LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".go": "go",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".rb": "ruby",
    ".proto": "protobuf",
}


def detect_language(path: str) -> str | None:
    return LANGUAGE_BY_SUFFIX.get(PurePosixPath(path).suffix.lower())


@dataclass(frozen=True)
class FileChange:
    path: str
    old: bytes | None
    new: bytes | None
    lang: str | None = None

    @property
    def status(self) -> str:
        if self.old is None:
            return "added"
        if self.new is None:
            return "deleted"
        return "modified"


@dataclass(frozen=True)
class Diff:
    files: tuple[FileChange, ...]
    base: str | None = None
    target: str | None = None

    def __post_init__(self) -> None:
        ordered = ordered_or_sorted(
            (
                FileChange(normalize_path(item.path), item.old, item.new, item.lang)
                for item in self.files
            ),
            source="vcs.diff.files",
            policy=OrderPolicy.SORT,
            key=lambda item: item.path,
        )
        object.__setattr__(self, "files", tuple(ordered))

    @property
    def paths(self) -> list[str]:
        return [item.path for item in self.files]

    @classmethod
    def from_contents(
        cls,
        old: Mapping[str, bytes],
        new: Mapping[str, bytes],
        *,
        base: str | None = None,
        target: str | None = None,
    ) -> "Diff":
        """Diff two ``path -> content`` mappings, skipping identical files."""
        files = [
            FileChange(path, old.get(path), new.get(path), detect_language(path))
            for path in set(old) | set(new)
            if old.get(path) != new.get(path)
        ]
        return cls(files=tuple(files), base=base, target=target)


@dataclass(frozen=True)
class RevisionInfo:
    rev_id: str
    timestamp: int
    author: str = ""
    summary: str = ""


@dataclass(frozen=True)
class VcsSnapshot:
    rev_id: str
    files: Mapping[str, bytes] = field(default_factory=lambda: MappingProxyType({}))


class VcsAdapter(Protocol):
    name: str

    def current_rev(self) -> str: ...

    def diff(self, base: str | None = None, target: str | None = None) -> Diff: ...

    def file_at_rev(self, path: str, rev: str | None) -> bytes | None: ...

    def log(self, revset: str | None, limit: int | None = None) -> list[RevisionInfo]: ...

    def changed_paths(self, base: str | None, target: str | None) -> list[str]: ...

    def snapshot(self, rev: str | None = None) -> VcsSnapshot: ...


def parse_touch_target(what: str | None) -> tuple[str, str | None]:
    """``None`` -> working tree vs HEAD, ``A..B`` -> (A, B), ``REV`` -> (REV^, REV)."""
    if what is None or not what.strip():
        return ("HEAD", None)
    text = what.strip()
    if ".." in text:
        base, _, target = text.partition("..")
        return (base or "HEAD", target or None)
    return (f"{text}^", text)


Runner = Callable[..., subprocess.CompletedProcess]


class GitAdapter:
    name = "git"

    def __init__(
        self,
        root: Path,
        *,
        runner: Runner = subprocess.run,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.root = root
        self._runner = runner
        self._timeout = timeout_seconds

    def _git(self, *args: str, allow_failure: bool = False) -> subprocess.CompletedProcess:
        cmd = ["git", *args]
        try:
            proc = self._runner(
                cmd,
                cwd=self.root,
                check=False,
                capture_output=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise VcsError(f"{' '.join(cmd)} failed: {exc}") from exc
        if proc.returncode != 0 and not allow_failure:
            stderr = proc.stderr.decode("utf-8", errors="replace") if isinstance(proc.stderr, bytes) else str(proc.stderr)
            raise VcsError(stderr.strip() or f"{' '.join(cmd)} exited {proc.returncode}")
        return proc

    def _text(self, *args: str) -> str:
        output = self._git(*args).stdout
        return output.decode("utf-8", errors="replace") if isinstance(output, bytes) else output

    def current_rev(self) -> str:
        return self._text("rev-parse", "HEAD").strip()

    def file_at_rev(self, path: str, rev: str | None) -> bytes | None:
        if rev is None:
            target = self.root / path
            try:
                return target.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise VcsError(f"cannot read {path}: {exc}") from exc
        proc = self._git("show", f"{rev}:{path}", allow_failure=True)
        if proc.returncode != 0:
            return None
        return proc.stdout if isinstance(proc.stdout, bytes) else proc.stdout.encode("utf-8")

    def _paths(self, *args: str) -> list[str]:
        """NUL-separated ``-z`` output, one str per field.

        Git emits raw path bytes under ``-z``; a field that is not UTF-8
        raises ``VcsError`` rather than being rewritten.
        """
        output = self._git(*args).stdout
        raw = output if isinstance(output, bytes) else output.encode("utf-8")
        fields: list[str] = []
        for part in raw.split(b"\0"):
            if not part:
                continue
            try:
                fields.append(part.decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise VcsError(f"git {args[0]} reported a path that is not UTF-8: {part!r}") from exc
        return fields

    def _name_status(self, base: str | None, target: str | None) -> list[tuple[str, str]]:
        args = ["diff", "--name-status", "--no-renames", "-z", base or "HEAD"]
        if target is not None:
            args.append(target)
        fields = self._paths(*args)
        pairs: list[tuple[str, str]] = []
        for index in range(0, len(fields) - 1, 2):
            pairs.append((fields[index][:1], normalize_path(fields[index + 1])))
        if target is None:
            # git diff against the worktree never lists untracked files
            listed = {path for _, path in pairs}
            for path in self._paths("ls-files", "--others", "--exclude-standard", "-z"):
                if normalize_path(path) not in listed:
                    pairs.append(("A", normalize_path(path)))
        return pairs

    def changed_paths(self, base: str | None, target: str | None) -> list[str]:
        return ordered_or_sorted(
            list(dict.fromkeys(path for _, path in self._name_status(base, target))),
            source="vcs.git.changed_paths",
            policy=OrderPolicy.SORT,
        )

    def diff(self, base: str | None = None, target: str | None = None) -> Diff:
        resolved_base = base or "HEAD"
        files: list[FileChange] = []
        for status, path in self._name_status(resolved_base, target):
            old = None if status == "A" else self.file_at_rev(path, resolved_base)
            new = None if status == "D" else self.file_at_rev(path, target)
            files.append(FileChange(path, old, new, detect_language(path)))
        logger.debug("git diff %s..%s: %d files", resolved_base, target or "worktree", len(files))
        return Diff(files=tuple(files), base=resolved_base, target=target)

    def log(self, revset: str | None, limit: int | None = None) -> list[RevisionInfo]:
        args = ["log", "--format=%H%x1f%ct%x1f%an%x1f%s"]
        if limit is not None:
            args.append(f"-n{int(limit)}")
        args.append(revset or "HEAD")
        revisions: list[RevisionInfo] = []
        for line in self._text(*args).splitlines():
            parts = line.split("\x1f")
            if len(parts) != 4:
                continue
            revisions.append(
                RevisionInfo(rev_id=parts[0], timestamp=int(parts[1]), author=parts[2], summary=parts[3])
            )
        return revisions

    def snapshot(self, rev: str | None = None) -> VcsSnapshot:
        resolved = self._text("rev-parse", "--verify", rev or "HEAD").strip()
        files: dict[str, bytes] = {}
        for path in self._paths("ls-tree", "-r", "-z", "--name-only", resolved):
            content = self.file_at_rev(path, resolved)
            if content is not None:
                files[normalize_path(path)] = content
        return VcsSnapshot(rev_id=resolved, files=MappingProxyType(files))
