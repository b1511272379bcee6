"""Path glob semantics shared by bindings, map filters and find.

``**`` spans directory boundaries, ``*`` and ``?`` never cross ``/``.
"""

from __future__ import annotations

from functools import lru_cache
import re

_META = frozenset("*?[")


def normalize_path(path: str) -> str:
    cleaned = path.replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def is_glob(text: str) -> bool:
    return any(char in _META for char in text)


def literal_prefix(pattern: str) -> str:
    for index, char in enumerate(pattern):
        if char in _META:
            return pattern[:index]
    return pattern


@lru_cache(maxsize=1024)
def compile_glob(pattern: str) -> re.Pattern[str]:
    return re.compile(_translate(normalize_path(pattern)))


def glob_match(pattern: str, path: str) -> bool:
    return compile_glob(pattern).fullmatch(normalize_path(path)) is not None


def globs_intersect(left: str, right: str) -> bool:
    """Conservative overlap test between two path patterns.

    Literal paths are matched exactly; two globs overlap when one literal
    prefix extends the other.
    """
    left = normalize_path(left)
    right = normalize_path(right)
    if not is_glob(left):
        return glob_match(right, left)
    if not is_glob(right):
        return glob_match(left, right)
    left_prefix = literal_prefix(left)
    right_prefix = literal_prefix(right)
    return left_prefix.startswith(right_prefix) or right_prefix.startswith(left_prefix)


def _translate(pattern: str) -> str:
    parts: list[str] = []
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        if char == "*":
            if pattern.startswith("**", index):
                at_segment_start = index == 0 or pattern[index - 1] == "/"
                after = index + 2
                if at_segment_start and pattern.startswith("/", after):
                    parts.append("(?:.*/)?")
                    index = after + 1
                    continue
                if after == length and parts and parts[-1] == "/":
                    # "dir/**" also matches "dir" itself.
                    parts[-1] = "(?:/.*)?"
                    index = after
                    continue
                parts.append(".*")
                index = after
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "[":
            end = pattern.find("]", index + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                body = pattern[index + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body.replace(chr(92), chr(92) * 2)}]")
                index = end + 1
                continue
        else:
            parts.append(re.escape(char))
        index += 1
    return "".join(parts)
