"""Line-oriented Go declaration scanner.

Recognizes top-level ``func``, receiver methods, ``type`` declarations
(single and grouped) and the method specs of interface types. Bodies are
delimited by brace balance after stripping comments and literals.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

from thoth.exceptions import SymbolParseError
from thoth.regions import split_lines
from thoth.symbols.capabilities import Capture, select

_FUNC_RE = re.compile(r"^func\s+(?P<name>[A-Za-z_]\w*)")
_METHOD_RE = re.compile(r"^func\s+\((?P<recv>[^)]*)\)\s*(?P<name>[A-Za-z_]\w*)")
_TYPE_RE = re.compile(r"^type\s+(?P<name>[A-Za-z_]\w*)(?:\[[^\]]*\])?\s*=?\s*(?P<rest>.*)$")
_GROUP_TYPE_RE = re.compile(r"^\s+(?P<name>[A-Za-z_]\w*)(?:\[[^\]]*\])?\s*=?\s*(?P<rest>\S.*)$")
_INTERFACE_METHOD_RE = re.compile(r"^\s*(?P<name>[A-Za-z_]\w*)\s*\(")
_NOISE_RE = re.compile(r'//.*$|"(?:\\.|[^"\\])*"|`[^`]*`|\'(?:\\.|[^\'\\])*\'')
# package-level funcs Go allows to be declared more than once
_REPEATABLE_FUNCS = frozenset({"init", "_"})


@dataclass(frozen=True)
class GoSource:
    lines: tuple[str, ...]


def _strip_noise(line: str) -> str:
    return _NOISE_RE.sub("", line)


def _flatten(text: str) -> str:
    return " ".join(text.split())


def _type_kind(rest: str) -> str:
    head = rest.split("{", 1)[0].strip()
    if head.startswith("interface"):
        return "interface"
    if head.startswith("struct"):
        return "struct"
    return "type"


def _receiver_type(receiver: str) -> str:
    parts = receiver.replace("*", " ").split()
    if not parts:
        return ""
    return parts[-1].split("[", 1)[0]


class GoCapability:
    lang = "go"

    def parse(self, source: bytes) -> GoSource:
        try:
            text = source.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SymbolParseError(f"go source is not UTF-8: {exc}", lang=self.lang) from exc
        lines = tuple(split_lines(text))
        depth = 0
        for line in lines:
            depth += self._balance(line)
            if depth < 0:
                raise SymbolParseError("unbalanced braces in go source", lang=self.lang)
        if depth != 0:
            raise SymbolParseError("unbalanced braces in go source", lang=self.lang)
        return GoSource(lines=lines)

    def query(self, tree: object, query: str | None) -> list[Capture]:
        if not isinstance(tree, GoSource):
            raise SymbolParseError("go capability expects parsed GoSource", lang=self.lang)
        captures: list[Capture] = []
        lines = tree.lines
        index = 0
        in_type_group = False
        while index < len(lines):
            line = lines[index]
            if in_type_group:
                if line.strip().startswith(")"):
                    in_type_group = False
                    index += 1
                    continue
                group_match = _GROUP_TYPE_RE.match(line)
                if group_match is not None:
                    end = self._block_end(lines, index)
                    captures.extend(
                        self._type_captures(lines, index, end, group_match.group("name"), group_match.group("rest"))
                    )
                    index = end + 1
                    continue
                index += 1
                continue
            if line.startswith("type") and line[4:].strip() == "(":
                in_type_group = True
                index += 1
                continue
            method_match = _METHOD_RE.match(line)
            func_match = None if method_match else _FUNC_RE.match(line)
            type_match = None if (method_match or func_match) else _TYPE_RE.match(line)
            if method_match is not None or func_match is not None:
                match = method_match or func_match
                end = self._block_end(lines, index)
                header = " ".join(lines[index : end + 1]) if end == index else self._header(lines, index, end)
                scope = (_receiver_type(method_match.group("recv")),) if method_match is not None else ()
                captures.append(
                    Capture(
                        name=match.group("name"),
                        kind="method" if method_match is not None else "func",
                        start_line=index + 1,
                        end_line=end + 1,
                        signature_text=_flatten(header.split("{", 1)[0]),
                        scope=tuple(part for part in scope if part),
                        body_text="\n".join(lines[index + 1 : end]),
                        redeclarable=func_match is not None and match.group("name") in _REPEATABLE_FUNCS,
                    )
                )
                index = end + 1
                continue
            if type_match is not None:
                end = self._block_end(lines, index)
                captures.extend(
                    self._type_captures(lines, index, end, type_match.group("name"), type_match.group("rest"))
                )
                index = end + 1
                continue
            index += 1
        return select(captures, query)

    def _type_captures(
        self,
        lines: tuple[str, ...],
        start: int,
        end: int,
        name: str,
        rest: str,
    ) -> list[Capture]:
        kind = _type_kind(rest)
        captures = [
            Capture(
                name=name,
                kind=kind,
                start_line=start + 1,
                end_line=end + 1,
                signature_text=_flatten(f"type {name} {rest.split('{', 1)[0]}"),
                body_text="\n".join(lines[start + 1 : end]),
            )
        ]
        if kind != "interface":
            return captures
        for offset in range(start + 1, end):
            spec = _INTERFACE_METHOD_RE.match(lines[offset])
            if spec is None:
                continue
            captures.append(
                Capture(
                    name=spec.group("name"),
                    kind="method",
                    start_line=offset + 1,
                    end_line=offset + 1,
                    signature_text=_flatten(_strip_noise(lines[offset])),
                    scope=(name,),
                )
            )
        return captures

    def _header(self, lines: tuple[str, ...], start: int, end: int) -> str:
        parts: list[str] = []
        for offset in range(start, end + 1):
            parts.append(lines[offset])
            if "{" in _strip_noise(lines[offset]):
                break
        return " ".join(parts)

    def _block_end(self, lines: tuple[str, ...], start: int) -> int:
        depth = 0
        opened = False
        for offset in range(start, len(lines)):
            stripped = _strip_noise(lines[offset])
            if "{" in stripped:
                opened = True
            depth += self._balance(lines[offset])
            if opened and depth <= 0:
                return offset
            if not opened and offset == start and not stripped.rstrip().endswith(("(", ",")):
                return start
        return len(lines) - 1

    @staticmethod
    def _balance(line: str) -> int:
        stripped = _strip_noise(line)
        return stripped.count("{") - stripped.count("}")
