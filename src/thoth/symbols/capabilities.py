"""Structural parsing capabilities, keyed by language tag.

A capability is any object with ``parse(source) -> tree`` and
``query(tree, query) -> list[Capture]``. Adding a language means registering
another capability, not subclassing anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol
import re

from thoth.exceptions import SymbolParseError


@dataclass(frozen=True)
class Capture:
    name: str
    kind: str
    start_line: int
    end_line: int
    signature_text: str
    scope: tuple[str, ...] = ()
    body_text: str = ""
    decorators: tuple[str, ...] = ()
    bases: tuple[str, ...] = ()
    # set by the capability when the language lets this name repeat in one scope
    redeclarable: bool = False


class StructuralCapability(Protocol):
    lang: str

    def parse(self, source: bytes) -> object:
        """Parse source bytes, raising ``SymbolParseError`` on failure."""

    def query(self, tree: object, query: str | None) -> list[Capture]:
        """Return captures in source order; ``None`` selects declarations."""


@dataclass(frozen=True)
class QuerySpec:
    """Parsed form of ``kind=a,b name=<re> decorator=x base=y scope=<re>``."""

    kinds: frozenset[str] | None = None
    name: re.Pattern[str] | None = None
    decorator: str | None = None
    base: str | None = None
    scope: re.Pattern[str] | None = None

    def accepts(self, capture: Capture) -> bool:
        if self.kinds is not None and capture.kind not in self.kinds:
            return False
        if self.name is not None and self.name.search(capture.name) is None:
            return False
        if self.scope is not None and self.scope.search(".".join(capture.scope)) is None:
            return False
        if self.decorator is not None and not any(
            _dotted_tail_matches(decorator, self.decorator) for decorator in capture.decorators
        ):
            return False
        if self.base is not None and not any(
            _dotted_tail_matches(base, self.base) for base in capture.bases
        ):
            return False
        return True


_QUERY_KEYS = ("kind", "name", "decorator", "base", "scope")


def parse_query(text: str) -> QuerySpec:
    values: dict[str, str] = {}
    for term in text.split():
        key, sep, value = term.partition("=")
        if not sep or key not in _QUERY_KEYS or not value:
            raise SymbolParseError(f"invalid query term {term!r} in {text!r}")
        values[key] = value
    try:
        return QuerySpec(
            kinds=frozenset(part for part in values["kind"].split(",") if part) if "kind" in values else None,
            name=re.compile(values["name"]) if "name" in values else None,
            decorator=values.get("decorator"),
            base=values.get("base"),
            scope=re.compile(values["scope"]) if "scope" in values else None,
        )
    except re.error as exc:
        raise SymbolParseError(f"invalid regular expression in query {text!r}: {exc}") from exc


def select(captures: Iterable[Capture], query: str | None) -> list[Capture]:
    if query is None:
        return list(captures)
    spec = parse_query(query)
    return [capture for capture in captures if spec.accepts(capture)]


def _dotted_tail_matches(expression: str, wanted: str) -> bool:
    head = expression.split("(", 1)[0].strip().lstrip("@")
    return head == wanted or head.endswith("." + wanted)


class CapabilityRegistry:
    def __init__(self, capabilities: Iterable[StructuralCapability] = ()) -> None:
        self._capabilities: dict[str, StructuralCapability] = {}
        for capability in capabilities:
            self.register(capability)

    def register(self, capability: StructuralCapability, *, lang: str | None = None) -> None:
        self._capabilities[(lang or capability.lang).lower()] = capability

    def supports(self, lang: str | None) -> bool:
        return lang is not None and lang.lower() in self._capabilities

    def languages(self) -> list[str]:
        return sorted(self._capabilities)

    def get(self, lang: str) -> StructuralCapability:
        capability = self._capabilities.get(lang.lower())
        if capability is None:
            raise SymbolParseError(f"no structural capability for language {lang!r}", lang=lang)
        return capability

    def parse(self, source: bytes, lang: str) -> object:
        return self.get(lang).parse(source)

    def query(self, tree: object, lang: str, query: str | None) -> list[Capture]:
        return self.get(lang).query(tree, query)
