"""Pure, order-stable matching of diff facts against manifest bindings.

Each function walks its changes in input order and bindings in declaration
order, so output order is a function of input order alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable
import re

from thoth.globs import glob_match, normalize_path
from thoth.manifest import PathBinding, RegionBinding, SymbolBinding
from thoth.regions import RegionChange
from thoth.symbols.differ import SymbolChange
from thoth.symbols.extractor import Symbol


@dataclass(frozen=True)
class PathMatch:
    resource_id: str
    path: str


@dataclass(frozen=True)
class SymbolMatch:
    resource_id: str
    fqname: str
    change: str
    path: str
    detail: str = ""
    old_fqname: str | None = None


@dataclass(frozen=True)
class RegionMatch:
    resource_id: str
    region_id: str
    change: str
    path: str


@lru_cache(maxsize=512)
def _compiled(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def match_paths(changed_paths: Iterable[str], path_bindings: Iterable[PathBinding]) -> list[PathMatch]:
    bindings = list(path_bindings)
    matches: list[PathMatch] = []
    seen: set[tuple[str, str]] = set()
    for raw_path in changed_paths:
        path = normalize_path(raw_path)
        for binding in bindings:
            key = (binding.resource_id, path)
            if key in seen or not glob_match(binding.glob, path):
                continue
            seen.add(key)
            matches.append(PathMatch(resource_id=binding.resource_id, path=path))
    return matches


def symbol_binding_matches(binding: SymbolBinding, symbol: Symbol, *, fqnames: tuple[str, ...] = ()) -> bool:
    if binding.lang != symbol.lang:
        return False
    if binding.kind not in (None, "*") and binding.kind != symbol.kind:
        return False
    if binding.query is not None:
        return symbol.query == binding.query
    if symbol.query is not None:
        # custom-query captures only answer the query that produced them
        return False
    if binding.fqname is not None:
        return binding.fqname in (fqnames or (symbol.fqname,))
    if binding.pattern is not None:
        return _compiled(binding.pattern).search(symbol.name) is not None
    return False


def match_symbols(
    changes: Iterable[SymbolChange],
    symbol_bindings: Iterable[SymbolBinding],
) -> list[SymbolMatch]:
    bindings = list(symbol_bindings)
    matches: list[SymbolMatch] = []
    seen: set[tuple[str, str, str]] = set()
    for change in changes:
        old = change.old_symbol
        for binding in bindings:
            hit = symbol_binding_matches(binding, change.symbol, fqnames=change.fqnames)
            if not hit and old is not None and old.name != change.symbol.name:
                hit = symbol_binding_matches(binding, old, fqnames=change.fqnames)
            if not hit:
                continue
            key = (binding.resource_id, change.symbol.fqname, change.change)
            if key in seen:
                continue
            seen.add(key)
            matches.append(
                SymbolMatch(
                    resource_id=binding.resource_id,
                    fqname=change.symbol.fqname,
                    change=change.change,
                    path=change.symbol.file_path,
                    detail=change.detail,
                    old_fqname=old.fqname if change.change == "renamed" and old is not None else None,
                )
            )
    return matches


def match_regions(
    region_changes: Iterable[RegionChange],
    region_bindings: Iterable[RegionBinding],
) -> list[RegionMatch]:
    owners: dict[str, list[str]] = {}
    for binding in region_bindings:
        owners.setdefault(binding.region_id, []).append(binding.resource_id)
    matches: list[RegionMatch] = []
    for change in region_changes:
        for resource_id in owners.get(change.region_id, ()):
            matches.append(
                RegionMatch(
                    resource_id=resource_id,
                    region_id=change.region_id,
                    change=change.change,
                    path=change.file_path,
                )
            )
    return matches
