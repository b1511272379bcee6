from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Callable, Iterable
import re

from thoth.order_contract import OrderPolicy, ordered_or_sorted
from thoth.symbols.extractor import Symbol

DEFAULT_RENAME_THRESHOLD = 0.8
_NAME_PLACEHOLDER = "\u0000"


def signature_similarity(old: Symbol, new: Symbol) -> float:
    """Similarity of two signatures with their own bare names masked out."""
    left = _mask_name(old.signature_text, old.name)
    right = _mask_name(new.signature_text, new.name)
    return SequenceMatcher(None, left, right, autojunk=False).ratio()


def _mask_name(signature: str, name: str) -> str:
    if not name:
        return signature
    return re.sub(rf"\b{re.escape(name)}\b", _NAME_PLACEHOLDER, signature, count=1)


@dataclass(frozen=True)
class RenamePolicy:
    threshold: float = DEFAULT_RENAME_THRESHOLD
    similarity: Callable[[Symbol, Symbol], float] = signature_similarity

    def candidate(self, old: Symbol, new: Symbol) -> bool:
        return (
            old.kind == new.kind
            and old.file_path == new.file_path
            and old.scope == new.scope
            and old.query == new.query
            and old.lang == new.lang
        )


@dataclass(frozen=True)
class SymbolChange:
    change: str
    symbol: Symbol
    old_symbol: Symbol | None = None
    detail: str = ""

    @property
    def fqnames(self) -> tuple[str, ...]:
        if self.old_symbol is not None and self.old_symbol.fqname != self.symbol.fqname:
            return (self.old_symbol.fqname, self.symbol.fqname)
        return (self.symbol.fqname,)


@dataclass(frozen=True)
class SymbolDiff:
    added: tuple[SymbolChange, ...] = ()
    removed: tuple[SymbolChange, ...] = ()
    modified: tuple[SymbolChange, ...] = ()
    renamed: tuple[SymbolChange, ...] = ()

    def changes(self) -> list[SymbolChange]:
        """Every change ordered by position (file, line), then change kind."""
        return ordered_or_sorted(
            [*self.added, *self.removed, *self.modified, *self.renamed],
            source="differ.changes",
            policy=OrderPolicy.SORT,
            key=lambda item: (
                item.symbol.file_path,
                item.symbol.start_line,
                item.symbol.query or "",
                item.symbol.fqname,
                item.change,
            ),
        )

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.modified or self.renamed)


def _modification(old: Symbol, new: Symbol, *, masked: bool = False) -> str:
    if masked:
        signature_changed = _mask_name(old.signature_text, old.name) != _mask_name(
            new.signature_text, new.name
        )
    else:
        signature_changed = old.signature_text != new.signature_text
    body_changed = old.body_hash != new.body_hash
    if signature_changed and body_changed:
        return "both"
    if signature_changed:
        return "signature"
    if body_changed:
        return "body"
    return ""


def diff(
    old_table: Iterable[Symbol],
    new_table: Iterable[Symbol],
    *,
    policy: RenamePolicy | None = None,
) -> SymbolDiff:
    """Diff two symbol tables keyed by (query, FQN).

    Removed/added pairs that share kind, file, scope and query and whose
    similarity meets the policy threshold are reported as renames. Each added
    symbol pairs at most once; the highest score wins and ties go to the
    earliest position.
    """
    rename_policy = policy or RenamePolicy()
    old_symbols = list(old_table)
    new_symbols = list(new_table)
    old_by_key = {symbol.key: symbol for symbol in old_symbols}
    new_by_key = {symbol.key: symbol for symbol in new_symbols}

    modified: list[SymbolChange] = []
    for symbol in new_symbols:
        previous = old_by_key.get(symbol.key)
        if previous is None:
            continue
        detail = _modification(previous, symbol)
        if detail:
            modified.append(SymbolChange("modified", symbol, previous, detail))

    gone = [symbol for symbol in old_symbols if symbol.key not in new_by_key]
    fresh = [symbol for symbol in new_symbols if symbol.key not in old_by_key]
    claimed: set[int] = set()
    renamed: list[SymbolChange] = []
    removed: list[SymbolChange] = []
    for old in gone:
        best_index = -1
        best_score = -1.0
        for index, new in enumerate(fresh):
            if index in claimed or not rename_policy.candidate(old, new):
                continue
            score = rename_policy.similarity(old, new)
            if score >= rename_policy.threshold and score > best_score:
                best_index, best_score = index, score
        if best_index < 0:
            removed.append(SymbolChange("removed", old))
            continue
        claimed.add(best_index)
        new = fresh[best_index]
        renamed.append(SymbolChange("renamed", new, old, _modification(old, new, masked=True)))
    added = [
        SymbolChange("added", symbol)
        for index, symbol in enumerate(fresh)
        if index not in claimed
    ]
    return SymbolDiff(
        added=tuple(added),
        removed=tuple(removed),
        modified=tuple(modified),
        renamed=tuple(renamed),
    )
