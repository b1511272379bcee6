"""FQN resolution over structural captures.

Output is a pure function of (content, lang, active query set): nothing is
cached and no state survives between calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, Mapping, Sequence

from thoth.exceptions import SymbolParseError, SymbolResolutionError, ThothError
from thoth.globs import normalize_path
from thoth.order_contract import OrderPolicy, ordered_or_sorted
from thoth.regions import canonical_hash, split_lines
from thoth.symbols.capabilities import CapabilityRegistry, Capture

FQN_TEMPLATES: dict[str, str] = {
    "python": "{module}.{qualname}",
    "go": "{package}.{qualname}",
}
DEFAULT_FQN_TEMPLATE = "{path}::{qualname}"


@dataclass(frozen=True)
class Symbol:
    fqname: str
    lang: str
    kind: str
    file_path: str
    start_line: int
    end_line: int
    signature_text: str
    body_hash: str = ""
    name: str = ""
    scope: tuple[str, ...] = ()
    query: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.query or "", self.fqname)


@dataclass(frozen=True)
class FileSymbols:
    file_path: str
    lang: str
    symbols: tuple[Symbol, ...] = ()
    error: ThothError | None = None


@dataclass(frozen=True)
class SymbolSnapshot:
    symbols: tuple[Symbol, ...]
    errors: tuple[tuple[str, ThothError], ...]

    def for_file(self, file_path: str) -> list[Symbol]:
        return [symbol for symbol in self.symbols if symbol.file_path == file_path]

    def error_for(self, file_path: str) -> ThothError | None:
        for path, error in self.errors:
            if path == file_path:
                return error
        return None


def module_name(file_path: str) -> str:
    path = PurePosixPath(normalize_path(file_path))
    parts = list(path.with_suffix("").parts)
    if parts and parts[0] == "src":
        parts = parts[1:]
    if len(parts) > 1 and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


def package_name(file_path: str) -> str:
    parent = PurePosixPath(normalize_path(file_path)).parent
    return str(parent) if str(parent) != "." else ""


def resolve_fqname(capture: Capture, *, lang: str, file_path: str) -> str:
    qualname = ".".join((*capture.scope, capture.name))
    template = FQN_TEMPLATES.get(lang, DEFAULT_FQN_TEMPLATE)
    fqname = template.format(
        module=module_name(file_path),
        package=package_name(file_path),
        path=normalize_path(file_path),
        qualname=qualname,
    )
    return fqname.lstrip(".")


def qualify(captures: Iterable[Capture], *, lang: str, file_path: str) -> dict[Capture, str]:
    """Resolve an FQN per capture, in source order.

    A name may repeat only when one side of the pair is marked
    ``redeclarable`` by its capability. Later declarations get an ordinal
    suffix such as ``pkg.init#2``. Any other repeat raises
    ``SymbolResolutionError``.
    """
    names: dict[Capture, str] = {}
    last: dict[str, Capture] = {}
    counts: dict[str, int] = {}
    for capture in captures:
        fqname = resolve_fqname(capture, lang=lang, file_path=file_path)
        previous = last.get(fqname)
        if previous is not None and not (previous.redeclarable or capture.redeclarable):
            raise SymbolResolutionError(
                f"FQN collision for {fqname!r} in {file_path}",
                file_path=file_path,
                fqname=fqname,
            )
        last[fqname] = capture
        counts[fqname] = counts.get(fqname, 0) + 1
        names[capture] = fqname if counts[fqname] == 1 else f"{fqname}#{counts[fqname]}"
    return names


def extract_file(
    content: bytes,
    *,
    file_path: str,
    lang: str,
    registry: CapabilityRegistry,
    queries: Sequence[str] = (),
) -> list[Symbol]:
    """Symbol table for one file, ordered by start line.

    Raises ``SymbolParseError`` when the capability cannot parse the content
    and ``SymbolResolutionError`` when two captures resolve to one FQN and
    neither is a legal redeclaration.
    """
    path = normalize_path(file_path)
    try:
        capability = registry.get(lang)
        tree = capability.parse(content)
        batches = [(query, capability.query(tree, query)) for query in (None, *queries)]
    except SymbolParseError as exc:
        raise SymbolParseError(str(exc), file_path=path, lang=lang) from exc
    symbols: list[Symbol] = []
    seen: set[tuple[str, str]] = set()
    names = qualify(batches[0][1], lang=lang, file_path=path)
    for query, captures in batches:
        unnamed = [capture for capture in captures if capture not in names]
        if unnamed:
            names.update(qualify(unnamed, lang=lang, file_path=path))
        for capture in captures:
            symbol = Symbol(
                fqname=names[capture],
                lang=lang,
                kind=capture.kind,
                file_path=path,
                start_line=capture.start_line,
                end_line=capture.end_line,
                signature_text=capture.signature_text,
                body_hash=canonical_hash(split_lines(capture.body_text))[0],
                name=capture.name,
                scope=capture.scope,
                query=query,
            )
            if symbol.key in seen:
                raise SymbolResolutionError(
                    f"FQN collision for {symbol.fqname!r} in {path}",
                    file_path=path,
                    fqname=symbol.fqname,
                )
            seen.add(symbol.key)
            symbols.append(symbol)
    return ordered_or_sorted(
        symbols,
        source="extractor.extract_file",
        policy=OrderPolicy.SORT,
        key=lambda item: (item.start_line, item.query or "", item.fqname),
    )


def extract_file_safe(
    content: bytes,
    *,
    file_path: str,
    lang: str,
    registry: CapabilityRegistry,
    queries: Sequence[str] = (),
) -> FileSymbols:
    try:
        symbols = extract_file(
            content,
            file_path=file_path,
            lang=lang,
            registry=registry,
            queries=queries,
        )
    except (SymbolParseError, SymbolResolutionError) as exc:
        return FileSymbols(file_path=normalize_path(file_path), lang=lang, error=exc)
    return FileSymbols(file_path=normalize_path(file_path), lang=lang, symbols=tuple(symbols))


def merge_file_symbols(results: Iterable[FileSymbols]) -> SymbolSnapshot:
    """Combine per-file tables, enforcing FQN uniqueness across the snapshot.

    Files are merged in path order; a file that reuses an FQN already claimed
    by an earlier file is dropped with a ``SymbolResolutionError``.
    """
    claimed: dict[tuple[str, str], str] = {}
    symbols: list[Symbol] = []
    errors: list[tuple[str, ThothError]] = []
    ordered = ordered_or_sorted(
        results,
        source="extractor.merge",
        policy=OrderPolicy.SORT,
        key=lambda item: item.file_path,
    )
    for result in ordered:
        if result.error is not None:
            errors.append((result.file_path, result.error))
            continue
        clash = next((symbol for symbol in result.symbols if symbol.key in claimed), None)
        if clash is not None:
            errors.append(
                (
                    result.file_path,
                    SymbolResolutionError(
                        f"FQN {clash.fqname!r} already defined in {claimed[clash.key]}",
                        file_path=result.file_path,
                        fqname=clash.fqname,
                    ),
                )
            )
            continue
        for symbol in result.symbols:
            claimed[symbol.key] = result.file_path
        symbols.extend(result.symbols)
    return SymbolSnapshot(symbols=tuple(symbols), errors=tuple(errors))


def extract_snapshot(
    files: Mapping[str, tuple[bytes, str]],
    *,
    registry: CapabilityRegistry,
    queries: Mapping[str, Sequence[str]] | None = None,
) -> SymbolSnapshot:
    """Extract every ``path -> (content, lang)`` entry sequentially."""
    active = queries or {}
    return merge_file_symbols(
        extract_file_safe(
            content,
            file_path=path,
            lang=lang,
            registry=registry,
            queries=active.get(lang, ()),
        )
        for path, (content, lang) in files.items()
    )
