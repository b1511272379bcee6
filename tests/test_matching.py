from __future__ import annotations

from thoth.manifest import PathBinding, RegionBinding, SymbolBinding
from thoth.matching import match_paths, match_regions, match_symbols, symbol_binding_matches
from thoth.regions import RegionChange
from thoth.symbols.differ import SymbolChange
from thoth.symbols.extractor import Symbol


def _symbol(fqname: str, *, kind: str = "function", lang: str = "python", query: str | None = None) -> Symbol:
    return Symbol(
        fqname=fqname,
        lang=lang,
        kind=kind,
        file_path="app/users.py",
        start_line=1,
        end_line=2,
        signature_text=f"def {fqname.rsplit('.', 1)[-1]}()",
        name=fqname.rsplit(".", 1)[-1],
        query=query,
    )


def test_match_paths_follows_input_then_binding_order() -> None:
    bindings = [
        PathBinding("storage", "pkg/storage/**"),
        PathBinding("wal", "pkg/storage/wal/**"),
    ]
    matches = match_paths(["./pkg/storage/wal/log.go", "docs/readme.md", "pkg/storage/page.go"], bindings)
    assert [(match.resource_id, match.path) for match in matches] == [
        ("storage", "pkg/storage/wal/log.go"),
        ("wal", "pkg/storage/wal/log.go"),
        ("storage", "pkg/storage/page.go"),
    ]


def test_match_paths_deduplicates_per_resource() -> None:
    bindings = [PathBinding("wal", "pkg/**"), PathBinding("wal", "pkg/*.go")]
    assert len(match_paths(["pkg/a.go"], bindings)) == 1


def test_symbol_binding_by_fqname_and_kind() -> None:
    binding = SymbolBinding("user_api", "python", kind="class", fqname="app.users.UserService")
    assert symbol_binding_matches(binding, _symbol("app.users.UserService", kind="class"))
    assert not symbol_binding_matches(binding, _symbol("app.users.UserService", kind="function"))
    assert not symbol_binding_matches(binding, _symbol("app.users.UserService.get", kind="class"))
    assert not symbol_binding_matches(binding, _symbol("app.users.UserService", kind="class", lang="go"))


def test_symbol_binding_by_pattern_searches_bare_name() -> None:
    binding = SymbolBinding("handlers", "python", pattern="^handle_")
    assert symbol_binding_matches(binding, _symbol("app.views.handle_login"))
    assert not symbol_binding_matches(binding, _symbol("handle_.views.login"))


def test_query_bindings_only_see_their_own_captures() -> None:
    query = "kind=function decorator=route"
    binding = SymbolBinding("handlers", "python", query=query)
    assert symbol_binding_matches(binding, _symbol("app.users.index", query=query))
    assert not symbol_binding_matches(binding, _symbol("app.users.index"))
    by_name = SymbolBinding("index", "python", fqname="app.users.index")
    assert not symbol_binding_matches(by_name, _symbol("app.users.index", query=query))


def test_renamed_symbol_matches_either_name() -> None:
    old = _symbol("app.users.load")
    new = _symbol("app.users.fetch")
    change = SymbolChange("renamed", new, old)
    matches = match_symbols([change], [SymbolBinding("loader", "python", fqname="app.users.load")])
    assert [(match.resource_id, match.fqname, match.old_fqname) for match in matches] == [
        ("loader", "app.users.fetch", "app.users.load")
    ]


def test_match_regions_uses_declared_owners() -> None:
    changes = [
        RegionChange("THOTH-1", "a.go", "modified", None, None),
        RegionChange("THOTH-2", "b.go", "added", None, None),
    ]
    matches = match_regions(changes, [RegionBinding("wal", "THOTH-2"), RegionBinding("core", "THOTH-2")])
    assert [(match.resource_id, match.region_id, match.change, match.path) for match in matches] == [
        ("wal", "THOTH-2", "added", "b.go"),
        ("core", "THOTH-2", "added", "b.go"),
    ]
