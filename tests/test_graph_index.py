from __future__ import annotations

from pathlib import Path
import os
import sqlite3

import pytest

from thoth.exceptions import (
    IndexBuildError,
    IndexBusyError,
    InvalidQueryError,
    UnknownNodeError,
    UnknownResourceError,
)
from thoth.graph import SCHEMA_VERSION, GraphIndex
from thoth.graph import store
from thoth.graph.queries import FIND_TIERS
from thoth.manifest import Severity, load
from thoth.pipeline import classify
from tests.env_helpers import thoth_env
from tests.order_helpers import assert_canonical_order
from tests.thoth_helpers import (
    COMMIT_GO_V1,
    COMMIT_GO_V2,
    COMMIT_GO_V3,
    WAL_GO,
    FakeVcs,
    sample_manifest,
)

COMMIT_PATH = "pkg/storage/engine/commit.go"
VIEWS_PY = '@app.route("/users")\ndef list_users():\n    return []\n'


@pytest.fixture()
def model():
    return load(sample_manifest())


@pytest.fixture()
def vcs() -> FakeVcs:
    fake = FakeVcs()
    base = {"pkg/storage/wal/log.go": WAL_GO, "app/views.py": VIEWS_PY}
    fake.commit("r1", {**base, COMMIT_PATH: COMMIT_GO_V1}, timestamp=100)
    fake.commit("r2", {**base, COMMIT_PATH: COMMIT_GO_V2}, timestamp=200)
    fake.commit("r3", {**base, COMMIT_PATH: COMMIT_GO_V3}, timestamp=300)
    fake.commit(
        "r4",
        {**base, COMMIT_PATH: COMMIT_GO_V3, "pkg/storage/wal/log.go": WAL_GO + "\n// tail\n"},
        timestamp=400,
    )
    return fake


@pytest.fixture()
def index(tmp_path: Path, model, vcs: FakeVcs) -> GraphIndex:
    graph = GraphIndex(tmp_path / "thoth" / "index.sqlite")
    graph.build(model, vcs.snapshot("r3"))
    return graph


def _dump(path: Path) -> list[str]:
    conn = sqlite3.connect(path)
    try:
        return list(conn.iterdump())
    finally:
        conn.close()


def _record(index: GraphIndex, model, vcs: FakeVcs, rev: str) -> None:
    info = vcs.log(rev, limit=1)[0]
    index.record_touch(classify(vcs.diff(f"{rev}^", rev), model), rev, timestamp=info.timestamp)


def test_build_summary_counts(tmp_path: Path, model, vcs: FakeVcs) -> None:
    summary = GraphIndex(tmp_path / "index.sqlite").build(model, vcs.snapshot("r1"))
    assert summary.rev_id == "r1"
    assert summary.resources == 5
    assert summary.regions == 1
    # commit, helper, Append, list_users twice (default and route query)
    assert summary.symbols == 5
    assert summary.diagnostics == 0


def test_rebuild_is_idempotent(tmp_path: Path, model, vcs: FakeVcs) -> None:
    graph = GraphIndex(tmp_path / "index.sqlite")
    graph.build(model, vcs.snapshot("r3"))
    first = _dump(graph.path)
    graph.build(model, vcs.snapshot("r3"))
    assert _dump(graph.path) == first
    assert not list(tmp_path.glob("*.tmp"))
    assert not graph.lock_path.exists()


def test_reading_before_build_fails(tmp_path: Path) -> None:
    with pytest.raises(IndexBuildError):
        GraphIndex(tmp_path / "missing.sqlite").map()


def test_map_filters(index: GraphIndex) -> None:
    everything = index.map()
    assert everything["version"] == SCHEMA_VERSION
    assert everything["rev_id"] == "r3"
    assert [item["resource_id"] for item in everything["resources"]] == [
        "handlers",
        "storage",
        "storage_core",
        "user_api",
        "wal_subsystem",
    ]
    assert {"src": "user_api", "dst": "storage_core", "edge_type": "reads-from"} in everything["edges"]
    assert all(edge["edge_type"] != "requires-check" for edge in everything["edges"])

    api = index.map(tag="api")
    assert [item["resource_id"] for item in api["resources"]] == ["handlers", "user_api"]
    assert [edge["src"] for edge in api["edges"]] == ["user_api"]

    assert [item["resource_id"] for item in index.map(severity="gated")["resources"]] == [
        "storage_core",
        "user_api",
    ]
    assert [item["resource_id"] for item in index.map(path="pkg/storage/wal/x.go")["resources"]] == [
        "wal_subsystem"
    ]
    with pytest.raises(InvalidQueryError):
        index.map(severity="urgent")


def test_find_ranks_by_tier_then_severity(index: GraphIndex) -> None:
    results = index.find("storage")
    assert [(item["resource_id"], item["tier"]) for item in results] == [
        ("storage", "id"),
        ("wal_subsystem", "tag"),
        ("storage_core", "tag"),
    ]


def test_find_keyword_search_is_deterministic(index: GraphIndex) -> None:
    results = index.find('kw:"write ahead log"')
    assert [(item["resource_id"], item["match"]) for item in results] == [
        ("wal_subsystem", "invariant:INV-WAL-1"),
        ("storage", "description"),
    ]
    assert index.find('kw:"write ahead log"') == results
    assert_canonical_order(
        results,
        key=lambda item: (FIND_TIERS.index(item["tier"]), Severity(item["severity"]).rank, item["resource_id"]),
    )


def test_find_selectors(index: GraphIndex) -> None:
    assert [item["resource_id"] for item in index.find("path:pkg/storage/wal/log.go")] == ["wal_subsystem"]
    assert [item["resource_id"] for item in index.find("sym:UserService")] == ["user_api"]
    assert [item["resource_id"] for item in index.find("region:THOTH-0192")] == ["wal_subsystem"]
    assert [item["resource_id"] for item in index.find("tag:HTTP")] == ["handlers"]
    assert index.find("id:nope") == []
    regex = index.find(r"kw:fsync(ed)?\b", regex=True)
    assert [item["resource_id"] for item in regex] == ["wal_subsystem"]
    with pytest.raises(InvalidQueryError):
        index.find("kw:")
    with pytest.raises(InvalidQueryError):
        index.find("kw:(", regex=True)


def test_walk_follows_edges_in_id_order(index: GraphIndex) -> None:
    result = index.walk("wal_subsystem")
    assert [(node["id"], node["kind"]) for node in result["nodes"]] == [
        ("wal_subsystem", "resource"),
        ("ADR-0007", "adr"),
        ("INV-WAL-1", "invariant"),
        ("THOTH-0192", "region"),
        ("storage_core", "resource"),
        ("wal-tests", "check"),
    ]


def test_walk_terminates_on_cycles(index: GraphIndex) -> None:
    result = index.walk("wal_subsystem", edge_types=["depends-on"], depth=50)
    assert [node["id"] for node in result["nodes"]] == ["wal_subsystem", "storage_core"]
    assert [(edge["src"], edge["dst"]) for edge in result["edges"]] == [
        ("wal_subsystem", "storage_core"),
        ("storage_core", "wal_subsystem"),
    ]


def test_walk_reverse_and_bounds(index: GraphIndex) -> None:
    result = index.walk("storage_core", reverse=True)
    assert [node["id"] for node in result["nodes"]] == ["storage_core", "user_api", "wal_subsystem"]
    assert index.walk("storage_core", depth=0)["edges"] == []
    with pytest.raises(InvalidQueryError):
        index.walk("storage_core", depth=-1)
    with pytest.raises(UnknownNodeError):
        index.walk("nowhere")



def test_query_order_ignores_order_policy_env(index: GraphIndex, model, vcs: FakeVcs) -> None:
    _record(index, model, vcs, "r2")
    _record(index, model, vcs, "r4")
    expected = (
        index.map(),
        index.find("storage"),
        index.walk("wal_subsystem", edge_types=["requires-check", "depends-on"]),
        index.history("wal_subsystem"),
        index.list_symbols(),
    )
    for policy in ("trust", "enforce"):
        with thoth_env(order_policy=policy):
            assert (
                index.map(),
                index.find("storage"),
                index.walk("wal_subsystem", edge_types=["requires-check", "depends-on"]),
                index.history("wal_subsystem"),
                index.list_symbols(),
            ) == expected
    assert expected[2]["edge_types"] == ["depends-on", "requires-check"]

def test_show_capsule(index: GraphIndex) -> None:
    capsule = index.show("wal_subsystem")
    assert capsule["severity"] == "serialized"
    assert capsule["owners"] == ["storage-team"]
    assert capsule["lease"] == {"mode": "exclusive", "ttl_seconds": 900}
    assert capsule["deps"] == ["storage_core"]
    assert capsule["dependents"] == ["storage_core"]
    assert [check["check_id"] for check in capsule["checks"]] == ["wal-tests"]
    assert capsule["checks"][0]["cacheable"] is True
    assert [item["invariant_id"] for item in capsule["invariants"]] == ["INV-WAL-1"]
    assert [item["adr_id"] for item in capsule["adrs"]] == ["ADR-0007"]
    assert capsule["bindings"]["paths"] == ["pkg/storage/wal/**"]
    assert capsule["bindings"]["regions"] == ["THOTH-0192"]
    assert [(item["region_id"], item["file_path"], item["start_line"], item["end_line"]) for item in capsule["regions"]] == [
        ("THOTH-0192", COMMIT_PATH, 3, 7)
    ]
    with pytest.raises(UnknownResourceError):
        index.show("nope")


def test_list_symbols(index: GraphIndex) -> None:
    go = index.list_symbols(lang="go")
    assert [item["fqname"] for item in go] == [
        "pkg/storage/engine.commit",
        "pkg/storage/engine.helper",
        "pkg/storage/wal.Append",
    ]
    python = index.list_symbols(path="app/**")
    assert [(item["fqname"], item["query"]) for item in python] == [
        ("app.views.list_users", None),
        ("app.views.list_users", "kind=function decorator=route"),
    ]


def test_history_links_only_touching_revisions(index: GraphIndex, model, vcs: FakeVcs) -> None:
    for rev in ("r2", "r3", "r4"):
        _record(index, model, vcs, rev)
    assert index.history("wal_subsystem") == [
        {"rev_id": "r4", "timestamp": 400, "reasons": ["path"]},
        {"rev_id": "r2", "timestamp": 200, "reasons": ["region"]},
    ]
    assert_canonical_order(index.history("wal_subsystem"), key=lambda row: row["timestamp"], reverse=True)
    assert [row["rev_id"] for row in index.history("wal_subsystem", since=300)] == ["r4"]
    assert [row["rev_id"] for row in index.history("wal_subsystem", until=300)] == ["r2"]
    assert [row["rev_id"] for row in index.history("wal_subsystem", limit=1)] == ["r4"]
    assert [row["rev_id"] for row in index.history("wal_subsystem", revisions=["r2", "r3"])] == ["r2"]
    assert index.history("wal_subsystem", revisions=[]) == []
    assert index.history("storage") == []
    with pytest.raises(UnknownResourceError):
        index.history("nope")
    with pytest.raises(InvalidQueryError):
        index.history("wal_subsystem", limit=-1)


def test_recording_twice_is_a_no_op(index: GraphIndex, model, vcs: FakeVcs) -> None:
    _record(index, model, vcs, "r2")
    before = _dump(index.path)
    _record(index, model, vcs, "r2")
    assert _dump(index.path) == before


def test_history_survives_rebuild(index: GraphIndex, model, vcs: FakeVcs) -> None:
    _record(index, model, vcs, "r2")
    index.build(model, vcs.snapshot("r4"))
    assert index.map()["rev_id"] == "r4"
    assert [row["rev_id"] for row in index.history("wal_subsystem")] == ["r2"]


def test_busy_lock_fails_fast_without_wait(index: GraphIndex, model, vcs: FakeVcs) -> None:
    before = _dump(index.path)
    index.lock_path.write_text(str(os.getpid()), encoding="utf-8")
    with pytest.raises(IndexBusyError):
        index.build(model, vcs.snapshot("r4"), wait=False)
    assert index.lock_path.read_text(encoding="utf-8") == str(os.getpid())
    index.lock_path.unlink()
    assert _dump(index.path) == before


@pytest.mark.parametrize("content", ["999999999", "not-a-pid"])
def test_stale_lock_from_dead_writer_is_recovered(
    index: GraphIndex, model, vcs: FakeVcs, monkeypatch: pytest.MonkeyPatch, content: str
) -> None:
    monkeypatch.setattr(store, "_pid_alive", lambda pid: False)
    index.lock_path.write_text(content, encoding="utf-8")
    summary = index.build(model, vcs.snapshot("r4"), wait=False)
    assert summary.rev_id == "r4"
    assert not index.lock_path.exists()


def test_fresh_empty_lock_is_treated_as_held(index: GraphIndex, model, vcs: FakeVcs) -> None:
    index.lock_path.write_text("", encoding="utf-8")
    with pytest.raises(IndexBusyError):
        index.build(model, vcs.snapshot("r4"), wait=False)
    index.lock_path.unlink()


def test_pid_alive_probe() -> None:
    assert store._pid_alive(os.getpid())
    assert not store._pid_alive(0)


def test_failed_build_keeps_previous_index(
    index: GraphIndex, model, vcs: FakeVcs, monkeypatch: pytest.MonkeyPatch
) -> None:
    before = _dump(index.path)

    def _explode(conn, symbols):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "_write_symbols", _explode)
    with pytest.raises(IndexBuildError):
        index.build(model, vcs.snapshot("r4"))
    assert _dump(index.path) == before
    assert not list(index.path.parent.glob("*.tmp"))
    assert not index.lock_path.exists()


def test_parse_failures_become_diagnostics(tmp_path: Path, model, vcs: FakeVcs) -> None:
    vcs.commit("r5", {"app/broken.py": "def broken(:\n", "app/views.py": VIEWS_PY}, timestamp=500)
    graph = GraphIndex(tmp_path / "index.sqlite")
    summary = graph.build(model, vcs.snapshot("r5"))
    kinds = [(item["file_path"], item["kind"]) for item in graph.diagnostics()]
    assert ("app/broken.py", "SymbolParseError") in kinds
    assert ("", "missing_region") in kinds
    assert summary.diagnostics == len(kinds)
