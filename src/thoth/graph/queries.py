"""Read-side queries over a built graph index.

Every function takes an open read-only connection and returns plain payload
objects. Nothing here reads file contents; all answers come from index rows.
"""

from __future__ import annotations

from collections import deque
from typing import Sequence
import json
import re
import sqlite3

from thoth.exceptions import InvalidQueryError, UnknownNodeError, UnknownResourceError
from thoth.globs import glob_match, globs_intersect
from thoth.manifest import Severity
from thoth.order_contract import OrderPolicy, ordered_or_sorted

# edges whose destination is a resource; the rest point at checks, invariants,
# ADRs and regions
NON_RESOURCE_EDGE_TYPES = ("requires-check", "upholds", "explained-by", "binds-region")

FIND_TIERS = ("id", "tag", "binding", "text")
_TIER_RANK = {tier: rank for rank, tier in enumerate(FIND_TIERS)}

FIND_SELECTORS: dict[str, tuple[str, ...]] = {
    "id": ("id",),
    "tag": ("tag",),
    "path": ("binding:path",),
    "sym": ("binding:symbol",),
    "region": ("binding:region",),
    "kw": ("text",),
}
_ALL_FIND_SCOPES = ("id", "tag", "binding:path", "binding:symbol", "binding:region", "text")


def _severity_rank(value: str) -> int:
    try:
        return Severity(value).rank
    except ValueError:
        return len(Severity)


def _resource_payload(row: sqlite3.Row) -> dict[str, object]:
    lease = None
    if row["lease_mode"] is not None:
        lease = {"mode": row["lease_mode"], "ttl_seconds": row["lease_ttl_seconds"]}
    return {
        "resource_id": row["resource_id"],
        "description": row["description"],
        "severity": row["severity"],
        "owners": json.loads(row["owners"]),
        "tags": json.loads(row["tags"]),
        "lease": lease,
    }


def _meta(conn: sqlite3.Connection) -> dict[str, str]:
    return {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM meta")}


def _resource_row(conn: sqlite3.Connection, resource_id: str) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM resource WHERE resource_id = ?", (resource_id,)).fetchone()
    if row is None:
        raise UnknownResourceError.for_id(resource_id)
    return row


def map_resources(
    conn: sqlite3.Connection,
    *,
    tag: str | None = None,
    severity: str | None = None,
    path: str | None = None,
) -> dict[str, object]:
    if severity is not None:
        try:
            Severity(severity)
        except ValueError:
            raise InvalidQueryError(f"unknown severity {severity!r}") from None
    globs: dict[str, list[str]] = {}
    if path is not None:
        for row in conn.execute("SELECT resource_id, glob FROM binding_path"):
            globs.setdefault(row["resource_id"], []).append(row["glob"])
    resources: list[dict[str, object]] = []
    for row in conn.execute("SELECT * FROM resource ORDER BY resource_id"):
        payload = _resource_payload(row)
        if tag is not None and tag not in payload["tags"]:
            continue
        if severity is not None and payload["severity"] != severity:
            continue
        if path is not None and not any(
            globs_intersect(glob, path) for glob in globs.get(row["resource_id"], ())
        ):
            continue
        resources.append(payload)
    selected = {item["resource_id"] for item in resources}
    edges = [
        {"src": row["src"], "dst": row["dst"], "edge_type": row["edge_type"]}
        for row in conn.execute("SELECT src, dst, edge_type FROM edge")
        if row["src"] in selected and row["edge_type"] not in NON_RESOURCE_EDGE_TYPES
    ]
    meta = _meta(conn)
    return {
        "version": int(meta.get("schema_version", "0")),
        "rev_id": meta.get("rev_id"),
        "resources": ordered_or_sorted(
            resources,
            source="graph.map.resources",
            policy=OrderPolicy.SORT,
            key=lambda item: item["resource_id"],
        ),
        "edges": ordered_or_sorted(
            edges,
            source="graph.map.edges",
            policy=OrderPolicy.SORT,
            key=lambda item: (item["src"], item["edge_type"], item["dst"]),
        ),
    }


def parse_handle(handle: str) -> tuple[tuple[str, ...], str]:
    """Split ``sel:term`` into (scopes, term); unknown prefixes are part of the term."""
    prefix, sep, rest = handle.partition(":")
    if sep and prefix in FIND_SELECTORS:
        scopes, term = FIND_SELECTORS[prefix], rest
    else:
        scopes, term = _ALL_FIND_SCOPES, handle
    term = term.strip()
    if len(term) >= 2 and term[0] == term[-1] and term[0] in "\"'":
        term = term[1:-1]
    if not term:
        raise InvalidQueryError(f"empty search handle {handle!r}")
    return scopes, term


def _text_matcher(term: str, *, regex: bool):
    if regex:
        try:
            pattern = re.compile(term, re.IGNORECASE)
        except re.error as exc:
            raise InvalidQueryError(f"invalid regular expression {term!r}: {exc}") from exc
        return lambda text: bool(text) and pattern.search(text) is not None
    needle = term.casefold()
    return lambda text: bool(text) and needle in text.casefold()


def _binding_hits(conn: sqlite3.Connection, scopes: Sequence[str], term: str) -> dict[str, str]:
    hits: dict[str, str] = {}
    if "binding:path" in scopes:
        for row in conn.execute("SELECT resource_id, glob FROM binding_path ORDER BY resource_id, glob"):
            if glob_match(row["glob"], term) or globs_intersect(row["glob"], term):
                hits.setdefault(row["resource_id"], f"path:{row['glob']}")
    if "binding:symbol" in scopes:
        bare = term.rsplit(".", 1)[-1]
        for row in conn.execute(
            "SELECT resource_id, fqname, pattern, query FROM binding_symbol ORDER BY resource_id, rowid"
        ):
            fqname, pattern = row["fqname"], row["pattern"]
            if fqname is not None and (fqname == term or fqname.endswith(f".{term}")):
                hits.setdefault(row["resource_id"], f"symbol:{fqname}")
            elif pattern is not None and re.search(pattern, bare):
                hits.setdefault(row["resource_id"], f"symbol:/{pattern}/")
            elif row["query"] is not None and row["query"] == term:
                hits.setdefault(row["resource_id"], f"query:{term}")
    if "binding:region" in scopes:
        for row in conn.execute(
            "SELECT resource_id, region_id FROM binding_region WHERE region_id = ? ORDER BY resource_id",
            (term,),
        ):
            hits.setdefault(row["resource_id"], f"region:{row['region_id']}")
    return hits


def _text_hits(conn: sqlite3.Connection, term: str, *, regex: bool) -> dict[str, str]:
    matches = _text_matcher(term, regex=regex)
    hits: dict[str, str] = {}
    for row in conn.execute("SELECT resource_id, description FROM resource ORDER BY resource_id"):
        if matches(row["description"]):
            hits.setdefault(row["resource_id"], "description")
    for row in conn.execute(
        """
        SELECT ri.resource_id, i.invariant_id, i.statement
        FROM resource_invariant ri JOIN invariant i ON i.invariant_id = ri.invariant_id
        ORDER BY ri.resource_id, i.invariant_id
        """
    ):
        if matches(row["statement"]):
            hits.setdefault(row["resource_id"], f"invariant:{row['invariant_id']}")
    for row in conn.execute(
        """
        SELECT ra.resource_id, a.adr_id, a.capsule
        FROM resource_adr ra JOIN adr a ON a.adr_id = ra.adr_id
        ORDER BY ra.resource_id, a.adr_id
        """
    ):
        if matches(row["capsule"]):
            hits.setdefault(row["resource_id"], f"adr:{row['adr_id']}")
    return hits


def find(conn: sqlite3.Connection, handle: str, *, regex: bool = False) -> list[dict[str, object]]:
    """Ranked search by (tier, severity, resource id).

    Each resource is reported once, at the best tier it matched.
    """
    scopes, term = parse_handle(handle)
    severities = {
        row["resource_id"]: row["severity"]
        for row in conn.execute("SELECT resource_id, severity FROM resource")
    }
    best: dict[str, tuple[str, str]] = {}

    def offer(tier: str, hits: dict[str, str]) -> None:
        for resource_id, match in hits.items():
            if resource_id in severities and resource_id not in best:
                best[resource_id] = (tier, match)

    if "id" in scopes and term in severities:
        offer("id", {term: "id"})
    if "tag" in scopes:
        wanted = term.casefold()
        offer(
            "tag",
            {
                row["resource_id"]: f"tag:{tag}"
                for row in conn.execute("SELECT resource_id, tags FROM resource")
                for tag in json.loads(row["tags"])
                if tag.casefold() == wanted
            },
        )
    if any(scope.startswith("binding:") for scope in scopes):
        offer("binding", _binding_hits(conn, scopes, term))
    if "text" in scopes:
        offer("text", _text_hits(conn, term, regex=regex))
    results = [
        {
            "resource_id": resource_id,
            "severity": severities[resource_id],
            "tier": tier,
            "match": match,
        }
        for resource_id, (tier, match) in best.items()
    ]
    return ordered_or_sorted(
        results,
        source="graph.find",
        policy=OrderPolicy.SORT,
        key=lambda item: (_TIER_RANK[item["tier"]], _severity_rank(item["severity"]), item["resource_id"]),
    )


def _node_kind(conn: sqlite3.Connection, node: str) -> str | None:
    for kind, table, column in (
        ("resource", "resource", "resource_id"),
        ("check", "check_def", "check_id"),
        ("invariant", "invariant", "invariant_id"),
        ("adr", "adr", "adr_id"),
        ("region", "binding_region", "region_id"),
        ("region", "region", "region_id"),
    ):
        if conn.execute(f"SELECT 1 FROM {table} WHERE {column} = ? LIMIT 1", (node,)).fetchone():
            return kind
    if conn.execute("SELECT 1 FROM edge WHERE src = ? OR dst = ? LIMIT 1", (node, node)).fetchone():
        return "node"
    return None


def walk(
    conn: sqlite3.Connection,
    node: str,
    *,
    edge_types: Sequence[str] = (),
    depth: int = 1,
    reverse: bool = False,
) -> dict[str, object]:
    """Breadth-first traversal bounded by ``depth`` with a visited set.

    Neighbours of each node are expanded in id order; an empty
    ``edge_types`` follows every edge type.
    """
    if depth < 0:
        raise InvalidQueryError(f"walk depth must be >= 0, got {depth}")
    root_kind = _node_kind(conn, node)
    if root_kind is None:
        raise UnknownNodeError(node)
    wanted = set(edge_types)
    near, far = ("dst", "src") if reverse else ("src", "dst")
    visited = {node}
    nodes = [{"id": node, "kind": root_kind, "depth": 0}]
    edges: list[dict[str, object]] = []
    frontier = deque([(node, 0)])
    while frontier:
        current, level = frontier.popleft()
        if level >= depth:
            continue
        rows = conn.execute(
            f"SELECT src, dst, edge_type FROM edge WHERE {near} = ?",
            (current,),
        ).fetchall()
        neighbours = ordered_or_sorted(
            [row for row in rows if not wanted or row["edge_type"] in wanted],
            source="graph.walk.neighbours",
            policy=OrderPolicy.SORT,
            key=lambda row: (row[far], row["edge_type"]),
        )
        for row in neighbours:
            edges.append({"src": row["src"], "dst": row["dst"], "edge_type": row["edge_type"]})
            child = row[far]
            if child in visited:
                continue
            visited.add(child)
            nodes.append({"id": child, "kind": _node_kind(conn, child) or "node", "depth": level + 1})
            frontier.append((child, level + 1))
    return {
        "root": node,
        "depth": depth,
        "reverse": reverse,
        "edge_types": ordered_or_sorted(
            list(dict.fromkeys(edge_types)),
            source="graph.walk.edge_types",
            policy=OrderPolicy.SORT,
        ),
        "nodes": nodes,
        "edges": edges,
    }


def show(conn: sqlite3.Connection, resource_id: str) -> dict[str, object]:
    payload = _resource_payload(_resource_row(conn, resource_id))

    def column(sql: str, *params: object) -> list[str]:
        return [row[0] for row in conn.execute(sql, params)]

    payload["deps"] = column(
        "SELECT dst FROM edge WHERE src = ? AND edge_type = 'depends-on' ORDER BY dst", resource_id
    )
    payload["dependents"] = column(
        "SELECT src FROM edge WHERE dst = ? AND edge_type = 'depends-on' ORDER BY src", resource_id
    )
    payload["checks"] = [
        {
            "check_id": row["check_id"],
            "cmd": row["cmd"],
            "timeout_seconds": row["timeout_seconds"],
            "cacheable": bool(row["cacheable"]),
        }
        for row in conn.execute(
            """
            SELECT c.check_id, c.cmd, c.timeout_seconds, c.cacheable
            FROM resource_check rc JOIN check_def c ON c.check_id = rc.check_id
            WHERE rc.resource_id = ? ORDER BY c.check_id
            """,
            (resource_id,),
        )
    ]
    payload["invariants"] = [
        {"invariant_id": row["invariant_id"], "statement": row["statement"], "doc_path": row["doc_path"]}
        for row in conn.execute(
            """
            SELECT i.invariant_id, i.statement, i.doc_path
            FROM resource_invariant ri JOIN invariant i ON i.invariant_id = ri.invariant_id
            WHERE ri.resource_id = ? ORDER BY i.invariant_id
            """,
            (resource_id,),
        )
    ]
    payload["adrs"] = [
        {
            "adr_id": row["adr_id"],
            "capsule": row["capsule"],
            "capsule_path": row["capsule_path"],
            "full_path": row["full_path"],
        }
        for row in conn.execute(
            """
            SELECT a.adr_id, a.capsule, a.capsule_path, a.full_path
            FROM resource_adr ra JOIN adr a ON a.adr_id = ra.adr_id
            WHERE ra.resource_id = ? ORDER BY a.adr_id
            """,
            (resource_id,),
        )
    ]
    payload["bindings"] = {
        "paths": column("SELECT glob FROM binding_path WHERE resource_id = ? ORDER BY rowid", resource_id),
        "symbols": [
            {key: row[key] for key in ("lang", "kind", "fqname", "pattern", "query") if row[key] is not None}
            for row in conn.execute(
                "SELECT * FROM binding_symbol WHERE resource_id = ? ORDER BY rowid", (resource_id,)
            )
        ],
        "regions": column(
            "SELECT region_id FROM binding_region WHERE resource_id = ? ORDER BY rowid", resource_id
        ),
    }
    payload["regions"] = [
        {
            "region_id": row["region_id"],
            "file_path": row["file_path"],
            "start_line": row["start_line"],
            "end_line": row["end_line"],
        }
        for row in conn.execute(
            """
            SELECT r.region_id, r.file_path, r.start_line, r.end_line
            FROM binding_region br JOIN region r ON r.region_id = br.region_id
            WHERE br.resource_id = ? ORDER BY r.region_id
            """,
            (resource_id,),
        )
    ]
    return payload


def history(
    conn: sqlite3.Connection,
    resource_id: str,
    *,
    since: int | None = None,
    until: int | None = None,
    revisions: Sequence[str] | None = None,
    limit: int | None = None,
) -> list[dict[str, object]]:
    """Revisions linked to ``resource_id``, newest first."""
    _resource_row(conn, resource_id)
    if limit is not None and limit < 0:
        raise InvalidQueryError(f"limit must be >= 0, got {limit}")
    if revisions is not None and not revisions:
        return []
    clauses = ["rr.resource_id = ?"]
    params: list[object] = [resource_id]
    if since is not None:
        clauses.append("r.timestamp >= ?")
        params.append(int(since))
    if until is not None:
        clauses.append("r.timestamp <= ?")
        params.append(int(until))
    if revisions is not None:
        clauses.append(f"r.rev_id IN ({', '.join('?' for _ in revisions)})")
        params.extend(revisions)
    rows = conn.execute(
        f"""
        SELECT r.rev_id, r.timestamp, r.seq, rr.reasons
        FROM resource_revision rr JOIN revision r ON r.rev_id = rr.rev_id
        WHERE {' AND '.join(clauses)}
        """,
        params,
    ).fetchall()
    ordered = ordered_or_sorted(
        rows,
        source="graph.history",
        policy=OrderPolicy.SORT,
        key=lambda row: (row["timestamp"], row["seq"]),
        reverse=True,
    )
    if limit is not None:
        ordered = ordered[:limit]
    return [
        {
            "rev_id": row["rev_id"],
            "timestamp": row["timestamp"],
            "reasons": [reason for reason in row["reasons"].split(",") if reason],
        }
        for row in ordered
    ]


def list_symbols(
    conn: sqlite3.Connection,
    *,
    lang: str | None = None,
    path: str | None = None,
) -> list[dict[str, object]]:
    sql = "SELECT * FROM symbol"
    params: tuple[object, ...] = ()
    if lang is not None:
        sql += " WHERE lang = ?"
        params = (lang,)
    rows = [row for row in conn.execute(sql, params) if path is None or glob_match(path, row["file_path"])]
    ordered = ordered_or_sorted(
        rows,
        source="graph.list_symbols",
        policy=OrderPolicy.SORT,
        key=lambda row: (row["file_path"], row["start_line"], row["query"], row["fqname"]),
    )
    return [
        {
            "fqname": row["fqname"],
            "lang": row["lang"],
            "kind": row["kind"],
            "file_path": row["file_path"],
            "start_line": row["start_line"],
            "end_line": row["end_line"],
            "signature_text": row["signature_text"],
            "query": row["query"] or None,
        }
        for row in ordered
    ]
