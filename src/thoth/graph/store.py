"""SQLite-backed architecture graph.

The index is a single SQLite file. ``build`` never writes to it in place: it
fills a temporary file next to the index and swaps it in with ``os.replace``,
so a reader either holds the old file or opens the new one. Touch history is
the only data that survives a rebuild; it is copied from the previous file.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Sequence
import json
import logging
import os
import sqlite3
import tempfile
import threading
import time

from thoth.deadline import Deadline
from thoth.exceptions import IndexBuildError, IndexBusyError, SymbolParseError
from thoth.graph import queries
from thoth.manifest import ManifestModel
from thoth.order_contract import OrderPolicy, ordered_or_sorted
from thoth.pipeline import PipelineOptions, TouchResult
from thoth.regions import Region, scan_files
from thoth.symbols import default_registry
from thoth.symbols.capabilities import CapabilityRegistry
from thoth.symbols.extractor import FileSymbols, Symbol, extract_file_safe, merge_file_symbols
from thoth.vcs import VcsSnapshot, detect_language

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS resource (
  resource_id TEXT PRIMARY KEY,
  description TEXT NOT NULL DEFAULT '',
  severity TEXT NOT NULL,
  owners TEXT NOT NULL DEFAULT '[]', -- json list
  tags TEXT NOT NULL DEFAULT '[]', -- json list
  lease_mode TEXT,
  lease_ttl_seconds INTEGER
);

CREATE TABLE IF NOT EXISTS binding_path (
  resource_id TEXT NOT NULL,
  glob TEXT NOT NULL,
  UNIQUE (resource_id, glob)
);

CREATE TABLE IF NOT EXISTS binding_symbol (
  resource_id TEXT NOT NULL,
  lang TEXT NOT NULL,
  kind TEXT,
  fqname TEXT,
  pattern TEXT,
  query TEXT
);

CREATE TABLE IF NOT EXISTS binding_region (
  resource_id TEXT NOT NULL,
  region_id TEXT NOT NULL,
  UNIQUE (resource_id, region_id)
);

CREATE INDEX IF NOT EXISTS idx_binding_region_region ON binding_region(region_id);

CREATE TABLE IF NOT EXISTS invariant (
  invariant_id TEXT PRIMARY KEY,
  statement TEXT NOT NULL,
  scope TEXT NOT NULL DEFAULT '',
  doc_path TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS resource_invariant (
  resource_id TEXT NOT NULL,
  invariant_id TEXT NOT NULL,
  UNIQUE (resource_id, invariant_id)
);

CREATE TABLE IF NOT EXISTS adr (
  adr_id TEXT PRIMARY KEY,
  capsule TEXT NOT NULL DEFAULT '',
  capsule_path TEXT NOT NULL DEFAULT '',
  full_path TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS resource_adr (
  resource_id TEXT NOT NULL,
  adr_id TEXT NOT NULL,
  UNIQUE (resource_id, adr_id)
);

CREATE TABLE IF NOT EXISTS check_def (
  check_id TEXT PRIMARY KEY,
  cmd TEXT NOT NULL,
  timeout_seconds INTEGER NOT NULL DEFAULT 0,
  cacheable INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS resource_check (
  resource_id TEXT NOT NULL,
  check_id TEXT NOT NULL,
  UNIQUE (resource_id, check_id)
);

CREATE TABLE IF NOT EXISTS edge (
  src TEXT NOT NULL,
  dst TEXT NOT NULL,
  edge_type TEXT NOT NULL,
  UNIQUE (src, dst, edge_type)
);

CREATE INDEX IF NOT EXISTS idx_edge_dst ON edge(dst, edge_type);

CREATE TABLE IF NOT EXISTS region (
  region_id TEXT PRIMARY KEY,
  resource_id TEXT NOT NULL, -- as written in the BEGIN marker
  file_path TEXT NOT NULL,
  start_line INTEGER NOT NULL,
  end_line INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS region_snapshot (
  region_id TEXT NOT NULL,
  rev_id TEXT NOT NULL,
  content_hash TEXT NOT NULL,
  canonical_len INTEGER NOT NULL,
  UNIQUE (region_id, rev_id)
);

CREATE TABLE IF NOT EXISTS symbol (
  id INTEGER PRIMARY KEY,
  fqname TEXT NOT NULL,
  query TEXT NOT NULL DEFAULT '', -- '' for the default declaration query
  lang TEXT NOT NULL,
  kind TEXT NOT NULL,
  file_path TEXT NOT NULL,
  start_line INTEGER NOT NULL,
  end_line INTEGER NOT NULL,
  signature_text TEXT NOT NULL DEFAULT '',
  body_hash TEXT NOT NULL DEFAULT '',
  UNIQUE (query, fqname)
);

CREATE INDEX IF NOT EXISTS idx_symbol_path ON symbol(file_path, start_line);

CREATE TABLE IF NOT EXISTS diagnostic (
  file_path TEXT NOT NULL,
  kind TEXT NOT NULL,
  detail TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS revision (
  rev_id TEXT PRIMARY KEY,
  timestamp INTEGER NOT NULL,
  seq INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS resource_revision (
  resource_id TEXT NOT NULL,
  rev_id TEXT NOT NULL,
  reasons TEXT NOT NULL DEFAULT '', -- comma-joined reason types
  UNIQUE (resource_id, rev_id)
);

CREATE INDEX IF NOT EXISTS idx_resource_revision_rev ON resource_revision(rev_id);
"""

_PROCESS_LOCKS: dict[str, threading.Lock] = {}
_PROCESS_LOCKS_GUARD = threading.Lock()


def _process_lock(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _PROCESS_LOCKS_GUARD:
        lock = _PROCESS_LOCKS.get(key)
        if lock is None:
            lock = _PROCESS_LOCKS[key] = threading.Lock()
        return lock


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


@dataclass(frozen=True)
class BuildSummary:
    rev_id: str
    resources: int
    regions: int
    symbols: int
    diagnostics: int

    def as_payload(self) -> dict[str, object]:
        return {
            "rev_id": self.rev_id,
            "resources": self.resources,
            "regions": self.regions,
            "symbols": self.symbols,
            "diagnostics": self.diagnostics,
        }


@dataclass(frozen=True)
class _Diagnostic:
    file_path: str
    kind: str
    detail: str


class GraphIndex:
    def __init__(self, path: Path, *, lock_timeout: float = 30.0) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout

    # -- writers ---------------------------------------------------------

    @contextmanager
    def _writer(self, *, wait: bool) -> Iterator[None]:
        lock = _process_lock(self.path)
        acquired = lock.acquire(timeout=self.lock_timeout) if wait else lock.acquire(blocking=False)
        if not acquired:
            raise IndexBusyError(f"index {self.path} is being written by another thread")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = self._acquire_lock_file(wait=wait)
            try:
                yield
            finally:
                os.close(fd)
                self.lock_path.unlink(missing_ok=True)
        finally:
            lock.release()

    def _acquire_lock_file(self, *, wait: bool) -> int:
        deadline = Deadline.from_timeout_ms(int(self.lock_timeout * 1000))
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._clear_stale_lock():
                    continue
                if not wait or deadline.expired():
                    logger.info("index lock %s is held", self.lock_path)
                    raise IndexBusyError(f"index {self.path} is locked by {self.lock_path}") from None
                time.sleep(0.05)
                continue
            except OSError as exc:
                raise IndexBuildError(f"cannot create lock file {self.lock_path}: {exc}") from exc
            os.write(fd, str(os.getpid()).encode("ascii"))
            return fd

    def _clear_stale_lock(self) -> bool:
        """Remove a lock file whose writer is gone; True when one was removed."""
        try:
            raw = self.lock_path.read_text(encoding="ascii", errors="replace").strip()
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return True
        except OSError:
            return False
        if not raw:
            # the owner may not have written its pid yet
            if age < self.lock_timeout:
                return False
        elif raw.isdigit() and _pid_alive(int(raw)):
            return False
        logger.warning("removing stale index lock %s (pid %r)", self.lock_path, raw)
        self.lock_path.unlink(missing_ok=True)
        return True

    def build(
        self,
        model: ManifestModel,
        snapshot: VcsSnapshot,
        *,
        registry: CapabilityRegistry | None = None,
        options: PipelineOptions | None = None,
        wait: bool = True,
    ) -> BuildSummary:
        """Rebuild the whole index for ``snapshot`` and swap it into place.

        Any failure leaves the previous index file untouched.
        """
        capability_registry = registry or default_registry()
        build_options = options or PipelineOptions()
        with self._writer(wait=wait):
            logger.info("building index %s at %s", self.path, snapshot.rev_id)
            history = self._read_history(exclude_rev=snapshot.rev_id)
            regions, region_diagnostics = _scan_regions(model, snapshot, build_options)
            symbols, symbol_diagnostics = _extract_symbols(model, snapshot, capability_registry, build_options)
            diagnostics = [*region_diagnostics, *symbol_diagnostics]
            handle, temp_name = tempfile.mkstemp(prefix=f"{self.path.name}.", suffix=".tmp", dir=self.path.parent)
            os.close(handle)
            temp_path = Path(temp_name)
            try:
                conn = sqlite3.connect(temp_path)
                try:
                    conn.execute("PRAGMA journal_mode = DELETE")
                    conn.executescript(SCHEMA)
                    with conn:
                        _write_meta(conn, snapshot.rev_id)
                        _write_manifest(conn, model)
                        _write_regions(conn, regions, snapshot.rev_id)
                        _write_symbols(conn, symbols)
                        _write_diagnostics(conn, diagnostics)
                        _write_history(conn, history)
                finally:
                    conn.close()
                os.replace(temp_path, self.path)
            except (sqlite3.Error, OSError) as exc:
                raise IndexBuildError(f"index build failed: {exc}") from exc
            finally:
                temp_path.unlink(missing_ok=True)
        summary = BuildSummary(
            rev_id=snapshot.rev_id,
            resources=len(model.resources),
            regions=len(regions),
            symbols=len(symbols),
            diagnostics=len(diagnostics),
        )
        logger.info(
            "built index %s: %d resources, %d regions, %d symbols, %d diagnostics",
            self.path,
            summary.resources,
            summary.regions,
            summary.symbols,
            summary.diagnostics,
        )
        return summary

    def _read_history(self, *, exclude_rev: str) -> dict[str, list[tuple]]:
        history: dict[str, list[tuple]] = {"revision": [], "resource_revision": [], "region_snapshot": []}
        if not self.path.exists():
            return history
        try:
            with self._reader() as conn:
                history["revision"] = [
                    tuple(row) for row in conn.execute("SELECT rev_id, timestamp, seq FROM revision ORDER BY seq")
                ]
                history["resource_revision"] = [
                    tuple(row)
                    for row in conn.execute(
                        "SELECT resource_id, rev_id, reasons FROM resource_revision ORDER BY rev_id, resource_id"
                    )
                ]
                history["region_snapshot"] = [
                    tuple(row)
                    for row in conn.execute(
                        """
                        SELECT region_id, rev_id, content_hash, canonical_len
                        FROM region_snapshot
                        WHERE rev_id != ?
                        ORDER BY rev_id, region_id
                        """,
                        (exclude_rev,),
                    )
                ]
        except sqlite3.Error as exc:
            raise IndexBuildError(f"cannot carry history from {self.path}: {exc}") from exc
        return history

    def record_touch(
        self,
        touch_result: TouchResult,
        rev_id: str,
        *,
        timestamp: int | None = None,
        wait: bool = True,
    ) -> int:
        """Link every touched resource to ``rev_id``; returns rows written."""
        stamp = int(time.time()) if timestamp is None else int(timestamp)
        with self._writer(wait=wait):
            try:
                conn = sqlite3.connect(self.path)
                try:
                    conn.executescript(SCHEMA)
                    with conn:
                        exists = conn.execute("SELECT 1 FROM revision WHERE rev_id = ?", (rev_id,)).fetchone()
                        if exists is None:
                            (seq,) = conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM revision").fetchone()
                            conn.execute(
                                "INSERT INTO revision(rev_id, timestamp, seq) VALUES (?, ?, ?)",
                                (rev_id, stamp, seq),
                            )
                        written = 0
                        for entry in touch_result.touched:
                            reasons = ",".join(dict.fromkeys(reason.type for reason in entry.reasons))
                            cursor = conn.execute(
                                """
                                INSERT OR IGNORE INTO resource_revision(resource_id, rev_id, reasons)
                                VALUES (?, ?, ?)
                                """,
                                (entry.resource_id, rev_id, reasons),
                            )
                            written += cursor.rowcount
                finally:
                    conn.close()
            except sqlite3.Error as exc:
                raise IndexBuildError(f"cannot record touch for {rev_id}: {exc}") from exc
        logger.info("recorded %d resource links for %s", written, rev_id)
        return written

    # -- readers ---------------------------------------------------------

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        if not self.path.exists():
            raise IndexBuildError(f"index {self.path} has not been built")
        conn = sqlite3.connect(f"{self.path.resolve().as_uri()}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def map(
        self,
        *,
        tag: str | None = None,
        severity: str | None = None,
        path: str | None = None,
    ) -> dict[str, object]:
        with self._reader() as conn:
            return queries.map_resources(conn, tag=tag, severity=severity, path=path)

    def find(self, handle: str, *, regex: bool = False) -> list[dict[str, object]]:
        with self._reader() as conn:
            return queries.find(conn, handle, regex=regex)

    def walk(
        self,
        node: str,
        *,
        edge_types: Sequence[str] = (),
        depth: int = 1,
        reverse: bool = False,
    ) -> dict[str, object]:
        with self._reader() as conn:
            return queries.walk(conn, node, edge_types=edge_types, depth=depth, reverse=reverse)

    def show(self, resource_id: str) -> dict[str, object]:
        with self._reader() as conn:
            return queries.show(conn, resource_id)

    def history(
        self,
        resource_id: str,
        *,
        since: int | None = None,
        until: int | None = None,
        revisions: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, object]]:
        with self._reader() as conn:
            return queries.history(
                conn,
                resource_id,
                since=since,
                until=until,
                revisions=revisions,
                limit=limit,
            )

    def list_symbols(self, *, lang: str | None = None, path: str | None = None) -> list[dict[str, object]]:
        with self._reader() as conn:
            return queries.list_symbols(conn, lang=lang, path=path)

    def diagnostics(self) -> list[dict[str, object]]:
        with self._reader() as conn:
            return [
                {"file_path": row["file_path"], "kind": row["kind"], "detail": row["detail"]}
                for row in conn.execute("SELECT file_path, kind, detail FROM diagnostic ORDER BY file_path, kind, detail")
            ]


def _scan_regions(
    model: ManifestModel,
    snapshot: VcsSnapshot,
    options: PipelineOptions,
) -> tuple[list[Region], list[_Diagnostic]]:
    candidates = {
        path: content
        for path, content in snapshot.files.items()
        if b"BEGIN" in content or b"END" in content
    }
    report = scan_files(candidates, allow_nesting=options.allow_nesting)
    diagnostics = [
        _Diagnostic(error.file_path, type(error).__name__, str(error))
        for error in report.errors
    ]
    found = report.by_id()
    for binding in model.region_bindings:
        if binding.region_id not in found:
            diagnostics.append(
                _Diagnostic(
                    "",
                    "missing_region",
                    f"region {binding.region_id!r} bound by {binding.resource_id} not found",
                )
            )
    return list(report.regions), diagnostics


def _extract_symbols(
    model: ManifestModel,
    snapshot: VcsSnapshot,
    registry: CapabilityRegistry,
    options: PipelineOptions,
) -> tuple[list[Symbol], list[_Diagnostic]]:
    work: list[tuple[str, str, bytes]] = []
    paths = ordered_or_sorted(snapshot.files.keys(), source="graph.build.symbol_paths", policy=OrderPolicy.SORT)
    for path in paths:
        lang = detect_language(path)
        if lang is not None and registry.supports(lang):
            work.append((path, lang, snapshot.files[path]))
    queries_by_lang: Mapping[str, tuple[str, ...]] = {
        lang: model.active_queries(lang) for lang in registry.languages()
    }
    results: list[FileSymbols] = []
    executor = ThreadPoolExecutor(max_workers=options.workers, thread_name_prefix="thoth-index")
    try:
        jobs = [
            (
                path,
                lang,
                executor.submit(
                    extract_file_safe,
                    content,
                    file_path=path,
                    lang=lang,
                    registry=registry,
                    queries=queries_by_lang.get(lang, ()),
                ),
            )
            for path, lang, content in work
        ]
        for path, lang, job in jobs:
            deadline = Deadline.from_timeout_ms(options.timeout_ms)
            try:
                results.append(job.result(timeout=deadline.remaining_seconds()))
            except FutureTimeoutError:
                job.cancel()
                error = SymbolParseError(
                    f"structural capability exceeded {options.timeout_ms}ms",
                    file_path=path,
                    lang=lang,
                )
                results.append(FileSymbols(file_path=path, lang=lang, error=error))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    merged = merge_file_symbols(results)
    diagnostics = [
        _Diagnostic(path, type(error).__name__, str(error))
        for path, error in merged.errors
    ]
    return list(merged.symbols), diagnostics


def _dumps(values: Sequence[str]) -> str:
    return json.dumps(list(values))


def _write_meta(conn: sqlite3.Connection, rev_id: str) -> None:
    conn.executemany(
        "INSERT INTO meta(key, value) VALUES (?, ?)",
        [("schema_version", str(SCHEMA_VERSION)), ("rev_id", rev_id)],
    )


def _write_manifest(conn: sqlite3.Connection, model: ManifestModel) -> None:
    for resource in model.resources:
        conn.execute(
            """
            INSERT INTO resource(resource_id, description, severity, owners, tags, lease_mode, lease_ttl_seconds)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                resource.id,
                resource.description,
                resource.severity.value,
                _dumps(resource.owners),
                _dumps(resource.tags),
                None if resource.lease is None else resource.lease.mode,
                None if resource.lease is None else resource.lease.ttl_seconds,
            ),
        )
        conn.executemany(
            "INSERT OR IGNORE INTO binding_path(resource_id, glob) VALUES (?, ?)",
            [(binding.resource_id, binding.glob) for binding in resource.path_bindings],
        )
        conn.executemany(
            """
            INSERT INTO binding_symbol(resource_id, lang, kind, fqname, pattern, query)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (binding.resource_id, binding.lang, binding.kind, binding.fqname, binding.pattern, binding.query)
                for binding in resource.symbol_bindings
            ],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO binding_region(resource_id, region_id) VALUES (?, ?)",
            [(binding.resource_id, binding.region_id) for binding in resource.region_bindings],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO resource_invariant(resource_id, invariant_id) VALUES (?, ?)",
            [(resource.id, invariant_id) for invariant_id in resource.invariants],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO resource_adr(resource_id, adr_id) VALUES (?, ?)",
            [(resource.id, adr_id) for adr_id in resource.adrs],
        )
        conn.executemany(
            "INSERT OR IGNORE INTO resource_check(resource_id, check_id) VALUES (?, ?)",
            [(resource.id, check_id) for check_id in resource.checks],
        )
        derived = [
            *((resource.id, dep, "depends-on") for dep in resource.deps),
            *((resource.id, check_id, "requires-check") for check_id in resource.checks),
            *((resource.id, invariant_id, "upholds") for invariant_id in resource.invariants),
            *((resource.id, adr_id, "explained-by") for adr_id in resource.adrs),
            *((resource.id, binding.region_id, "binds-region") for binding in resource.region_bindings),
        ]
        conn.executemany("INSERT OR IGNORE INTO edge(src, dst, edge_type) VALUES (?, ?, ?)", derived)
    conn.executemany(
        "INSERT OR IGNORE INTO edge(src, dst, edge_type) VALUES (?, ?, ?)",
        [(edge.src, edge.dst, edge.edge_type) for edge in model.edges],
    )
    conn.executemany(
        "INSERT INTO invariant(invariant_id, statement, scope, doc_path) VALUES (?, ?, ?, ?)",
        [(item.id, item.statement, item.scope, item.doc_path) for item in model.invariants],
    )
    conn.executemany(
        "INSERT INTO adr(adr_id, capsule, capsule_path, full_path) VALUES (?, ?, ?, ?)",
        [(item.id, item.capsule, item.capsule_path, item.full_path) for item in model.adrs],
    )
    conn.executemany(
        "INSERT INTO check_def(check_id, cmd, timeout_seconds, cacheable) VALUES (?, ?, ?, ?)",
        [(item.id, item.cmd, item.timeout_seconds, int(item.cacheable)) for item in model.checks],
    )


def _write_regions(conn: sqlite3.Connection, regions: Sequence[Region], rev_id: str) -> None:
    conn.executemany(
        """
        INSERT INTO region(region_id, resource_id, file_path, start_line, end_line)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (region.region_id, region.resource_id, region.file_path, region.start_line, region.end_line)
            for region in regions
        ],
    )
    conn.executemany(
        """
        INSERT INTO region_snapshot(region_id, rev_id, content_hash, canonical_len)
        VALUES (?, ?, ?, ?)
        """,
        [(region.region_id, rev_id, region.content_hash, region.canonical_len) for region in regions],
    )


def _write_symbols(conn: sqlite3.Connection, symbols: Sequence[Symbol]) -> None:
    conn.executemany(
        """
        INSERT INTO symbol(fqname, query, lang, kind, file_path, start_line, end_line, signature_text, body_hash)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                symbol.fqname,
                symbol.query or "",
                symbol.lang,
                symbol.kind,
                symbol.file_path,
                symbol.start_line,
                symbol.end_line,
                symbol.signature_text,
                symbol.body_hash,
            )
            for symbol in symbols
        ],
    )


def _write_diagnostics(conn: sqlite3.Connection, diagnostics: Sequence[_Diagnostic]) -> None:
    ordered = ordered_or_sorted(
        diagnostics,
        source="graph.build.diagnostics",
        policy=OrderPolicy.SORT,
        key=lambda item: (item.file_path, item.kind, item.detail),
    )
    conn.executemany(
        "INSERT INTO diagnostic(file_path, kind, detail) VALUES (?, ?, ?)",
        [(item.file_path, item.kind, item.detail) for item in ordered],
    )


def _write_history(conn: sqlite3.Connection, history: Mapping[str, list[tuple]]) -> None:
    conn.executemany("INSERT INTO revision(rev_id, timestamp, seq) VALUES (?, ?, ?)", history["revision"])
    conn.executemany(
        "INSERT INTO resource_revision(resource_id, rev_id, reasons) VALUES (?, ?, ?)",
        history["resource_revision"],
    )
    conn.executemany(
        """
        INSERT OR IGNORE INTO region_snapshot(region_id, rev_id, content_hash, canonical_len)
        VALUES (?, ?, ?, ?)
        """,
        history["region_snapshot"],
    )
