"""Classify one logical diff into resource-level touch reasons.

Per-file work (region scans, symbol extraction) runs on a bounded worker
pool; everything after that is a sequential merge in diff path order, so the
result never depends on scheduling.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Iterable, Sequence
import logging

from thoth.config import ThothSettings
from thoth.deadline import Deadline
from thoth.exceptions import DuplicateRegionError, RegionError, SymbolParseError, ThothError
from thoth.manifest import LeaseSpec, ManifestModel, Severity
from thoth.matching import (
    PathMatch,
    RegionMatch,
    SymbolMatch,
    match_paths,
    match_regions,
    match_symbols,
)
from thoth.order_contract import OrderPolicy, ordered_or_sorted
from thoth.regions import Region, RegionChange, diff_regions, scan
from thoth.symbols import default_registry
from thoth.symbols.capabilities import CapabilityRegistry
from thoth.symbols.differ import RenamePolicy, SymbolChange, diff as diff_symbols
from thoth.symbols.extractor import FileSymbols, extract_file_safe, merge_file_symbols
from thoth.vcs import Diff, FileChange

logger = logging.getLogger(__name__)

REASON_ORDER = ("path", "region", "symbol")


@dataclass(frozen=True)
class TouchReason:
    type: str
    value: str
    change: str | None = None
    detail: str = ""
    path: str = ""
    previous: str | None = None

    def as_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"type": self.type, "value": self.value}
        if self.change is not None:
            payload["change"] = self.change
        if self.detail:
            payload["detail"] = self.detail
        if self.path and self.type != "path":
            payload["path"] = self.path
        if self.previous is not None:
            payload["previous"] = self.previous
        return payload


@dataclass(frozen=True)
class TouchedResource:
    resource_id: str
    severity: Severity
    reasons: tuple[TouchReason, ...]
    checks: tuple[str, ...] = ()
    lease: LeaseSpec | None = None

    def as_payload(self) -> dict[str, object]:
        return {
            "resource_id": self.resource_id,
            "severity": self.severity.value,
            "reasons": [reason.as_payload() for reason in self.reasons],
            "checks": list(self.checks),
            "lease": None
            if self.lease is None
            else {"mode": self.lease.mode, "ttl_seconds": self.lease.ttl_seconds},
        }


@dataclass(frozen=True)
class UnknownPath:
    path: str
    reason: str
    detail: str = ""

    @property
    def degraded(self) -> bool:
        return self.reason != "unbound"

    def as_payload(self) -> dict[str, object]:
        return {"path": self.path, "reason": self.reason, "detail": self.detail}


@dataclass(frozen=True)
class TouchResult:
    touched: tuple[TouchedResource, ...] = ()
    unknown: tuple[UnknownPath, ...] = ()

    @property
    def complete(self) -> bool:
        return not any(entry.degraded for entry in self.unknown)

    def resource_ids(self) -> list[str]:
        return [entry.resource_id for entry in self.touched]

    def as_payload(
        self,
        *,
        vcs: dict[str, object] | None = None,
        inputs: dict[str, object] | None = None,
    ) -> dict[str, object]:
        return {
            "vcs": dict(vcs or {}),
            "inputs": dict(inputs or {}),
            "touched": [entry.as_payload() for entry in self.touched],
            "unknown": [entry.as_payload() for entry in self.unknown],
            "complete": self.complete,
        }


@dataclass(frozen=True)
class PipelineOptions:
    allow_nesting: bool = False
    rename_policy: RenamePolicy = field(default_factory=RenamePolicy)
    timeout_ms: int = 5000
    workers: int = 4

    @classmethod
    def from_settings(cls, settings: ThothSettings) -> "PipelineOptions":
        return cls(
            allow_nesting=settings.allow_nesting,
            rename_policy=RenamePolicy(threshold=settings.rename_threshold),
            timeout_ms=settings.timeout_ms,
            workers=settings.workers,
        )


@dataclass
class _FileFacts:
    change: FileChange
    old_regions: list[Region] = field(default_factory=list)
    new_regions: list[Region] = field(default_factory=list)
    region_error: RegionError | None = None
    old_symbols: FileSymbols | None = None
    new_symbols: FileSymbols | None = None
    symbol_error: ThothError | None = None


class ClassificationPipeline:
    def __init__(
        self,
        model: ManifestModel,
        *,
        registry: CapabilityRegistry | None = None,
        options: PipelineOptions | None = None,
    ) -> None:
        self.model = model
        self.registry = registry or default_registry()
        self.options = options or PipelineOptions()

    def classify(self, diff: Diff) -> TouchResult:
        facts = [_FileFacts(change=change) for change in diff.files]
        executor = ThreadPoolExecutor(max_workers=self.options.workers, thread_name_prefix="thoth-classify")
        try:
            # each worker only mutates its own _FileFacts
            list(executor.map(self._scan_regions, facts))
            self._enforce_tree_region_ids(facts)
            self._extract_symbols(executor, facts)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        path_matches = match_paths(diff.paths, self.model.path_bindings)
        region_changes: list[RegionChange] = []
        symbol_changes: list[SymbolChange] = []
        for item in facts:
            if item.region_error is None:
                region_changes.extend(diff_regions(item.old_regions, item.new_regions))
            if item.symbol_error is None and item.old_symbols is not None and item.new_symbols is not None:
                table = diff_symbols(
                    item.old_symbols.symbols,
                    item.new_symbols.symbols,
                    policy=self.options.rename_policy,
                )
                symbol_changes.extend(table.changes())
        region_matches = match_regions(region_changes, self.model.region_bindings)
        symbol_matches = match_symbols(symbol_changes, self.model.symbol_bindings)
        touched = self._merge(path_matches, region_matches, symbol_matches)
        unknown = self._unknown(facts, path_matches, region_matches, symbol_matches)
        for entry in unknown:
            if entry.degraded:
                logger.warning("degraded %s: %s (%s)", entry.path, entry.reason, entry.detail)
        return TouchResult(touched=tuple(touched), unknown=tuple(unknown))

    def _scan_regions(self, item: _FileFacts) -> None:
        try:
            if item.change.old is not None:
                item.old_regions = scan(
                    item.change.old,
                    file_path=item.change.path,
                    allow_nesting=self.options.allow_nesting,
                )
            if item.change.new is not None:
                item.new_regions = scan(
                    item.change.new,
                    file_path=item.change.path,
                    allow_nesting=self.options.allow_nesting,
                )
        except RegionError as exc:
            item.region_error = exc
            item.old_regions = []
            item.new_regions = []

    def _enforce_tree_region_ids(self, facts: Sequence[_FileFacts]) -> None:
        for side in ("old_regions", "new_regions"):
            owners: dict[str, str] = {}
            for item in facts:
                if item.region_error is not None:
                    continue
                regions: list[Region] = getattr(item, side)
                clash = next((region for region in regions if region.region_id in owners), None)
                if clash is not None:
                    item.region_error = DuplicateRegionError(
                        f"region id {clash.region_id!r} also declared in {owners[clash.region_id]}",
                        file_path=item.change.path,
                        line=clash.start_line,
                        region_id=clash.region_id,
                    )
                    item.old_regions = []
                    item.new_regions = []
                    continue
                for region in regions:
                    owners[region.region_id] = item.change.path

    def _bound_languages(self) -> set[str]:
        return {binding.lang for binding in self.model.symbol_bindings}

    def _extract_symbols(self, executor: ThreadPoolExecutor, facts: Sequence[_FileFacts]) -> None:
        languages = self._bound_languages()
        jobs: list[tuple[_FileFacts, str, Future[FileSymbols] | None, Future[FileSymbols] | None]] = []
        for item in facts:
            lang = item.change.lang
            if lang is None or lang not in languages:
                continue
            if not self.registry.supports(lang):
                item.symbol_error = SymbolParseError(
                    f"no structural capability for language {lang!r}",
                    file_path=item.change.path,
                    lang=lang,
                )
                continue
            queries = self.model.active_queries(lang)
            old_job = self._submit(executor, item.change.old, item.change.path, lang, queries)
            new_job = self._submit(executor, item.change.new, item.change.path, lang, queries)
            jobs.append((item, lang, old_job, new_job))
        for item, lang, old_job, new_job in jobs:
            item.old_symbols = self._collect(old_job, item.change.path, lang)
            item.new_symbols = self._collect(new_job, item.change.path, lang)
        by_path = {item.change.path: item for item, *_ in jobs}
        for side in ("old_symbols", "new_symbols"):
            snapshot = merge_file_symbols(getattr(item, side) for item in by_path.values())
            for path, error in snapshot.errors:
                if by_path[path].symbol_error is None:
                    by_path[path].symbol_error = error

    def _submit(
        self,
        executor: ThreadPoolExecutor,
        content: bytes | None,
        path: str,
        lang: str,
        queries: Sequence[str],
    ) -> Future[FileSymbols] | None:
        if content is None:
            return None
        return executor.submit(
            extract_file_safe,
            content,
            file_path=path,
            lang=lang,
            registry=self.registry,
            queries=queries,
        )

    def _collect(self, job: Future[FileSymbols] | None, path: str, lang: str) -> FileSymbols:
        if job is None:
            return FileSymbols(file_path=path, lang=lang)
        deadline = Deadline.from_timeout_ms(self.options.timeout_ms)
        try:
            return job.result(timeout=deadline.remaining_seconds())
        except FutureTimeoutError:
            job.cancel()
            return FileSymbols(
                file_path=path,
                lang=lang,
                error=SymbolParseError(
                    f"structural capability exceeded {self.options.timeout_ms}ms",
                    file_path=path,
                    lang=lang,
                ),
            )

    def _merge(
        self,
        path_matches: Iterable[PathMatch],
        region_matches: Iterable[RegionMatch],
        symbol_matches: Iterable[SymbolMatch],
    ) -> list[TouchedResource]:
        reasons: dict[str, dict[str, list[TouchReason]]] = {}

        def _add(resource_id: str, reason: TouchReason) -> None:
            bucket = reasons.setdefault(resource_id, {kind: [] for kind in REASON_ORDER})[reason.type]
            if reason not in bucket:
                bucket.append(reason)

        for match in path_matches:
            _add(match.resource_id, TouchReason(type="path", value=match.path, path=match.path))
        for match in region_matches:
            _add(
                match.resource_id,
                TouchReason(type="region", value=match.region_id, change=match.change, path=match.path),
            )
        for match in symbol_matches:
            _add(
                match.resource_id,
                TouchReason(
                    type="symbol",
                    value=match.fqname,
                    change=match.change,
                    detail=match.detail,
                    path=match.path,
                    previous=match.old_fqname,
                ),
            )
        touched: list[TouchedResource] = []
        for resource_id in ordered_or_sorted(reasons, source="pipeline.touched", policy=OrderPolicy.SORT):
            resource = self.model.resource(resource_id)
            buckets = reasons[resource_id]
            touched.append(
                TouchedResource(
                    resource_id=resource_id,
                    severity=resource.severity,
                    reasons=tuple(reason for kind in REASON_ORDER for reason in buckets[kind]),
                    checks=resource.checks,
                    lease=resource.lease,
                )
            )
        return touched

    def _unknown(
        self,
        facts: Sequence[_FileFacts],
        path_matches: Sequence[PathMatch],
        region_matches: Sequence[RegionMatch],
        symbol_matches: Sequence[SymbolMatch],
    ) -> list[UnknownPath]:
        covered = {match.path for match in path_matches}
        covered.update(match.path for match in region_matches)
        covered.update(match.path for match in symbol_matches)
        unknown: list[UnknownPath] = []
        for item in facts:
            path = item.change.path
            if item.region_error is not None:
                unknown.append(UnknownPath(path, "region_error", str(item.region_error)))
            if item.symbol_error is not None:
                reason = "parse_failure" if isinstance(item.symbol_error, SymbolParseError) else "resolution_failure"
                unknown.append(UnknownPath(path, reason, str(item.symbol_error)))
            if path not in covered:
                unknown.append(UnknownPath(path, "unbound", "no binding claims this path"))
        return unknown


def classify(
    diff: Diff,
    model: ManifestModel,
    *,
    registry: CapabilityRegistry | None = None,
    options: PipelineOptions | None = None,
) -> TouchResult:
    return ClassificationPipeline(model, registry=registry, options=options).classify(diff)
