"""Validated, immutable governance declarations.

A model is always rebuilt wholesale from raw configuration: ``load`` either
returns a complete ``ManifestModel`` or raises a ``ManifestValidationError``
that carries every violation it found.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Sequence
import re
import tomllib

from thoth.config import normalize_name_list
from thoth.exceptions import (
    ManifestIssue,
    ManifestValidationError,
    UnknownCheckError,
    UnknownResourceError,
)
from thoth.globs import globs_intersect
from thoth.order_contract import OrderPolicy, ordered_or_sorted


class Severity(str, Enum):
    ADVISORY = "advisory"
    GATED = "gated"
    SERIALIZED = "serialized"

    @property
    def rank(self) -> int:
        # serialized sorts first
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.SERIALIZED: 0,
    Severity.GATED: 1,
    Severity.ADVISORY: 2,
}

LEASE_MODES = ("exclusive", "shared")
SYMBOL_DISCRIMINATORS = ("fqname", "pattern", "query")


@dataclass(frozen=True)
class LeaseSpec:
    mode: str
    ttl_seconds: int | None = None


@dataclass(frozen=True)
class PathBinding:
    resource_id: str
    glob: str


@dataclass(frozen=True)
class SymbolBinding:
    resource_id: str
    lang: str
    kind: str | None = None
    fqname: str | None = None
    pattern: str | None = None
    query: str | None = None


@dataclass(frozen=True)
class RegionBinding:
    resource_id: str
    region_id: str


@dataclass(frozen=True)
class Resource:
    id: str
    description: str = ""
    severity: Severity = Severity.ADVISORY
    owners: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    lease: LeaseSpec | None = None
    deps: tuple[str, ...] = ()
    checks: tuple[str, ...] = ()
    invariants: tuple[str, ...] = ()
    adrs: tuple[str, ...] = ()
    path_bindings: tuple[PathBinding, ...] = ()
    symbol_bindings: tuple[SymbolBinding, ...] = ()
    region_bindings: tuple[RegionBinding, ...] = ()


@dataclass(frozen=True)
class Invariant:
    id: str
    statement: str
    scope: str = ""
    verification: tuple[str, ...] = ()
    doc_path: str = ""


@dataclass(frozen=True)
class AdrCapsule:
    id: str
    capsule: str = ""
    capsule_path: str = ""
    full_path: str = ""


@dataclass(frozen=True)
class Check:
    id: str
    cmd: str
    timeout_seconds: int = 0
    cacheable: bool = False


@dataclass(frozen=True)
class ManifestEdge:
    src: str
    dst: str
    edge_type: str


@dataclass(frozen=True)
class ManifestModel:
    resources: tuple[Resource, ...] = ()
    invariants: tuple[Invariant, ...] = ()
    adrs: tuple[AdrCapsule, ...] = ()
    checks: tuple[Check, ...] = ()
    edges: tuple[ManifestEdge, ...] = ()
    _resource_index: Mapping[str, Resource] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )
    _check_index: Mapping[str, Check] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    def resource(self, resource_id: str) -> Resource:
        try:
            return self._resource_index[resource_id]
        except KeyError:
            raise UnknownResourceError.for_id(resource_id) from None

    def has_resource(self, resource_id: str) -> bool:
        return resource_id in self._resource_index

    def check(self, check_id: str) -> Check:
        try:
            return self._check_index[check_id]
        except KeyError:
            raise UnknownCheckError(
                [ManifestIssue("unknown_check", f"unknown check {check_id!r}", check_id)]
            ) from None

    def resources_by_tag(self, tag: str) -> list[Resource]:
        return [resource for resource in self.resources if tag in resource.tags]

    def resources_by_severity(self, severity: Severity | str) -> list[Resource]:
        wanted = Severity(severity)
        return [resource for resource in self.resources if resource.severity is wanted]

    def resources_by_path(self, path_or_glob: str) -> list[Resource]:
        return [
            resource
            for resource in self.resources
            if any(globs_intersect(binding.glob, path_or_glob) for binding in resource.path_bindings)
        ]

    @property
    def path_bindings(self) -> tuple[PathBinding, ...]:
        return tuple(binding for resource in self.resources for binding in resource.path_bindings)

    @property
    def symbol_bindings(self) -> tuple[SymbolBinding, ...]:
        return tuple(binding for resource in self.resources for binding in resource.symbol_bindings)

    @property
    def region_bindings(self) -> tuple[RegionBinding, ...]:
        return tuple(binding for resource in self.resources for binding in resource.region_bindings)

    def active_queries(self, lang: str) -> tuple[str, ...]:
        """Distinct custom queries bound for ``lang``, in sorted order."""
        queries = dict.fromkeys(
            binding.query
            for binding in self.symbol_bindings
            if binding.lang == lang and binding.query is not None
        )
        return tuple(ordered_or_sorted(list(queries), source="manifest.active_queries", policy=OrderPolicy.SORT))


class _Collector:
    def __init__(self) -> None:
        self.issues: list[ManifestIssue] = []

    def add(self, code: str, message: str, location: str = "") -> None:
        self.issues.append(ManifestIssue(code=code, message=message, location=location))


def load(raw: Mapping[str, object]) -> ManifestModel:
    """Validate raw manifest data and return an immutable model.

    Every violation is collected before raising, so callers see the whole
    list at once. No partial model is ever returned.
    """
    issues = _Collector()
    if not isinstance(raw, Mapping):
        issues.add("shape", "manifest must be a table")
        _raise(issues)
    checks = _load_checks(raw.get("checks"), issues)
    invariants = _load_invariants(raw.get("invariants"), issues)
    adrs = _load_adrs(raw.get("adrs"), issues)
    resources = _load_resources(raw.get("resources"), issues)

    resource_ids = {resource.id for resource in resources}
    check_ids = {check.id for check in checks}
    invariant_ids = {invariant.id for invariant in invariants}
    adr_ids = {adr.id for adr in adrs}
    seen_regions: dict[str, str] = {}
    for resource in resources:
        where = f"resources.{resource.id}"
        for dep in resource.deps:
            if dep not in resource_ids:
                issues.add("unknown_resource", f"{resource.id} depends on unknown resource {dep!r}", f"{where}.deps")
        for check_id in resource.checks:
            if check_id not in check_ids:
                issues.add("unknown_check", f"{resource.id} references unknown check {check_id!r}", f"{where}.checks")
        for invariant_id in resource.invariants:
            if invariant_id not in invariant_ids:
                issues.add("unknown_invariant", f"{resource.id} references unknown invariant {invariant_id!r}", f"{where}.invariants")
        for adr_id in resource.adrs:
            if adr_id not in adr_ids:
                issues.add("unknown_adr", f"{resource.id} references unknown ADR {adr_id!r}", f"{where}.adrs")
        for binding in resource.region_bindings:
            owner = seen_regions.get(binding.region_id)
            if owner is not None:
                issues.add(
                    "duplicate_region",
                    f"region {binding.region_id!r} bound by both {owner} and {resource.id}",
                    f"{where}.bindings.regions",
                )
            else:
                seen_regions[binding.region_id] = resource.id

    known_nodes = resource_ids | check_ids | invariant_ids | adr_ids
    edges = _load_edges(raw.get("edges"), issues)
    for index, edge in enumerate(edges):
        for end in (edge.src, edge.dst):
            if end not in known_nodes:
                issues.add("unknown_resource", f"edge references unknown node {end!r}", f"edges[{index}]")

    if issues.issues:
        _raise(issues)

    ordered_resources = _sorted_by_id(resources, "manifest.resources")
    ordered_checks = _sorted_by_id(checks, "manifest.checks")
    return ManifestModel(
        resources=ordered_resources,
        invariants=_sorted_by_id(invariants, "manifest.invariants"),
        adrs=_sorted_by_id(adrs, "manifest.adrs"),
        checks=ordered_checks,
        edges=tuple(
            ordered_or_sorted(
                list(dict.fromkeys(edges)),
                source="manifest.edges",
                policy=OrderPolicy.SORT,
                key=lambda item: (item.src, item.edge_type, item.dst),
            )
        ),
        _resource_index=MappingProxyType({resource.id: resource for resource in ordered_resources}),
        _check_index=MappingProxyType({check.id: check for check in ordered_checks}),
    )


def _sorted_by_id(items: Sequence[Any], source: str) -> tuple[Any, ...]:
    return tuple(ordered_or_sorted(items, source=source, policy=OrderPolicy.SORT, key=lambda item: item.id))


def load_manifest_file(path: Path) -> ManifestModel:
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ManifestValidationError(
            [ManifestIssue("io", f"cannot read manifest: {exc}", str(path))]
        ) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ManifestValidationError(
            [ManifestIssue("parse", f"invalid TOML: {exc}", str(path))]
        ) from exc
    return load(raw)


def _raise(issues: _Collector) -> None:
    codes = {issue.code for issue in issues.issues}
    if codes == {"unknown_check"}:
        raise UnknownCheckError(issues.issues)
    if codes == {"unknown_resource"}:
        raise UnknownResourceError(issues.issues)
    raise ManifestValidationError(issues.issues)


def _entries(value: object, name: str, issues: _Collector) -> list[Mapping[str, object]]:
    if value is None:
        return []
    if not isinstance(value, list):
        issues.add("shape", f"{name} must be a list of tables", name)
        return []
    entries: list[Mapping[str, object]] = []
    for index, item in enumerate(value):
        if isinstance(item, Mapping):
            entries.append(item)
        else:
            issues.add("shape", f"{name}[{index}] must be a table", f"{name}[{index}]")
    return entries


def _text(entry: Mapping[str, object], key: str) -> str:
    value = entry.get(key)
    return value.strip() if isinstance(value, str) else ""


def _optional_text(entry: Mapping[str, object], key: str) -> str | None:
    value = entry.get(key)
    if value is None:
        return None
    return str(value)


def _unique_ids(entries: list[Mapping[str, object]], name: str, issues: _Collector) -> list[tuple[str, Mapping[str, object]]]:
    seen: set[str] = set()
    result: list[tuple[str, Mapping[str, object]]] = []
    for index, entry in enumerate(entries):
        entry_id = _text(entry, "id")
        if not entry_id:
            issues.add("missing_id", f"{name}[{index}] has no id", f"{name}[{index}]")
            continue
        if entry_id in seen:
            issues.add("duplicate_id", f"duplicate {name} id {entry_id!r}", f"{name}.{entry_id}")
            continue
        seen.add(entry_id)
        result.append((entry_id, entry))
    return result


def _load_checks(value: object, issues: _Collector) -> list[Check]:
    checks: list[Check] = []
    for check_id, entry in _unique_ids(_entries(value, "checks", issues), "checks", issues):
        cmd = entry.get("cmd")
        if isinstance(cmd, list):
            cmd = " ".join(str(part) for part in cmd)
        if not isinstance(cmd, str) or not cmd.strip():
            issues.add("missing_cmd", f"check {check_id!r} has no cmd", f"checks.{check_id}")
            continue
        timeout = entry.get("timeout_seconds", 0)
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0:
            issues.add("invalid_timeout", f"check {check_id!r} timeout must be a non-negative integer", f"checks.{check_id}")
            continue
        checks.append(
            Check(
                id=check_id,
                cmd=cmd.strip(),
                timeout_seconds=timeout,
                cacheable=bool(entry.get("cacheable", False)),
            )
        )
    return checks


def _load_invariants(value: object, issues: _Collector) -> list[Invariant]:
    invariants: list[Invariant] = []
    for invariant_id, entry in _unique_ids(_entries(value, "invariants", issues), "invariants", issues):
        statement = _text(entry, "statement")
        if not statement:
            issues.add("missing_statement", f"invariant {invariant_id!r} has no statement", f"invariants.{invariant_id}")
            continue
        invariants.append(
            Invariant(
                id=invariant_id,
                statement=statement,
                scope=_text(entry, "scope"),
                verification=tuple(normalize_name_list(entry.get("verification"))),  # type: ignore[arg-type]
                doc_path=_text(entry, "doc_path"),
            )
        )
    return invariants


def _load_adrs(value: object, issues: _Collector) -> list[AdrCapsule]:
    return [
        AdrCapsule(
            id=adr_id,
            capsule=_text(entry, "capsule"),
            capsule_path=_text(entry, "capsule_path"),
            full_path=_text(entry, "full_path"),
        )
        for adr_id, entry in _unique_ids(_entries(value, "adrs", issues), "adrs", issues)
    ]


def _load_edges(value: object, issues: _Collector) -> list[ManifestEdge]:
    edges: list[ManifestEdge] = []
    for index, entry in enumerate(_entries(value, "edges", issues)):
        src = _text(entry, "src")
        dst = _text(entry, "dst")
        edge_type = _text(entry, "type") or _text(entry, "edge_type")
        if not (src and dst and edge_type):
            issues.add("invalid_edge", "edges need src, dst and type", f"edges[{index}]")
            continue
        edges.append(ManifestEdge(src=src, dst=dst, edge_type=edge_type))
    return edges


def _load_resources(value: object, issues: _Collector) -> list[Resource]:
    resources: list[Resource] = []
    for resource_id, entry in _unique_ids(_entries(value, "resources", issues), "resources", issues):
        where = f"resources.{resource_id}"
        raw_severity = entry.get("severity", Severity.ADVISORY.value)
        try:
            severity = Severity(str(raw_severity).strip().lower())
        except ValueError:
            issues.add("invalid_severity", f"{resource_id} has invalid severity {raw_severity!r}", where)
            severity = Severity.ADVISORY
        bindings = entry.get("bindings", {})
        if not isinstance(bindings, Mapping):
            issues.add("shape", f"{resource_id} bindings must be a table", f"{where}.bindings")
            bindings = {}
        resources.append(
            Resource(
                id=resource_id,
                description=_text(entry, "description"),
                severity=severity,
                owners=tuple(normalize_name_list(entry.get("owners"))),  # type: ignore[arg-type]
                tags=tuple(normalize_name_list(entry.get("tags"))),  # type: ignore[arg-type]
                lease=_load_lease(resource_id, entry.get("lease"), issues),
                deps=tuple(normalize_name_list(entry.get("deps"))),  # type: ignore[arg-type]
                checks=tuple(normalize_name_list(entry.get("checks"))),  # type: ignore[arg-type]
                invariants=tuple(normalize_name_list(entry.get("invariants"))),  # type: ignore[arg-type]
                adrs=tuple(normalize_name_list(entry.get("adrs"))),  # type: ignore[arg-type]
                path_bindings=_load_path_bindings(resource_id, bindings.get("paths"), issues),
                symbol_bindings=_load_symbol_bindings(resource_id, bindings.get("symbols"), issues),
                region_bindings=_load_region_bindings(resource_id, bindings.get("regions"), issues),
            )
        )
    return resources


def _load_lease(resource_id: str, value: object, issues: _Collector) -> LeaseSpec | None:
    if value is None:
        return None
    where = f"resources.{resource_id}.lease"
    if not isinstance(value, Mapping):
        issues.add("shape", f"{resource_id} lease must be a table", where)
        return None
    mode = _text(value, "mode").lower() or "shared"
    if mode not in LEASE_MODES:
        issues.add("invalid_lease", f"{resource_id} lease mode {mode!r} is not one of {LEASE_MODES}", where)
        return None
    ttl = value.get("ttl_seconds")
    if ttl is not None and (isinstance(ttl, bool) or not isinstance(ttl, int)):
        issues.add("invalid_lease", f"{resource_id} lease ttl_seconds must be an integer", where)
        return None
    if mode == "exclusive" and (ttl is None or ttl <= 0):
        issues.add("invalid_lease", f"{resource_id} exclusive lease needs a positive ttl_seconds", where)
        return None
    return LeaseSpec(mode=mode, ttl_seconds=ttl)


def _load_path_bindings(resource_id: str, value: object, issues: _Collector) -> tuple[PathBinding, ...]:
    globs = normalize_name_list(value)  # type: ignore[arg-type]
    if value is not None and not globs:
        issues.add("shape", f"{resource_id} path bindings must be glob strings", f"resources.{resource_id}.bindings.paths")
    return tuple(PathBinding(resource_id=resource_id, glob=glob) for glob in dict.fromkeys(globs))


def _load_symbol_bindings(resource_id: str, value: object, issues: _Collector) -> tuple[SymbolBinding, ...]:
    where = f"resources.{resource_id}.bindings.symbols"
    bindings: list[SymbolBinding] = []
    for index, entry in enumerate(_entries(value, where, issues)):
        location = f"{where}[{index}]"
        lang = _text(entry, "lang").lower()
        if not lang:
            issues.add("missing_lang", f"{resource_id} symbol binding has no lang", location)
            continue
        present = [name for name in SYMBOL_DISCRIMINATORS if entry.get(name) is not None]
        if len(present) != 1:
            issues.add(
                "symbol_discriminator",
                f"{resource_id} symbol binding needs exactly one of fqname/pattern/query, got {present or 'none'}",
                location,
            )
            continue
        pattern = _optional_text(entry, "pattern")
        if pattern is not None:
            try:
                re.compile(pattern)
            except re.error as exc:
                issues.add("invalid_pattern", f"{resource_id} symbol pattern {pattern!r}: {exc}", location)
                continue
        kind = _text(entry, "kind") or None
        bindings.append(
            SymbolBinding(
                resource_id=resource_id,
                lang=lang,
                kind=kind,
                fqname=_optional_text(entry, "fqname"),
                pattern=pattern,
                query=_optional_text(entry, "query"),
            )
        )
    return tuple(bindings)


def _load_region_bindings(resource_id: str, value: object, issues: _Collector) -> tuple[RegionBinding, ...]:
    region_ids = normalize_name_list(value)  # type: ignore[arg-type]
    seen: set[str] = set()
    bindings: list[RegionBinding] = []
    for region_id in region_ids:
        if region_id in seen:
            issues.add(
                "duplicate_region",
                f"region {region_id!r} bound twice by {resource_id}",
                f"resources.{resource_id}.bindings.regions",
            )
            continue
        seen.add(region_id)
        bindings.append(RegionBinding(resource_id=resource_id, region_id=region_id))
    return tuple(bindings)
