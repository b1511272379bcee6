"""Tagged begin/end region scanning and canonical content hashing.

Markers live in comments of any style::

    # BEGIN resource=wal_subsystem id=THOTH-0192
    ...
    # END id=THOTH-0192

Only the lines strictly between the markers are hashed, after line-ending
normalization and trailing-whitespace trimming.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping
import hashlib
import re

from thoth.exceptions import (
    DuplicateRegionError,
    NestingError,
    RegionError,
    UnmatchedEndError,
    UnterminatedRegionError,
)
from thoth.order_contract import OrderPolicy, ordered_or_sorted

_BEGIN_RE = re.compile(r"\bBEGIN\s+resource=(?P<resource>[\w.:/-]+)\s+id=(?P<id>[\w.:-]+)")
_END_RE = re.compile(r"\bEND\s+id=(?P<id>[\w.:-]+)")
_LINE_SPLIT_RE = re.compile(r"\r\n|\r|\n")


class ScanState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class Region:
    region_id: str
    resource_id: str
    file_path: str
    start_line: int
    end_line: int
    content_hash: str
    canonical_len: int


@dataclass(frozen=True)
class RegionChange:
    region_id: str
    file_path: str
    change: str
    old: Region | None
    new: Region | None


@dataclass(frozen=True)
class RegionScanReport:
    regions: tuple[Region, ...]
    errors: tuple[RegionError, ...]

    def by_id(self) -> dict[str, Region]:
        return {region.region_id: region for region in self.regions}


@dataclass
class _OpenRegion:
    region_id: str
    resource_id: str
    start_line: int
    body: list[str]


def decode_content(content: str | bytes) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return content


def split_lines(text: str) -> list[str]:
    lines = _LINE_SPLIT_RE.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def canonicalize(lines: Iterable[str]) -> bytes:
    """Canonical byte form used for hashing region and symbol bodies."""
    return "".join(f"{line.rstrip()}\n" for line in lines).encode("utf-8")


def canonical_hash(lines: Iterable[str]) -> tuple[str, int]:
    canonical = canonicalize(lines)
    return hashlib.sha256(canonical).hexdigest(), len(canonical)


def scan(
    content: str | bytes,
    *,
    file_path: str = "",
    allow_nesting: bool = False,
    seen_ids: set[str] | None = None,
) -> list[Region]:
    """Extract regions from one file in BEGIN-line order.

    ``seen_ids`` lets callers enforce id uniqueness across files; ids from this
    file are added to it only when the whole file scans cleanly.
    """
    prior = seen_ids if seen_ids is not None else set()
    local_ids: set[str] = set()
    stack: list[_OpenRegion] = []
    state = ScanState.CLOSED
    regions: list[Region] = []
    for line_no, line in enumerate(split_lines(decode_content(content)), start=1):
        begin = _BEGIN_RE.search(line)
        if begin is not None:
            region_id = begin.group("id")
            if region_id in local_ids or region_id in prior:
                raise DuplicateRegionError(
                    f"duplicate region id {region_id!r}",
                    file_path=file_path,
                    line=line_no,
                    region_id=region_id,
                )
            if state is ScanState.OPEN and not allow_nesting:
                raise NestingError(
                    f"region {region_id!r} opened inside {stack[-1].region_id!r}",
                    file_path=file_path,
                    line=line_no,
                    region_id=region_id,
                )
            for open_region in stack:
                open_region.body.append(line)
            local_ids.add(region_id)
            stack.append(_OpenRegion(region_id, begin.group("resource"), line_no, []))
            state = ScanState.OPEN
            continue
        end = _END_RE.search(line)
        if end is not None:
            region_id = end.group("id")
            if state is ScanState.CLOSED:
                raise UnmatchedEndError(
                    f"END for {region_id!r} without an open region",
                    file_path=file_path,
                    line=line_no,
                    region_id=region_id,
                )
            current = stack[-1]
            if current.region_id != region_id:
                raise NestingError(
                    f"END for {region_id!r} while {current.region_id!r} is innermost",
                    file_path=file_path,
                    line=line_no,
                    region_id=region_id,
                )
            stack.pop()
            for open_region in stack:
                open_region.body.append(line)
            digest, length = canonical_hash(current.body)
            regions.append(
                Region(
                    region_id=current.region_id,
                    resource_id=current.resource_id,
                    file_path=file_path,
                    start_line=current.start_line,
                    end_line=line_no,
                    content_hash=digest,
                    canonical_len=length,
                )
            )
            state = ScanState.OPEN if stack else ScanState.CLOSED
            continue
        for open_region in stack:
            open_region.body.append(line)
    if state is ScanState.OPEN:
        current = stack[-1]
        raise UnterminatedRegionError(
            f"region {current.region_id!r} is never closed",
            file_path=file_path,
            line=current.start_line,
            region_id=current.region_id,
        )
    if seen_ids is not None:
        seen_ids.update(local_ids)
    return ordered_or_sorted(
        regions,
        source="regions.scan",
        policy=OrderPolicy.SORT,
        key=lambda region: region.start_line,
    )


def scan_files(
    files: Mapping[str, str | bytes],
    *,
    allow_nesting: bool = False,
) -> RegionScanReport:
    """Scan many files with tree-wide id uniqueness.

    Files are visited in path order; a file whose region set is invalid
    contributes an error and no regions, and never stops the scan.
    """
    seen: set[str] = set()
    regions: list[Region] = []
    errors: list[RegionError] = []
    for path in ordered_or_sorted(files.keys(), source="regions.scan_files.paths", policy=OrderPolicy.SORT):
        try:
            regions.extend(scan(files[path], file_path=path, allow_nesting=allow_nesting, seen_ids=seen))
        except RegionError as exc:
            errors.append(exc)
    return RegionScanReport(regions=tuple(regions), errors=tuple(errors))


def diff_regions(old: Iterable[Region], new: Iterable[Region]) -> list[RegionChange]:
    """Regions whose canonical hash differs, plus added and removed ones.

    Order follows the new revision's positions, then removed regions in
    their old positions.
    """
    old_by_id = {region.region_id: region for region in old}
    new_list = list(new)
    new_ids = {region.region_id for region in new_list}
    changes: list[RegionChange] = []
    for region in new_list:
        previous = old_by_id.get(region.region_id)
        if previous is None:
            changes.append(RegionChange(region.region_id, region.file_path, "added", None, region))
        elif previous.content_hash != region.content_hash:
            changes.append(RegionChange(region.region_id, region.file_path, "modified", previous, region))
    for region in old_by_id.values():
        if region.region_id not in new_ids:
            changes.append(RegionChange(region.region_id, region.file_path, "removed", region, None))
    return changes
