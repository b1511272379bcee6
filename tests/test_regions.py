from __future__ import annotations

import pytest

from thoth.exceptions import (
    DuplicateRegionError,
    NestingError,
    UnmatchedEndError,
    UnterminatedRegionError,
)
from thoth.regions import canonical_hash, canonicalize, diff_regions, scan, scan_files
from tests.thoth_helpers import COMMIT_GO_V1, COMMIT_GO_V2, COMMIT_GO_V3


def test_scan_extracts_region_span_and_hash() -> None:
    regions = scan(COMMIT_GO_V1, file_path="pkg/storage/engine/commit.go")
    assert len(regions) == 1
    region = regions[0]
    assert region.region_id == "THOTH-0192"
    assert region.resource_id == "wal_subsystem"
    assert (region.start_line, region.end_line) == (3, 7)
    expected, length = canonical_hash(
        ["func commit(batch []byte) error {", "\treturn fsync(batch)", "}"]
    )
    assert region.content_hash == expected
    assert region.canonical_len == length


def test_canonical_hash_ignores_line_endings_and_trailing_whitespace() -> None:
    unix = "// BEGIN resource=r id=A\nx = 1\n  y = 2\n// END id=A\n"
    windows = "// BEGIN resource=r id=A\r\nx = 1   \r\n  y = 2\t\r\n// END id=A\r\n"
    assert scan(unix)[0].content_hash == scan(windows)[0].content_hash


def test_canonical_hash_preserves_interior_whitespace() -> None:
    left = "# BEGIN resource=r id=A\nx = 1\n# END id=A\n"
    right = "# BEGIN resource=r id=A\n  x = 1\n# END id=A\n"
    assert scan(left)[0].content_hash != scan(right)[0].content_hash
    assert canonicalize(["a  ", "b"]) == b"a\nb\n"


def test_marker_comment_style_does_not_matter() -> None:
    go = "// BEGIN resource=r id=A\nbody\n// END id=A\n"
    py = "# BEGIN resource=r id=A\nbody\n# END id=A\n"
    assert scan(go)[0].content_hash == scan(py)[0].content_hash


def test_duplicate_region_id_in_one_file() -> None:
    text = "# BEGIN resource=r id=A\n# END id=A\n# BEGIN resource=r id=A\n# END id=A\n"
    with pytest.raises(DuplicateRegionError) as excinfo:
        scan(text, file_path="x.py")
    assert excinfo.value.line == 3
    assert excinfo.value.as_payload()["file_path"] == "x.py"


def test_nesting_is_an_error_by_default() -> None:
    text = "# BEGIN resource=r id=A\n# BEGIN resource=r id=B\n# END id=B\n# END id=A\n"
    with pytest.raises(NestingError):
        scan(text)


def test_nesting_allowed_with_strict_lifo() -> None:
    text = "# BEGIN resource=r id=A\na\n# BEGIN resource=r id=B\nb\n# END id=B\n# END id=A\n"
    regions = scan(text, allow_nesting=True)
    assert [region.region_id for region in regions] == ["A", "B"]
    outer, inner = regions
    assert (outer.start_line, outer.end_line) == (1, 6)
    assert (inner.start_line, inner.end_line) == (3, 5)
    bad = "# BEGIN resource=r id=A\n# BEGIN resource=r id=B\n# END id=A\n# END id=B\n"
    with pytest.raises(NestingError):
        scan(bad, allow_nesting=True)


def test_unterminated_region() -> None:
    with pytest.raises(UnterminatedRegionError) as excinfo:
        scan("# BEGIN resource=r id=A\nbody\n")
    assert excinfo.value.region_id == "A"


def test_unmatched_end() -> None:
    with pytest.raises(UnmatchedEndError):
        scan("body\n# END id=A\n")


def test_scan_files_enforces_tree_wide_uniqueness() -> None:
    block = "# BEGIN resource=r id=A\nx\n# END id=A\n"
    report = scan_files({"b.py": block, "a.py": block, "c.py": "# BEGIN resource=r id=C\n"})
    assert [region.file_path for region in report.regions] == ["a.py"]
    assert [type(error) for error in report.errors] == [DuplicateRegionError, UnterminatedRegionError]
    assert [error.file_path for error in report.errors] == ["b.py", "c.py"]


def test_diff_regions_content_change_inside_markers() -> None:
    old = scan(COMMIT_GO_V1, file_path="commit.go")
    assert [change.change for change in diff_regions(old, scan(COMMIT_GO_V2, file_path="commit.go"))] == [
        "modified"
    ]
    edited = scan(COMMIT_GO_V2, file_path="commit.go")
    assert diff_regions(edited, scan(COMMIT_GO_V3, file_path="commit.go")) == []


def test_diff_regions_added_and_removed() -> None:
    a = scan("# BEGIN resource=r id=A\nx\n# END id=A\n")
    b = scan("# BEGIN resource=r id=B\nx\n# END id=B\n")
    changes = diff_regions(a, b)
    assert [(change.region_id, change.change) for change in changes] == [("B", "added"), ("A", "removed")]
