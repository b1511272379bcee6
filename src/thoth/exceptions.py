"""Error taxonomy for Thoth.

Load-time validation errors are fatal and carry every violation at once.
Per-file structural errors (regions, symbols) are raised by the scanners but
caught by the pipeline and reported as data, so one malformed file never
blocks classification of the rest of a diff.
"""

from __future__ import annotations

from dataclasses import dataclass


class ThothError(Exception):
    """Base class for every error Thoth surfaces to callers."""

    def as_payload(self) -> dict[str, object]:
        return {"type": type(self).__name__, "message": str(self)}


class NeverThrown(RuntimeError):
    """Raised by ``never()`` when a path that must be unreachable is reached."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


@dataclass(frozen=True)
class ManifestIssue:
    code: str
    message: str
    location: str = ""

    def as_payload(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message, "location": self.location}


class ManifestValidationError(ThothError):
    def __init__(self, issues: list[ManifestIssue] | tuple[ManifestIssue, ...]):
        self.issues = tuple(issues)
        count = len(self.issues)
        head = self.issues[0].message if self.issues else "invalid manifest"
        suffix = "" if count <= 1 else f" (+{count - 1} more)"
        super().__init__(f"{head}{suffix}")

    def as_payload(self) -> dict[str, object]:
        payload = super().as_payload()
        payload["issues"] = [issue.as_payload() for issue in self.issues]
        return payload


class UnknownResourceError(ManifestValidationError):
    """Reference to a resource id that is not declared."""

    @classmethod
    def for_id(cls, resource_id: str) -> "UnknownResourceError":
        return cls(
            [
                ManifestIssue(
                    code="unknown_resource",
                    message=f"unknown resource {resource_id!r}",
                    location=resource_id,
                )
            ]
        )


class UnknownCheckError(ManifestValidationError):
    """Reference to a check id that is not in the check registry."""


class UnknownNodeError(ThothError):
    def __init__(self, node: str):
        super().__init__(f"unknown graph node {node!r}")
        self.node = node


class RegionError(ThothError):
    def __init__(self, message: str, *, file_path: str = "", line: int = 0, region_id: str = ""):
        super().__init__(message)
        self.file_path = file_path
        self.line = line
        self.region_id = region_id

    def as_payload(self) -> dict[str, object]:
        payload = super().as_payload()
        payload.update({"file_path": self.file_path, "line": self.line, "region_id": self.region_id})
        return payload


class DuplicateRegionError(RegionError):
    pass


class NestingError(RegionError):
    pass


class UnterminatedRegionError(RegionError):
    pass


class UnmatchedEndError(RegionError):
    pass


class SymbolParseError(ThothError):
    def __init__(self, message: str, *, file_path: str = "", lang: str = ""):
        super().__init__(message)
        self.file_path = file_path
        self.lang = lang


class SymbolResolutionError(ThothError):
    def __init__(self, message: str, *, file_path: str = "", fqname: str = ""):
        super().__init__(message)
        self.file_path = file_path
        self.fqname = fqname


class IndexBuildError(ThothError):
    pass


class IndexBusyError(IndexBuildError):
    """Another writer holds the index lock."""


class VcsError(ThothError):
    pass


class InvalidQueryError(ThothError):
    """A search handle or expression that cannot be evaluated."""
