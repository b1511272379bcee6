from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class LeaseDTO(BaseModel):
    mode: str
    ttl_seconds: Optional[int] = None


class TouchReasonDTO(BaseModel):
    type: str
    value: str
    change: Optional[str] = None
    detail: Optional[str] = None
    path: Optional[str] = None
    previous: Optional[str] = None


class TouchedResourceDTO(BaseModel):
    resource_id: str
    severity: str
    reasons: List[TouchReasonDTO]
    checks: List[str] = []
    lease: Optional[LeaseDTO] = None


class UnknownPathDTO(BaseModel):
    path: str
    reason: str
    detail: str = ""


class TouchResponse(BaseModel):
    vcs: Dict[str, Optional[str]]
    inputs: Dict[str, Any]
    touched: List[TouchedResourceDTO]
    unknown: List[UnknownPathDTO]
    complete: bool
    recorded: Optional[str] = None


class ResourceDTO(BaseModel):
    resource_id: str
    description: str = ""
    severity: str
    owners: List[str] = []
    tags: List[str] = []
    lease: Optional[LeaseDTO] = None


class EdgeDTO(BaseModel):
    src: str
    dst: str
    edge_type: str


class MapResponse(BaseModel):
    version: int
    rev_id: Optional[str] = None
    resources: List[ResourceDTO]
    edges: List[EdgeDTO]


class FindHitDTO(BaseModel):
    resource_id: str
    severity: str
    tier: str
    match: str


class FindResponse(BaseModel):
    handle: str
    regex: bool = False
    results: List[FindHitDTO]


class WalkNodeDTO(BaseModel):
    id: str
    kind: str
    depth: int


class WalkResponse(BaseModel):
    root: str
    depth: int
    reverse: bool = False
    edge_types: List[str] = []
    nodes: List[WalkNodeDTO]
    edges: List[EdgeDTO]


class CheckDTO(BaseModel):
    check_id: str
    cmd: str
    timeout_seconds: int = 0
    cacheable: bool = False


class InvariantDTO(BaseModel):
    invariant_id: str
    statement: str
    doc_path: str = ""


class AdrDTO(BaseModel):
    adr_id: str
    capsule: str = ""
    capsule_path: str = ""
    full_path: str = ""


class BindingsDTO(BaseModel):
    paths: List[str] = []
    symbols: List[Dict[str, str]] = []
    regions: List[str] = []


class RegionDTO(BaseModel):
    region_id: str
    file_path: str
    start_line: int
    end_line: int


class ShowResponse(ResourceDTO):
    deps: List[str] = []
    dependents: List[str] = []
    checks: List[CheckDTO] = []
    invariants: List[InvariantDTO] = []
    adrs: List[AdrDTO] = []
    bindings: BindingsDTO
    regions: List[RegionDTO] = []


class RevisionDTO(BaseModel):
    rev_id: str
    timestamp: int
    reasons: List[str] = []


class HistoryResponse(BaseModel):
    resource_id: str
    revisions: List[RevisionDTO]


class BuildResponse(BaseModel):
    index_path: str
    rev_id: str
    resources: int
    regions: int
    symbols: int
    diagnostics: int


class SymbolDTO(BaseModel):
    fqname: str
    lang: str
    kind: str
    file_path: str
    start_line: int
    end_line: int
    signature_text: str = ""
    query: Optional[str] = None


class SymbolsResponse(BaseModel):
    symbols: List[SymbolDTO]


class ErrorResponse(BaseModel):
    error: Dict[str, Any]
