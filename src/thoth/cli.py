from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Type
import json
import logging
import sys

import typer
from pydantic import BaseModel

from thoth.config import ThothSettings, resolve_settings
from thoth.exceptions import InvalidQueryError, ThothError
from thoth.graph import GraphIndex
from thoth.manifest import ManifestModel, load_manifest_file
from thoth.pipeline import ClassificationPipeline, PipelineOptions
from thoth.schema import (
    BuildResponse,
    ErrorResponse,
    FindResponse,
    HistoryResponse,
    MapResponse,
    ShowResponse,
    SymbolsResponse,
    TouchResponse,
    WalkResponse,
)
from thoth.symbols import default_registry
from thoth.symbols.capabilities import CapabilityRegistry
from thoth.vcs import GitAdapter, VcsAdapter, parse_touch_target

app = typer.Typer(add_completion=False, help="Classify changes against governed resources.")
index_app = typer.Typer(add_completion=False, help="Build and inspect the graph index.")
app.add_typer(index_app, name="index")

logger = logging.getLogger(__name__)

_ERROR_EXIT_CODE = 2


@dataclass
class CliState:
    """Per-invocation state; tests pass a pre-filled instance as ``obj``."""

    vcs: Optional[VcsAdapter] = None
    registry: Optional[CapabilityRegistry] = None
    settings: Optional[ThothSettings] = None

    def vcs_adapter(self) -> VcsAdapter:
        if self.vcs is None:
            self.vcs = GitAdapter(self.require_settings().root)
        return self.vcs

    def capability_registry(self) -> CapabilityRegistry:
        if self.registry is None:
            self.registry = default_registry()
        return self.registry

    def require_settings(self) -> ThothSettings:
        if self.settings is None:
            self.settings = resolve_settings()
        return self.settings

    def manifest(self) -> ManifestModel:
        return load_manifest_file(self.require_settings().manifest_path)

    def index(self) -> GraphIndex:
        return GraphIndex(self.require_settings().index_path)

    def pipeline_options(self) -> PipelineOptions:
        return PipelineOptions.from_settings(self.require_settings())


def _state(ctx: typer.Context) -> CliState:
    root = ctx.find_root()
    if not isinstance(root.obj, CliState):
        root.obj = CliState()
    return root.obj


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("thoth")
    if not verbose:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)


def _emit(dto: Type[BaseModel], payload: dict[str, Any]) -> None:
    normalized = dto.model_validate(payload).model_dump()
    typer.echo(json.dumps(normalized, indent=2, sort_keys=True))


@contextmanager
def _error_boundary() -> Iterator[None]:
    try:
        yield
    except ThothError as exc:
        logger.debug("command failed", exc_info=True)
        normalized = ErrorResponse(error=exc.as_payload()).model_dump()
        typer.echo(json.dumps(normalized, indent=2, sort_keys=True))
        raise typer.Exit(code=_ERROR_EXIT_CODE) from None


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_timestamp(value: Optional[str]) -> Optional[int]:
    """Epoch seconds or an ISO-8601 date/datetime (UTC when naive)."""
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidQueryError(f"invalid timestamp {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


@app.callback()
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--root", help="Repository root (defaults to cwd)."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to thoth.toml."),
    manifest: Optional[Path] = typer.Option(None, "--manifest", help="Manifest TOML path."),
    index: Optional[Path] = typer.Option(None, "--index", help="Graph index path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stderr."),
) -> None:
    _configure_logging(verbose)
    state = _state(ctx)
    state.settings = resolve_settings(
        root,
        config_path=config,
        overrides={
            "manifest": str(manifest) if manifest is not None else None,
            "index": str(index) if index is not None else None,
        },
    )


@app.command("touch")
def touch(
    ctx: typer.Context,
    what: Optional[str] = typer.Argument(
        None, help="Nothing (working tree vs HEAD), REV, or BASE..TARGET."
    ),
    record: bool = typer.Option(False, "--record", help="Append the result to index history."),
) -> None:
    """Classify a change into touched resources."""
    state = _state(ctx)
    with _error_boundary():
        model = state.manifest()
        vcs = state.vcs_adapter()
        base, target = parse_touch_target(what)
        diff = vcs.diff(base, target)
        result = ClassificationPipeline(
            model,
            registry=state.capability_registry(),
            options=state.pipeline_options(),
        ).classify(diff)
        payload = result.as_payload(
            vcs={"name": vcs.name, "base": diff.base, "target": diff.target},
            inputs={"what": what, "paths": diff.paths},
        )
        if record:
            if target is None:
                raise InvalidQueryError("--record needs a committed revision, not the working tree")
            revisions = vcs.log(target, limit=1)
            rev_id = revisions[0].rev_id if revisions else target
            timestamp = revisions[0].timestamp if revisions else None
            state.index().record_touch(result, rev_id, timestamp=timestamp)
            payload["recorded"] = rev_id
        _emit(TouchResponse, payload)


@app.command("map")
def map_command(
    ctx: typer.Context,
    tag: Optional[str] = typer.Option(None, "--tag"),
    severity: Optional[str] = typer.Option(None, "--severity"),
    path: Optional[str] = typer.Option(None, "--path", help="Path or glob the bindings must intersect."),
) -> None:
    """List resources and their dependency edges."""
    state = _state(ctx)
    with _error_boundary():
        _emit(MapResponse, state.index().map(tag=tag, severity=severity, path=path))


@app.command("find")
def find(
    ctx: typer.Context,
    handle: str = typer.Argument(..., help="Search term, optionally prefixed id:/tag:/path:/sym:/region:/kw:."),
    regex: bool = typer.Option(False, "--regex", help="Treat the text term as a regular expression."),
) -> None:
    """Ranked resource search."""
    state = _state(ctx)
    with _error_boundary():
        results = state.index().find(handle, regex=regex)
        _emit(FindResponse, {"handle": handle, "regex": regex, "results": results})


@app.command("show")
def show(
    ctx: typer.Context,
    resource_id: str = typer.Argument(...),
) -> None:
    """Capsule view of one resource."""
    state = _state(ctx)
    with _error_boundary():
        _emit(ShowResponse, state.index().show(resource_id))


@app.command("walk")
def walk(
    ctx: typer.Context,
    node: str = typer.Argument(...),
    edges: Optional[str] = typer.Option(None, "--edges", help="Comma-separated edge types (default: all)."),
    depth: int = typer.Option(1, "--depth"),
    reverse: bool = typer.Option(False, "--reverse", help="Follow incoming edges."),
) -> None:
    """Bounded traversal of the resource graph."""
    state = _state(ctx)
    with _error_boundary():
        result = state.index().walk(node, edge_types=_split_csv(edges), depth=depth, reverse=reverse)
        _emit(WalkResponse, result)


@app.command("history")
def history(
    ctx: typer.Context,
    resource_id: str = typer.Argument(...),
    since: Optional[str] = typer.Option(None, "--since", help="Epoch seconds or ISO date."),
    until: Optional[str] = typer.Option(None, "--until", help="Epoch seconds or ISO date."),
    limit: Optional[int] = typer.Option(None, "--limit"),
    rev: Optional[str] = typer.Option(None, "--rev", help="Revision set understood by the VCS log."),
) -> None:
    """Revisions that touched a resource, newest first."""
    state = _state(ctx)
    with _error_boundary():
        revisions: Optional[List[str]] = None
        if rev is not None:
            revisions = [item.rev_id for item in state.vcs_adapter().log(rev)]
        rows = state.index().history(
            resource_id,
            since=parse_timestamp(since),
            until=parse_timestamp(until),
            revisions=revisions,
            limit=limit,
        )
        _emit(HistoryResponse, {"resource_id": resource_id, "revisions": rows})


@index_app.command("build")
def index_build(
    ctx: typer.Context,
    rev: Optional[str] = typer.Option(None, "--rev", help="Revision to index (default: HEAD)."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Queue behind a running build or fail fast."),
) -> None:
    """Rebuild the graph index from the manifest and a revision."""
    state = _state(ctx)
    with _error_boundary():
        model = state.manifest()
        snapshot = state.vcs_adapter().snapshot(rev)
        index = state.index()
        summary = index.build(
            model,
            snapshot,
            registry=state.capability_registry(),
            options=state.pipeline_options(),
            wait=wait,
        )
        _emit(BuildResponse, {"index_path": str(index.path), **summary.as_payload()})


@index_app.command("symbols")
def index_symbols(
    ctx: typer.Context,
    lang: Optional[str] = typer.Option(None, "--lang"),
    path: Optional[str] = typer.Option(None, "--path", help="Glob over indexed file paths."),
) -> None:
    """List indexed symbols."""
    state = _state(ctx)
    with _error_boundary():
        _emit(SymbolsResponse, {"symbols": state.index().list_symbols(lang=lang, path=path)})
