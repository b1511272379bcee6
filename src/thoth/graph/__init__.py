"""Persisted architecture graph: build, touch history and read queries."""

from __future__ import annotations

from thoth.graph.store import SCHEMA_VERSION, BuildSummary, GraphIndex

__all__ = ["BuildSummary", "GraphIndex", "SCHEMA_VERSION"]
