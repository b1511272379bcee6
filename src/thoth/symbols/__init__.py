"""Symbol extraction and diffing over registered structural capabilities."""

from __future__ import annotations

from thoth.symbols.capabilities import CapabilityRegistry, Capture
from thoth.symbols.differ import RenamePolicy, SymbolChange, SymbolDiff, diff
from thoth.symbols.extractor import Symbol, SymbolSnapshot, extract_file, extract_snapshot
from thoth.symbols.go_lexical import GoCapability
from thoth.symbols.python_cst import PythonCapability


def default_registry() -> CapabilityRegistry:
    return CapabilityRegistry([PythonCapability(), GoCapability()])


__all__ = [
    "CapabilityRegistry",
    "Capture",
    "RenamePolicy",
    "Symbol",
    "SymbolChange",
    "SymbolDiff",
    "SymbolSnapshot",
    "default_registry",
    "diff",
    "extract_file",
    "extract_snapshot",
]
