"""Invariant markers for Thoth."""

from __future__ import annotations

from typing import NoReturn

from thoth.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The env payload is attached to the raised ``NeverThrown`` for diagnostics;
    it is not evaluated.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)
