from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

THOTH_ENV_PREFIX = "THOTH_"


def thoth_env_key(name: str) -> str:
    """``order_policy`` -> ``THOTH_ORDER_POLICY``; full keys pass through."""
    if name.startswith(THOTH_ENV_PREFIX):
        return name
    return f"{THOTH_ENV_PREFIX}{name.upper()}"


def set_thoth_env(values: dict[str, str | None]) -> dict[str, str | None]:
    keys = {thoth_env_key(name): value for name, value in values.items()}
    previous = {key: os.environ.get(key) for key in keys}
    restore_thoth_env(keys)
    return previous


def restore_thoth_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@contextmanager
def thoth_env(**values: str | None) -> Iterator[None]:
    previous = set_thoth_env(values)
    try:
        yield
    finally:
        restore_thoth_env(previous)
