from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import logging
import tomllib

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "thoth.toml"
DEFAULT_MANIFEST_PATH = Path("thoth/manifest.toml")
DEFAULT_INDEX_PATH = Path(".thoth/index.sqlite3")
DEFAULT_RENAME_THRESHOLD = 0.8
DEFAULT_TIMEOUT_MS = 5000
DEFAULT_WORKERS = 4

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


@dataclass(frozen=True)
class ThothSettings:
    root: Path
    manifest_path: Path
    index_path: Path
    allow_nesting: bool = False
    rename_threshold: float = DEFAULT_RENAME_THRESHOLD
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    workers: int = DEFAULT_WORKERS


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_int(value: TomlValue, default: int, *, minimum: int) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return max(minimum, number)


def _as_threshold(value: TomlValue) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return DEFAULT_RENAME_THRESHOLD
    try:
        number = float(value)
    except ValueError:
        return DEFAULT_RENAME_THRESHOLD
    if not 0.0 < number <= 1.0:
        return DEFAULT_RENAME_THRESHOLD
    return number


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def resolve_settings(
    root: Path | None = None,
    *,
    config_path: Path | None = None,
    overrides: TomlTable | None = None,
) -> ThothSettings:
    """Resolve ``thoth.toml`` plus CLI overrides into frozen settings.

    Override keys are flat (``manifest``, ``index``, ``allow_nesting``,
    ``rename_threshold``, ``timeout_ms``, ``workers``); ``None`` never
    overrides a configured value.
    """
    base = (root or Path.cwd()).resolve()
    data = load_config(root=base, config_path=config_path)
    flat: TomlTable = {
        "manifest": _section(data, "manifest").get("path"),
        "index": _section(data, "index").get("path"),
        "allow_nesting": _section(data, "regions").get("allow_nesting"),
        "rename_threshold": _section(data, "symbols").get("rename_threshold"),
        "timeout_ms": _section(data, "symbols").get("timeout_ms"),
        "workers": _section(data, "pipeline").get("workers"),
    }
    merged = merge_payload(overrides or {}, flat)
    manifest = merged.get("manifest")
    index = merged.get("index")
    return ThothSettings(
        root=base,
        manifest_path=_resolve_path(base, manifest, DEFAULT_MANIFEST_PATH),
        index_path=_resolve_path(base, index, DEFAULT_INDEX_PATH),
        allow_nesting=as_bool(merged.get("allow_nesting")),
        rename_threshold=_as_threshold(merged.get("rename_threshold")),
        timeout_ms=_as_int(merged.get("timeout_ms"), DEFAULT_TIMEOUT_MS, minimum=1),
        workers=_as_int(merged.get("workers"), DEFAULT_WORKERS, minimum=1),
    )


def _resolve_path(root: Path, value: TomlValue, default: Path) -> Path:
    if isinstance(value, (str, Path)) and str(value).strip():
        candidate = Path(str(value))
    else:
        candidate = default
    return candidate if candidate.is_absolute() else root / candidate
