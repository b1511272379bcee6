from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT / "src", ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from tests.env_helpers import restore_thoth_env, set_thoth_env
from tests.thoth_helpers import sample_manifest


@pytest.fixture(autouse=True)
def _default_order_policy():
    previous = set_thoth_env({"order_policy": None})
    yield
    restore_thoth_env(previous)


@pytest.fixture
def manifest_raw() -> dict[str, object]:
    return sample_manifest()
