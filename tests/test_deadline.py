from __future__ import annotations

import pytest

from thoth.deadline import Deadline
from thoth.exceptions import NeverThrown


def test_zero_budget_is_expired() -> None:
    deadline = Deadline.from_timeout_ms(0)
    assert deadline.expired()
    assert deadline.remaining_seconds() == 0.0


def test_remaining_seconds_is_bounded_by_budget() -> None:
    deadline = Deadline.from_timeout_ms(60_000)
    assert not deadline.expired()
    assert 0.0 < deadline.remaining_seconds() <= 60.0


def test_negative_budget_is_rejected() -> None:
    with pytest.raises(NeverThrown) as excinfo:
        Deadline.from_timeout_ms(-1)
    assert excinfo.value.env == {"milliseconds": -1}
