import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from family_manager.core.family_utils import (
    MAX_FAMILY_SLOTS,
    days_remaining,
    expiry_status,
    is_family_full,
    slots_available,
)

TODAY = date(2026, 3, 1)


def test_slots():
    assert slots_available([]) == MAX_FAMILY_SLOTS
    assert slots_available(None) == MAX_FAMILY_SLOTS
    assert slots_available(["m"] * 7) == 0
    assert is_family_full(["m"] * MAX_FAMILY_SLOTS)
    assert not is_family_full(["m"])


def test_days_remaining():
    assert days_remaining(None, TODAY) is None
    assert days_remaining("not a date", TODAY) is None
    assert days_remaining("2026-03-11", TODAY) == 10
    assert days_remaining("2026-02-27T10:00:00Z", TODAY) == -2


@pytest.mark.parametrize(
    "days,text,color",
    [
        (None, "No expiry set", "gray"),
        (-1, "EXPIRED", "gray"),
        (0, "0 DAYS LEFT", "red"),
        (3, "3 DAYS LEFT", "red"),
        (7, "7 DAYS LEFT", "yellow"),
        (30, "30 DAYS LEFT", "green"),
    ],
)
def test_expiry_status(days, text, color):
    assert expiry_status(days) == {"text": text, "color": color}
