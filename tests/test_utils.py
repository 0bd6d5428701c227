from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.utils.cleanup import run_cleanup
from app.utils.datetime_utils import add_months, ensure_aware, is_expired
from app.utils.decimal_utils import floor_amount, percentage, to_decimal


@pytest.mark.parametrize("part, whole, expected", [(1, 3, 33), (1, 8, 13), (2, 3, 67), (3, 3, 100), (0, 5, 0), (1, 0, 0)])
def test_percentage_rounds_half_up(part, whole, expected):
    assert percentage(part, whole) == expected


def test_floor_amount():
    assert floor_amount(Decimal("149.85")) == Decimal("149")
    assert floor_amount(Decimal("90")) == Decimal("90")


def test_to_decimal_quantizes():
    assert to_decimal("10.005") == Decimal("10.01")
    assert to_decimal(None) == Decimal("0.00")


def test_add_months_clamps_day():
    assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)
    assert add_months(datetime(2024, 1, 15), 3) == datetime(2024, 4, 15)


def test_naive_datetimes_are_utc():
    naive = datetime(2024, 1, 1, 12, 0)
    assert ensure_aware(naive).tzinfo == timezone.utc
    assert is_expired(naive, now=datetime(2024, 1, 2, tzinfo=timezone.utc)) is True
    assert is_expired(None) is False


async def test_cleanup_continues_after_failure():
    calls = []

    async def ok():
        calls.append("ok")

    async def boom():
        raise RuntimeError("boom")

    summary = await run_cleanup([("first", boom), ("second", ok)])

    assert calls == ["ok"]
    assert summary["succeeded"] == ["second"]
    assert summary["failed"] == [{"task": "first", "error": "boom"}]
