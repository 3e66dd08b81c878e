# tests/unit/core/test_utils.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.config import Settings
from app.core.utils import as_utc, normalize_key, normalize_value


def test_normalize_key():
    assert normalize_key("  SKU-001 ") == "sku-001"
    assert normalize_key(None) == ""
    assert normalize_key(42) == "42"


@pytest.mark.parametrize(
    "left, right",
    [
        (10, "10.00"),
        (Decimal("1299.0"), "1299"),
        ("  Fender ", "Fender"),
        ("", None),
        ([1, "a"], (1, "a")),
    ],
)
def test_normalize_value_treats_equivalent_values_as_equal(left, right):
    assert normalize_value(left) == normalize_value(right)


def test_normalize_value_keeps_real_differences():
    assert normalize_value("Fender") != normalize_value("fender")
    assert normalize_value(True) is True
    assert normalize_value("10.01") != normalize_value("10")


def test_normalize_value_leaves_non_finite_numbers_as_text():
    assert normalize_value("NaN") == "NaN"
    assert normalize_value("NaN") == normalize_value(" NaN ")


def test_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    plus_two = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert as_utc(plus_two) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(None) is None


def test_cooldown_overrides_per_kind():
    settings = Settings(JOB_COOLDOWN_SECONDS=60, JOB_COOLDOWN_OVERRIDES="feed-push=15, category-mirror=300")
    assert settings.cooldown_for("feed-push") == 15
    assert settings.cooldown_for("category-mirror") == 300
    assert settings.cooldown_for("something-else") == 60
