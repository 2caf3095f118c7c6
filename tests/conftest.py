"""
Shared rows, events and a fixed clock for the test suite.

Every test that depends on "now" uses the NOW fixture so runs are
reproducible.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ordertrace.config import get_settings

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)

SALE_ORDER_ID = "408-4870009-9733125"
PURCHASE_ORDER_ID = "112-1815601-9677016"


def hours_ago(hours: float) -> str:
    return (NOW - timedelta(hours=hours)).isoformat()


def days_ago(days: float) -> str:
    return (NOW - timedelta(days=days)).isoformat()


@pytest.fixture
def now():
    return NOW


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Environment overrides in one test must not leak into the next."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sales_rows():
    return [
        {
            "order-id": SALE_ORDER_ID,
            "sku": "abc-1",
            "quantity-purchased": "2",
            "purchase-date": "2024-01-03T08:15:00+05:30",
        },
        {
            "amazon-order-id": "408-1111111-2222222",
            "sku": "ABC-1",
            "quantity-purchased": "2",
            "purchase-date": "2024-02-01T10:00:00+05:30",
        },
        {
            "order-id": "408-3333333-4444444",
            "sku": "XYZ-9",
            "quantity-purchased": "1",
            "purchase-date": "2024-01-05T09:00:00+05:30",
        },
    ]


@pytest.fixture
def purchase_rows():
    # No usable order id: linked by date/sku/qty
    return [
        {"sku": "abc-1", "qty": "2", "purchase_date": "2024-01-10"},
    ]
