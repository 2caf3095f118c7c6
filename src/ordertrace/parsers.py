"""
Parsers for the loosely-structured rows each source system exports.

These parsers handle the messy reality of marketplace data:
- The same logical field spelled differently by every source
  (order-id, order_id, AmazonOrderId, ...)
- Order identifiers buried in free text
- Multiple date formats and epoch timestamps
- SKU case and whitespace drift

Every parser returns None on input it cannot make sense of. Nothing here
raises on bad data.
"""

import re
from datetime import date, datetime
from typing import Any, Mapping

import numpy as np
import pandas as pd

# Marketplace order ids are shown as 3-7-7 digits: 408-4870009-9733125
ORDER_ID_PATTERN = re.compile(r"(\d{3}-\d{7}-\d{7})")
ASIN_PATTERN = re.compile(r"\b([A-Z0-9]{10})\b")

# Candidate fields per logical value, in priority order
ORDER_KEY_FIELDS = (
    "orderKey",
    "order_id",
    "order-id",
    "orderId",
    "order_no",
    "orderNo",
    "amazon_order_id",
    "amazon-order-id",
    "AmazonOrderId",
    "customer_order_id",
    "customer-order-id",
    "CustomerOrderId",
    "reference",
    "Reference",
    "id",
    "ID",
)
SKU_FIELDS = ("sku", "SKU", "asin", "ASIN", "product-name", "item-name")
QUANTITY_FIELDS = ("qty", "quantity", "Qty", "quantity-purchased", "item-quantity")
ORDER_DATE_FIELDS = (
    "order_date",
    "order-date",
    "orderDate",
    "purchase_date",
    "purchase-date",
    "PurchaseDate",
)
EVENT_DATE_FIELDS = (
    "event_time",
    "event-time",
    "eventTime",
    "event_at",
    "EventDate",
    "shipped_date",
    "shipped-date",
    "shipDate",
    "order_date",
    "order-date",
    "orderDate",
    "purchase_date",
    "purchase-date",
    "PurchaseDate",
    "transaction_date",
    "transaction-date",
    "TransactionDate",
    "date",
    "Date",
)


def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        # Containers make pd.isna return an array
        return False


def first_present(row: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    """Return the value of the first field in `fields` present on the row."""
    for name in fields:
        value = row.get(name)
        if not is_missing(value):
            return value
    return None


class DateParser:
    """
    Date parser that reduces anything date-like to a calendar day.

    Accepts strings in the formats below, ISO 8601 timestamps (with or
    without an offset), epoch milliseconds and date/datetime objects. The
    calendar day is taken in the value's own timezone.

    To extend: Add new format patterns to DATE_FORMATS.
    """

    # Common date formats found in marketplace exports, ordered by specificity
    DATE_FORMATS = [
        "%Y-%m-%d",      # ISO: 2024-07-25
        "%m/%d/%Y",      # US: 05/27/2024
        "%d-%m-%Y",      # EU: 25-08-2024
        "%m/%d/%y",      # US short: 03/21/24
        "%d/%m/%Y",      # EU slash: 25/08/2024
        "%d/%m/%y",      # EU short: 25/08/24
        "%Y/%m/%d",      # ISO slash: 2024/07/25
        "%d-%b-%Y",      # Report style: 25-Jul-2024
    ]

    def __init__(self, custom_formats: list[str] | None = None, cache_size: int = 10_000):
        """
        Args:
            custom_formats: Additional date formats to try (prepended to defaults)
            cache_size: Distinct strings remembered before the cache is reset
        """
        self.formats = (custom_formats or []) + self.DATE_FORMATS
        self.cache_size = cache_size
        self._cache: dict[str, str | None] = {}

    def calendar_date(self, value: Any) -> str | None:
        """Return YYYY-MM-DD for a date-like value, or None."""
        if isinstance(value, bool) or is_missing(value):
            return None

        # pd.Timestamp is a datetime subclass
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, (int, float, np.integer, np.floating)):
            return self._from_epoch_ms(value)

        text = str(value).strip()
        if text in self._cache:
            return self._cache[text]

        result = self._parse_text(text)
        if len(self._cache) >= self.cache_size:
            self._cache.clear()
        self._cache[text] = result
        return result

    def _parse_text(self, text: str) -> str | None:
        for fmt in self.formats:
            try:
                return datetime.strptime(text, fmt).date().isoformat()
            except ValueError:
                continue

        try:
            parsed = pd.Timestamp(text)
        except (ValueError, TypeError, OverflowError):
            return None
        if pd.isna(parsed):
            return None
        return parsed.date().isoformat()

    def _from_epoch_ms(self, value: Any) -> str | None:
        try:
            if not np.isfinite(value):
                return None
            return pd.Timestamp(int(value), unit="ms", tz="UTC").date().isoformat()
        except (ValueError, TypeError, OverflowError):
            return None


class SKUNormalizer:
    """
    Normalizes SKU/product codes so that sales and purchases agree.

    Marketplace SKUs are compared verbatim apart from case and surrounding
    whitespace. Sellers who prefix codes per channel can pass
    strip_prefixes, which are removed after upper-casing.
    """

    def __init__(self, strip_prefixes: list[str] | None = None):
        # Sort by length descending to match longer prefixes first
        self.prefixes = sorted(
            (p.upper() for p in strip_prefixes or []), key=len, reverse=True
        )

    def normalize(self, sku: Any) -> str | None:
        """Normalize a single SKU."""
        if is_missing(sku):
            return None

        result = str(sku).strip().upper()

        for prefix in self.prefixes:
            if result.startswith(prefix):
                result = result[len(prefix):]
                break

        return result or None


_date_parser = DateParser()
_sku_normalizer = SKUNormalizer()


def normalize_order_id(raw: Any) -> str | None:
    """Extract a canonical 3-7-7 marketplace order id from `raw`, if any."""
    if is_missing(raw):
        return None
    match = ORDER_ID_PATTERN.search(str(raw))
    return match.group(1) if match else None


def normalize_sku(raw: Any) -> str | None:
    return _sku_normalizer.normalize(raw)


def to_calendar_date(value: Any) -> str | None:
    return _date_parser.calendar_date(value)


def resolve_order_key(row: Mapping[str, Any], category: str) -> str | None:
    """
    Compute the order key a row belongs to.

    Candidates are shared across categories: every source spells the order
    reference differently, but none uses another source's spelling for
    something else. A canonical marketplace id in any candidate wins over
    every plain id, in candidate order. Otherwise the first non-empty
    candidate is used as-is (trimmed).
    """
    candidates = [
        str(row.get(name)).strip()
        for name in ORDER_KEY_FIELDS
        if not is_missing(row.get(name))
    ]

    for candidate in candidates:
        canonical = normalize_order_id(candidate)
        if canonical:
            return canonical

    return candidates[0] if candidates else None


def extract_asin(text: Any) -> str | None:
    """Pull a 10-character ASIN out of free text (titles, notes)."""
    if is_missing(text):
        return None
    match = ASIN_PATTERN.search(str(text))
    return match.group(1) if match else None


def parse_quantity(value: Any) -> int | float:
    """
    Parse a quantity, defaulting to 1.

    Missing, unparseable, non-finite and zero quantities all count as a
    single unit.
    """
    if isinstance(value, bool) or is_missing(value):
        return 1
    try:
        qty = float(str(value).strip())
    except ValueError:
        return 1
    if not np.isfinite(qty) or qty == 0:
        return 1
    return int(qty) if qty.is_integer() else qty


def row_sku(row: Mapping[str, Any]) -> str | None:
    return normalize_sku(first_present(row, SKU_FIELDS))


def row_quantity(row: Mapping[str, Any]) -> int | float:
    return parse_quantity(first_present(row, QUANTITY_FIELDS))


def _iso_prefix_or_date(value: Any) -> str | None:
    # ISO timestamps keep their written calendar day
    if isinstance(value, str) and "T" in value:
        return value.strip()[:10]
    return to_calendar_date(value)


def row_order_date(row: Mapping[str, Any]) -> str | None:
    """Calendar date a sale or purchase was placed."""
    return _iso_prefix_or_date(first_present(row, ORDER_DATE_FIELDS))


def row_event_date(row: Mapping[str, Any]) -> str | None:
    """Calendar date to place a row on its order's timeline."""
    return _iso_prefix_or_date(first_present(row, EVENT_DATE_FIELDS))
