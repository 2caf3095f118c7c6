"""
Purchase linker for matching overseas purchases to the sales they replenish.

Purchasing happens in a different marketplace than the original retail
sale, so the two records never share an order id. A purchase is tied back
to its sale by date, SKU and quantity instead.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping

import structlog

from .parsers import (
    normalize_order_id,
    resolve_order_key,
    row_order_date,
    row_quantity,
    row_sku,
)

logger = structlog.get_logger()

# A sale in one marketplace is usually followed by the replenishment
# purchase in the other within about a week.
LINK_WINDOW_DAYS = 7


class MatchType(Enum):
    """How an order key was determined."""

    DIRECT = "direct"  # Resolved from the row's own identifier fields
    MANUAL = "manual"  # Manual link hint provided
    EXACT_COMPOSITE = "exact_composite"  # date|sku|qty on the purchase date
    WINDOW_COMPOSITE = "window_composite"  # date|sku|qty within the window
    SKU_FALLBACK = "sku_fallback"  # Most recent sale of the same SKU
    UNMATCHED = "unmatched"  # No match found


@dataclass(frozen=True)
class LinkHint:
    """A known connection between a sales order and a purchase order."""

    sales_order_id: str
    purchase_order_id: str
    asin: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LinkHint":
        return cls(
            sales_order_id=str(data.get("sales_order_id") or data.get("salesOrderId") or ""),
            purchase_order_id=str(
                data.get("purchase_order_id") or data.get("purchaseOrderId") or ""
            ),
            asin=data.get("asin"),
        )


@dataclass
class LinkResult:
    """Result of linking a single purchase row."""

    order_key: str | None
    match_type: MatchType
    offset_days: int | None = None  # sale date minus purchase date, for composite hits

    @property
    def matched(self) -> bool:
        return self.order_key is not None


def composite_key(day: str, sku: str, qty: int | float) -> str:
    return f"{day}|{sku}|{qty}"


def shift_day(day: str, offset: int) -> str:
    return (date.fromisoformat(day) + timedelta(days=offset)).isoformat()


@dataclass
class SalesIndex:
    """
    Lookup indices over keyed sales rows, built once per timeline run.

    - by_composite: "date|sku|qty" -> order key (first sale wins)
    - by_sku: sku -> [(date, order key), ...], most recent first
    """

    by_composite: dict[str, str] = field(default_factory=dict)
    by_sku: dict[str, list[tuple[str, str]]] = field(default_factory=dict)

    @classmethod
    def build(cls, sales_rows: Iterable[Mapping[str, Any]]) -> "SalesIndex":
        index = cls()
        indexed = 0
        skipped = 0

        for row in sales_rows:
            try:
                order_key = resolve_order_key(row, "sales")
                if not order_key:
                    skipped += 1
                    continue
                sku = row_sku(row)
                day = row_order_date(row)
                qty = row_quantity(row)
            except (AttributeError, TypeError, ValueError, ArithmeticError) as exc:
                logger.warning("linking.sales_row_skipped", error=str(exc))
                skipped += 1
                continue

            if not (sku and day):
                continue

            index.by_composite.setdefault(composite_key(day, sku, qty), order_key)
            index.by_sku.setdefault(sku, []).append((day, order_key))
            indexed += 1

        # Stable sort keeps insertion order between sales on the same day
        for sales in index.by_sku.values():
            sales.sort(key=lambda sale: sale[0], reverse=True)

        logger.debug(
            "linking.sales_indexed",
            indexed=indexed,
            skipped=skipped,
            skus=len(index.by_sku),
        )
        return index

    def __len__(self) -> int:
        return len(self.by_composite)


class PurchaseLinker:
    """
    Assigns order keys to purchase rows that carry no usable identifier.

    Strategies are tried in order and the first hit wins:
    1. Exact composite key on the purchase date
    2. Composite key on each day from -7 to +7 around the purchase date
    3. The most recent sale of the same SKU, regardless of date or quantity

    Manual link hints map a purchase order id that did resolve to the
    sales order it belongs to; see manual_key().

    The last step prefers a plausible link over leaving the purchase
    orphaned. The order of steps decides which sale wins when several fit.

    Usage:
        linker = PurchaseLinker(SalesIndex.build(sales_rows))
        linker.add_manual_mapping({"112-1815601-9677016": "408-4870009-9733125"})
        result = linker.link(purchase_row)
    """

    def __init__(self, index: SalesIndex, window_days: int = LINK_WINDOW_DAYS):
        self.index = index
        self.window_days = window_days
        self._manual_mappings: dict[str, str] = {}

    def add_manual_mapping(self, mappings: Mapping[str, str]) -> "PurchaseLinker":
        """Add purchase order id -> sales order key mappings."""
        for purchase_id, sales_id in mappings.items():
            purchase_key = normalize_order_id(purchase_id) or str(purchase_id).strip()
            sales_key = normalize_order_id(sales_id) or str(sales_id).strip()
            if purchase_key and sales_key:
                self._manual_mappings[purchase_key] = sales_key
        return self

    def add_link_hints(self, hints: Iterable[LinkHint]) -> "PurchaseLinker":
        return self.add_manual_mapping(
            {hint.purchase_order_id: hint.sales_order_id for hint in hints}
        )

    def manual_key(self, order_key: str | None) -> str | None:
        """Sales order key hinted for a resolved purchase order key, if any."""
        if not order_key:
            return None
        return self._manual_mappings.get(order_key)

    def link(self, row: Mapping[str, Any]) -> LinkResult:
        """Link a single purchase row to a sales order key."""
        sku = row_sku(row)
        if not sku:
            return LinkResult(None, MatchType.UNMATCHED)

        qty = row_quantity(row)
        day = row_order_date(row)

        if day:
            exact = self.index.by_composite.get(composite_key(day, sku, qty))
            if exact:
                return LinkResult(exact, MatchType.EXACT_COMPOSITE, 0)

            for offset in range(-self.window_days, self.window_days + 1):
                try:
                    candidate_day = shift_day(day, offset)
                except (ValueError, OverflowError):
                    # Not a real calendar day, or shifted past year 1 or 9999
                    continue
                hit = self.index.by_composite.get(composite_key(candidate_day, sku, qty))
                if hit:
                    return LinkResult(hit, MatchType.WINDOW_COMPOSITE, offset)

        sales = self.index.by_sku.get(sku)
        if sales:
            return LinkResult(sales[0][1], MatchType.SKU_FALLBACK)

        return LinkResult(None, MatchType.UNMATCHED)
