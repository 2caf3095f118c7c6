"""
Tests for the Purchase Linker.

Covers:
  - Sales index construction (first writer wins, most recent first)
  - Match order: exact composite, ±7-day window, SKU fallback
  - Manual link hints
"""

from ordertrace.linking import (
    LinkHint,
    MatchType,
    PurchaseLinker,
    SalesIndex,
    composite_key,
    shift_day,
)

from .conftest import PURCHASE_ORDER_ID, SALE_ORDER_ID


def _sale(order_id: str, sku: str, qty: int, day: str) -> dict:
    return {"order-id": order_id, "sku": sku, "quantity": qty, "order_date": day}


def _linker(*sales: dict) -> PurchaseLinker:
    return PurchaseLinker(SalesIndex.build(sales))


# ── Index ──────────────────────────────────────────────────────────────


class TestSalesIndex:
    def test_first_writer_wins_on_composite_collision(self):
        index = SalesIndex.build(
            [
                _sale("111-0000000-0000001", "ABC", 1, "2024-01-03"),
                _sale("111-0000000-0000002", "abc", 1, "2024-01-03"),
            ]
        )
        assert index.by_composite[composite_key("2024-01-03", "ABC", 1)] == "111-0000000-0000001"

    def test_sku_index_most_recent_first(self):
        index = SalesIndex.build(
            [
                _sale("111-0000000-0000001", "ABC", 1, "2024-01-03"),
                _sale("111-0000000-0000002", "ABC", 1, "2024-02-01"),
                _sale("111-0000000-0000003", "ABC", 1, "2024-01-20"),
            ]
        )
        assert [key for _, key in index.by_sku["ABC"]] == [
            "111-0000000-0000002",
            "111-0000000-0000003",
            "111-0000000-0000001",
        ]

    def test_same_day_ties_keep_input_order(self):
        index = SalesIndex.build(
            [
                _sale("111-0000000-0000001", "ABC", 1, "2024-01-03"),
                _sale("111-0000000-0000002", "ABC", 2, "2024-01-03"),
            ]
        )
        assert index.by_sku["ABC"][0][1] == "111-0000000-0000001"

    def test_unkeyed_sales_are_not_indexed(self):
        index = SalesIndex.build([{"sku": "ABC", "quantity": 1, "order_date": "2024-01-03"}])
        assert len(index) == 0
        assert index.by_sku == {}

    def test_sales_without_sku_or_date_are_not_indexed(self):
        index = SalesIndex.build(
            [
                {"order-id": "111-0000000-0000001", "order_date": "2024-01-03"},
                {"order-id": "111-0000000-0000002", "sku": "ABC"},
            ]
        )
        assert len(index) == 0

    def test_malformed_rows_are_skipped(self):
        index = SalesIndex.build([None, _sale("111-0000000-0000001", "ABC", 1, "2024-01-03")])
        assert len(index) == 1


# ── Match policy ───────────────────────────────────────────────────────


class TestPurchaseLinking:
    def test_window_match_beats_sku_only_match(self):
        linker = _linker(
            _sale("111-0000000-0000001", "ABC", 2, "2024-01-03"),
            _sale("111-0000000-0000002", "ABC", 2, "2024-02-01"),
        )
        result = linker.link({"sku": "ABC", "qty": 2, "purchase_date": "2024-01-10"})
        assert result.order_key == "111-0000000-0000001"
        assert result.match_type == MatchType.WINDOW_COMPOSITE
        assert result.offset_days == -7

    def test_exact_day_match(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 1, "2024-01-10"))
        result = linker.link({"SKU": "abc", "purchase-date": "2024-01-10T17:00:00Z"})
        assert result.match_type == MatchType.EXACT_COMPOSITE
        assert result.order_key == "111-0000000-0000001"

    def test_window_is_scanned_from_earliest_offset(self):
        linker = _linker(
            _sale("111-0000000-0000013", "ABC", 1, "2024-01-13"),
            _sale("111-0000000-0000005", "ABC", 1, "2024-01-05"),
        )
        result = linker.link({"sku": "ABC", "purchase_date": "2024-01-10"})
        assert result.order_key == "111-0000000-0000005"
        assert result.offset_days == -5

    def test_outside_window_falls_back_to_most_recent_sku_sale(self):
        linker = _linker(
            _sale("111-0000000-0000001", "ABC", 1, "2023-11-01"),
            _sale("111-0000000-0000002", "ABC", 1, "2023-12-01"),
        )
        result = linker.link({"sku": "ABC", "purchase_date": "2024-01-10"})
        assert result.match_type == MatchType.SKU_FALLBACK
        assert result.order_key == "111-0000000-0000002"

    def test_quantity_mismatch_falls_back_to_sku(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 3, "2024-01-10"))
        result = linker.link({"sku": "ABC", "qty": 2, "purchase_date": "2024-01-10"})
        assert result.match_type == MatchType.SKU_FALLBACK

    def test_purchase_without_date_uses_sku_fallback(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 1, "2024-01-10"))
        result = linker.link({"sku": "ABC"})
        assert result.match_type == MatchType.SKU_FALLBACK

    def test_unknown_sku_is_unmatched(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 1, "2024-01-10"))
        result = linker.link({"sku": "ZZZ", "purchase_date": "2024-01-10"})
        assert result.match_type == MatchType.UNMATCHED
        assert not result.matched

    def test_no_sku_is_unmatched(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 1, "2024-01-10"))
        assert linker.link({"purchase_date": "2024-01-10"}).order_key is None

    def test_unparseable_quantity_counts_as_one(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 1, "2024-01-10"))
        result = linker.link({"sku": "ABC", "qty": "n/a", "purchase_date": "2024-01-10"})
        assert result.match_type == MatchType.EXACT_COMPOSITE

    def test_window_skips_days_before_year_one(self):
        linker = _linker(_sale("111-0000000-0000001", "ABC", 1, "0001-01-05"))
        result = linker.link({"sku": "ABC", "purchase_date": "0001-01-03"})
        assert result.match_type == MatchType.WINDOW_COMPOSITE
        assert result.offset_days == 2


# ── Manual hints ───────────────────────────────────────────────────────


class TestManualMappings:
    def test_hint_maps_purchase_key_to_sale(self):
        linker = _linker().add_link_hints([LinkHint(SALE_ORDER_ID, PURCHASE_ORDER_ID)])
        assert linker.manual_key(PURCHASE_ORDER_ID) == SALE_ORDER_ID

    def test_hint_ids_are_canonicalized(self):
        linker = _linker().add_manual_mapping(
            {f"PO {PURCHASE_ORDER_ID}": f"Order {SALE_ORDER_ID}"}
        )
        assert linker.manual_key(PURCHASE_ORDER_ID) == SALE_ORDER_ID

    def test_hint_from_camel_case_dict(self):
        hint = LinkHint.from_dict(
            {"salesOrderId": SALE_ORDER_ID, "purchaseOrderId": PURCHASE_ORDER_ID, "asin": "B08XYZ1234"}
        )
        assert hint == LinkHint(SALE_ORDER_ID, PURCHASE_ORDER_ID, "B08XYZ1234")

    def test_unhinted_key(self):
        assert _linker().manual_key("999-0000000-0000000") is None
        assert _linker().manual_key(None) is None


def test_shift_day_crosses_month_boundary():
    assert shift_day("2024-01-03", -7) == "2023-12-27"
