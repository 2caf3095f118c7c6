"""
Timeline stitcher: per-order threads from multi-source rows.

Rows arrive grouped by the category the caller assigned them. Each row
becomes one event; events sharing an order key form a thread, the rest are
kept as orphans. The whole structure is rebuilt on every run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping

import structlog

from .linking import LinkHint, MatchType, PurchaseLinker, SalesIndex
from .parsers import is_missing, resolve_order_key, row_event_date

logger = structlog.get_logger()


class Category(str, Enum):
    """Source category of a row, in event-creation order."""

    SALES = "sales"
    PURCHASE = "purchase"
    INTL_SHIPMENT = "intl_shipment"
    NATL_SHIPMENT = "natl_shipment"
    PAYMENT = "payment"
    REFUND = "refund"
    CANCEL = "cancel"


@dataclass
class RowGroup:
    category: str
    rows: list[Mapping[str, Any]]


@dataclass
class TimelineEvent:
    """One source row placed on the timeline."""

    id: str
    category: Category
    raw: Mapping[str, Any]
    order_key: str | None = None
    when: str | None = None
    linked_by: MatchType = MatchType.UNMATCHED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "orderKey": self.order_key,
            "when": self.when,
            "raw": dict(self.raw),
        }


@dataclass
class OrderThread:
    order_key: str
    events: list[TimelineEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "orderKey": self.order_key,
            "events": [e.to_dict() for e in self.events],
        }


@dataclass
class TimelineResult:
    """Threads, orphans and build time of one stitching run."""

    by_order: dict[str, OrderThread]
    orphan: list[TimelineEvent]
    last_build_at: str
    dropped_categories: list[str] = field(default_factory=list)
    skipped_rows: int = 0

    @property
    def events(self) -> list[TimelineEvent]:
        threaded = [e for thread in self.by_order.values() for e in thread.events]
        return threaded + self.orphan

    def link_counts(self) -> dict[str, int]:
        counts = {match_type.value: 0 for match_type in MatchType}
        for event in self.events:
            counts[event.linked_by.value] += 1
        return counts

    def summary(self) -> dict:
        """Return a summary dict for display."""
        total = len(self.events)
        return {
            "orders": len(self.by_order),
            "events": total,
            "orphans": len(self.orphan),
            "orphan_rate": f"{len(self.orphan) / total:.1%}" if total else "0.0%",
            "skipped_rows": self.skipped_rows,
            "dropped_categories": list(self.dropped_categories),
            "links": self.link_counts(),
        }

    def to_dict(self) -> dict:
        return {
            "byOrder": {key: thread.to_dict() for key, thread in self.by_order.items()},
            "orphan": [e.to_dict() for e in self.orphan],
            "lastBuildAt": self.last_build_at,
        }


def _isoformat(now: datetime) -> str:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def _event_id(row: Mapping[str, Any], category: Category, position: int) -> str:
    for name in ("__id", "id"):
        value = row.get(name)
        if not is_missing(value):
            return str(value)
    return f"{category.value}-{position}"


def bucket_rows(
    groups: Iterable[RowGroup | Mapping[str, Any]],
) -> tuple[dict[Category, list[Mapping[str, Any]]], list[str]]:
    """Append each group's rows to its category bucket; unknown labels are dropped."""
    buckets: dict[Category, list[Mapping[str, Any]]] = {c: [] for c in Category}
    dropped: list[str] = []

    for group in groups:
        if isinstance(group, RowGroup):
            label, rows = group.category, group.rows
        else:
            label, rows = group.get("category"), list(group.get("rows") or [])

        try:
            category = Category(label)
        except ValueError:
            logger.warning("timeline.category.unknown", category=label, rows=len(rows))
            dropped.append(str(label))
            continue

        buckets[category].extend(rows)

    return buckets, dropped


def build_timeline(
    groups: Iterable[RowGroup | Mapping[str, Any]],
    now: datetime | None = None,
    link_hints: Iterable[LinkHint | Mapping[str, Any]] | None = None,
) -> TimelineResult:
    """
    Stitch row groups into per-order threads.

    Sales are indexed before any event is created so that purchases
    without an order id can be linked to them. Each event resolves its own
    key; only purchases fall back to the linker. A row that fails during
    extraction is logged and left out of the result entirely.

    Args:
        groups: [{"category": "sales", "rows": [...]}, ...] or RowGroup objects
        now: Build timestamp (defaults to current UTC time)
        link_hints: Known purchase order -> sales order connections
    """
    buckets, dropped = bucket_rows(groups)
    logger.info(
        "timeline.build.started",
        rows={c.value: len(rows) for c, rows in buckets.items() if rows},
    )

    linker = PurchaseLinker(SalesIndex.build(buckets[Category.SALES]))
    if link_hints:
        linker.add_link_hints(
            h if isinstance(h, LinkHint) else LinkHint.from_dict(h) for h in link_hints
        )

    by_order: dict[str, OrderThread] = {}
    orphan: list[TimelineEvent] = []
    skipped = 0

    for category in Category:
        for position, row in enumerate(buckets[category]):
            try:
                event = _create_event(row, category, position, linker)
            except (AttributeError, TypeError, ValueError, KeyError, ArithmeticError) as exc:
                logger.warning(
                    "timeline.row_skipped",
                    category=category.value,
                    position=position,
                    error=str(exc),
                )
                skipped += 1
                continue

            if event.order_key is None:
                orphan.append(event)
                continue
            thread = by_order.get(event.order_key)
            if thread is None:
                thread = by_order[event.order_key] = OrderThread(event.order_key)
            thread.events.append(event)

    for thread in by_order.values():
        thread.events.sort(key=lambda e: e.when or "")

    result = TimelineResult(
        by_order=by_order,
        orphan=orphan,
        last_build_at=_isoformat(now or datetime.now(timezone.utc)),
        dropped_categories=dropped,
        skipped_rows=skipped,
    )
    logger.info(
        "timeline.build.completed",
        orders=len(by_order),
        orphans=len(orphan),
        skipped=skipped,
    )
    return result


def _create_event(
    row: Mapping[str, Any],
    category: Category,
    position: int,
    linker: PurchaseLinker,
) -> TimelineEvent:
    event = TimelineEvent(
        id=_event_id(row, category, position),
        category=category,
        raw=row,
        when=row_event_date(row),
    )

    order_key = resolve_order_key(row, category.value)
    if order_key:
        hinted = linker.manual_key(order_key)
        if hinted:
            event.order_key, event.linked_by = hinted, MatchType.MANUAL
        else:
            event.order_key, event.linked_by = order_key, MatchType.DIRECT
    elif category is Category.PURCHASE:
        link = linker.link(row)
        event.order_key, event.linked_by = link.order_key, link.match_type

    return event
