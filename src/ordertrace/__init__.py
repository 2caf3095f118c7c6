# Order identity resolution, timeline stitching and SLA alerting
# for marketplace orders spread across unrelated source systems

from .parsers import (
    DateParser,
    SKUNormalizer,
    extract_asin,
    normalize_order_id,
    normalize_sku,
    resolve_order_key,
    to_calendar_date,
)
from .linking import LinkHint, LinkResult, MatchType, PurchaseLinker, SalesIndex
from .timeline import (
    Category,
    OrderThread,
    RowGroup,
    TimelineEvent,
    TimelineResult,
    build_timeline,
)
from .sla import (
    Alert,
    AlertKind,
    EventType,
    LifecycleEvent,
    SlaSettings,
    can_complete_second_step,
    dedupe_alerts,
    evaluate_alerts,
)
from .analysis import compute_segment_averages, segment_observations
from .quality import DataQualityChecker, DataQualityReport, check_timeline

__all__ = [
    "DateParser",
    "SKUNormalizer",
    "extract_asin",
    "normalize_order_id",
    "normalize_sku",
    "resolve_order_key",
    "to_calendar_date",
    "LinkHint",
    "LinkResult",
    "MatchType",
    "PurchaseLinker",
    "SalesIndex",
    "Category",
    "OrderThread",
    "RowGroup",
    "TimelineEvent",
    "TimelineResult",
    "build_timeline",
    "Alert",
    "AlertKind",
    "EventType",
    "LifecycleEvent",
    "SlaSettings",
    "can_complete_second_step",
    "dedupe_alerts",
    "evaluate_alerts",
    "compute_segment_averages",
    "segment_observations",
    "DataQualityChecker",
    "DataQualityReport",
    "check_timeline",
]
