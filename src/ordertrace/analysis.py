"""
Lifecycle segment analysis.

Computes, per named segment (a pair of milestones), the average number of
whole days between the two milestones across all ASINs that reached both.
"""

from typing import Any, Iterable, Mapping

import numpy as np
import pandas as pd

from .sla import EventType, LifecycleEvent, SlaSettings, group_by_asin, to_utc

SEGMENTS = {
    "in_to_uspo": (EventType.ORDER_PLACED, EventType.PO_CREATED),
    "usship_to_stackry": (EventType.US_SHIPPED, EventType.FORWARDER_RECEIVED),
    "export_to_customs": (EventType.EXPORTED, EventType.CUSTOMS_CLEARED),
    "delivered_to_payment": (EventType.DELIVERED, EventType.PAYMENT_RECEIVED),
}


def lifecycle_frame(events: Iterable[LifecycleEvent | Mapping[str, Any]]) -> pd.DataFrame:
    """
    Flatten events into a DataFrame with columns asin, type, timestamp (UTC).

    Events without an ASIN or with an unparseable timestamp are dropped.
    """
    records = [
        {"asin": asin, "type": event.type, "timestamp": to_utc(event.timestamp)}
        for asin, asin_events in group_by_asin(events).items()
        for event in asin_events
    ]
    frame = pd.DataFrame(records, columns=["asin", "type", "timestamp"])
    frame = frame[frame["timestamp"].notna()].copy()
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    return frame


def segment_observations(events: Iterable[LifecycleEvent | Mapping[str, Any]]) -> pd.DataFrame:
    """
    Whole days between each segment's milestones, one row per ASIN.

    Uses the first event of each type per ASIN. Days are the absolute
    difference, floored. ASINs missing either milestone get NaN.
    """
    frame = lifecycle_frame(events)
    if len(frame) == 0:
        return pd.DataFrame(columns=["asin", *SEGMENTS])

    first_seen = frame.drop_duplicates(subset=["asin", "type"], keep="first").pivot(
        index="asin", columns="type", values="timestamp"
    )

    observations = pd.DataFrame(index=first_seen.index)
    for name, (start, end) in SEGMENTS.items():
        if start.value in first_seen.columns and end.value in first_seen.columns:
            gap = (first_seen[end.value] - first_seen[start.value]).abs()
            observations[name] = gap.dt.days
        else:
            observations[name] = np.nan

    return observations.reset_index()


def compute_segment_averages(
    events: Iterable[LifecycleEvent | Mapping[str, Any]],
    battery_extra_days: float | None = None,
) -> dict:
    """
    Average days per segment across ASINs with a complete pair.

    Segments nobody completed report 0. battery_extra_days is passed
    through for display next to the averages and never changes them.

    Returns dict with:
    - segments: {segment name: average days}
    - batteryExtraDays
    """
    if battery_extra_days is None:
        battery_extra_days = SlaSettings.from_settings().battery_extra_days

    observations = segment_observations(events)

    segments = {}
    for name in SEGMENTS:
        values = pd.to_numeric(observations[name], errors="coerce").dropna()
        segments[name] = float(values.mean()) if len(values) > 0 else 0.0

    return {
        "segments": segments,
        "batteryExtraDays": battery_extra_days,
    }
