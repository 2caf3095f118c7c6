"""
SLA evaluation over product lifecycle events.

Rules:
  - MISSED_US_PO: order placed, no US purchase order after po_hours (red)
  - CUSTOMS_TIMEOUT: exported, not cleared after customs_days (yellow) or
    after CUSTOMS_RED_DAYS (red). Battery products get extra days on both.

Evaluation is stateless: every pass looks at the full event log and
replaces the previous alert set.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Literal, Mapping

import numpy as np
import pandas as pd
import structlog
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings, get_settings
from .parsers import extract_asin

logger = structlog.get_logger()

CUSTOMS_RED_DAYS = 6
ALERT_NAMESPACE = uuid.UUID("6f1c0e7a-52a4-4c55-9a43-1d1f6b2c9e10")


class EventType(str, Enum):
    """Lifecycle milestones reported per ASIN."""

    ORDER_PLACED = "IN_ORDER"
    PO_CREATED = "US_PO"
    US_SHIPPED = "US_SHIP"
    FORWARDER_RECEIVED = "STACKRY_RCVD"
    EXPORTED = "EXPORT"
    CUSTOMS_CLEARED = "CUSTOMS_CLEAR"
    DELIVERED = "DELIVERED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"


class AlertKind(str, Enum):
    MISSED_US_PO = "MISSED_US_PO"
    CUSTOMS_TIMEOUT = "CUSTOMS_TIMEOUT"


@dataclass
class LifecycleEvent:
    """A milestone for one product; data["asin"] (or an ASIN in data["title"]) is the grouping key."""

    id: str
    type: str
    timestamp: Any
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LifecycleEvent":
        return cls(
            id=str(payload.get("id", "")),
            type=str(payload.get("type", "")),
            timestamp=payload.get("timestamp"),
            data=dict(payload.get("data") or {}),
        )

    @property
    def asin(self) -> str | None:
        # Some feeds only carry the ASIN inside the product title
        return self.data.get("asin") or extract_asin(self.data.get("title"))


class SlaSettings(BaseModel):
    """Thresholds for one evaluation pass."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    po_hours: float = Field(default=12, ge=0, alias="poHours")
    customs_days: float = Field(default=4, ge=0, alias="customsDays")
    battery_extra_days: float = Field(default=3, ge=0, alias="batteryExtraDays")
    two_person_rule: bool = Field(default=False, alias="twoPersonRule")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SlaSettings":
        settings = settings or get_settings()
        return cls(
            po_hours=settings.sla_po_hours,
            customs_days=settings.sla_customs_days,
            battery_extra_days=settings.battery_extra_days,
            two_person_rule=settings.two_person_rule,
        )


class Alert(BaseModel):
    """An SLA breach for one ASIN."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    asin: str
    severity: Literal["red", "yellow"]
    kind: AlertKind
    message: str
    created_at: str = Field(alias="createdAt", description="ISO timestamp of the pass")
    acknowledged_by: str | None = Field(default=None, alias="acknowledgedBy")


def to_utc(value: Any) -> pd.Timestamp | None:
    """Parse a timestamp as UTC (naive values are taken as UTC), or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float, np.integer, np.floating)):
            # Epoch milliseconds, as in the parsers; DataFrame columns give numpy scalars
            ts = pd.Timestamp(value, unit="ms")
        else:
            ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def format_created_at(now: pd.Timestamp) -> str:
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _alert(
    asin: str, severity: str, kind: AlertKind, message: str, created_at: str
) -> Alert:
    alert_id = uuid.uuid5(ALERT_NAMESPACE, f"{asin}|{kind.value}|{created_at}")
    return Alert(
        id=str(alert_id),
        asin=asin,
        severity=severity,
        kind=kind,
        message=message,
        created_at=created_at,
    )


def group_by_asin(events: Iterable[LifecycleEvent | Mapping[str, Any]]) -> dict[str, list[LifecycleEvent]]:
    """Group events by ASIN in input order; events without one are dropped."""
    grouped: dict[str, list[LifecycleEvent]] = {}
    for event in events:
        if not isinstance(event, LifecycleEvent):
            event = LifecycleEvent.from_dict(event)
        asin = event.asin
        if asin:
            grouped.setdefault(str(asin), []).append(event)
    return grouped


def first_of_type(events: list[LifecycleEvent], event_type: EventType) -> LifecycleEvent | None:
    for event in events:
        if event.type == event_type.value:
            return event
    return None


def classify_customs_severity(
    days_since_export: float,
    customs_days: float,
    extra_days: float,
) -> str | None:
    """Red past CUSTOMS_RED_DAYS, else yellow past customs_days, both plus extra_days."""
    if days_since_export > CUSTOMS_RED_DAYS + extra_days:
        return "red"
    elif days_since_export > customs_days + extra_days:
        return "yellow"
    return None


def check_missed_po(
    asin: str,
    events: list[LifecycleEvent],
    settings: SlaSettings,
    now: pd.Timestamp,
) -> Alert | None:
    placed = first_of_type(events, EventType.ORDER_PLACED)
    if placed is None or first_of_type(events, EventType.PO_CREATED) is not None:
        return None

    placed_at = to_utc(placed.timestamp)
    if placed_at is None:
        return None

    hours_since_order = (now - placed_at).total_seconds() / 3600
    if hours_since_order > settings.po_hours:
        return _alert(
            asin,
            "red",
            AlertKind.MISSED_US_PO,
            f"US PO not created within {settings.po_hours:g} hours of order",
            format_created_at(now),
        )
    return None


def check_customs_timeout(
    asin: str,
    events: list[LifecycleEvent],
    settings: SlaSettings,
    now: pd.Timestamp,
    is_battery: bool,
) -> Alert | None:
    exported = first_of_type(events, EventType.EXPORTED)
    if exported is None or first_of_type(events, EventType.CUSTOMS_CLEARED) is not None:
        return None

    exported_at = to_utc(exported.timestamp)
    if exported_at is None:
        return None

    extra = settings.battery_extra_days if is_battery else 0
    days_since_export = (now - exported_at).total_seconds() / 86400
    severity = classify_customs_severity(days_since_export, settings.customs_days, extra)
    if severity is None:
        return None

    suffix = " (battery product)" if is_battery else ""
    if severity == "red":
        overdue = math.floor(days_since_export - (CUSTOMS_RED_DAYS + extra) + 0.5)
        message = f"Customs clearance overdue by {overdue} days{suffix}"
    else:
        message = f"Customs clearance approaching deadline{suffix}"

    return _alert(asin, severity, AlertKind.CUSTOMS_TIMEOUT, message, format_created_at(now))


def dedupe_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    """Keep the latest alert per (asin, kind); earlier findings are superseded."""
    latest: dict[tuple[str, AlertKind], Alert] = {}
    for alert in alerts:
        key = (alert.asin, alert.kind)
        existing = latest.get(key)
        if existing is None:
            latest[key] = alert
            continue
        created, previous = to_utc(alert.created_at), to_utc(existing.created_at)
        if previous is None or (created is not None and created > previous):
            latest[key] = alert
    return list(latest.values())


def evaluate_alerts(
    events: Iterable[LifecycleEvent | Mapping[str, Any]],
    settings: SlaSettings | None = None,
    now: datetime | None = None,
    battery_asins: Mapping[str, bool] | None = None,
    prior_alerts: Iterable[Alert] | None = None,
) -> list[Alert]:
    """
    Evaluate every ASIN's events against the SLA thresholds.

    Identical events, settings and `now` always give identical alerts
    (ids included).

    Args:
        settings: Thresholds; defaults to the configured values
        now: Evaluation time (defaults to current UTC time)
        battery_asins: asin -> True for battery products
        prior_alerts: Alerts from an earlier pass, superseded per (asin, kind)
    """
    settings = settings or SlaSettings.from_settings()
    battery_asins = battery_asins or {}
    now_utc = to_utc(now if now is not None else datetime.now(timezone.utc))

    grouped = group_by_asin(events)
    alerts: list[Alert] = list(prior_alerts or [])

    for asin, asin_events in grouped.items():
        is_battery = bool(battery_asins.get(asin, False))

        missed_po = check_missed_po(asin, asin_events, settings, now_utc)
        if missed_po:
            alerts.append(missed_po)

        customs = check_customs_timeout(asin, asin_events, settings, now_utc, is_battery)
        if customs:
            alerts.append(customs)

    result = dedupe_alerts(alerts)
    logger.info(
        "sla.evaluate.completed",
        asins=len(grouped),
        alerts=len(result),
        red=sum(1 for a in result if a.severity == "red"),
    )
    return result


def can_complete_second_step(
    settings: SlaSettings,
    first_step_user: str | None,
    current_user: str,
) -> bool:
    """
    Two-person rule for checklist sign-off.

    With the rule on, whoever completed the first step may not complete the
    second.
    """
    if not settings.two_person_rule:
        return True
    if not first_step_user:
        return True
    return first_step_user != current_user
