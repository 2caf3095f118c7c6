"""
Data quality reporting for stitched timelines.

Orphans, undated rows and guessed links are expected outcomes of stitching
data from unrelated systems, not failures. This module measures them so
they can be shown next to the timeline and fixed at the source.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable

import pandas as pd

from .linking import MatchType
from .timeline import TimelineResult


@dataclass
class DataQualityIssue:
    """A single data quality issue found in a timeline."""

    column: str
    issue_type: str  # e.g., "orphan", "missing_date", "fuzzy_link", "unknown_category"
    severity: str  # "critical", "warning", "info"
    count: int
    percentage: float
    sample_values: list[Any] = field(default_factory=list)
    description: str = ""


@dataclass
class DataQualityReport:
    """Summary report of data quality for one timeline build."""

    source_name: str
    total_rows: int
    issues: list[DataQualityIssue] = field(default_factory=list)

    def by_severity(self, severity: str) -> list[DataQualityIssue]:
        return [i for i in self.issues if i.severity == severity]

    def summary(self) -> dict:
        """Issue counts per severity, for display next to the timeline."""
        counts = Counter(i.severity for i in self.issues)
        return {
            "source": self.source_name,
            "total_rows": self.total_rows,
            "critical": counts["critical"],
            "warnings": counts["warning"],
            "info": counts["info"],
        }


def severity_for(pct: float) -> str:
    return "critical" if pct > 20 else "warning" if pct > 5 else "info"


def events_frame(result: TimelineResult) -> pd.DataFrame:
    """One row per event: id, category, order_key, when, linked_by."""
    return pd.DataFrame(
        [
            {
                "id": e.id,
                "category": e.category.value,
                "order_key": e.order_key,
                "when": e.when,
                "linked_by": e.linked_by.value,
            }
            for e in result.events
        ],
        columns=["id", "category", "order_key", "when", "linked_by"],
    )


class DataQualityChecker:
    """
    Quality checker for stitched timelines.

    Default checks:
    - Orphaned events per category
    - Events without a recognizable date
    - Purchases linked only by SKU

    Extend by adding custom checks via add_check().
    """

    def __init__(self, source_name: str = "Timeline"):
        self.source_name = source_name
        self._checks: list[Callable[[pd.DataFrame], list[DataQualityIssue]]] = []
        self._add_default_checks()

    def _add_default_checks(self):
        """Add default quality checks."""
        self.add_check(self._check_orphans)
        self.add_check(self._check_missing_dates)
        self.add_check(self._check_fuzzy_links)

    def add_check(
        self, check_fn: Callable[[pd.DataFrame], list[DataQualityIssue]]
    ) -> "DataQualityChecker":
        """Add a custom check function. Returns self for chaining."""
        self._checks.append(check_fn)
        return self

    def _check_orphans(self, df: pd.DataFrame) -> list[DataQualityIssue]:
        """Check for events that joined no order, per category."""
        issues = []
        for category, group in df.groupby("category", sort=False):
            orphans = group[group["order_key"].isna()]
            if len(orphans) > 0:
                pct = (len(orphans) / len(group)) * 100
                issues.append(
                    DataQualityIssue(
                        column=str(category),
                        issue_type="orphan",
                        severity=severity_for(pct),
                        count=len(orphans),
                        percentage=pct,
                        sample_values=orphans["id"].head(5).tolist(),
                        description=f"{len(orphans):,} {category} events not linked to an order ({pct:.1f}%)",
                    )
                )
        return issues

    def _check_missing_dates(self, df: pd.DataFrame) -> list[DataQualityIssue]:
        """Check for events that sort first because they have no date."""
        undated = df[df["when"].isna()]
        if len(undated) == 0:
            return []
        pct = (len(undated) / len(df)) * 100
        return [
            DataQualityIssue(
                column="when",
                issue_type="missing_date",
                severity=severity_for(pct),
                count=len(undated),
                percentage=pct,
                sample_values=undated["id"].head(5).tolist(),
                description=f"{len(undated):,} events without a recognizable date",
            )
        ]

    def _check_fuzzy_links(self, df: pd.DataFrame) -> list[DataQualityIssue]:
        """Check for purchases linked by SKU alone (may be the wrong sale)."""
        purchases = df[df["category"] == "purchase"]
        fuzzy = purchases[purchases["linked_by"] == MatchType.SKU_FALLBACK.value]
        if len(fuzzy) == 0:
            return []
        pct = (len(fuzzy) / len(purchases)) * 100
        return [
            DataQualityIssue(
                column="purchase",
                issue_type="fuzzy_link",
                severity="warning",
                count=len(fuzzy),
                percentage=pct,
                sample_values=fuzzy["id"].head(5).tolist(),
                description=f"{len(fuzzy):,} purchases linked by SKU only; verify the order",
            )
        ]

    def run(self, result: TimelineResult) -> DataQualityReport:
        """Run all checks and return a quality report."""
        df = events_frame(result)
        all_issues = []
        if len(df) > 0:
            for check_fn in self._checks:
                all_issues.extend(check_fn(df))

        if result.dropped_categories:
            all_issues.append(
                DataQualityIssue(
                    column="category",
                    issue_type="unknown_category",
                    severity="warning",
                    count=len(result.dropped_categories),
                    percentage=0.0,
                    sample_values=result.dropped_categories[:5],
                    description="Row groups with an unknown category were dropped",
                )
            )

        return DataQualityReport(
            source_name=self.source_name, total_rows=len(df), issues=all_issues
        )


def check_timeline(result: TimelineResult) -> DataQualityReport:
    return DataQualityChecker().run(result)
