"""
Revenue Aggregator — Client Revenue Dashboard

Folds the five per-user source tables into a seven-day revenue table with one
bucket per revenue category.

Categories:
    PACKAGES  — flat recurring charges (manual_charges), smeared evenly
    EMAILS    — per-day email overage beyond the package threshold
    CHATS     — per-day chat cost (daily total or per-conversation rate)
    CALLS     — per-day call cost
    INVOICES  — pending invoices, credited to the weekday they ended on

Every amount is read defensively: a missing, empty or non-numeric value counts
as zero and never aborts the fold.

Usage:
    from revenue_dashboard.revenue_aggregator import aggregate, format_breakdown

    breakdown = aggregate(packages, email_weeks, chat_weeks, call_weeks, invoices)
    print(format_breakdown(breakdown))
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

logger = logging.getLogger("revenue_aggregator")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DAYS_OF_WEEK: tuple[str, ...] = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)

CATEGORIES: tuple[str, ...] = ("packages", "emails", "chats", "calls", "invoices")

# Package charges and invoices are spread over a seven-day week
DAYS_PER_WEEK = 7

# Non-ISO date layouts still seen in invoice exports
_FALLBACK_DATE_FORMATS = ("%m/%d/%Y", "%Y/%m/%d", "%d %b %Y", "%b %d, %Y")

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _to_amount(value: Any) -> float:
    """Read a monetary or count value, returning 0.0 when it is not a number.

    Strings are read up to the first non-numeric character, so ``"12.50 USD"``
    is 12.5 and ``"n/a"`` is 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if not match:
            return 0.0
        number = float(match.group(0))
    else:
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _round_amount(amount: float) -> float:
    return round(float(amount), 2)


def _parse_when(value: Any) -> Optional[date]:
    """Parse a date-ish value (ISO string, datetime, epoch millis) to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        # ISO timestamps older interpreters reject, e.g. millisecond fractions
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def resolve_weekday(value: Any) -> Optional[str]:
    """Return the day name (``"Sunday"`` … ``"Saturday"``) for *value*, or None."""
    when = _parse_when(value)
    if when is None:
        return None
    # date.weekday() is Monday=0; the table is Sunday-first
    return DAYS_OF_WEEK[(when.weekday() + 1) % 7]


# ===================================================================
# Per-day cost records
# ===================================================================


@dataclass(frozen=True)
class EmailDayCost:
    """One day of a Daily_Email_Cost_Record week."""
    emails: float = 0.0
    email_threshold: float = 0.0
    email_cost_overage: float = 0.0

    @classmethod
    def from_row(cls, data: Mapping) -> EmailDayCost:
        return cls(
            emails=_to_amount(data.get("emails")),
            email_threshold=_to_amount(data.get("email_threshold")),
            email_cost_overage=_to_amount(data.get("email_cost_overage")),
        )

    @property
    def overage(self) -> float:
        return max(0.0, self.emails - self.email_threshold)

    @property
    def charge(self) -> float:
        return max(0.0, self.overage * self.email_cost_overage)


@dataclass(frozen=True)
class ChatDayCost:
    """One day of a Daily_Chat_Record_Cost_Record week."""
    daily_cost: float = 0.0
    chats: float = 0.0
    chat_per_conversation_cost: float = 0.0

    @classmethod
    def from_row(cls, data: Mapping) -> ChatDayCost:
        return cls(
            daily_cost=_to_amount(data.get("daily_cost")),
            chats=_to_amount(data.get("chats")),
            chat_per_conversation_cost=_to_amount(data.get("chat_per_conversation_cost")),
        )

    @property
    def charge(self) -> float:
        if self.daily_cost:
            return max(0.0, self.daily_cost)
        return max(0.0, self.chats * self.chat_per_conversation_cost)


@dataclass(frozen=True)
class CallDayCost:
    """One day of a Daily_Calls_Cost_Record week."""
    cost: float = 0.0
    daily_cost: float = 0.0

    @classmethod
    def from_row(cls, data: Mapping) -> CallDayCost:
        return cls(
            cost=_to_amount(data.get("cost")),
            daily_cost=_to_amount(data.get("daily_cost")),
        )

    @property
    def charge(self) -> float:
        return max(0.0, self.cost or self.daily_cost)


# ===================================================================
# Result Data Classes
# ===================================================================


@dataclass
class DayBucket:
    """Revenue for one day name, split by category."""
    packages: float = 0.0
    emails: float = 0.0
    chats: float = 0.0
    calls: float = 0.0
    invoices: float = 0.0

    @property
    def total(self) -> float:
        return self.packages + self.emails + self.chats + self.calls + self.invoices

    def to_dict(self) -> dict:
        return asdict(self)


def _empty_days() -> dict[str, DayBucket]:
    return {day: DayBucket() for day in DAYS_OF_WEEK}


@dataclass
class RevenueTable:
    """Seven day buckets keyed by day name, Sunday first.

    All seven keys are present from construction on.
    """
    days: dict[str, DayBucket] = field(default_factory=_empty_days)

    def __getitem__(self, day: str) -> DayBucket:
        return self.days[day]

    def __contains__(self, day: object) -> bool:
        return day in self.days

    def __iter__(self):
        return iter(self.days)

    def __len__(self) -> int:
        return len(self.days)

    def items(self):
        return self.days.items()

    def to_dict(self) -> dict:
        return {day: bucket.to_dict() for day, bucket in self.days.items()}


@dataclass
class RevenueBreakdown:
    """Aggregation result for one user: the table plus chart-ready views."""
    table: RevenueTable = field(default_factory=RevenueTable)

    @property
    def labels(self) -> list[str]:
        return list(DAYS_OF_WEEK)

    def series(self) -> dict[str, list[float]]:
        """One value per day, in day order, for each category."""
        return {
            category: [getattr(self.table[day], category) for day in DAYS_OF_WEEK]
            for category in CATEGORIES
        }

    def daily_totals(self) -> list[float]:
        return [self.table[day].total for day in DAYS_OF_WEEK]

    @property
    def total(self) -> float:
        return sum(self.daily_totals())

    def by_category(self) -> dict[str, float]:
        return {category: sum(values) for category, values in self.series().items()}

    def to_dict(self) -> dict:
        return {
            "labels": self.labels,
            "table": self.table.to_dict(),
            "series": self.series(),
            "daily_totals": self.daily_totals(),
            "total": self.total,
        }


@dataclass
class PackageStats:
    """Summary of a user's manual charges."""
    package_count: int = 0
    weekly_package_revenue: float = 0.0
    package_names: str = "None"
    packages: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ===================================================================
# RevenueAggregator
# ===================================================================


def _mappings(rows: Optional[Iterable[Any]]) -> list[Mapping]:
    """Keep only the rows that are mappings."""
    if not rows:
        return []
    rows = list(rows)
    kept = [row for row in rows if isinstance(row, Mapping)]
    if len(kept) != len(rows):
        logger.debug("Skipped %d non-mapping rows during aggregation", len(rows) - len(kept))
    return kept


def weekly_package_total(packages: Optional[Iterable[Any]]) -> float:
    """Sum of the ``cost`` field across package rows, negative costs counted as 0."""
    return sum(max(0.0, _to_amount(pkg.get("cost"))) for pkg in _mappings(packages))


class RevenueAggregator:
    """
    Stateless fold from the five source tables into a :class:`RevenueBreakdown`.

    Every call builds a fresh table, so one instance may be shared freely.
    """

    def aggregate(
        self,
        packages: Optional[Iterable[Any]] = None,
        email_weeks: Optional[Iterable[Any]] = None,
        chat_weeks: Optional[Iterable[Any]] = None,
        call_weeks: Optional[Iterable[Any]] = None,
        invoices: Optional[Iterable[Any]] = None,
    ) -> RevenueBreakdown:
        table = RevenueTable()

        self._apply_packages(table, packages)
        self._apply_weekly(table, email_weeks, "emails", EmailDayCost)
        self._apply_weekly(table, chat_weeks, "chats", ChatDayCost)
        self._apply_weekly(table, call_weeks, "calls", CallDayCost)
        self._apply_invoices(table, invoices)

        breakdown = RevenueBreakdown(table)
        logger.debug("Aggregated weekly revenue total: %.2f", breakdown.total)
        return breakdown

    # -- Category folds -----------------------------------------------------

    def _apply_packages(self, table: RevenueTable, packages: Optional[Iterable[Any]]) -> None:
        daily_package_cost = weekly_package_total(packages) / DAYS_PER_WEEK
        for day in DAYS_OF_WEEK:
            table[day].packages = daily_package_cost

    def _apply_weekly(
        self,
        table: RevenueTable,
        weeks: Optional[Iterable[Any]],
        category: str,
        record_cls: type,
    ) -> None:
        for week in _mappings(weeks):
            for day in DAYS_OF_WEEK:
                day_data = week.get(day)
                if not isinstance(day_data, Mapping):
                    continue
                bucket = table[day]
                charge = record_cls.from_row(day_data).charge
                setattr(bucket, category, getattr(bucket, category) + charge)

    def _apply_invoices(self, table: RevenueTable, invoices: Optional[Iterable[Any]]) -> None:
        for invoice in _mappings(invoices):
            amount = max(0.0, _to_amount(invoice.get("paymentamount")))
            day_name = resolve_weekday(invoice.get("dateended"))
            if day_name not in table:
                logger.debug(
                    "Dropping invoice with unresolvable end date: %r", invoice.get("dateended"),
                )
                continue
            table[day_name].invoices += amount / DAYS_PER_WEEK


# ===================================================================
# Package summary
# ===================================================================


def summarize_packages(packages: Optional[Iterable[Any]]) -> PackageStats:
    """Count, weekly revenue and names of a user's manual charges."""
    rows = [dict(pkg) for pkg in _mappings(packages)]
    names = [str(pkg["name"]) for pkg in rows if pkg.get("name")]
    return PackageStats(
        package_count=len(rows),
        weekly_package_revenue=weekly_package_total(rows),
        package_names=", ".join(names) or "None",
        packages=rows,
    )


# ===================================================================
# Formatting
# ===================================================================


def format_breakdown(breakdown: RevenueBreakdown, style: str = "text", title: str = "") -> str:
    """Format a RevenueBreakdown in the requested style.

    Styles:
        text     — fixed-width table for terminals
        markdown — markdown table
        json     — raw JSON string
    """
    if style == "json":
        return json.dumps(breakdown.to_dict(), indent=2, default=str)
    if style == "markdown":
        return _format_breakdown_markdown(breakdown, title)
    return _format_breakdown_text(breakdown, title)


def _format_breakdown_text(breakdown: RevenueBreakdown, title: str) -> str:
    lines: list[str] = []
    lines.append(title or "DAILY REVENUE BY SOURCE")
    header = f"{'Day':<10}" + "".join(f"{c.title():>11}" for c in CATEGORIES) + f"{'Total':>11}"
    lines.append("=" * len(header))
    lines.append(header)
    lines.append("-" * len(header))
    for day, bucket in breakdown.table.items():
        cells = "".join(f"{getattr(bucket, c):>11,.2f}" for c in CATEGORIES)
        lines.append(f"{day:<10}{cells}{bucket.total:>11,.2f}")
    lines.append("-" * len(header))
    totals = breakdown.by_category()
    cells = "".join(f"{totals[c]:>11,.2f}" for c in CATEGORIES)
    lines.append(f"{'TOTAL':<10}{cells}{breakdown.total:>11,.2f}")
    return "\n".join(lines)


def _format_breakdown_markdown(breakdown: RevenueBreakdown, title: str) -> str:
    lines: list[str] = []
    lines.append(f"# {title or 'Daily Revenue by Source'}")
    lines.append("")
    lines.append("| Day | " + " | ".join(c.title() for c in CATEGORIES) + " | Total |")
    lines.append("|-----|" + "|".join("------" for _ in CATEGORIES) + "|-------|")
    for day, bucket in breakdown.table.items():
        cells = " | ".join(f"${_round_amount(getattr(bucket, c)):,.2f}" for c in CATEGORIES)
        lines.append(f"| {day} | {cells} | ${_round_amount(bucket.total):,.2f} |")
    lines.append("")
    lines.append(f"**Week total:** ${breakdown.total:,.2f}")
    return "\n".join(lines)


# ===================================================================
# Module-Level Convenience API
# ===================================================================

_aggregator = RevenueAggregator()


def aggregate(
    packages: Optional[Iterable[Any]] = None,
    email_weeks: Optional[Iterable[Any]] = None,
    chat_weeks: Optional[Iterable[Any]] = None,
    call_weeks: Optional[Iterable[Any]] = None,
    invoices: Optional[Iterable[Any]] = None,
) -> RevenueBreakdown:
    """Convenience: aggregate via the shared stateless aggregator."""
    return _aggregator.aggregate(packages, email_weeks, chat_weeks, call_weeks, invoices)
