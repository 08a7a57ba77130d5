"""
Client Revenue Dashboard — controller and CLI

Drives the two views of the dashboard: the list of (non-admin) users, and the
per-user stacked revenue chart.  Opening a chart fetches the user's five
revenue sources concurrently, aggregates them into the seven-day table and
renders it; only one chart is ever alive at a time.

Usage:
    from revenue_dashboard.dashboard import RevenueDashboard

    async with RevenueDashboard() as dashboard:
        users = await dashboard.load_users()
        view = await dashboard.show_user_chart(users[0])
        dashboard.back()

CLI:
    python -m revenue_dashboard.dashboard users
    python -m revenue_dashboard.dashboard chart --user-id 42 --output chart.html
    python -m revenue_dashboard.dashboard chart --user-id 42 --format markdown
    python -m revenue_dashboard.dashboard packages --user-id 42
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from revenue_dashboard.charting import (
    ChartRenderer,
    ChartSpec,
    PlotlyRenderer,
    build_chart_spec,
)
from revenue_dashboard.data_gateway import DataGateway, DataGatewayError, Row
from revenue_dashboard.revenue_aggregator import (
    DAYS_OF_WEEK,
    PackageStats,
    RevenueAggregator,
    RevenueBreakdown,
    format_breakdown,
    summarize_packages,
)

logger = logging.getLogger("dashboard")

# ---------------------------------------------------------------------------
# Table queries
# ---------------------------------------------------------------------------

USERS_TABLE = "users"
USER_COLUMNS = ["id", "first_name", "last_name", "email"]
USER_FILTERS = {"is_admin": "0"}

_WEEK_COLUMNS = ["user_id", *DAYS_OF_WEEK, "Week_Cost"]

# source name -> (table, columns), in aggregate() argument order
SOURCE_QUERIES: Dict[str, tuple] = {
    "packages": ("manual_charges", ["user_id", "frequency", "cost", "name"]),
    "email_weeks": ("Daily_Email_Cost_Record", _WEEK_COLUMNS),
    "chat_weeks": ("Daily_Chat_Record_Cost_Record", _WEEK_COLUMNS),
    "call_weeks": ("Daily_Calls_Cost_Record", _WEEK_COLUMNS),
    "invoices": ("Invoices_Pending", ["user_id", "paymentamount", "dateended"]),
}


# ===================================================================
# Data Classes
# ===================================================================


@dataclass
class UserRecord:
    """A row of the users table."""
    id: Any
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @classmethod
    def from_row(cls, row: Row) -> UserRecord:
        return cls(
            id=row.get("id"),
            first_name=str(row.get("first_name") or ""),
            last_name=str(row.get("last_name") or ""),
            email=str(row.get("email") or ""),
        )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def chart_title(self) -> str:
        return f"Revenue Breakdown: {self.display_name} (ID: {self.id})"


@dataclass
class UserSources:
    """The five source tables of one user, already filtered server-side."""
    packages: List[Row] = field(default_factory=list)
    email_weeks: List[Row] = field(default_factory=list)
    chat_weeks: List[Row] = field(default_factory=list)
    call_weeks: List[Row] = field(default_factory=list)
    invoices: List[Row] = field(default_factory=list)


@dataclass
class ChartView:
    """A rendered chart and the data behind it."""
    user: UserRecord
    breakdown: RevenueBreakdown
    spec: ChartSpec
    handle: Any = None


# ===================================================================
# Fetching
# ===================================================================


async def fetch_user_sources(gateway: DataGateway, user_id: Any) -> UserSources:
    """Fetch the five revenue sources of *user_id* concurrently.

    The first failing fetch propagates; the others are left to finish on
    their own since they are read-only.
    """
    filters = {"user_id": user_id}
    results = await asyncio.gather(*(
        gateway.fetch_rows(table, columns, filters)
        for table, columns in SOURCE_QUERIES.values()
    ))
    return UserSources(**dict(zip(SOURCE_QUERIES, results)))


# ===================================================================
# RevenueDashboard
# ===================================================================


class RevenueDashboard:
    """
    Controller for the user list and the single active revenue chart.

    Parameters
    ----------
    gateway : DataGateway
        Table query client.  A default one is created when omitted.
    renderer : ChartRenderer
        Draws chart specs.  Defaults to :class:`PlotlyRenderer`.
    """

    def __init__(
        self,
        gateway: Optional[DataGateway] = None,
        renderer: Optional[ChartRenderer] = None,
        aggregator: Optional[RevenueAggregator] = None,
    ) -> None:
        self.gateway = gateway or DataGateway()
        self.renderer = renderer or PlotlyRenderer()
        self.aggregator = aggregator or RevenueAggregator()
        self._chart: Optional[ChartView] = None
        # Bumped whenever the view changes; stale fetches compare against it
        self._generation = 0

    @property
    def active_chart(self) -> Optional[ChartView]:
        return self._chart

    # -- Views --------------------------------------------------------------

    async def load_users(self) -> List[UserRecord]:
        """Fetch the non-admin users for the list view."""
        rows = await self.gateway.fetch_rows(USERS_TABLE, USER_COLUMNS, USER_FILTERS)
        users = [UserRecord.from_row(row) for row in rows if isinstance(row, Mapping)]
        logger.info("Loaded %d users", len(users))
        return users

    async def load_package_stats(self, user: UserRecord) -> PackageStats:
        table, columns = SOURCE_QUERIES["packages"]
        rows = await self.gateway.fetch_rows(table, columns, {"user_id": user.id})
        return summarize_packages(rows)

    async def show_user_chart(self, user: UserRecord) -> Optional[ChartView]:
        """
        Build and render the revenue chart for *user*.

        Any previous chart is torn down first.  Returns ``None`` when the view
        moved on (``back()`` or another chart request) before the data
        arrived; that result is discarded.

        Raises
        ------
        DataGatewayError
            When any of the five source fetches fails.  No chart is kept.
        """
        self._teardown()
        self._generation += 1
        generation = self._generation

        logger.info("Loading revenue chart for user %s", user.id)
        try:
            sources = await fetch_user_sources(self.gateway, user.id)
        except DataGatewayError as exc:
            logger.error("Error loading chart for user %s: %s", user.id, exc)
            raise

        if generation != self._generation:
            logger.info("Discarding stale chart data for user %s", user.id)
            return None

        breakdown = self.aggregator.aggregate(
            sources.packages,
            sources.email_weeks,
            sources.chat_weeks,
            sources.call_weeks,
            sources.invoices,
        )
        spec = build_chart_spec(breakdown, title=user.chart_title)
        view = ChartView(user=user, breakdown=breakdown, spec=spec)
        view.handle = self.renderer.render(spec)
        self._chart = view
        return view

    def back(self) -> None:
        """Return to the user list, tearing down the active chart."""
        self._generation += 1
        self._teardown()

    def _teardown(self) -> None:
        if self._chart is None:
            return
        if self._chart.handle is not None:
            self.renderer.destroy(self._chart.handle)
        logger.debug("Destroyed chart for user %s", self._chart.user.id)
        self._chart = None

    # -- Lifecycle ----------------------------------------------------------

    async def close(self) -> None:
        self._teardown()
        await self.gateway.close()

    async def __aenter__(self) -> RevenueDashboard:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# ===================================================================
# CLI Entry Point
# ===================================================================


def _format_users(users: List[UserRecord]) -> str:
    if not users:
        return "No users found."
    lines = [f"{'ID':<8} {'First Name':<16} {'Last Name':<16} Email", "=" * 64]
    for u in users:
        lines.append(f"{str(u.id):<8} {u.first_name:<16} {u.last_name:<16} {u.email}")
    return "\n".join(lines)


async def _resolve_user(dashboard: RevenueDashboard, user_id: str) -> UserRecord:
    """Find *user_id* in the user list, falling back to a bare record."""
    for user in await dashboard.load_users():
        if str(user.id) == user_id:
            return user
    logger.warning("User %s not in the user list; charting by id only", user_id)
    return UserRecord(id=user_id)


async def _cli_run(args) -> int:
    async with RevenueDashboard() as dashboard:
        if args.command == "users":
            try:
                users = await dashboard.load_users()
            except DataGatewayError as exc:
                print(f"Error loading users: {exc}", file=sys.stderr)
                return 1
            print(_format_users(users))

        elif args.command == "chart":
            try:
                user = await _resolve_user(dashboard, args.user_id)
                view = await dashboard.show_user_chart(user)
            except DataGatewayError as exc:
                print(f"Error loading chart: {exc}", file=sys.stderr)
                return 1
            print(format_breakdown(view.breakdown, style=args.format, title=view.spec.title))
            if args.output and isinstance(dashboard.renderer, PlotlyRenderer):
                path = dashboard.renderer.write_html(view.handle, args.output)
                print(f"\nChart saved to {path}")
            dashboard.back()

        elif args.command == "packages":
            try:
                stats = await dashboard.load_package_stats(UserRecord(id=args.user_id))
            except DataGatewayError as exc:
                print(f"Error loading packages: {exc}", file=sys.stderr)
                return 1
            print(f"PACKAGES FOR USER {args.user_id}")
            print(f"{'=' * 35}")
            print(f"  Count:          {stats.package_count}")
            print(f"  Weekly revenue: ${stats.weekly_package_revenue:,.2f}")
            print(f"  Names:          {stats.package_names}")
    return 0


def _cli_main() -> None:
    """CLI entry point: python -m revenue_dashboard.dashboard <command> [options]."""
    import argparse

    parser = argparse.ArgumentParser(
        prog="revenue-dashboard",
        description="Client Revenue Dashboard — CLI Interface",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- users ---
    subparsers.add_parser("users", help="List non-admin users")

    # --- chart ---
    p_chart = subparsers.add_parser("chart", help="Daily revenue breakdown for one user")
    p_chart.add_argument("--user-id", required=True, help="User ID")
    p_chart.add_argument("--format", choices=["text", "markdown", "json"],
                         default="text", help="Table output format (default: text)")
    p_chart.add_argument("--output", help="Write the stacked bar chart to this HTML file")

    # --- packages ---
    p_pkg = subparsers.add_parser("packages", help="Package summary for one user")
    p_pkg.add_argument("--user-id", required=True, help="User ID")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    sys.exit(asyncio.run(_cli_run(args)))


if __name__ == "__main__":
    _cli_main()
