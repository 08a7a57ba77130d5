"""
Stacked revenue chart: a renderer-neutral description plus a Plotly renderer.

:func:`build_chart_spec` turns a :class:`RevenueBreakdown` into a
:class:`ChartSpec`: seven day labels, one stacked dataset per revenue
category and the per-day totals used for the annotation.  Renderers only ever
see the spec.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Union

import plotly.graph_objects as go

from revenue_dashboard.revenue_aggregator import CATEGORIES, RevenueBreakdown

logger = logging.getLogger("charting")

CHART_TITLE = "Daily Revenue by Source"
X_AXIS_TITLE = "Day of Week"
Y_AXIS_TITLE = "Revenue ($)"

CATEGORY_LABELS: dict[str, str] = {
    "packages": "Packages",
    "emails": "Emails",
    "chats": "Chats",
    "calls": "Calls",
    "invoices": "Invoices",
}

CATEGORY_COLORS: dict[str, str] = {
    "packages": "rgba(54, 162, 235, 0.8)",
    "emails": "rgba(255, 206, 86, 0.8)",
    "chats": "rgba(75, 192, 192, 0.8)",
    "calls": "rgba(153, 102, 255, 0.8)",
    "invoices": "rgba(255, 99, 132, 0.8)",
}


@dataclass
class ChartDataset:
    """One stacked series."""
    key: str
    label: str
    data: list[float]
    color: str


@dataclass
class ChartSpec:
    """Everything a renderer needs to draw the stacked bar chart."""
    title: str
    labels: list[str]
    datasets: list[ChartDataset] = field(default_factory=list)
    totals: list[float] = field(default_factory=list)
    subtitle: str = CHART_TITLE
    x_title: str = X_AXIS_TITLE
    y_title: str = Y_AXIS_TITLE
    stacked: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


def format_total_footer(values: Iterable[float]) -> str:
    """Tooltip footer for one day: the sum of its stacked values."""
    return f"Total: ${sum(values):.2f}"


def build_chart_spec(breakdown: RevenueBreakdown, title: str = "") -> ChartSpec:
    series = breakdown.series()
    datasets = [
        ChartDataset(
            key=category,
            label=CATEGORY_LABELS[category],
            data=series[category],
            color=CATEGORY_COLORS[category],
        )
        for category in CATEGORIES
    ]
    return ChartSpec(
        title=title or CHART_TITLE,
        labels=breakdown.labels,
        datasets=datasets,
        totals=breakdown.daily_totals(),
    )


# ===================================================================
# Renderers
# ===================================================================


class ChartRenderer(ABC):
    """Draws a ChartSpec and later releases whatever it drew."""

    @abstractmethod
    def render(self, spec: ChartSpec) -> Any:
        """Draw *spec* and return a handle to the live chart."""
        ...

    @abstractmethod
    def destroy(self, handle: Any) -> None:
        """Release a handle previously returned by :meth:`render`."""
        ...


class PlotlyRenderer(ChartRenderer):
    """Renders specs as stacked Plotly bar figures."""

    def __init__(self, height: int = 480) -> None:
        self.height = height

    def render(self, spec: ChartSpec) -> go.Figure:
        title = spec.title
        if spec.subtitle and spec.subtitle != spec.title:
            title = f"{title}<br><sup>{spec.subtitle}</sup>"

        fig = go.Figure()
        for dataset in spec.datasets:
            fig.add_trace(go.Bar(
                name=dataset.label,
                x=spec.labels,
                y=dataset.data,
                marker_color=dataset.color,
                hovertemplate=f"{dataset.label}: $%{{y:,.2f}}<extra></extra>",
            ))

        for day, total in zip(spec.labels, spec.totals):
            fig.add_annotation(
                x=day, y=total, text=format_total_footer([total]),
                showarrow=False, yshift=12, font=dict(size=10),
            )

        fig.update_layout(
            title=dict(text=title),
            barmode="stack" if spec.stacked else "group",
            hovermode="x unified",
            height=self.height,
            legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        )
        fig.update_xaxes(title_text=spec.x_title)
        fig.update_yaxes(title_text=spec.y_title, rangemode="tozero")
        logger.debug("Rendered chart %r with %d datasets", spec.title, len(spec.datasets))
        return fig

    def destroy(self, handle: go.Figure) -> None:
        handle.data = ()
        handle.layout.annotations = ()

    def write_html(self, handle: go.Figure, path: Union[str, Path]) -> Path:
        """Export a rendered figure to a standalone HTML file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        handle.write_html(str(target), include_plotlyjs="cdn")
        logger.info("Chart written to %s", target)
        return target
