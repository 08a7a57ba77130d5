"""
Tests for the chart spec builder and the Plotly renderer.
"""

import pytest

try:
    from revenue_dashboard.charting import (
        CATEGORY_COLORS,
        CHART_TITLE,
        PlotlyRenderer,
        build_chart_spec,
        format_total_footer,
    )
    from revenue_dashboard.revenue_aggregator import DAYS_OF_WEEK, aggregate
    HAS_CHARTING = True
except ImportError:
    HAS_CHARTING = False

pytestmark = pytest.mark.skipif(
    not HAS_CHARTING,
    reason="charting module not available"
)


@pytest.fixture
def breakdown(sample_packages, sample_email_week, sample_chat_week,
              sample_call_week, sample_invoices):
    return aggregate(sample_packages, [sample_email_week], [sample_chat_week],
                     [sample_call_week], sample_invoices)


# ===================================================================
# TestChartSpec
# ===================================================================

class TestChartSpec:
    """Test the renderer-neutral chart description."""

    @pytest.mark.unit
    def test_labels_and_datasets(self, breakdown):
        spec = build_chart_spec(breakdown, title="Revenue Breakdown: Ada Lovelace (ID: 7)")
        assert spec.title == "Revenue Breakdown: Ada Lovelace (ID: 7)"
        assert spec.subtitle == CHART_TITLE
        assert spec.labels == list(DAYS_OF_WEEK)
        assert [d.label for d in spec.datasets] == ["Packages", "Emails", "Chats", "Calls", "Invoices"]
        assert all(len(d.data) == 7 for d in spec.datasets)
        assert spec.stacked is True

    @pytest.mark.unit
    def test_series_follow_breakdown(self, breakdown):
        spec = build_chart_spec(breakdown)
        by_key = {d.key: d for d in spec.datasets}
        assert by_key["invoices"].data[3] == pytest.approx(20.0)
        assert by_key["emails"].data[1] == pytest.approx(10.0)
        assert by_key["packages"].color == CATEGORY_COLORS["packages"]
        assert spec.totals == pytest.approx(breakdown.daily_totals())

    @pytest.mark.unit
    def test_default_title(self, breakdown):
        assert build_chart_spec(breakdown).title == CHART_TITLE

    @pytest.mark.unit
    def test_zero_spec(self):
        spec = build_chart_spec(aggregate())
        assert all(v == 0.0 for d in spec.datasets for v in d.data)
        assert spec.totals == [0.0] * 7

    @pytest.mark.unit
    def test_to_dict(self, breakdown):
        data = build_chart_spec(breakdown).to_dict()
        assert data["x_title"] == "Day of Week"
        assert data["y_title"] == "Revenue ($)"
        assert len(data["datasets"]) == 5

    @pytest.mark.unit
    @pytest.mark.parametrize("values, expected", [
        ([10.0, 3.0, 0.0], "Total: $13.00"),
        ([], "Total: $0.00"),
        ([1 / 3, 1 / 3], "Total: $0.67"),
    ])
    def test_total_footer(self, values, expected):
        assert format_total_footer(values) == expected


# ===================================================================
# TestPlotlyRenderer
# ===================================================================

class TestPlotlyRenderer:
    """Test the Plotly figure built from a spec."""

    @pytest.fixture
    def renderer(self):
        return PlotlyRenderer()

    @pytest.mark.unit
    def test_render_stacked_bars(self, renderer, breakdown):
        fig = renderer.render(build_chart_spec(breakdown))
        assert len(fig.data) == 5
        assert fig.layout.barmode == "stack"
        assert [trace.name for trace in fig.data] == ["Packages", "Emails", "Chats", "Calls", "Invoices"]
        assert list(fig.data[0].x) == list(DAYS_OF_WEEK)
        assert len(fig.layout.annotations) == 7
        assert fig.layout.annotations[3].text == "Total: $30.00"

    @pytest.mark.unit
    def test_render_all_zero(self, renderer):
        fig = renderer.render(build_chart_spec(aggregate()))
        assert len(fig.data) == 5
        assert all(list(trace.y) == [0.0] * 7 for trace in fig.data)

    @pytest.mark.unit
    def test_destroy_clears_figure(self, renderer, breakdown):
        fig = renderer.render(build_chart_spec(breakdown))
        renderer.destroy(fig)
        assert len(fig.data) == 0
        assert len(fig.layout.annotations) == 0

    @pytest.mark.unit
    def test_write_html(self, renderer, breakdown, tmp_path):
        fig = renderer.render(build_chart_spec(breakdown))
        path = renderer.write_html(fig, tmp_path / "out" / "chart.html")
        assert path.exists()
        assert "Daily Revenue by Source" in path.read_text(encoding="utf-8")

    @pytest.mark.unit
    def test_grouped_when_not_stacked(self, renderer):
        spec = build_chart_spec(aggregate())
        spec.stacked = False
        assert renderer.render(spec).layout.barmode == "group"

    @pytest.mark.unit
    def test_default_title_is_not_repeated(self, renderer):
        fig = renderer.render(build_chart_spec(aggregate()))
        assert fig.layout.title.text == CHART_TITLE

    @pytest.mark.unit
    def test_custom_title_keeps_subtitle(self, renderer):
        fig = renderer.render(build_chart_spec(aggregate(), title="Revenue Breakdown: Ada Lovelace (ID: 7)"))
        assert fig.layout.title.text == (
            f"Revenue Breakdown: Ada Lovelace (ID: 7)<br><sup>{CHART_TITLE}</sup>"
        )
