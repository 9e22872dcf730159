import math
from datetime import datetime, timezone

import pandas as pd
import pytest

from metrics.aggregate import TrialGroup, aggregate
from orchestrator.results_visual import (
    NA,
    ReportBuilder,
    condition_frame,
    format_value,
    frame_to_markdown,
    render_comparison,
    summary_frame,
)
from orchestrator.scheduler import FRESH, SuiteResult

GENERATED = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("key, value, text", [
    ("performance", 78.6667, "78.7"),
    ("seo", None, NA),
    ("cls", 0.04567, "0.046"),
    ("lcp", 2500.4, "2500ms"),
    ("tti", float("nan"), NA),
])
def test_format_value(key, value, text):
    assert format_value(key, value) == text


def _suite(make_record, cancelled=False):
    groups = [
        TrialGroup("none", (make_record(performance=90, lcp=1200, minutes=0),
                            make_record(performance=90, lcp=1400, minutes=1),
                            make_record(performance=90, lcp=1300, minutes=2))),
        TrialGroup.empty("4g-fast"),
        TrialGroup("4g-slow", (make_record(condition="4g-slow", performance=70, lcp=3000, minutes=3),
                               None,
                               make_record(condition="4g-slow", performance=80, lcp=2000, minutes=5))),
        TrialGroup("3g", (make_record(condition="3g", performance=60, minutes=6),)),
    ]
    return SuiteResult("https://example.com/", FRESH, groups, cancelled=cancelled)


def test_condition_frame_marks_missing_runs(make_record):
    group = TrialGroup("3g", (make_record(condition="3g", lcp=2000), None,
                              make_record(condition="3g", lcp=3000)))
    frame = condition_frame(group, aggregate(group))

    assert list(frame.columns) == ["Run 1", "Run 2", "Run 3", "Average"]
    lcp = frame.loc["Largest Contentful Paint (LCP)"]
    assert lcp.tolist() == ["2000ms", NA, "3000ms", "2500ms"]


def test_markdown_report(make_record):
    text = ReportBuilder(_suite(make_record), GENERATED).build_markdown()

    assert text.startswith("# Lighthouse Test Summary\n")
    assert "**Generated:** 2024-05-01T12:00:00+00:00" in text
    assert "## Overall Averages by Condition" in text
    assert "| Performance Score | 90.0 | N/A | 75.0 | 60.0 | 75.0 |" in text
    assert "(none, 4g-slow, 3g)" in text
    assert "*Note: 1 of 3 runs failed for this condition*" in text
    assert "*Note: 3 of 3 runs failed for this condition*" in text
    assert "*Note: 2 of 3 runs failed for this condition*" in text
    assert text.index("## Condition: none") < text.index("## Condition: 3g")
    assert "### 4g-fast\n\n- No data" in text
    assert "- [needs-improvement] Performance score could be improved (target: 90+)" in text
    assert "- [good] Performance score is excellent!" in text
    assert "Run cancelled" not in text


def test_markdown_mentions_cancel(make_record):
    text = ReportBuilder(_suite(make_record, cancelled=True), GENERATED).build_markdown()
    assert "> Run cancelled before completion" in text


def test_report_with_no_data():
    result = SuiteResult("https://example.com/", FRESH, [TrialGroup.empty("none")])
    text = ReportBuilder(result, GENERATED).build_markdown()

    assert "| Performance Score | N/A | N/A |" in text
    assert "### Overall\n\n- No data" in text


def test_html_report(make_record, tmp_path):
    builder = ReportBuilder(_suite(make_record), GENERATED)

    path = builder.write_html(tmp_path / "out" / "report.html")

    page = path.read_text()
    assert page.startswith("<!DOCTYPE html>")
    assert "<h2>Condition: 4g-slow</h2>" in page
    assert "Note: 1 of 3 runs failed for this condition" in page
    assert '<li class="good">Performance score is excellent!</li>' in page
    assert page.count('class="dataframe metrics"') == 5


def test_csv_summary(make_record, tmp_path):
    path = ReportBuilder(_suite(make_record), GENERATED).write_csv(tmp_path / "summary.csv")

    frame = pd.read_csv(path, index_col="metric")
    assert list(frame.columns) == ["none", "4g-fast", "4g-slow", "3g", "overall"]
    assert frame.loc["performance", "overall"] == 75
    assert math.isnan(frame.loc["performance", "4g-fast"])
    assert frame.loc["lcp", "none"] == 1300


def test_summary_frame_is_numeric(make_record):
    result = _suite(make_record)
    frame = summary_frame(result.aggregates(), result.overall())

    assert frame.index.name == "metric"
    assert (frame.dtypes == "float64").all()


def test_frame_to_markdown():
    frame = pd.DataFrame({"a": ["1"], "bb": ["2"]}, index=["row"])
    assert frame_to_markdown(frame, "Metric").splitlines() == [
        "| Metric | a | bb |",
        "|--------|---|----|",
        "| row | 1 | 2 |",
    ]


def test_render_comparison(make_record):
    group = TrialGroup.from_records("all", [
        make_record(minutes=0, performance=40, lcp=4000),
        make_record(condition="3g", minutes=5, performance=44, lcp=5000),
    ])

    text = render_comparison("example.com", group)

    assert text.startswith("Found 2 result(s) for example.com:")
    assert "2024-05-01T10:05:00+00:00 (3g)" in text
    assert "| Performance Score | 44.0 | 40.0 | N/A | 42.0 |" in text
    assert "- [poor] Performance score is below 50 - needs optimization" in text
    assert "- [poor] LCP is slow (target: < 2.5s)" in text
    assert "*Note: 1 of 3 runs failed for this condition*" in text


def test_render_comparison_without_missing_runs(make_record):
    group = TrialGroup.from_records("none", [make_record(minutes=i) for i in range(2)], expected=2)
    assert "runs failed" not in render_comparison("example.com", group)
