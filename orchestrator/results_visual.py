import html
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from metrics.aggregate import OverallAggregate, ProfileAggregate, TrialGroup, aggregate, summarize
from metrics.record import CATEGORY_KEYS
from metrics.thresholds import Annotation, annotate
from orchestrator.scheduler import SuiteResult

NA = "N/A"

METRIC_LABELS: Dict[str, str] = {
    "performance": "Performance Score",
    "accessibility": "Accessibility",
    "best-practices": "Best Practices",
    "seo": "SEO",
    "fcp": "First Contentful Paint (FCP)",
    "lcp": "Largest Contentful Paint (LCP)",
    "total_blocking_time": "Total Blocking Time (TBT)",
    "speed_index": "Speed Index (SI)",
    "cls": "Cumulative Layout Shift (CLS)",
    "tti": "Time to Interactive (TTI)",
}
ROW_ORDER = tuple(METRIC_LABELS)


def format_value(key: str, value: Optional[float]) -> str:
    """Display rounding: scores 1 decimal, cls 3 decimals, timings whole ms."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return NA
    if key in CATEGORY_KEYS:
        return f"{value:.1f}"
    if key == "cls":
        return f"{value:.3f}"
    return f"{value:.0f}ms"


def condition_frame(group: TrialGroup, agg: ProfileAggregate) -> pd.DataFrame:
    """Run 1..N plus Average for one condition; missing runs show N/A."""
    columns = {}
    for i, record in enumerate(group.runs, start=1):
        columns[f"Run {i}"] = [
            format_value(key, record.value(key) if record is not None else None) for key in ROW_ORDER
        ]
    columns["Average"] = [format_value(key, agg.get(key)) for key in ROW_ORDER]
    return pd.DataFrame(columns, index=[METRIC_LABELS[k] for k in ROW_ORDER])


def overall_frame(aggregates: Sequence[ProfileAggregate], overall: OverallAggregate) -> pd.DataFrame:
    """One row per metric, one column per condition, plus the cross-condition figure."""
    columns = {}
    for agg in aggregates:
        columns[agg.condition] = [format_value(key, agg.get(key)) for key in ROW_ORDER]
    columns["Overall"] = [format_value(key, overall.get(key)) for key in ROW_ORDER]
    return pd.DataFrame(columns, index=[METRIC_LABELS[k] for k in ROW_ORDER])


def summary_frame(aggregates: Sequence[ProfileAggregate], overall: OverallAggregate) -> pd.DataFrame:
    """Numeric overall table for export; undefined values are NaN."""
    data = {agg.condition: [agg.get(k) for k in ROW_ORDER] for agg in aggregates}
    data["overall"] = [overall.get(k) for k in ROW_ORDER]
    frame = pd.DataFrame(data, index=list(ROW_ORDER), dtype="float64")
    frame.index.name = "metric"
    return frame


def frame_to_markdown(frame: pd.DataFrame, index_label: str = "Metric") -> str:
    header = [index_label] + [str(c) for c in frame.columns]
    lines = [
        "| " + " | ".join(header) + " |",
        "|" + "|".join("-" * (len(h) + 2) for h in header) + "|",
    ]
    for label, row in frame.iterrows():
        lines.append("| " + " | ".join([str(label)] + [str(v) for v in row.tolist()]) + " |")
    return "\n".join(lines)


def _annotation_lines(notes: List[Annotation]) -> List[str]:
    return [f"- [{n.level}] {n.message}" for n in notes]


class ReportBuilder:
    def __init__(self, result: SuiteResult, generated_at: Optional[datetime] = None):
        self.result = result
        self.aggregates = result.aggregates()
        self.overall = summarize(self.aggregates)
        self.generated_at = generated_at or datetime.now(timezone.utc)

    def build_markdown(self) -> str:
        """Overall table, per-condition tables, failure notes, then recommendations."""
        r = self.result
        runs = r.groups[0].expected if r.groups else 0
        lines = [
            "# Lighthouse Test Summary",
            "",
            f"**Target:** {r.url}",
            f"**Mode:** {r.mode}",
            f"**Runs per condition:** {runs}",
            f"**Generated:** {self.generated_at.isoformat(timespec='seconds')}",
            "",
        ]
        if r.cancelled:
            lines += ["> Run cancelled before completion; unfinished runs are reported as missing.", ""]

        contributing = ", ".join(self.overall.contributing) or "none"
        lines += [
            "## Overall Averages by Condition",
            "",
            frame_to_markdown(overall_frame(self.aggregates, self.overall)),
            "",
            f"*Overall = mean of the per-condition averages over conditions with data ({contributing})*",
            "",
        ]

        for group, agg in zip(r.groups, self.aggregates):
            lines += [f"## Condition: {group.condition}", "", frame_to_markdown(condition_frame(group, agg)), ""]
            partial = agg.partial
            if partial is not None:
                lines += [f"*Note: {partial.message}*", ""]

        lines += ["## Recommendations", "", "### Overall", ""]
        lines += _annotation_lines(annotate(self.overall.means)) or ["- No data"]
        lines.append("")
        for agg in self.aggregates:
            lines += [f"### {agg.condition}", ""]
            if agg.has_data:
                lines += _annotation_lines(annotate(agg.means))
            else:
                lines.append("- No data")
            lines.append("")

        return "\n".join(lines).rstrip() + "\n"

    def build_html(self) -> str:
        """Generate HTML report"""
        r = self.result
        page = f"""<!DOCTYPE html>
<html>
<head>
    <title>Lighthouse Test Summary</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; }}
        .condition {{ margin: 20px 0; padding: 20px; border: 1px solid #ddd; }}
        table.metrics {{ border-collapse: collapse; }}
        table.metrics td, table.metrics th {{ padding: 4px 12px; text-align: right; }}
        .note {{ color: #b36b00; font-style: italic; }}
        .poor {{ color: #c00; }}
        .needs-improvement {{ color: #b36b00; }}
        .good {{ color: #080; }}
        h1 {{ color: #333; }}
        h2 {{ color: #666; }}
    </style>
</head>
<body>
    <h1>Lighthouse Test Summary</h1>
    <p>Target: {html.escape(r.url)} &middot; Mode: {html.escape(r.mode)} &middot;
       Generated: {self.generated_at.isoformat(timespec='seconds')}</p>
"""
        if r.cancelled:
            page += '    <p class="note">Run cancelled before completion; unfinished runs are reported as missing.</p>\n'

        page += "    <h2>Overall Averages by Condition</h2>\n"
        page += overall_frame(self.aggregates, self.overall).to_html(classes="metrics", border=0)
        page += self._render_annotations(annotate(self.overall.means))

        for group, agg in zip(r.groups, self.aggregates):
            page += f'    <div class="condition">\n        <h2>Condition: {html.escape(group.condition)}</h2>\n'
            page += condition_frame(group, agg).to_html(classes="metrics", border=0)
            if agg.partial is not None:
                page += f'        <p class="note">Note: {html.escape(agg.partial.message)}</p>\n'
            if agg.has_data:
                page += self._render_annotations(annotate(agg.means))
            page += "    </div>\n"

        page += "</body>\n</html>\n"
        return page

    def _render_annotations(self, notes: List[Annotation]) -> str:
        if not notes:
            return ""
        items = "".join(
            f'<li class="{n.level}">{html.escape(n.message)}</li>' for n in notes
        )
        return f"<ul>{items}</ul>\n"

    def write_html(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.build_html(), encoding="utf-8")
        return path

    def write_csv(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        summary_frame(self.aggregates, self.overall).to_csv(path)
        return path


def render_comparison(target: str, group: TrialGroup) -> str:
    """Side-by-side view of the newest located runs and their average."""
    agg = aggregate(group)
    lines = [f"Found {group.loaded} result(s) for {target}:"]
    lines += [f"  - {record.timestamp.isoformat()} ({record.condition})" for record in group.records]
    lines += ["", frame_to_markdown(condition_frame(group, agg)), ""]
    if agg.partial is not None:
        lines += [f"*Note: {agg.partial.message}*", ""]
    lines += _annotation_lines(annotate(agg.means))
    return "\n".join(lines).rstrip() + "\n"
