"""
Default audit collaborator: one Lighthouse run under one throttling profile.

    python -m auditor.throttle https://example.com --throttling 4g-slow --output-dir results

Writes report.report.html, report.report.json and metrics.json into the
trial directory and exits non-zero on any failure.
"""

import json
import math
import os
import re
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from auditor.profiles import CONDITIONS, ThrottlingProfile, get_profile
from metrics.record import CATEGORY_KEYS, METRICS_FILENAME, read_record, write_record
from orchestrator.errors import ConfigError, MalformedRecord
from orchestrator.log import get_logger, setup_logger
from orchestrator.result_locator import create_trial_dir, timestamp_key

logger = get_logger(__name__)

app = typer.Typer(help="Run Lighthouse under a throttling profile", add_completion=False)

DEFAULT_THROTTLING = "4g-slow"
REPORT_BASENAME = "report"
CHROME_FLAGS = "--headless=new --no-sandbox --disable-dev-shm-usage"
CHROME_CANDIDATES = ("google-chrome", "chromium-browser", "chromium")

# lighthouse audit id -> metrics.json key
AUDIT_METRICS = {
    "first-contentful-paint": "fcp",
    "largest-contentful-paint": "lcp",
    "interactive": "tti",
    "speed-index": "speed_index",
    "total-blocking-time": "total_blocking_time",
}


def _numeric_value(report: Dict[str, Any], audit_id: str) -> float:
    value = (report.get("audits", {}).get(audit_id) or {}).get("numericValue")
    return float(value) if isinstance(value, (int, float)) else 0.0


def _category_score(report: Dict[str, Any], category: str) -> float:
    score = (report.get("categories", {}).get(category) or {}).get("score")
    return float(score) * 100 if isinstance(score, (int, float)) else 0.0


def extract_metrics(report: Dict[str, Any], condition: str) -> Dict[str, Any]:
    """Reduce a full Lighthouse JSON report to the metrics.json record.

    Scores are scaled to 0-100, timings floored to whole milliseconds, and
    anything the report lacks becomes 0.
    """
    metrics = {key: math.floor(_numeric_value(report, audit)) for audit, key in AUDIT_METRICS.items()}
    metrics["cls"] = _numeric_value(report, "cumulative-layout-shift")

    unused_js = (report.get("audits", {}).get("unused-javascript") or {}).get("details") or {}
    return {
        "timestamp": report.get("fetchTime") or datetime.now(timezone.utc).isoformat(),
        "url": report.get("finalDisplayedUrl") or report.get("finalUrl") or report.get("requestedUrl"),
        "throttling": condition,
        "categories": {category: _category_score(report, category) for category in CATEGORY_KEYS},
        "metrics": metrics,
        "audits": {
            "total_byte_weight": _numeric_value(report, "total-byte-weight"),
            "dom_size": _numeric_value(report, "dom-size"),
            "unused_javascript": unused_js.get("overallSavingsBytes", 0),
        },
    }


def resolve_run_dir(output_dir: Path, url: str, condition: str) -> Path:
    """Use ``output_dir`` as-is when it already names a trial, else create one beneath it."""
    output_dir = Path(output_dir)
    if timestamp_key(output_dir.name) is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
        return output_dir
    return create_trial_dir(output_dir, url, condition)


def lighthouse_command(lighthouse: str, url: str, profile: ThrottlingProfile, report_path: Path) -> List[str]:
    return [
        lighthouse, url,
        *profile.lighthouse_flags(),
        "--only-categories=" + ",".join(CATEGORY_KEYS),
        "--output=json",
        "--output=html",
        f"--output-path={report_path}",
        "--quiet",
        f"--chrome-flags={CHROME_FLAGS}",
    ]


def find_chrome() -> Optional[str]:
    chrome = os.environ.get("CHROME_PATH")
    if chrome and os.access(chrome, os.X_OK):
        return chrome
    for name in CHROME_CANDIDATES:
        found = shutil.which(name)
        if found:
            return found
    return None


@app.command()
def main(
    url: str = typer.Argument(..., help="The URL to test"),
    throttling: str = typer.Option(DEFAULT_THROTTLING, help=f"Throttling profile: {', '.join(CONDITIONS)}"),
    output_dir: Path = typer.Option(Path("results"), help="Results root or a trial directory"),
    log_level: str = typer.Option("INFO", help="Logging level"),
):
    """Run one Lighthouse audit and extract metrics.json"""
    setup_logger(level=log_level)

    if not re.match(r"^https?://", url):
        typer.echo("URL must start with http:// or https://", err=True)
        raise typer.Exit(1)
    try:
        profile = get_profile(throttling)
    except ConfigError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    lighthouse = shutil.which("lighthouse")
    if lighthouse is None:
        typer.echo("lighthouse not found; install with: npm install -g lighthouse", err=True)
        raise typer.Exit(1)
    if find_chrome() is None:
        logger.warning("No Chrome/Chromium found; set CHROME_PATH if lighthouse cannot launch a browser")

    run_dir = resolve_run_dir(output_dir, url, throttling)
    report_path = run_dir / REPORT_BASENAME
    logger.info("Running Lighthouse for: %s", url)
    logger.info("Throttling: %s (rtt=%sms, throughput=%sKbps, cpuSlowdown=%sx)",
                profile.name, profile.rtt_ms, profile.throughput_kbps, profile.cpu_slowdown)

    completed = subprocess.run(lighthouse_command(lighthouse, url, profile, report_path))
    if completed.returncode != 0:
        typer.echo(f"Lighthouse test failed (exit code {completed.returncode})", err=True)
        raise typer.Exit(1)

    json_file = run_dir / f"{REPORT_BASENAME}.report.json"
    try:
        with open(json_file, encoding="utf-8") as f:
            report = json.load(f)
    except (OSError, ValueError) as e:
        typer.echo(f"Cannot read Lighthouse report {json_file}: {e}", err=True)
        raise typer.Exit(1)

    write_record(run_dir, extract_metrics(report, throttling))
    try:
        record = read_record(run_dir)
    except MalformedRecord as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)

    typer.echo(f"Results saved to: {run_dir}")
    typer.echo(f"  - {run_dir / (REPORT_BASENAME + '.report.html')}  (open in browser)")
    typer.echo(f"  - {json_file}  (raw data)")
    typer.echo(f"  - {run_dir / METRICS_FILENAME}  (key metrics for comparison)")
    typer.echo(f"  Performance Score:  {record.categories.performance:g}")
    typer.echo(f"  LCP:                {record.metrics.lcp:.0f}ms")
    typer.echo(f"  FCP:                {record.metrics.fcp:.0f}ms")
    typer.echo(f"  CLS:                {record.metrics.cls:.3f}")


if __name__ == "__main__":
    app()
