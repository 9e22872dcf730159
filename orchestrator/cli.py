from pathlib import Path
import json
import signal
import threading
from contextlib import contextmanager
from typing import List, Optional

import typer

from auditor.profiles import THROTTLING_PROFILES
from metrics.aggregate import TrialGroup
from metrics.record import load
from orchestrator.config import RunConfig
from orchestrator.errors import ConfigError, MalformedRecord, NoMatchingResults, ResultsRootMissing
from orchestrator.log import setup_logger
from orchestrator.result_locator import list_result_dirs, locate, timestamp_key
from orchestrator.results_visual import ReportBuilder, render_comparison
from orchestrator.scheduler import LOAD_ONLY, ProgressEvent, TrialRunner

app = typer.Typer(help="Lighthouse condition matrix - run, aggregate and compare audits")

EXIT_CANCELLED = 130


@contextmanager
def _cancel_on_signals(cancel: threading.Event):
    """SIGINT/SIGTERM set the cancel event instead of killing the process."""
    def handler(signum, frame):
        typer.echo("Cancelling... (partial results will be reported)", err=True)
        cancel.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _echo_event(event: ProgressEvent):
    typer.echo(json.dumps(event.to_dict()), err=True)


def _echo_available(names: List[str]):
    typer.echo("Available result directories:")
    for name in names:
        typer.echo(f"  - {name}")


def _format_key(key: Optional[str]) -> str:
    if not key:
        return "no timestamp"
    return f"{key[0:4]}-{key[4:6]}-{key[6:8]} {key[8:10]}:{key[10:12]}:{key[12:14]}"


@app.command()
def run(
    url: str = typer.Argument(..., help="The URL to test"),
    suite: Optional[Path] = typer.Option(None, help="Suite YAML (runs, delay, conditions, collaborator)"),
    results_dir: Optional[Path] = typer.Option(None, help="Results root directory"),
    runs: Optional[int] = typer.Option(None, min=1, help="Runs per condition"),
    delay: Optional[float] = typer.Option(None, min=0, help="Seconds between runs"),
    condition: Optional[List[str]] = typer.Option(None, "--condition", "-c", help="Restrict to these conditions"),
    load_only: bool = typer.Option(False, "--load-only", "--report-only",
                                   help="Report on existing results without running new tests"),
    html: Optional[Path] = typer.Option(None, help="Also write an HTML report here"),
    csv: Optional[Path] = typer.Option(None, help="Also write the overall table as CSV here"),
    events: bool = typer.Option(False, help="Stream progress events as JSON lines on stderr"),
    log_level: str = typer.Option("INFO", help="Logging level"),
):
    """Audit a URL under every condition and print the aggregated report"""
    try:
        setup_logger(level=log_level)
    except ValueError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2)

    try:
        cfg = RunConfig.load(suite).with_overrides(
            results_dir=results_dir, runs=runs, delay=delay, conditions=condition or None
        )
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2)

    cancel = threading.Event()
    runner = TrialRunner(cfg, on_progress=_echo_event if events else None, cancel_event=cancel)

    with _cancel_on_signals(cancel):
        try:
            result = runner.load_existing(url) if load_only else runner.run_fresh(url)
        except ResultsRootMissing as e:
            typer.echo(str(e), err=True)
            typer.echo("Run tests first with: lighthouse-matrix run <URL>", err=True)
            raise typer.Exit(1)

    report = ReportBuilder(result)
    typer.echo(report.build_markdown())
    if html is not None:
        typer.echo(f"HTML report: {report.write_html(html)}", err=True)
    if csv is not None:
        typer.echo(f"CSV summary: {report.write_csv(csv)}", err=True)

    if result.cancelled:
        raise typer.Exit(EXIT_CANCELLED)
    if not result.has_data:
        typer.echo("No condition produced any results", err=True)
        if result.mode == LOAD_ONLY and result.available:
            _echo_available(result.available)
        raise typer.Exit(1)


@app.command()
def diff(
    target: str = typer.Argument(..., help="Domain or partial directory name to search for"),
    condition: Optional[str] = typer.Option(None, "--condition", "-c", help="Filter by condition"),
    results_dir: Path = typer.Option(Path("results"), help="Results root directory"),
    runs: int = typer.Option(3, min=1, help="How many of the newest runs to compare"),
):
    """Compare the newest runs matching a target"""
    try:
        trial_dirs = locate(results_dir, target, condition, max_trials=runs)
    except ResultsRootMissing as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    except NoMatchingResults as e:
        typer.echo("No matching results found", err=True)
        _echo_available(e.available)
        raise typer.Exit(1)

    records = [r for r in (load(d) for d in trial_dirs) if not isinstance(r, MalformedRecord)]
    if not records:
        typer.echo("All matching results are malformed", err=True)
        raise typer.Exit(1)

    # malformed records stay in the group as missing runs
    group = TrialGroup.from_records(condition or "all", records, len(trial_dirs))
    typer.echo(render_comparison(target, group))


@app.command()
def results(
    results_dir: Path = typer.Option(Path("results"), help="Results root directory"),
    limit: int = typer.Option(10, min=1, help="How many to show"),
):
    """List recent results directories"""
    try:
        result_dirs = list_result_dirs(results_dir)
    except ResultsRootMissing:
        typer.echo("No results directory found")
        return

    if not result_dirs:
        typer.echo("No results found")
        return

    typer.echo("Recent results:")
    for i, dir_path in enumerate(result_dirs[:limit]):
        typer.echo(f"  {i+1:2d}. {dir_path.name} ({_format_key(timestamp_key(dir_path.name))})")

    if len(result_dirs) > limit:
        typer.echo(f"  ... and {len(result_dirs) - limit} more")


@app.command()
def profiles():
    """List available throttling conditions"""
    typer.echo("Conditions:")
    for profile in THROTTLING_PROFILES.values():
        typer.echo(
            f"  {profile.name:<8} rtt={profile.rtt_ms}ms throughput={profile.throughput_kbps}Kbps "
            f"cpu={profile.cpu_slowdown}x  {profile.description}"
        )


if __name__ == "__main__":
    app()
