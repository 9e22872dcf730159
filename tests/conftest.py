"""Shared fixtures: metrics payloads, records and trial directories on disk."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from metrics.record import MetricsRecord, write_record
from orchestrator.result_locator import TIMESTAMP_FORMAT

BASE_TIME = datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)


def make_payload(
    condition: str = "none",
    minutes: int = 0,
    url: str = "https://example.com/",
    performance: float = 80,
    fcp: float = 1000,
    lcp: float = 2000,
    tti: float = 3000,
    speed_index: float = 1500,
    cls: float = 0.05,
    total_blocking_time: float = 100,
    **categories,
) -> dict:
    """A metrics.json payload as the collaborator writes it."""
    scores = {"performance": performance, "accessibility": 95, "best-practices": 100, "seo": 90}
    scores.update({k.replace("_", "-"): v for k, v in categories.items()})
    return {
        "timestamp": (BASE_TIME + timedelta(minutes=minutes)).isoformat(),
        "url": url,
        "throttling": condition,
        "categories": scores,
        "metrics": {
            "fcp": fcp,
            "lcp": lcp,
            "tti": tti,
            "speed_index": speed_index,
            "cls": cls,
            "total_blocking_time": total_blocking_time,
        },
        "audits": {"total_byte_weight": 0, "dom_size": 0, "unused_javascript": 0},
    }


@pytest.fixture
def make_record():
    def _make(**kwargs) -> MetricsRecord:
        return MetricsRecord.model_validate(make_payload(**kwargs))
    return _make


@pytest.fixture
def results_root(tmp_path: Path) -> Path:
    root = tmp_path / "results"
    root.mkdir()
    return root


@pytest.fixture
def write_trial(results_root: Path):
    """Create ``{identifier}_{condition}_{timestamp}`` with a metrics.json inside."""
    def _write(condition: str = "none", minutes: int = 0, identifier: str = "example.com",
               payload: dict | None = None, **metrics) -> Path:
        stamp = (BASE_TIME + timedelta(minutes=minutes)).strftime(TIMESTAMP_FORMAT)
        trial_dir = results_root / f"{identifier}_{condition}_{stamp}"
        trial_dir.mkdir()
        write_record(trial_dir, payload or make_payload(condition=condition, minutes=minutes, **metrics))
        return trial_dir
    return _write
