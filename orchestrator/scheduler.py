"""
Trial runner: drives every condition through its runs, one trial at a time.

Trials are strictly sequential. The audit drives a real browser and the
throttling measurement is only meaningful when nothing else competes for
CPU and network.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from auditor.runner import AuditCollaborator
from metrics.aggregate import OverallAggregate, ProfileAggregate, TrialGroup, aggregate, summarize
from metrics.record import MetricsRecord, load, read_record
from orchestrator.config import RunConfig
from orchestrator.errors import (
    CollaboratorFailure,
    InvalidTransition,
    MalformedRecord,
    NoMatchingResults,
    TrialCancelled,
)
from orchestrator.log import get_logger
from orchestrator.result_locator import create_trial_dir, locate, target_identifier

logger = get_logger(__name__)

FRESH = "fresh"
LOAD_ONLY = "load-only"


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str
    percent: Optional[float] = None
    condition: Optional[str] = None
    run: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        event = {"type": "progress", "stage": self.stage, "message": self.message}
        for key in ("percent", "condition", "run"):
            value = getattr(self, key)
            if value is not None:
                event[key] = value
        return event


ProgressCallback = Callable[[ProgressEvent], None]


class ConditionState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    COMPLETE = "complete"


class ConditionRun:
    """One-pass state machine for a condition's runs.

    PENDING -> RUNNING(1) -> SUCCEEDED(1)|FAILED(1) -> RUNNING(2) ... -> COMPLETE
    """

    def __init__(self, condition: str, expected: int):
        self.condition = condition
        self.expected = expected
        self.state = ConditionState.PENDING
        self.run = 0
        self.failures = 0
        self.group: Optional[TrialGroup] = None
        self._slots: List[Optional[MetricsRecord]] = [None] * expected

    def start(self, run: int):
        if self.state not in (ConditionState.PENDING, ConditionState.SUCCEEDED, ConditionState.FAILED):
            raise InvalidTransition(f"{self.condition}: cannot start run {run} while {self.state.value}")
        if run != self.run + 1 or run > self.expected:
            raise InvalidTransition(f"{self.condition}: run {run} out of order after run {self.run}")
        self.state = ConditionState.RUNNING
        self.run = run

    def succeed(self, record: MetricsRecord):
        self._require_running()
        self._slots[self.run - 1] = record
        self.state = ConditionState.SUCCEEDED

    def fail(self):
        self._require_running()
        self.failures += 1
        self.state = ConditionState.FAILED

    def complete(self) -> TrialGroup:
        if self.state in (ConditionState.RUNNING, ConditionState.COMPLETE):
            raise InvalidTransition(f"{self.condition}: cannot complete while {self.state.value}")
        self.state = ConditionState.COMPLETE
        self.group = TrialGroup(self.condition, tuple(self._slots), self.expected)
        return self.group

    @property
    def loaded(self) -> int:
        return sum(1 for r in self._slots if r is not None)

    def _require_running(self):
        if self.state is not ConditionState.RUNNING:
            raise InvalidTransition(f"{self.condition}: no run in flight ({self.state.value})")


@dataclass
class SuiteResult:
    url: str
    mode: str
    groups: List[TrialGroup]
    failures: Dict[str, int] = field(default_factory=dict)
    cancelled: bool = False
    # load-only: what the results root held when a condition matched nothing
    available: List[str] = field(default_factory=list)

    def aggregates(self) -> List[ProfileAggregate]:
        return [aggregate(g) for g in self.groups]

    def overall(self) -> OverallAggregate:
        return summarize(self.aggregates())

    @property
    def has_data(self) -> bool:
        return any(g.loaded for g in self.groups)


def _ms(value: float) -> str:
    return f"{value:.0f}ms"


class TrialRunner:
    def __init__(self, config: RunConfig, collaborator: Optional[AuditCollaborator] = None,
                 on_progress: Optional[ProgressCallback] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.config = config
        self.collaborator = collaborator or AuditCollaborator(config.command, config.timeout)
        self.on_progress = on_progress
        self.cancel_event = cancel_event or threading.Event()
        self._done = 0
        self._total = 0

    def cancel(self):
        self.cancel_event.set()

    def _emit(self, stage: str, message: str, condition: Optional[str] = None, run: Optional[int] = None):
        percent = round(100.0 * self._done / self._total, 1) if self._total else None
        logger.info("[%s] %s", stage, message)
        if self.on_progress is not None:
            self.on_progress(ProgressEvent(stage, message, percent, condition, run))

    def _start(self) -> List[ConditionRun]:
        states = [ConditionRun(c, self.config.runs) for c in self.config.conditions]
        self._total = len(states) * self.config.runs
        self._done = 0
        return states

    def _finish(self, url: str, mode: str, states: List[ConditionRun], cancelled: bool,
                available: Optional[List[str]] = None) -> SuiteResult:
        groups = []
        for state in states:
            # conditions never reached after a cancel close with nothing loaded
            groups.append(state.group if state.state is ConditionState.COMPLETE else state.complete())
        failures = {s.condition: s.failures for s in states}
        if cancelled:
            self._emit("cancelled", "Run cancelled; results loaded so far are kept")
        else:
            self._done = self._total
            self._emit("complete", "All conditions complete")
        return SuiteResult(url, mode, groups, failures, cancelled, list(available or []))

    def _close_condition(self, state: ConditionRun):
        group = state.complete()
        if group.missing:
            logger.warning("Only %d of %d runs loaded for condition: %s",
                           group.loaded, group.expected, group.condition)
        self._emit("condition-complete",
                   f"{group.condition}: {group.loaded} loaded, {group.missing} missing",
                   group.condition)

    def _run_trial(self, url: str, condition: str) -> MetricsRecord:
        try:
            output_dir = create_trial_dir(self.config.results_dir, url, condition)
        except OSError as e:
            raise CollaboratorFailure(f"Cannot create trial directory: {e}") from e
        self.collaborator.run(url, condition, output_dir, self.cancel_event)
        return read_record(output_dir)

    def run_fresh(self, url: str) -> SuiteResult:
        """Invoke the collaborator N times per condition with a delay between invocations."""
        cfg = self.config
        states = self._start()
        self._emit("starting", f"Auditing {url}: {len(states)} conditions x {cfg.runs} runs, "
                               f"{cfg.delay:g}s between runs")

        invocation = 0
        cancelled = False
        for state in states:
            if cancelled:
                break
            condition = state.condition
            self._emit("condition-start", f"Condition {condition}", condition)

            for run in range(1, cfg.runs + 1):
                if self.cancel_event.is_set():
                    cancelled = True
                    break
                invocation += 1
                state.start(run)
                self._emit("trial-start",
                           f"Run {invocation}/{self._total}: condition={condition}, iteration={run}",
                           condition, run)
                try:
                    record = self._run_trial(url, condition)
                except TrialCancelled:
                    state.fail()
                    self._done += 1
                    cancelled = True
                    self._emit("trial-cancelled", f"{condition} run {run} cancelled", condition, run)
                    break
                except (CollaboratorFailure, MalformedRecord) as e:
                    state.fail()
                    self._done += 1
                    self._emit("trial-failed", f"{condition} run {run} failed: {e}", condition, run)
                else:
                    state.succeed(record)
                    self._done += 1
                    self._emit("trial-succeeded",
                               f"Completed - Perf: {record.categories.performance:g}, "
                               f"LCP: {_ms(record.metrics.lcp)}, FCP: {_ms(record.metrics.fcp)}",
                               condition, run)

                if invocation < self._total:
                    self._emit("waiting", f"Waiting {cfg.delay:g}s before next run...", condition, run)
                    if self.cancel_event.wait(cfg.delay):
                        cancelled = True
                        break

            self._close_condition(state)

        return self._finish(url, FRESH, states, cancelled)

    def load_existing(self, url: str) -> SuiteResult:
        """Report-only mode: reuse the newest N trials per condition from disk.

        Raises ResultsRootMissing when the results root does not exist.
        """
        cfg = self.config
        identifier = target_identifier(url)
        states = self._start()
        available: List[str] = []
        self._emit("starting", f"Loading existing results for {identifier} from {cfg.results_dir}")

        for state in states:
            condition = state.condition
            self._emit("condition-start", f"Condition {condition}", condition)
            try:
                trial_dirs = locate(cfg.results_dir, identifier, condition,
                                    max_trials=cfg.runs, exact=True)
            except NoMatchingResults as e:
                trial_dirs = []
                available = e.available

            for run, trial_dir in enumerate(trial_dirs, start=1):
                state.start(run)
                result = load(trial_dir)
                self._done += 1
                if isinstance(result, MalformedRecord):
                    state.fail()
                    self._emit("trial-failed", f"{condition} run {run}: {result.reason}", condition, run)
                elif result.condition != condition:
                    logger.warning("Skipping trial %s: recorded under %s, not %s",
                                   Path(trial_dir).name, result.condition, condition)
                    state.fail()
                    self._emit("trial-failed",
                               f"{condition} run {run}: record is a {result.condition} trial",
                               condition, run)
                else:
                    state.succeed(result)
                    self._emit("trial-succeeded",
                               f"Loaded {condition} run {run} from {Path(trial_dir).name}",
                               condition, run)

            self._close_condition(state)

        return self._finish(url, LOAD_ONLY, states, cancelled=False, available=available)
