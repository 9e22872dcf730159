"""
Error hierarchy for result discovery, loading and trial orchestration.

Trial-level failures (MalformedRecord, CollaboratorFailure, TrialCancelled)
are caught at the condition boundary and demoted to missing trials.
ResultsRootMissing is the only one that ends a run.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional


class MatrixError(Exception):
    """Base for all lighthouse-matrix errors."""

    pass


class ConfigError(MatrixError):
    """Suite file or CLI override is invalid."""

    pass


class ResultsRootMissing(MatrixError):
    """The results root directory does not exist."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(f"Results directory not found: {self.path}")


class NoMatchingResults(MatrixError):
    """No trial directory matched the target/condition filter."""

    def __init__(self, target: str, condition: Optional[str] = None, available: Optional[List[str]] = None):
        self.target = target
        self.condition = condition
        self.available = list(available or [])
        what = target if condition is None else f"{target} ({condition})"
        super().__init__(f"No matching results for: {what}")


class MalformedRecord(MatrixError):
    """A trial's metrics record is missing, unreadable or fails validation."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Malformed metrics record {self.path}: {reason}")


class CollaboratorFailure(MatrixError):
    """The audit command exited non-zero, could not start, timed out or wrote nothing."""

    def __init__(self, reason: str, returncode: Optional[int] = None):
        self.reason = reason
        self.returncode = returncode
        super().__init__(reason if returncode is None else f"{reason} (exit code {returncode})")


class TrialCancelled(MatrixError):
    """The in-flight trial was cancelled."""

    pass


class InvalidTransition(MatrixError):
    """A condition's trial state machine was driven backwards."""

    pass


@dataclass(frozen=True)
class PartialCondition:
    """Informational: a condition loaded fewer trials than expected."""

    condition: str
    loaded: int
    expected: int

    @property
    def missing(self) -> int:
        return self.expected - self.loaded

    @property
    def message(self) -> str:
        return f"{self.missing} of {self.expected} runs failed for this condition"
