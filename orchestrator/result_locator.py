"""
Trial directory naming and discovery.

Every trial lives in ``{target}_{condition}_{YYYY-MM-DD_HHMMSS}`` under the
results root. Timestamps are UTC and zero-padded, so the embedded timestamp
sorts chronologically as a string.
"""

import glob
import re
from datetime import datetime, timezone
from fnmatch import fnmatchcase
from pathlib import Path
from typing import List, Optional, Union

from auditor.profiles import CONDITIONS
from metrics.record import METRICS_FILENAME
from orchestrator.errors import NoMatchingResults, ResultsRootMissing

TIMESTAMP_FORMAT = "%Y-%m-%d_%H%M%S"
DEFAULT_MAX_TRIALS = 3

# YYYY-MM-DD_HHMMSS (CLI) or YYYY-MM-DDTHH-MM-SS (server), optional _NN counter
_TIMESTAMP_RE = re.compile(
    r"_(\d{4})-(\d{2})-(\d{2})(?:_(\d{6})|T(\d{2})-(\d{2})-(\d{2}))(?:_(\d{2}))?$"
)

PathLike = Union[str, Path]


def _strip_scheme(url: str) -> str:
    return url.split("://", 1)[-1]


def extract_hostname(url: str) -> str:
    host = _strip_scheme(url)
    host = re.split(r"[/?#]", host, maxsplit=1)[0]
    host = host.split(":", 1)[0]
    return re.sub(r"[^a-zA-Z0-9.-]", "_", host)


def extract_path_suffix(url: str) -> str:
    rest = _strip_scheme(url).split("#", 1)[0]
    match = re.search(r"[/?]", rest)
    if not match:
        return ""
    path = rest[match.start():].strip("/")
    if not path:
        return ""
    return "_" + re.sub(r"[^a-zA-Z0-9._-]", "_", path)


def target_identifier(url: str) -> str:
    """Hostname plus sanitised path, e.g. ``shop.example.com_au``."""
    return extract_hostname(url) + extract_path_suffix(url)


def trial_dir_name(url: str, condition: str, now: Optional[datetime] = None) -> str:
    when = now or datetime.now(timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return f"{target_identifier(url)}_{condition}_{when.strftime(TIMESTAMP_FORMAT)}"


def create_trial_dir(results_root: PathLike, url: str, condition: str,
                     now: Optional[datetime] = None) -> Path:
    """Create a fresh trial directory; never reuses an existing one"""
    root = Path(results_root)
    root.mkdir(parents=True, exist_ok=True)
    base = trial_dir_name(url, condition, now)

    output_dir = root / base
    counter = 1
    while True:
        try:
            output_dir.mkdir()
            return output_dir
        except FileExistsError:
            output_dir = root / f"{base}_{counter:02d}"
            counter += 1


def timestamp_key(name: str) -> Optional[str]:
    """Sortable digits of the timestamp embedded in a directory name."""
    m = _TIMESTAMP_RE.search(name)
    if not m:
        return None
    year, month, day, compact, hh, mm, ss, counter = m.groups()
    clock = compact if compact is not None else f"{hh}{mm}{ss}"
    return f"{year}{month}{day}{clock}{counter or '00'}"


def _require_root(results_root: PathLike) -> Path:
    root = Path(results_root)
    if not root.is_dir():
        raise ResultsRootMissing(root)
    return root


def _child_dirs(root: Path) -> List[Path]:
    return [p for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")]


def list_result_dirs(results_root: PathLike) -> List[Path]:
    """All result directories, newest embedded timestamp first"""
    root = _require_root(results_root)
    dirs = _child_dirs(root)
    dirs.sort(key=lambda p: (timestamp_key(p.name) or "", p.name), reverse=True)
    return dirs


def _stem(name: str) -> Optional[str]:
    """Directory name with the trailing timestamp (and counter) removed."""
    m = _TIMESTAMP_RE.search(name)
    return name[:m.start()] if m else None


def _exact_match(name: str, target: str, condition: Optional[str]) -> bool:
    stem = _stem(name)
    if condition:
        return stem == f"{target}_{condition}"
    return any(stem == f"{target}_{c}" for c in CONDITIONS)


def locate(results_root: PathLike, target: str, condition: Optional[str] = None,
           max_trials: int = DEFAULT_MAX_TRIALS, exact: bool = False) -> List[Path]:
    """Newest trial directories whose name matches ``*target*`` (and the condition).

    Matching is deliberately loose so a partial domain finds its runs.
    ``exact`` instead requires the name to be precisely
    ``{target}_{condition}_{timestamp}``, so neither ``4g`` nor a path suffix
    such as ``_none_page`` can stand in for a condition label. Only
    directories holding a metrics file count.
    """
    if max_trials < 1:
        raise ValueError("max_trials must be at least 1")
    root = _require_root(results_root)

    patterns = [f"*{glob.escape(target)}*"]
    if condition:
        patterns.append(f"*{glob.escape(condition)}*")

    matches = []
    for trial_dir in _child_dirs(root):
        key = timestamp_key(trial_dir.name)
        if key is None:
            continue
        if exact:
            if not _exact_match(trial_dir.name, target, condition):
                continue
        elif not all(fnmatchcase(trial_dir.name, p) for p in patterns):
            continue
        if not (trial_dir / METRICS_FILENAME).is_file():
            continue
        matches.append((key, trial_dir.name, trial_dir))

    if not matches:
        available = [p.name for p in list_result_dirs(root)]
        raise NoMatchingResults(target, condition, available)

    matches.sort(key=lambda m: (m[0], m[1]), reverse=True)
    return [trial_dir for _, _, trial_dir in matches[:max_trials]]
