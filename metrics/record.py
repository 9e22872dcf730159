"""
MetricsRecord schema and loader.

One record per completed trial, written once by the audit collaborator as
``metrics.json`` in the trial directory and never modified afterwards.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Dict, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from auditor.profiles import CONDITIONS
from orchestrator.errors import MalformedRecord
from orchestrator.log import get_logger

logger = get_logger(__name__)

METRICS_FILENAME = "metrics.json"

CATEGORY_KEYS = ("performance", "accessibility", "best-practices", "seo")
CORE_METRIC_KEYS = ("fcp", "lcp", "tti", "speed_index", "cls", "total_blocking_time")
METRIC_KEYS = CATEGORY_KEYS + CORE_METRIC_KEYS


def _number(value: Any) -> Any:
    # no numeric strings, and bool is not a number here
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise ValueError("must be a number")
    return value


Score = Annotated[float, BeforeValidator(_number), Field(ge=0, le=100, allow_inf_nan=False)]
Measurement = Annotated[float, BeforeValidator(_number), Field(ge=0, allow_inf_nan=False)]


class CategoryScores(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    performance: Score
    # Lighthouse can skip a category; the score is then absent or null
    accessibility: Optional[Score] = None
    best_practices: Optional[Score] = Field(default=None, alias="best-practices")
    seo: Optional[Score] = None


class CoreMetrics(BaseModel):
    """Timings in milliseconds; cls is a unitless ratio."""

    model_config = ConfigDict(frozen=True)

    fcp: Measurement
    lcp: Measurement
    tti: Measurement
    speed_index: Measurement
    cls: Measurement
    total_blocking_time: Measurement


class MetricsRecord(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: datetime
    target_url: str = Field(alias="url", min_length=1, strict=True)
    condition: str = Field(alias="throttling", strict=True)
    categories: CategoryScores
    metrics: CoreMetrics
    audits: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _require_offset(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("timestamp must carry a UTC offset")
        return value

    @field_validator("condition")
    @classmethod
    def _known_condition(cls, value: str) -> str:
        if value not in CONDITIONS:
            raise ValueError(f"unknown condition {value!r}")
        return value

    def value(self, key: str) -> Optional[float]:
        """Look up a category score or core metric by its report key."""
        if key in CATEGORY_KEYS:
            return getattr(self.categories, key.replace("-", "_"))
        if key in CORE_METRIC_KEYS:
            return getattr(self.metrics, key)
        raise KeyError(key)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def read_record(trial_dir: Path) -> MetricsRecord:
    """Parse and validate a trial's metrics file, raising MalformedRecord on any problem."""
    path = Path(trial_dir) / METRICS_FILENAME
    if not path.is_file():
        raise MalformedRecord(path, "metrics file not found")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise MalformedRecord(path, f"unreadable: {e}") from e
    try:
        return MetricsRecord.model_validate_json(text)
    except ValidationError as e:
        raise MalformedRecord(path, _describe(e)) from e


def load(trial_dir: Path) -> Union[MetricsRecord, MalformedRecord]:
    """Load one trial; a bad record comes back as a MalformedRecord value instead of raising."""
    try:
        return read_record(trial_dir)
    except MalformedRecord as failure:
        logger.warning("Skipping trial %s: %s", Path(trial_dir).name, failure.reason)
        return failure


def write_record(trial_dir: Path, record: Union[MetricsRecord, Dict[str, Any]]) -> Path:
    """Write a metrics file; used by the bundled collaborator."""
    payload = record.to_json() if isinstance(record, MetricsRecord) else record
    path = Path(trial_dir) / METRICS_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    return path
