from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from auditor.profiles import CONDITIONS, order_conditions
from orchestrator.errors import ConfigError

DEFAULT_SUITE: Dict[str, Any] = {
    "name": "default",
    "runs": 3,
    "delay": 15,
    "results_dir": "results",
    "conditions": list(CONDITIONS),
    "collaborator": {"command": None, "timeout": 600},
}


@dataclass(frozen=True)
class RunConfig:
    name: str = "default"
    runs: int = 3
    delay: float = 15.0
    results_dir: Path = Path("results")
    conditions: Tuple[str, ...] = CONDITIONS
    command: Optional[List[str]] = None
    timeout: Optional[float] = 600.0
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.runs < 1:
            raise ConfigError(f"runs must be at least 1, got {self.runs}")
        if self.delay < 0:
            raise ConfigError(f"delay must be >= 0, got {self.delay}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"collaborator timeout must be > 0, got {self.timeout}")
        if not self.conditions:
            raise ConfigError("at least one condition is required")
        object.__setattr__(self, "conditions", order_conditions(self.conditions))
        object.__setattr__(self, "results_dir", Path(self.results_dir))

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]]) -> "RunConfig":
        cfg = dict(cfg or {})
        merged = {**DEFAULT_SUITE, **cfg}
        collaborator = {**DEFAULT_SUITE["collaborator"], **(cfg.get("collaborator") or {})}

        command = collaborator.get("command")
        if isinstance(command, str):
            command = command.split()
        if command is not None and not (isinstance(command, list) and command):
            raise ConfigError("collaborator.command must be a non-empty list or string")

        conditions = merged["conditions"]
        if isinstance(conditions, str):
            conditions = [conditions]

        known = set(DEFAULT_SUITE)
        try:
            return cls(
                name=str(merged["name"]),
                runs=int(merged["runs"]),
                delay=float(merged["delay"]),
                results_dir=Path(merged["results_dir"]),
                conditions=tuple(conditions),
                command=[str(c) for c in command] if command else None,
                timeout=None if collaborator.get("timeout") is None else float(collaborator["timeout"]),
                extra={k: v for k, v in cfg.items() if k not in known},
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid suite configuration: {e}") from e

    @classmethod
    def load(cls, suite: Optional[Path] = None) -> "RunConfig":
        """Read a YAML suite file; defaults when no file is given."""
        if suite is None:
            return cls.from_dict(None)
        try:
            with open(suite) as f:
                cfg = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read suite {suite}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {suite}: {e}") from e
        if cfg is not None and not isinstance(cfg, dict):
            raise ConfigError(f"Suite {suite} must be a mapping")
        cfg = cfg or {}
        cfg.setdefault("name", Path(suite).stem)
        return cls.from_dict(cfg)

    def with_overrides(self, **overrides) -> "RunConfig":
        """CLI options win over the suite file; None means not given."""
        given = {k: v for k, v in overrides.items() if v is not None}
        if "conditions" in given:
            given["conditions"] = tuple(given["conditions"])
            if not given["conditions"]:
                del given["conditions"]
        return replace(self, **given)
