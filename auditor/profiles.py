"""
Throttling profiles: the fixed set of network/CPU conditions an audit runs under.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Tuple

from orchestrator.errors import ConfigError


@dataclass(frozen=True)
class ThrottlingProfile:
    name: str
    rtt_ms: int
    throughput_kbps: int
    cpu_slowdown: int
    description: str

    def lighthouse_flags(self) -> list:
        return [
            f"--throttling.rttMs={self.rtt_ms}",
            f"--throttling.throughputKbps={self.throughput_kbps}",
            f"--throttling.cpuSlowdownMultiplier={self.cpu_slowdown}",
            "--throttling.method=devtools",
        ]


# Insertion order is the canonical run order.
THROTTLING_PROFILES: Dict[str, ThrottlingProfile] = {
    "none": ThrottlingProfile("none", 0, 10000, 1, "No throttling (baseline)"),
    "4g-fast": ThrottlingProfile("4g-fast", 40, 10000, 1, "Desktop 4G"),
    "4g-slow": ThrottlingProfile("4g-slow", 100, 1500, 4, "Constrained 4G"),
    "3g": ThrottlingProfile("3g", 300, 400, 4, "Slow mobile (3G)"),
}

CONDITIONS: Tuple[str, ...] = tuple(THROTTLING_PROFILES)


def get_profile(name: str) -> ThrottlingProfile:
    try:
        return THROTTLING_PROFILES[name]
    except KeyError:
        raise ConfigError(
            f"Unknown throttling profile: {name} (available: {', '.join(CONDITIONS)})"
        ) from None


def order_conditions(names: Iterable[str]) -> Tuple[str, ...]:
    """Validate, dedupe and put condition labels into canonical order."""
    wanted = set()
    for name in names:
        get_profile(name)
        wanted.add(name)
    return tuple(c for c in CONDITIONS if c in wanted)
