from dataclasses import dataclass
from typing import List, Mapping, Optional

GOOD = "good"
NEEDS_IMPROVEMENT = "needs-improvement"
POOR = "poor"

PERFORMANCE_POOR_BELOW = 50
PERFORMANCE_GOOD_FROM = 90
LCP_POOR_ABOVE_MS = 2500
CLS_POOR_ABOVE = 0.1


@dataclass(frozen=True)
class Annotation:
    metric: str
    level: str
    message: str


def performance_band(score: Optional[float]) -> Optional[str]:
    """Lighthouse performance score band; None when the score is undefined."""
    if score is None:
        return None
    if score < PERFORMANCE_POOR_BELOW:
        return POOR
    if score < PERFORMANCE_GOOD_FROM:
        return NEEDS_IMPROVEMENT
    return GOOD


def annotate(means: Mapping[str, Optional[float]]) -> List[Annotation]:
    """Qualitative judgments for a set of averages. Display only."""
    notes = []

    band = performance_band(means.get("performance"))
    if band == POOR:
        notes.append(Annotation("performance", POOR, "Performance score is below 50 - needs optimization"))
    elif band == NEEDS_IMPROVEMENT:
        notes.append(Annotation("performance", NEEDS_IMPROVEMENT, "Performance score could be improved (target: 90+)"))
    elif band == GOOD:
        notes.append(Annotation("performance", GOOD, "Performance score is excellent!"))

    lcp = means.get("lcp")
    # anything over 2.5s is reported as slow, including the 4s+ range
    if lcp is not None and lcp > LCP_POOR_ABOVE_MS:
        notes.append(Annotation("lcp", POOR, "LCP is slow (target: < 2.5s)"))

    cls_value = means.get("cls")
    if cls_value is not None and cls_value > CLS_POOR_ABOVE:
        notes.append(Annotation("cls", POOR, "CLS is poor (target: < 0.1)"))

    return notes
