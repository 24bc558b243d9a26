"""
Stability Score

Estimates how likely a selector is to keep working across refactors.
Four components are blended with configurable weights:
- hint quality: the strategy the anchor prefers (testid > role > text > css)
- snippet match: whether the source fragment still hashes the same
- liveness: what the probe said
- specificity: how stable the selector's strategy is

The score is a diagnostic next to the resolution confidence; it never
changes which candidate wins.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config import StabilityWeights, load_stability_weights


HINT_STRATEGY_SCORES = {
    "testid": 1.0,
    "role": 0.8,
    "text": 0.5,
    "css": 0.3,
}
DEFAULT_HINT_SCORE = 0.3
UNCHECKED_LIVENESS_SCORE = 0.5

_TEST_ID_MARKERS = ("data-testid", "data-test-id", "data-test=", "data-cy", "data-qa")
_ID_RE = re.compile(r"#[_a-zA-Z][\w-]*")


@dataclass
class StabilityScore:
    overall: float
    hint_quality: float
    snippet_match: float
    liveness: float
    specificity: float
    details: List[str] = field(default_factory=list)

    @property
    def breakdown(self) -> Dict[str, float]:
        return {
            "hint_quality": self.hint_quality,
            "snippet_match": self.snippet_match,
            "liveness": self.liveness,
            "specificity": self.specificity,
        }

    @property
    def percent(self) -> int:
        return round(self.overall * 100)

    def to_dict(self) -> Dict:
        return {
            "overall": round(self.overall, 4),
            "breakdown": {k: round(v, 4) for k, v in self.breakdown.items()},
            "details": list(self.details),
        }


def hint_quality_score(prefer: Optional[Sequence[str]]) -> float:
    """Quality of the anchor's top preferred strategy"""
    if not prefer:
        return DEFAULT_HINT_SCORE
    return HINT_STRATEGY_SCORES.get(prefer[0], DEFAULT_HINT_SCORE)


def selector_specificity(selector: str) -> float:
    """0-1 stability of a selector's strategy (not CSS specificity)"""
    if any(marker in selector for marker in _TEST_ID_MARKERS):
        return 1.0
    if selector.startswith("role:") and "[name=" in selector:
        return 0.9
    if selector.startswith("role:"):
        return 0.7
    if selector.startswith("#") or _ID_RE.search(re.sub(r"\[[^\]]*\]", "", selector)):
        return 0.6

    if selector.startswith("text:"):
        content = re.sub(r"['\"]", "", selector[len("text:"):]).strip()
        exact = '"' in selector or "'" in selector
        if len(content) <= 2:
            return 0.4
        if exact and 5 <= len(content) <= 24:
            return 0.6
        if exact:
            return 0.55
        return 0.5

    if "[" in selector:
        return 0.5
    if selector.startswith("."):
        return 0.3
    return 0.2


def calculate_stability_score(
    selector: str,
    prefer: Optional[Sequence[str]] = None,
    snippet_matched: Optional[bool] = None,
    alive: Optional[bool] = None,
    weights: Optional[StabilityWeights] = None
) -> StabilityScore:
    """
    Blend the four stability components into one 0-1 score.

    Args:
        selector: the selector being rated
        prefer: the anchor hint's strategy preference, best first
        snippet_matched: True when the node's fragment matches the stored hash
        alive: probe outcome; None when the probe was not conclusive
        weights: component weights (read from the environment when omitted)
    """
    weights = (weights or load_stability_weights()).normalized()

    hint_quality = hint_quality_score(prefer)
    snippet_match = 1.0 if snippet_matched else 0.0
    liveness = UNCHECKED_LIVENESS_SCORE if alive is None else (1.0 if alive else 0.0)
    specificity = selector_specificity(selector)

    overall = (
        hint_quality * weights.hint_quality
        + snippet_match * weights.snippet_match
        + liveness * weights.liveness
        + specificity * weights.specificity
    )

    details = [f"Hint quality: {hint_quality:.0%} (weight {weights.hint_quality:.2f})"]
    if prefer:
        details.append(f"  Strategy: {' > '.join(prefer)}")
    details.append(f"Snippet match: {snippet_match:.0%} (weight {weights.snippet_match:.2f})")
    if snippet_matched is not None:
        details.append(f"  Matched: {'yes' if snippet_matched else 'no'}")
    details.append(f"Liveness: {liveness:.0%} (weight {weights.liveness:.2f})")
    if alive is not None:
        details.append(f"  Alive: {'yes' if alive else 'no'}")
    details.append(f"Specificity: {specificity:.0%} (weight {weights.specificity:.2f})")
    details.append(f"  Selector: {selector}")

    return StabilityScore(
        overall=round(overall, 6),
        hint_quality=hint_quality,
        snippet_match=snippet_match,
        liveness=liveness,
        specificity=specificity,
        details=details
    )
