"""
Anchor Matcher

Picks the stored anchor that best corresponds to a selector a caller
starts from, so a test that still uses an old selector can be routed to
the right anchor before resolution.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..store.models import Anchor

# Configure logging
logger = logging.getLogger(__name__)


MATCH_WEIGHTS: Dict[str, float] = {
    "exact_selector": 100,
    "partial_selector": 50,
    "testid_hint": 80,
    "role_hint": 30,
    "component": 20,
    "snippet_hash": 15,
    "recent_update": 10,
    "high_stability": 10,
}

RECENT_UPDATE_DAYS = 7
HIGH_STABILITY = 0.7


@dataclass
class AnchorScore:
    anchor: Anchor
    score: float = 0.0
    reasons: List[str] = field(default_factory=list)

    def add(self, weight_name: str, reason: str):
        self.score += MATCH_WEIGHTS[weight_name]
        self.reasons.append(reason)


def normalize_selector(selector: str) -> str:
    """Collapse whitespace and unify quotes to single"""
    return re.sub(r"\s+", " ", (selector or "").strip()).replace('"', "'")


def _has_testid(selector: str, testid: str) -> bool:
    normalized = normalize_selector(selector)
    return (
        f"testid:{testid}" in normalized
        or f"data-testid='{testid}'" in normalized
    )


def _has_role(selector: str, role: str) -> bool:
    normalized = normalize_selector(selector)
    return (
        f"role:{role}" in normalized
        or f"role={role}" in normalized
        or f"role='{role}'" in normalized
    )


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def score_anchor(anchor: Anchor, initial_selector: str, now: Optional[datetime] = None) -> AnchorScore:
    result = AnchorScore(anchor=anchor)
    initial = normalize_selector(initial_selector)
    stored = normalize_selector(anchor.selector)

    if stored and stored == initial:
        result.add("exact_selector", "Exact match with stored selector")
    elif stored and initial and (initial in stored or stored in initial):
        result.add("partial_selector", "Partial match with stored selector")

    hint = anchor.hint
    if hint and hint.testid and _has_testid(initial_selector, hint.testid):
        result.add("testid_hint", "Matches testid hint")
    if hint and hint.role and _has_role(initial_selector, hint.role):
        result.add("role_hint", "Matches role hint")

    if anchor.meta and anchor.meta.component:
        component = re.sub(r"[-_]", "", anchor.meta.component.lower())
        if component and component in re.sub(r"[-_]", "", initial_selector.lower()):
            result.add("component", "Matches component metadata")

    if anchor.snippet_hash:
        result.add("snippet_hash", "Has snippet hash for robust tracking")

    updated = _parse_timestamp(anchor.updated_at)
    if updated is not None:
        age_days = ((now or datetime.now(timezone.utc)) - updated).total_seconds() / 86400
        if age_days < RECENT_UPDATE_DAYS:
            result.add("recent_update", "Recently verified selector")

    if anchor.stability >= HIGH_STABILITY:
        result.add("high_stability", "High stability score from previous resolution")

    return result


def match_anchors(anchors: List[Anchor], initial_selector: str,
                  now: Optional[datetime] = None) -> List[AnchorScore]:
    """All anchors scored against the selector, best first (stable for equal scores)"""
    scored = [score_anchor(anchor, initial_selector, now) for anchor in anchors]
    scored.sort(key=lambda s: -s.score)
    return scored


def select_best_anchor(
    anchors: List[Anchor],
    initial_selector: str,
    min_score: float = 0,
    now: Optional[datetime] = None
) -> Optional[AnchorScore]:
    """Best scoring anchor, or None when there are no anchors or it scores below min_score"""
    if not anchors:
        return None

    best = match_anchors(anchors, initial_selector, now)[0]
    if best.score < min_score:
        logger.debug(f"Best anchor {best.anchor.id} scored {best.score} < {min_score}")
        return None
    return best
