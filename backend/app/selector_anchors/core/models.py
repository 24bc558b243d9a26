"""
Resolution data types

Tiers, tri-state liveness, per-call candidates and the result handed back
to the caller. None of these are persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..hashing.stability_score import StabilityScore


class Tier(Enum):
    """Fallback stage that produced a candidate, in the order they run"""
    STORED_SELECTOR = 1
    FAST_STRUCTURAL = 2
    ATTRIBUTE_MATCH = 3
    FULL_STRUCTURAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class Liveness(Enum):
    """Probe outcome; UNKNOWN means the probe timed out or errored"""
    ALIVE = "alive"
    DEAD = "dead"
    UNKNOWN = "unknown"


@dataclass
class Candidate:
    """A selector proposed by one tier during a single resolution call"""
    selector: str
    tier: Tier
    match_score: float
    liveness: Liveness = Liveness.UNKNOWN
    order: int = 0
    snippet_hash: Optional[str] = None
    source_range: Optional[Dict[str, int]] = None
    snippet: Optional[str] = None
    probe_error: Optional[str] = None
    stability: Optional[StabilityScore] = None

    @property
    def confidence(self) -> float:
        # Dead and unknown candidates never win
        if self.liveness is not Liveness.ALIVE:
            return 0.0
        return self.match_score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "tier": self.tier.label,
            "match_score": round(self.match_score, 4),
            "liveness": self.liveness.value,
            "confidence": round(self.confidence, 4),
            "probe_error": self.probe_error,
            "stability": round(self.stability.overall, 4) if self.stability else None,
        }


@dataclass
class ResolutionResult:
    """Outcome of one resolve() call; selector None means resolution failed"""
    selector: Optional[str]
    tier: Optional[Tier]
    confidence: float
    durations_ms: Dict[str, float] = field(default_factory=dict)
    candidates: List[Candidate] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)
    timed_out: bool = False
    snippet_hash: Optional[str] = None
    source_range: Optional[Dict[str, int]] = None
    snippet: Optional[str] = None
    stability: Optional[StabilityScore] = None

    @property
    def resolved(self) -> bool:
        return self.selector is not None

    @classmethod
    def failed(cls, reasons: List[str], durations_ms: Optional[Dict[str, float]] = None,
               candidates: Optional[List[Candidate]] = None,
               timed_out: bool = False) -> "ResolutionResult":
        return cls(
            selector=None,
            tier=None,
            confidence=0.0,
            durations_ms=dict(durations_ms or {}),
            candidates=list(candidates or []),
            reasons=list(reasons),
            timed_out=timed_out
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "tier": self.tier.label if self.tier else None,
            "confidence": round(self.confidence, 4),
            "durations_ms": {k: round(v, 2) for k, v in self.durations_ms.items()},
            "candidates": [c.to_dict() for c in self.candidates],
            "reasons": list(self.reasons),
            "timed_out": self.timed_out,
            "stability": self.stability.to_dict() if self.stability else None,
        }
