"""
Core Resolution

The tiered resolution engine and the types it produces.
"""

from .models import Tier, Liveness, Candidate, ResolutionResult
from .resolution_engine import ResolutionEngine, select_best_candidate

__all__ = [
    "Tier",
    "Liveness",
    "Candidate",
    "ResolutionResult",
    "ResolutionEngine",
    "select_best_candidate"
]
