"""
Selector Anchors

Durable references to UI elements that survive source refactors:
- Captures an element's selector plus a hash of its source fragment
- Resolves a stale selector through tiered fallback
  (Stored Selector → Fast Structural → Attribute Match → Full Structural)
- Bounds every tier and every liveness probe by its own time budget
- Returns a confidence signal instead of guessing when nothing is alive
"""

from .config import ResolutionBudgets, load_budgets
from .hashing.snippet_hash import hash_fragment, normalize_fragment, text_similarity
from .matching.safe_pattern import compile_safe_pattern, CompiledPattern, PatternRejection
from .indexing.source_index import SourceIndex, SourceNode, index_source
from .core.models import Tier, Liveness, Candidate, ResolutionResult
from .core.resolution_engine import ResolutionEngine, select_best_candidate
from .probe.liveness import LivenessProbe, ProbeResult, PlaywrightProbe
from .store.models import Anchor, AnchorsDocument
from .store.anchor_store import AnchorStore, AnchorStoreError, JsonAnchorStore, apply_resolution
from .matching.anchor_matcher import AnchorScore, select_best_anchor
from .capture import CaptureError, capture_anchor

__all__ = [
    # Config
    "ResolutionBudgets",
    "load_budgets",
    # Hashing & matching
    "hash_fragment",
    "normalize_fragment",
    "text_similarity",
    "compile_safe_pattern",
    "CompiledPattern",
    "PatternRejection",
    # Indexing
    "SourceIndex",
    "SourceNode",
    "index_source",
    # Resolution
    "Tier",
    "Liveness",
    "Candidate",
    "ResolutionResult",
    "ResolutionEngine",
    "select_best_candidate",
    # Probe
    "LivenessProbe",
    "ProbeResult",
    "PlaywrightProbe",
    # Store
    "Anchor",
    "AnchorsDocument",
    "AnchorStore",
    "AnchorStoreError",
    "JsonAnchorStore",
    "apply_resolution",
    "AnchorScore",
    "select_best_anchor",
    # Capture
    "CaptureError",
    "capture_anchor"
]

__version__ = "1.0.0"
