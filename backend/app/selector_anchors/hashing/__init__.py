"""
Snippet Hashing

Canonical hashing and fuzzy similarity of source fragments, plus the
selector stability score.
"""

from .snippet_hash import hash_fragment, hash_matches, normalize_fragment, parse_hash, text_similarity
from .stability_score import StabilityScore, calculate_stability_score, selector_specificity

__all__ = [
    "hash_fragment",
    "hash_matches",
    "normalize_fragment",
    "parse_hash",
    "text_similarity",
    "StabilityScore",
    "calculate_stability_score",
    "selector_specificity"
]
