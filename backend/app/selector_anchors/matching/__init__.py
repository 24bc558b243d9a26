"""
Matching

Safe pattern compilation and anchor selection.
"""

from .safe_pattern import compile_safe_pattern, search_or_literal, text_matches, CompiledPattern, PatternRejection
from .anchor_matcher import AnchorScore, match_anchors, select_best_anchor

__all__ = [
    "compile_safe_pattern",
    "search_or_literal",
    "text_matches",
    "CompiledPattern",
    "PatternRejection",
    "AnchorScore",
    "match_anchors",
    "select_best_anchor"
]
