"""
Source Indexing

Structural index over markup source and selector shape utilities.
"""

from .source_index import SourceIndex, SourceNode, index_source, slice_lines
from .selector_utils import SelectorShape, parse_selector_shape, generate_selectors_from_attributes

__all__ = [
    "SourceIndex",
    "SourceNode",
    "index_source",
    "slice_lines",
    "SelectorShape",
    "parse_selector_shape",
    "generate_selectors_from_attributes"
]
