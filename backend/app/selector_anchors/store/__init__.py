"""
Anchor Store

Persisted anchor models and the JSON file store.
"""

from .models import Anchor, AnchorHint, AnchorMeta, AnchorsDocument, SourceRange
from .anchor_store import AnchorStore, AnchorStoreError, JsonAnchorStore, apply_resolution

__all__ = [
    "Anchor",
    "AnchorHint",
    "AnchorMeta",
    "AnchorsDocument",
    "SourceRange",
    "AnchorStore",
    "AnchorStoreError",
    "JsonAnchorStore",
    "apply_resolution"
]
