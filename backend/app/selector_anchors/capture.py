"""
Anchor capture

Builds a new anchor from a position in a source file: finds the element
there, stores its rendered fragment and hash, and records hints taken
from its attributes.
"""

import logging
from typing import Optional

from .hashing.snippet_hash import DEFAULT_ALGORITHM, DEFAULT_HASH_DIGITS, hash_fragment
from .indexing.selector_utils import (
    TEST_ID_ATTRIBUTES,
    generate_selectors_from_attributes,
    parse_selector_shape,
    preferred_strategies,
)
from .indexing.source_index import SourceIndex, SourceNode, index_source
from .matching.safe_pattern import text_matches
from .store.models import Anchor, AnchorHint, SourceRange

# Configure logging
logger = logging.getLogger(__name__)


MAX_HINT_TEXT_LENGTH = 40


class CaptureError(Exception):
    """No element could be captured at the requested position"""


def _find_node(index: SourceIndex, selector: Optional[str], line: int) -> Optional[SourceNode]:
    if selector:
        shape = parse_selector_shape(selector)
        if not shape.is_empty():
            matching = index.find_by_tag_and_attrs(shape.tag, shape.constraints())
            if shape.text:
                matching = [n for n in matching if text_matches(shape.text, n.text)]
            after = [n for n in matching if n.line >= line]
            if after:
                return min(after, key=lambda n: (n.line - line, n.order))
            covering = [n for n in index.find_at_line(line) if n in matching]
            if covering:
                return covering[0]
            logger.debug(f"No node matching {selector!r} at or after line {line}")

    on_line = [n for n in index.nodes if n.line == line]
    if on_line:
        return on_line[0]
    covering = index.find_at_line(line)
    return covering[0] if covering else None


def _hint_for(node: SourceNode) -> AnchorHint:
    testid = next((node.attrs[a] for a in TEST_ID_ATTRIBUTES if node.attrs.get(a)), None)
    text = node.leaf_text if node.leaf_text and len(node.leaf_text) <= MAX_HINT_TEXT_LENGTH else None
    return AnchorHint(
        testid=testid,
        role=node.attrs.get("role") or None,
        aria_label=node.attrs.get("aria-label") or None,
        expected_text=text,
        prefer=preferred_strategies(node.attrs, node.leaf_text)
    )


def capture_anchor(
    anchor_id: str,
    selector: Optional[str],
    source_text: str,
    source_file: str,
    line: int,
    algorithm: str = DEFAULT_ALGORITHM,
    digits: int = DEFAULT_HASH_DIGITS
) -> Anchor:
    """
    Capture an anchor for the element at (or just after) a 1-indexed line.

    When `selector` is given, the nearest node matching its shape wins;
    otherwise (or when nothing matches) the first element starting on the
    line is used. Without a selector one is generated from the element's
    attributes.

    Raises:
        CaptureError: the source has no element at that position
    """
    if line < 1:
        raise CaptureError(f"Line numbers start at 1, got {line}")

    index = index_source(source_text)
    if index.is_empty:
        raise CaptureError(f"No elements found in {source_file}")

    node = _find_node(index, selector, line)
    if node is None:
        raise CaptureError(f"No element at {source_file}:{line}")

    hint = _hint_for(node)
    if not selector:
        generated = generate_selectors_from_attributes(node.attrs, node.tag, node.leaf_text, prefer=hint.prefer)
        selector = generated[0] if generated else node.tag

    anchor = Anchor(
        id=anchor_id,
        selector=selector,
        snippet_hash=hash_fragment(node.fragment, algorithm=algorithm, digits=digits),
        source_file=source_file,
        source_range=SourceRange(start=node.line, end=node.end_line),
        stability=0.0,
        snippet=node.fragment,
        hint=hint
    )
    logger.info(f"Captured anchor {anchor_id}: <{node.tag}> at {source_file}:{node.line}-{node.end_line}")
    return anchor
