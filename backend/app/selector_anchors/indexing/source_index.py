"""
Source Indexer

Parses markup-like source (HTML templates, JSX/TSX render blocks) into a
flat structural index and exposes lookup by tag/attributes and ranking by
snippet similarity.

Parsing uses BeautifulSoup with the html.parser backend, which records the
source line and column of every start tag. JSX `{...}` expressions inside
start tags are blanked first (offsets and newlines kept) so an inline
`() => save()` cannot end a tag early. Each node's fragment is the raw
source text of the element, from its start tag to its end tag, so line
spans and hashes follow the file as written. Anything that still fails
yields an empty index so resolution can continue with other tiers.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple

from bs4 import BeautifulSoup

from ..hashing.snippet_hash import hash_matches, text_similarity

# Configure logging
logger = logging.getLogger(__name__)


# JSX spellings html.parser sees (lower-cased) mapped to their HTML names
JSX_ATTRIBUTE_ALIASES = {
    "classname": "class",
    "htmlfor": "for",
}

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

MAX_TEXT_LENGTH = 200


@dataclass
class SourceNode:
    """One element found in the source"""
    tag: str
    attrs: Dict[str, str]
    text: str
    fragment: str
    line: int
    end_line: int
    order: int = 0
    has_children: bool = False

    @property
    def classes(self) -> List[str]:
        return self.attrs.get("class", "").split()

    @property
    def leaf_text(self) -> Optional[str]:
        """Text usable in a text selector; containers have none"""
        return None if self.has_children else (self.text or None)

    def has_attrs(self, attrs: Dict[str, Optional[str]]) -> bool:
        """True when every attribute is present (and equal, when a value is given)"""
        for name, value in attrs.items():
            if name not in self.attrs:
                return False
            if value is None:
                continue
            if name == "class":
                if not set(value.split()).issubset(self.classes):
                    return False
            elif self.attrs[name] != value:
                return False
        return True


@dataclass
class SourceIndex:
    """Flat, document-ordered index over the nodes of one parse"""
    nodes: List[SourceNode] = field(default_factory=list)
    line_offset: int = 0
    parse_error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def find_by_tag_and_attrs(
        self,
        tag: Optional[str],
        attrs: Optional[Dict[str, Optional[str]]] = None
    ) -> List[SourceNode]:
        """Nodes with the given tag (None = any tag) carrying all given attributes"""
        attrs = attrs or {}
        wanted_tag = tag.lower() if tag else None
        return [
            node for node in self.nodes
            if (wanted_tag is None or node.tag == wanted_tag) and node.has_attrs(attrs)
        ]

    def find_by_attribute(self, name: str, value: str) -> List[SourceNode]:
        return [node for node in self.nodes if node.attrs.get(name) == value]

    def find_at_line(self, line: int) -> List[SourceNode]:
        """Nodes whose source span covers a line, innermost (latest start) first"""
        covering = [n for n in self.nodes if n.line <= line <= n.end_line]
        return sorted(covering, key=lambda n: (-n.line, n.end_line - n.line, n.order))

    def find_by_snippet_similarity(
        self,
        snippet_hash: Optional[str],
        fragment: Optional[str],
        near_line: Optional[int] = None,
        deadline: Optional[float] = None
    ) -> List[Tuple[SourceNode, float]]:
        """
        Rank nodes by similarity to a stored fragment.

        A node whose fragment hashes to snippet_hash scores 1.0; otherwise the
        score is the text similarity to `fragment` (0 when no fragment is
        known). Ties go to the node closest to `near_line`, then to earlier
        document order. If `deadline` (time.monotonic() seconds) passes, the
        scan stops and the nodes scored so far are ranked.
        """
        scored: List[Tuple[SourceNode, float]] = []

        for node in self.nodes:
            if deadline is not None and time.monotonic() > deadline:
                logger.debug(f"Similarity scan stopped after {len(scored)}/{len(self.nodes)} nodes")
                break

            if snippet_hash and hash_matches(node.fragment, snippet_hash):
                score = 1.0
            elif fragment:
                score = text_similarity(fragment, node.fragment)
            else:
                score = 0.0
            scored.append((node, score))

        def sort_key(item: Tuple[SourceNode, float]):
            node, score = item
            distance = abs(node.line - near_line) if near_line is not None else 0
            return (-score, distance, node.order)

        scored.sort(key=sort_key)
        return scored


# ==================== JSX masking ====================

def _skip_string(text: str, start: int) -> int:
    """Offset just past the string literal opening at `start`"""
    quote = text[start]
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        i += 1
    return len(text)


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    i = start
    while i < len(text):
        ch = text[i]
        if ch in "\"'`":
            i = _skip_string(text, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _previous_char(text: str, index: int) -> str:
    i = index - 1
    while i >= 0 and text[i].isspace():
        i -= 1
    return text[i] if i >= 0 else ""


def mask_jsx_expressions(source_text: str) -> str:
    """
    Blank JSX expressions inside start tags without moving any offset.

    `attr={expr}` becomes `attr="    "` and a spread `{...props}` becomes
    spaces. Newlines are kept so line numbers survive. Braces outside start
    tags (children, plain code) are left alone.
    """
    chars = list(source_text)
    in_tag = False
    quote = None
    i = 0
    while i < len(source_text):
        ch = source_text[i]
        if not in_tag:
            i = source_text.find("<", i)
            if i < 0:
                break
            in_tag = source_text[i + 1:i + 2].isalpha()
            i += 1
            continue

        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == ">":
            in_tag = False
        elif ch == "{":
            is_value = _previous_char(source_text, i) == "="
            if is_value or source_text.startswith("{...", i):
                end = _matching_brace(source_text, i)
                if end is not None:
                    for j in range(i, end + 1):
                        if chars[j] != "\n":
                            chars[j] = " "
                    if is_value:
                        chars[i] = chars[end] = '"'
                    i = end + 1
                    continue
        i += 1
    return "".join(chars)


# ==================== Element spans ====================

def _line_starts(text: str) -> List[int]:
    return [0] + [m.end() for m in re.finditer("\n", text)]


def _start_tag_end(text: str, start: int) -> Tuple[int, bool]:
    """Offset just past the start tag at `start`, and whether it self-closes"""
    quote = None
    for i in range(start + 1, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == ">":
            return i + 1, text[start:i].rstrip().endswith("/")
    return len(text), False


def _element_end(text: str, name: str, start: int, patterns: Dict[str, Pattern]) -> Optional[int]:
    """Offset just past the end tag matching the start tag at `start`; None if never closed"""
    open_end, self_closing = _start_tag_end(text, start)
    if self_closing or name in VOID_ELEMENTS:
        return open_end

    if name not in patterns:
        patterns[name] = re.compile(r"<(/?)" + re.escape(name) + r"(?=[\s/>])", re.IGNORECASE)
    pattern = patterns[name]

    depth = 1
    position = open_end
    while True:
        match = pattern.search(text, position)
        if match is None:
            return None
        if match.group(1):
            close = text.find(">", match.end())
            position = len(text) if close < 0 else close + 1
            depth -= 1
            if depth == 0:
                return position
        else:
            position, nested_self_closing = _start_tag_end(text, match.start())
            if not nested_self_closing:
                depth += 1


def _attribute_value(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return "" if value is None else str(value)


def _node_attrs(raw: Dict) -> Dict[str, str]:
    attrs = {}
    for name, value in raw.items():
        name = JSX_ATTRIBUTE_ALIASES.get(name.lower(), name.lower())
        attrs[name] = _attribute_value(value)
    return attrs


def index_source(source_text: str, line_offset: int = 0) -> SourceIndex:
    """
    Parse source text into a SourceIndex.

    Args:
        source_text: markup to parse
        line_offset: added to every node's line so a parsed region keeps
            the line numbers of the file it was cut from

    Returns:
        SourceIndex (empty when the source is empty or cannot be parsed)
    """
    if not source_text or not isinstance(source_text, str):
        return SourceIndex(line_offset=line_offset)

    try:
        masked = mask_jsx_expressions(source_text)
        soup = BeautifulSoup(masked, "html.parser")
        tags = soup.find_all(True)

        line_starts = _line_starts(source_text)
        patterns: Dict[str, Pattern] = {}
        spans = []
        for tag in tags:
            line = min(tag.sourceline or 1, len(line_starts))
            start = line_starts[line - 1] + (tag.sourcepos or 0)
            spans.append([start, _element_end(masked, tag.name, start, patterns)])

        # An unclosed element ends with its last descendant (or its own start tag)
        position = {id(tag): i for i, tag in enumerate(tags)}
        for i in range(len(tags) - 1, -1, -1):
            if spans[i][1] is None:
                ends = [spans[position[id(d)]][1] for d in tags[i].find_all(True)]
                spans[i][1] = max([_start_tag_end(masked, spans[i][0])[0]] + ends)

        nodes = []
        for order, (tag, (start, end)) in enumerate(zip(tags, spans)):
            fragment = source_text[start:end]
            line = (tag.sourceline or 1) + line_offset
            nodes.append(SourceNode(
                tag=tag.name.lower(),
                attrs=_node_attrs(tag.attrs),
                text=tag.get_text(" ", strip=True)[:MAX_TEXT_LENGTH],
                fragment=fragment,
                line=line,
                end_line=line + fragment.count("\n"),
                order=order,
                has_children=tag.find(True) is not None
            ))
        return SourceIndex(nodes=nodes, line_offset=line_offset)

    except Exception as e:
        logger.warning(f"Source parse failed, using empty index: {e}")
        return SourceIndex(line_offset=line_offset, parse_error=str(e))


def slice_lines(source_text: str, start: int, end: int) -> Tuple[str, int]:
    """
    Cut 1-indexed inclusive lines [start, end] out of a source.

    Returns (region text, line offset to pass to index_source).
    """
    lines = (source_text or "").splitlines()
    if not lines:
        return "", 0
    start = max(1, min(start, len(lines)))
    end = max(start, min(end, len(lines)))
    return "\n".join(lines[start - 1:end]), start - 1


def primary_node(index: SourceIndex) -> Optional[SourceNode]:
    """First (outermost) node of an index, if any"""
    return index.nodes[0] if index.nodes else None
