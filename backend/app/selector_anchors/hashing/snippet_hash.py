"""
Snippet Hasher

Canonicalizes a small source fragment around an element reference and
turns it into a stable content hash. Formatting-only edits (indentation,
line wrapping, quote style, tag/attribute name casing) hash identically,
while any structural edit produces a different hash.

Also provides the fuzzy text similarity used to rank candidate nodes
when the hash no longer matches exactly.
"""

import hashlib
import re
from collections import Counter
from typing import Tuple


SUPPORTED_ALGORITHMS = ("sha1", "sha256", "md5")
DEFAULT_ALGORITHM = "sha1"
DEFAULT_HASH_DIGITS = 16

# Markup punctuation around which whitespace carries no meaning
_PUNCTUATION = r'<>=/{}(),;"'

_WHITESPACE_RE = re.compile(r"\s+")
_AROUND_PUNCT_RE = re.compile(r"\s*([" + re.escape(_PUNCTUATION) + r"])\s*")
_TAG_NAME_RE = re.compile(r"(</?)([A-Za-z][\w.:-]*)")
_ATTR_NAME_RE = re.compile(r"([\s<\"}][A-Za-z_:][\w.:-]*)(?==)")
_SINGLE_QUOTED_VALUE_RE = re.compile(r"=(\s*)'([^'\"]*)'")
_TOKEN_SPLIT_RE = re.compile(r"[\s,;.(){}\[\]<>'\"=/]+")


def normalize_fragment(fragment: str) -> str:
    """
    Canonical form of a fragment.

    - single-quoted attribute values become double-quoted (text is untouched)
    - whitespace runs collapse to one space
    - whitespace next to markup punctuation is dropped
    - tag and attribute names are lower-cased
    """
    if not fragment:
        return ""

    text = _SINGLE_QUOTED_VALUE_RE.sub(r'=\1"\2"', fragment)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    text = _AROUND_PUNCT_RE.sub(r"\1", text)
    text = _TAG_NAME_RE.sub(lambda m: m.group(1) + m.group(2).lower(), text)
    text = _ATTR_NAME_RE.sub(lambda m: m.group(1).lower(), text)
    return text


def hash_fragment(
    fragment: str,
    algorithm: str = DEFAULT_ALGORITHM,
    digits: int = DEFAULT_HASH_DIGITS
) -> str:
    """Hash the canonical form of a fragment as '<algorithm>:<hex digest prefix>'."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    digest = hashlib.new(algorithm, normalize_fragment(fragment).encode("utf-8")).hexdigest()
    digits = max(6, min(digits, len(digest)))
    return f"{algorithm}:{digest[:digits]}"


def parse_hash(snippet_hash: str) -> Tuple[str, int]:
    """Return (algorithm, digit count) encoded in a stored hash string."""
    algorithm, _, digest = (snippet_hash or "").partition(":")
    if algorithm not in SUPPORTED_ALGORITHMS or not digest:
        return DEFAULT_ALGORITHM, DEFAULT_HASH_DIGITS
    return algorithm, len(digest)


def hash_matches(fragment: str, expected_hash: str) -> bool:
    """Check a fragment against a stored hash using the stored hash's own format."""
    if not expected_hash:
        return False
    algorithm, digits = parse_hash(expected_hash)
    return hash_fragment(fragment, algorithm=algorithm, digits=digits) == expected_hash


def _tokenize(text: str) -> Counter:
    tokens = [
        t for t in _TOKEN_SPLIT_RE.split(text.lower())
        if len(t) > 1 and re.search(r"[a-z0-9_]", t)
    ]
    return Counter(tokens)


def text_similarity(first: str, second: str) -> float:
    """
    Similarity of two fragments in [0, 1].

    80% token overlap (multiset intersection over the larger token count)
    plus 20% positional character agreement, both on canonical text.
    """
    norm1 = normalize_fragment(first)
    norm2 = normalize_fragment(second)

    if norm1 == norm2:
        return 1.0
    if not norm1 or not norm2:
        return 0.0

    max_len = max(len(norm1), len(norm2))
    char_matches = sum(1 for a, b in zip(norm1, norm2) if a == b)
    char_score = char_matches / max_len

    tokens1 = _tokenize(norm1)
    tokens2 = _tokenize(norm2)
    total = max(sum(tokens1.values()), sum(tokens2.values()))
    shared = sum((tokens1 & tokens2).values())
    token_score = shared / total if total else 0.0

    return round(char_score * 0.2 + token_score * 0.8, 6)
