"""
Safe Pattern Compiler

Compiles untrusted selector/snippet patterns into regex matchers while
rejecting shapes that are prone to catastrophic backtracking. A rejection
is returned as a value, never raised, and every caller falls back to
plain literal matching.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Union

# Configure logging
logger = logging.getLogger(__name__)


MAX_PATTERN_LENGTH = 300

# Five or more opening groups in a row (with no closing group between them)
DANGEROUS_NESTING = re.compile(r"(\([^()]*){5,}")


@dataclass
class CompiledPattern:
    """A pattern that passed all safety checks"""
    pattern: str
    regex: Pattern

    def search(self, text: str) -> Optional[re.Match]:
        return self.regex.search(text)


@dataclass
class PatternRejection:
    """Why a pattern was refused; callers must match literally instead"""
    pattern: str
    reason: str
    fallback_to_literal: bool = True


CompileResult = Union[CompiledPattern, PatternRejection]


def compile_safe_pattern(pattern: str, flags: int = 0) -> CompileResult:
    """
    Compile a regex pattern with safety validation.

    Rejects:
    - patterns longer than MAX_PATTERN_LENGTH
    - 5+ chained opening groups (nested quantifier shapes)
    - patterns the re module cannot compile
    """
    if len(pattern) > MAX_PATTERN_LENGTH:
        reason = f"Pattern too long ({len(pattern)} > {MAX_PATTERN_LENGTH})"
        logger.debug(f"Rejected pattern: {reason}")
        return PatternRejection(pattern=pattern, reason=reason)

    if DANGEROUS_NESTING.search(pattern):
        reason = "Potentially dangerous nested groups detected"
        logger.debug(f"Rejected pattern {pattern[:40]!r}: {reason}")
        return PatternRejection(pattern=pattern, reason=reason)

    try:
        return CompiledPattern(pattern=pattern, regex=re.compile(pattern, flags))
    except re.error as e:
        reason = f"Invalid regex syntax: {e}"
        logger.debug(f"Rejected pattern {pattern[:40]!r}: {reason}")
        return PatternRejection(pattern=pattern, reason=reason)


def search_or_literal(
    pattern: str,
    text: str,
    literal: Optional[str] = None,
    flags: int = 0
) -> Optional[str]:
    """
    Search text with a safely compiled pattern.

    Returns the first capture group (or whole match) when the pattern
    compiles; otherwise falls back to a substring search for `literal`
    (defaults to the pattern itself) and returns it when present.
    """
    compiled = compile_safe_pattern(pattern, flags)

    if isinstance(compiled, CompiledPattern):
        match = compiled.search(text)
        if not match:
            return None
        if match.groups() and match.group(1) is not None:
            return match.group(1)
        return match.group(0)

    needle = literal if literal is not None else pattern
    haystack, probe = (text.lower(), needle.lower()) if flags & re.IGNORECASE else (text, needle)
    if needle and probe in haystack:
        return needle
    return None


def text_matches(expected: str, text: str) -> bool:
    """
    Match element text against an expected value.

    `/.../` (optionally `/.../i`) is a regex, compiled safely and falling
    back to a literal search of its body; anything else is a
    case-insensitive substring.
    """
    if not expected:
        return True
    text = text or ""

    if len(expected) > 2 and expected.startswith("/") and (expected.endswith("/") or expected.endswith("/i")):
        ignore_case = expected.endswith("/i")
        body = expected[1:-2] if ignore_case else expected[1:-1]
        flags = re.IGNORECASE if ignore_case else 0
        return search_or_literal(body, text, literal=body, flags=flags) is not None

    return expected.strip().lower() in text.lower()
