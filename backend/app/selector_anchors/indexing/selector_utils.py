"""
Selector Utilities

Parses the shape of a stored selector (tag, id, classes, attributes) and
generates candidate selectors from element attributes, ordered from the
most stable strategy (test ids) to the least stable (tag + attribute).
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# Attributes that survive refactors, in priority order
TEST_ID_ATTRIBUTES = ["data-testid", "data-test-id", "data-test", "data-cy", "data-qa"]
STABLE_ATTRIBUTES = TEST_ID_ATTRIBUTES + ["name", "aria-label"]

_ATTR_SELECTOR_RE = re.compile(
    r"\[\s*([\w:-]+)\s*(?:([~|^$*]?=)\s*(?:\"([^\"]*)\"|'([^']*)'|([^\]\s]+)))?\s*\]"
)
_ID_RE = re.compile(r"#([A-Za-z_][\w-]*)")
_CLASS_RE = re.compile(r"\.([A-Za-z_][\w-]*)")
_TAG_RE = re.compile(r"^([A-Za-z][\w-]*)")
_PSEUDO_RE = re.compile(r"::?[\w-]+(\((?:[^()]|\([^()]*\))*\))?")
_ROLE_PREFIX_RE = re.compile(r"^role:([\w-]+)")
_TEXT_PREFIX_RE = re.compile(r"^text[:=]\s*[\"']?(.*?)[\"']?$")


@dataclass
class SelectorShape:
    """Structural signature of a selector's target (last compound) element"""
    tag: Optional[str] = None
    element_id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    attrs: Dict[str, Optional[str]] = field(default_factory=dict)
    role: Optional[str] = None
    text: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.tag or self.element_id or self.classes or self.attrs
                    or self.role or self.text)

    def required_attrs(self) -> Dict[str, str]:
        """Attribute constraints a matching node must satisfy (value-bearing only)"""
        required = {k: v for k, v in self.attrs.items() if v is not None}
        if self.element_id:
            required["id"] = self.element_id
        if self.role:
            required["role"] = self.role
        return required

    def constraints(self) -> Dict[str, Optional[str]]:
        """Attribute filter for SourceIndex.find_by_tag_and_attrs (None = presence only)"""
        constraints: Dict[str, Optional[str]] = {k: None for k, v in self.attrs.items() if v is None}
        constraints.update(self.required_attrs())
        if self.classes:
            constraints["class"] = " ".join(self.classes)
        return constraints


def last_compound(selector: str) -> str:
    """Last compound selector, ignoring combinators inside brackets/quotes"""
    depth = 0
    quote = None
    start = 0
    for i, ch in enumerate(selector):
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        elif depth == 0 and ch in " >+~":
            start = i + 1
    return selector[start:].strip()


def parse_selector_shape(selector: str) -> SelectorShape:
    """Best-effort parse of CSS / Playwright-style selectors into a SelectorShape."""
    shape = SelectorShape()
    selector = (selector or "").strip()
    if not selector:
        return shape

    role_match = _ROLE_PREFIX_RE.match(selector)
    if role_match:
        shape.role = role_match.group(1)
        name = re.search(r"name=[\"']([^\"']*)[\"']", selector)
        if name:
            shape.attrs["aria-label"] = name.group(1)
        return shape

    text_match = _TEXT_PREFIX_RE.match(selector)
    if text_match:
        shape.text = text_match.group(1)
        return shape

    compound = last_compound(selector)

    for m in _ATTR_SELECTOR_RE.finditer(compound):
        name = m.group(1).lower()
        operator = m.group(2)
        value = next((g for g in m.group(3, 4, 5) if g is not None), None)
        # Only exact-value attributes constrain structure
        shape.attrs[name] = value if operator == "=" else None
    compound = _ATTR_SELECTOR_RE.sub("", compound)

    has_text = re.search(r":has-text\([\"'](.*?)[\"']\)", compound)
    if has_text:
        shape.text = has_text.group(1)
    compound = _PSEUDO_RE.sub("", compound)

    tag_match = _TAG_RE.match(compound)
    if tag_match:
        shape.tag = tag_match.group(1).lower()

    id_match = _ID_RE.search(compound)
    if id_match:
        shape.element_id = id_match.group(1)

    shape.classes = _CLASS_RE.findall(compound)

    if shape.attrs.get("id") is not None:
        element_id = shape.attrs.pop("id")
        shape.element_id = shape.element_id or element_id
    if "role" in shape.attrs and shape.attrs["role"] is not None:
        shape.role = shape.attrs.pop("role")

    return shape


def stable_attributes(attributes: Dict[str, str]) -> List[Tuple[str, str]]:
    """(name, value) pairs of refactor-stable attributes, in priority order"""
    pairs = []
    for name in STABLE_ATTRIBUTES:
        value = attributes.get(name)
        if value:
            pairs.append((name, value))
    return pairs


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def attribute_selector(name: str, value: str) -> str:
    return f'[{name}="{_quote(value)}"]'


def preferred_strategies(attributes: Dict[str, str], text: Optional[str] = None) -> List[str]:
    """Selector strategies an element supports, best first (testid, role, text, css)"""
    prefer = []
    if any(attributes.get(name) for name in TEST_ID_ATTRIBUTES):
        prefer.append("testid")
    if attributes.get("role"):
        prefer.append("role")
    if text and 1 <= len(text) <= 24 and not prefer:
        prefer.append("text")
    return prefer or ["css"]


def generate_selectors_from_attributes(
    attributes: Dict[str, str],
    tag: str,
    text: Optional[str] = None,
    prefer: Optional[List[str]] = None
) -> List[str]:
    """
    Candidate selectors for an element, most stable first:
    test id -> id -> role -> aria-label -> short text -> first class -> tag[name|type]

    `prefer` (strategy names: testid, role, text, css) moves the named
    strategies to the front in that order; the rest keep the default order.
    """
    generated: List[Tuple[str, str]] = []

    for name in TEST_ID_ATTRIBUTES:
        if attributes.get(name):
            generated.append(("testid", attribute_selector(name, attributes[name])))
            break

    element_id = attributes.get("id")
    if element_id and re.match(r"^[A-Za-z_][\w-]*$", element_id):
        generated.append(("css", f"#{element_id}"))

    if attributes.get("role"):
        role = attributes["role"]
        if attributes.get("aria-label"):
            generated.append(("role", f'role:{role}[name="{_quote(attributes["aria-label"])}"]'))
        else:
            generated.append(("role", f"role:{role}"))
    elif attributes.get("aria-label"):
        generated.append(("role", attribute_selector("aria-label", attributes["aria-label"])))

    if text and 1 <= len(text) <= 24:
        generated.append(("text", f'text:"{_quote(text)}"'))

    class_name = attributes.get("class") or attributes.get("className")
    if class_name:
        first_class = class_name.split()[0] if class_name.split() else ""
        if re.match(r"^[A-Za-z_][\w-]*$", first_class):
            generated.append(("css", f".{first_class}"))

    if not element_id and not any(attributes.get(n) for n in TEST_ID_ATTRIBUTES):
        if attributes.get("name"):
            generated.append(("css", f'{tag}[name="{_quote(attributes["name"])}"]'))
        elif attributes.get("type"):
            generated.append(("css", f'{tag}[type="{_quote(attributes["type"])}"]'))

    if prefer:
        rank = {strategy: i for i, strategy in enumerate(prefer)}
        generated.sort(key=lambda item: rank.get(item[0], len(rank)))

    return [selector for _, selector in generated]
