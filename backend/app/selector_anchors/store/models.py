"""
Anchor models

Pydantic models for the persisted anchors document. JSON keys are
camelCase (snippetHash, sourceRange, ...); Python attributes are
snake_case. Unknown keys written by other tools are kept on round-trip.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


DOCUMENT_VERSION = "1.0.0"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class SourceRange(_CamelModel):
    """1-indexed inclusive line span; advisory, may be stale"""
    start: int = Field(ge=1)
    end: int = Field(ge=1)

    @model_validator(mode="after")
    def _ordered(self):
        if self.end < self.start:
            raise ValueError(f"sourceRange end ({self.end}) before start ({self.start})")
        return self


class AnchorHint(_CamelModel):
    """Extra identity signals recorded at capture time"""
    testid: Optional[str] = None
    role: Optional[str] = None
    aria_label: Optional[str] = None
    expected_text: Optional[str] = None
    prefer: Optional[List[str]] = None


class AnchorMeta(_CamelModel):
    component: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class Anchor(_CamelModel):
    """A durable reference to one UI element"""
    id: str = Field(min_length=1)
    selector: str
    snippet_hash: Optional[str] = None
    source_file: Optional[str] = None
    source_range: Optional[SourceRange] = None
    stability: float = Field(default=0.0, ge=0.0, le=1.0)
    updated_at: str = Field(default_factory=utc_now_iso)

    snippet: Optional[str] = None
    hint: Optional[AnchorHint] = None
    meta: Optional[AnchorMeta] = None

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("anchor id must not be blank")
        return value

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AnchorsDocument(_CamelModel):
    """The anchors.json document: anchors in insertion order, unique ids"""
    version: str = DOCUMENT_VERSION
    anchors: List[Anchor] = Field(default_factory=list)

    @field_validator("anchors")
    @classmethod
    def _unique_ids(cls, anchors: List[Anchor]) -> List[Anchor]:
        seen = set()
        for anchor in anchors:
            if anchor.id in seen:
                raise ValueError(f"duplicate anchor id: {anchor.id}")
            seen.add(anchor.id)
        return anchors

    def get(self, anchor_id: str) -> Optional[Anchor]:
        for anchor in self.anchors:
            if anchor.id == anchor_id:
                return anchor
        return None

    def upsert(self, anchor: Anchor) -> bool:
        """Replace in place (keeping position) or append. Returns True if appended."""
        for i, existing in enumerate(self.anchors):
            if existing.id == anchor.id:
                self.anchors[i] = anchor
                return False
        self.anchors.append(anchor)
        return True

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
