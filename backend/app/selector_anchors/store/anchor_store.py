"""
Anchor Store

The engine never reads or writes anchors itself. Callers use an
AnchorStore to fetch an anchor before resolving and to persist the
refreshed anchor afterwards (apply_resolution builds it).
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol, Union, runtime_checkable

from pydantic import ValidationError

from ..core.models import ResolutionResult
from .models import Anchor, AnchorsDocument, SourceRange

# Configure logging
logger = logging.getLogger(__name__)


class AnchorStoreError(Exception):
    """The anchors document cannot be read or written"""


@runtime_checkable
class AnchorStore(Protocol):

    def get_anchor(self, anchor_id: str) -> Optional[Anchor]:
        ...

    def put_anchor(self, anchor: Anchor) -> None:
        ...


class JsonAnchorStore:
    """
    AnchorStore backed by a single anchors.json file.

    The document is loaded on first access and rewritten atomically on
    every put. Anchor order is preserved; replacing an anchor keeps its
    position.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._document: Optional[AnchorsDocument] = None
        self._lock = threading.Lock()

    def _load(self) -> AnchorsDocument:
        if self._document is not None:
            return self._document

        if not self.path.exists():
            logger.info(f"No anchors file at {self.path}, starting empty")
            self._document = AnchorsDocument()
            return self._document

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AnchorStoreError(f"Cannot read anchors file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise AnchorStoreError(f"Anchors file {self.path} must contain a JSON object")

        try:
            self._document = AnchorsDocument.model_validate(data)
        except ValidationError as e:
            raise AnchorStoreError(f"Invalid anchors file {self.path}: {e}") from e

        logger.info(f"Loaded {len(self._document.anchors)} anchors from {self.path}")
        return self._document

    def _save(self, document: AnchorsDocument):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(document.to_json_dict(), indent=2, ensure_ascii=False) + "\n"

        fd, tmp_name = tempfile.mkstemp(prefix=".anchors-", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise AnchorStoreError(f"Cannot write anchors file {self.path}: {e}") from e

    def get_anchor(self, anchor_id: str) -> Optional[Anchor]:
        with self._lock:
            return self._load().get(anchor_id)

    def list_anchors(self) -> List[Anchor]:
        with self._lock:
            return list(self._load().anchors)

    def put_anchor(self, anchor: Anchor) -> None:
        with self._lock:
            document = self._load()
            added = document.upsert(anchor)
            self._save(document)
        logger.info(f"{'Added' if added else 'Updated'} anchor {anchor.id}")

    def reload(self):
        """Drop the cached document so the next access re-reads the file"""
        with self._lock:
            self._document = None


def apply_resolution(
    anchor: Anchor,
    result: ResolutionResult,
    now: Optional[datetime] = None
) -> Optional[Anchor]:
    """
    Build the refreshed anchor after a resolution.

    Returns None for a failed result. Otherwise a copy of `anchor` with
    selector, stability and updatedAt refreshed, plus snippet hash, snippet
    and source range when the winning candidate carried them. The id never
    changes.
    """
    if not result.resolved:
        return None

    now = now or datetime.now(timezone.utc)
    update = {
        "selector": result.selector,
        "stability": max(0.0, min(1.0, round(result.confidence, 4))),
        "updated_at": now.isoformat().replace("+00:00", "Z"),
    }
    if result.snippet_hash:
        update["snippet_hash"] = result.snippet_hash
    if result.snippet:
        update["snippet"] = result.snippet
    if result.source_range:
        update["source_range"] = SourceRange(**result.source_range)

    return anchor.model_copy(update=update)
