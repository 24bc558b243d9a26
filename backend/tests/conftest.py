"""
Pytest configuration and shared fixtures for selector anchor tests.
"""

import pytest
import asyncio
import sys
import time
from pathlib import Path
from unittest.mock import Mock, AsyncMock
from typing import Dict, Iterable, List, Optional

# Add backend app to path
sys.path.insert(0, str(Path(__file__).parent.parent / "app"))

from selector_anchors.config import ResolutionBudgets
from selector_anchors.indexing.source_index import index_source
from selector_anchors.probe.liveness import ProbeResult


# ==================== Fake Probe ====================

class FakeProbe:
    """
    Deterministic LivenessProbe.

    Selectors in `alive` are valid, everything else is invalid. `delays`
    (seconds) makes a selector slow; `errors` makes it raise.
    """

    def __init__(
        self,
        alive: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
        errors: Optional[Dict[str, Exception]] = None,
        default_delay: float = 0.0
    ):
        self.alive = set(alive)
        self.delays = delays or {}
        self.errors = errors or {}
        self.default_delay = default_delay
        self.calls: List[str] = []

    async def check(self, selector: str, timeout_ms: float, require_visible: bool = True) -> ProbeResult:
        self.calls.append(selector)
        delay = self.delays.get(selector, self.default_delay)
        if delay:
            await asyncio.sleep(delay)
        if selector in self.errors:
            raise self.errors[selector]
        if selector in self.alive:
            return ProbeResult(is_valid=True, check_time_ms=delay * 1000)
        return ProbeResult(is_valid=False, check_time_ms=delay * 1000, error="not found")


@pytest.fixture
def fake_probe():
    """Factory for FakeProbe instances."""
    return FakeProbe


# ==================== Mock Page Fixture ====================

@pytest.fixture
def mock_page():
    """Create a mock Playwright page whose locators resolve immediately."""
    page = AsyncMock()
    page.url = "https://example.com/settings"

    mock_locator = AsyncMock()
    mock_locator.wait_for = AsyncMock(return_value=None)
    mock_locator.first = mock_locator

    page.locator = Mock(return_value=mock_locator)
    return page


# ==================== Budgets ====================

@pytest.fixture
def budgets() -> ResolutionBudgets:
    """Default budgets."""
    return ResolutionBudgets()


@pytest.fixture
def tight_budgets() -> ResolutionBudgets:
    """1ms per tier, for timeout behavior."""
    return ResolutionBudgets(
        fast_path_ms=1,
        attribute_ms=1,
        full_scan_ms=1,
        probe_ms=50,
        source_parse_ms=1,
        snippet_match_ms=1
    )


# ==================== Slow Indexer ====================

def make_slow_indexer(delay: float = 0.05):
    """Indexer that blocks its thread for `delay` seconds before indexing."""
    calls = []

    def slow_indexer(text, line_offset=0):
        calls.append(len(text))
        time.sleep(delay)
        return index_source(text, line_offset)

    slow_indexer.calls = calls
    return slow_indexer


@pytest.fixture
def slow_indexer():
    return make_slow_indexer(0.05)


# ==================== Sample Sources ====================

SETTINGS_FORM_BEFORE = """<form class="settings">
  <h2>Settings</h2>
  <button id="save-btn" data-testid="save" class="btn primary">Save</button>
  <button id="cancel-btn" class="btn">Cancel</button>
</form>
"""

SETTINGS_FORM_AFTER = """<form class="settings">
  <h2>Settings</h2>
  <button id="save-button" data-testid="save" class="btn primary">Save</button>
  <button id="cancel-btn" class="btn">Cancel</button>
</form>
"""

LOGIN_FORM = """<form>
  <input name="email" type="email">
</form>
"""

JSX_COMPONENT = """export function Toolbar() {
  return (
    <div className="toolbar">
      <Button data-testid="publish" onClick={publish}>Publish</Button>
    </div>
  );
}
"""

# Formatter-style markup: one attribute per line
WRAPPED_FORM_BEFORE = """<form class="settings">
  <button
    id="save-btn"
    data-testid="save"
    class="btn primary"
  >
    Save
  </button>
</form>
"""

WRAPPED_FORM_AFTER = WRAPPED_FORM_BEFORE.replace('id="save-btn"', 'id="save-button"')

JSX_HANDLERS = """export function Editor({ onSave, ...rest }) {
  return (
    <div className="editor" {...rest}>
      <button onClick={() => onSave({ force: true })} data-testid="save">
        Save
      </button>
      <input value={draft > 0 ? "a" : "b"} name="title" />
    </div>
  );
}
"""


def make_large_source(rows: int = 1000) -> str:
    """A long list with one save button at the very end."""
    lines = ["<ul class=\"feed\">"]
    lines.extend(f'  <li class="row" data-row="{i}"><span>Row {i}</span></li>' for i in range(rows))
    lines.append("</ul>")
    lines.append('<button data-testid="save" class="btn primary">Save</button>')
    return "\n".join(lines) + "\n"


@pytest.fixture
def settings_before() -> str:
    return SETTINGS_FORM_BEFORE


@pytest.fixture
def settings_after() -> str:
    return SETTINGS_FORM_AFTER


@pytest.fixture
def login_form() -> str:
    return LOGIN_FORM


@pytest.fixture
def jsx_component() -> str:
    return JSX_COMPONENT


@pytest.fixture
def wrapped_before() -> str:
    return WRAPPED_FORM_BEFORE


@pytest.fixture
def wrapped_after() -> str:
    return WRAPPED_FORM_AFTER


@pytest.fixture
def jsx_handlers() -> str:
    return JSX_HANDLERS


@pytest.fixture
def large_source() -> str:
    return make_large_source()


# ==================== Temp Directory Fixture ====================

@pytest.fixture
def temp_store_path(tmp_path):
    """Path for a temporary anchors.json."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True)
    return data_dir / "anchors.json"
