"""
Liveness Probe

The narrow contract the engine uses to ask the live page whether a
selector currently resolves, plus a Playwright-backed implementation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, runtime_checkable

from ..core.models import Liveness

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """What a probe reports for one selector"""
    is_valid: bool
    check_time_ms: float = 0.0
    error: Optional[str] = None


@runtime_checkable
class LivenessProbe(Protocol):
    """Anything that can check a selector against a live page"""

    async def check(self, selector: str, timeout_ms: float, require_visible: bool = True) -> ProbeResult:
        ...


async def probe_candidate(
    probe: LivenessProbe,
    selector: str,
    timeout_ms: float,
    require_visible: bool = True
) -> Tuple[Liveness, Optional[str]]:
    """
    Probe one selector under a hard timeout.

    Returns (liveness, error). A probe that overruns the timeout or raises
    is UNKNOWN; only an explicit is_valid=False is DEAD.
    """
    try:
        result = await asyncio.wait_for(
            probe.check(selector, timeout_ms=timeout_ms, require_visible=require_visible),
            timeout=timeout_ms / 1000.0
        )
    except asyncio.TimeoutError:
        logger.debug(f"Probe timed out after {timeout_ms}ms: {selector}")
        return Liveness.UNKNOWN, f"probe timed out after {timeout_ms:g}ms"
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug(f"Probe raised for {selector}: {e}")
        return Liveness.UNKNOWN, str(e) or type(e).__name__

    if result is None:
        return Liveness.UNKNOWN, "probe returned no result"
    if result.is_valid:
        return Liveness.ALIVE, None
    return Liveness.DEAD, result.error


class PlaywrightProbe:
    """
    LivenessProbe over a Playwright async Page.

    Playwright-style selectors (css, text=, role=) are passed through to
    page.locator(); the `role:x[name="y"]` and `text:"y"` shorthands
    produced by the selector generator are translated first.
    """

    def __init__(self, page):
        self.page = page

    @staticmethod
    def to_playwright_selector(selector: str) -> str:
        if selector.startswith("role:"):
            return "role=" + selector[len("role:"):]
        if selector.startswith("text:"):
            return "text=" + selector[len("text:"):]
        return selector

    async def check(self, selector: str, timeout_ms: float, require_visible: bool = True) -> ProbeResult:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        start = time.monotonic()
        state = "visible" if require_visible else "attached"
        try:
            locator = self.page.locator(self.to_playwright_selector(selector)).first
            await locator.wait_for(state=state, timeout=timeout_ms)
            return ProbeResult(is_valid=True, check_time_ms=(time.monotonic() - start) * 1000)
        except PlaywrightTimeoutError:
            return ProbeResult(
                is_valid=False,
                check_time_ms=(time.monotonic() - start) * 1000,
                error=f"not {state} within {timeout_ms:g}ms"
            )
        except PlaywrightError as e:
            # Malformed selectors land here; the selector is unusable either way
            return ProbeResult(
                is_valid=False,
                check_time_ms=(time.monotonic() - start) * 1000,
                error=str(e).splitlines()[0] if str(e) else "playwright error"
            )
