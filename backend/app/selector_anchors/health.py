"""
Health check

Verifies the parser the indexer depends on works and reports optional
pieces (the Playwright probe adapter) that are missing.
"""

import importlib
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .config import load_budgets
from .indexing.source_index import index_source

# Configure logging
logger = logging.getLogger(__name__)


STRICT_PROBE_ENV = "ANCHORS_HEALTHCHECK_STRICT_PROBE"


@dataclass
class HealthCheckResult:
    healthy: bool
    message: str
    issues: List[str] = field(default_factory=list)


def _check_parser(issues: List[str]) -> bool:
    index = index_source('<div class="probe">\n  <button data-testid="ok">Hello</button>\n</div>')
    if index.parse_error:
        issues.append(f"HTML parser failed: {index.parse_error}")
        return False
    buttons = index.find_by_attribute("data-testid", "ok")
    if not buttons or buttons[0].line != 2:
        issues.append("HTML parser is available but does not report source lines")
        return False
    return True


def _check_playwright(issues: List[str]) -> bool:
    try:
        importlib.import_module("playwright.async_api")
        return True
    except Exception as e:
        issues.append(f"Playwright probe unavailable: {e}")
        return False


def perform_health_check(environ: Optional[dict] = None) -> HealthCheckResult:
    """
    Parser failures make the result unhealthy. A missing Playwright only
    does so when ANCHORS_HEALTHCHECK_STRICT_PROBE=true.
    """
    env = os.environ if environ is None else environ
    issues: List[str] = []

    parser_ok = _check_parser(issues)
    probe_ok = _check_playwright(issues)
    load_budgets(env)

    strict_probe = str(env.get(STRICT_PROBE_ENV, "")).lower() == "true"
    healthy = parser_ok and (probe_ok or not strict_probe)

    if issues:
        for issue in issues:
            logger.warning(f"Health check: {issue}")

    return HealthCheckResult(
        healthy=healthy,
        message="Selector anchors are healthy and ready to use" if healthy
        else "Selector anchors have dependency or parsing issues",
        issues=issues
    )
