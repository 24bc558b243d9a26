"""
Resolution budgets

Per-tier and per-probe time budgets read from the environment. Malformed
values never stop the engine: they are logged and replaced by the default.
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

# Configure logging
logger = logging.getLogger(__name__)


# Environment variable -> (field name, default ms)
ENV_BUDGETS = {
    "ANCHORS_FAST_PATH_TIMEOUT_MS": ("fast_path_ms", 300),
    "ANCHORS_ATTR_TIMEOUT_MS": ("attribute_ms", 600),
    "ANCHORS_FULL_SCAN_TIMEOUT_MS": ("full_scan_ms", 900),
    "ANCHORS_PROBE_TIMEOUT_MS": ("probe_ms", 600),
    "ANCHORS_SOURCE_PARSE_TIMEOUT_MS": ("source_parse_ms", 300),
    "ANCHORS_SNIPPET_MATCH_TIMEOUT_MS": ("snippet_match_ms", 50),
}


@dataclass(frozen=True)
class ResolutionBudgets:
    """Time budgets in milliseconds"""
    fast_path_ms: float = 300
    attribute_ms: float = 600
    full_scan_ms: float = 900
    probe_ms: float = 600
    source_parse_ms: float = 300
    snippet_match_ms: float = 50

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not _is_valid(value):
                logger.warning(f"Invalid budget {f.name}={value!r}, using default {f.default}")
                value = f.default
            object.__setattr__(self, f.name, float(value))


def _is_valid(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return number > 0 and number == number and number != float("inf")


def _parse_ms(variable: str, raw: Optional[str], default: int) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning(f"Invalid {variable}: {raw!r} is not a number, using default {default}ms")
        return default
    if not _is_valid(value):
        logger.warning(f"Invalid {variable}: {raw!r} must be a positive number, using default {default}ms")
        return default
    return value


def load_budgets(environ: Optional[Mapping[str, str]] = None) -> ResolutionBudgets:
    """Build ResolutionBudgets from environment variables (os.environ by default)."""
    env = os.environ if environ is None else environ
    values = {
        field_name: _parse_ms(variable, env.get(variable), default)
        for variable, (field_name, default) in ENV_BUDGETS.items()
    }
    budgets = ResolutionBudgets(**values)
    logger.debug(f"Loaded resolution budgets: {budgets}")
    return budgets


# ==================== Stability weights ====================

# Environment variable -> (field name, default weight)
ENV_STABILITY_WEIGHTS = {
    "ANCHORS_STABILITY_HINT_WEIGHT": ("hint_quality", 0.4),
    "ANCHORS_STABILITY_SNIPPET_WEIGHT": ("snippet_match", 0.2),
    "ANCHORS_STABILITY_LIVENESS_WEIGHT": ("liveness", 0.3),
    "ANCHORS_STABILITY_SPECIFICITY_WEIGHT": ("specificity", 0.1),
}


@dataclass(frozen=True)
class StabilityWeights:
    """Relative weights of the stability score components"""
    hint_quality: float = 0.4
    snippet_match: float = 0.2
    liveness: float = 0.3
    specificity: float = 0.1

    def normalized(self) -> "StabilityWeights":
        """Same proportions scaled to sum to 1; all-zero weights mean the defaults"""
        total = sum(getattr(self, f.name) for f in fields(self))
        if total <= 0:
            return StabilityWeights()
        return StabilityWeights(**{f.name: getattr(self, f.name) / total for f in fields(self)})


def _parse_weight(variable: str, raw: Optional[str], default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning(f"Invalid {variable}: {raw!r} is not a number, using default {default}")
        return default
    if value < 0 or value != value or value == float("inf"):
        logger.warning(f"Invalid {variable}: {raw!r} must be a non-negative number, using default {default}")
        return default
    return value


def load_stability_weights(environ: Optional[Mapping[str, str]] = None) -> StabilityWeights:
    """Build normalized StabilityWeights from environment variables."""
    env = os.environ if environ is None else environ
    values = {
        field_name: _parse_weight(variable, env.get(variable), default)
        for variable, (field_name, default) in ENV_STABILITY_WEIGHTS.items()
    }
    return StabilityWeights(**values).normalized()
