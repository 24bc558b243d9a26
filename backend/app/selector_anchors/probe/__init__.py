"""
Liveness Probing
"""

from .liveness import LivenessProbe, ProbeResult, PlaywrightProbe, probe_candidate

__all__ = [
    "LivenessProbe",
    "ProbeResult",
    "PlaywrightProbe",
    "probe_candidate"
]
