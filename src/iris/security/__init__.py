"""
IRIS Security Module
====================

- ThreatClassifier: pattern, behavioral and semantic risk scoring
- RequestRateTracker: per-identity sliding-window request counts
"""

from .rate_limiter import RequestRateTracker
from .threat_classifier import ThreatAssessment, ThreatClassifier, ThreatDecision

__all__ = [
    "RequestRateTracker",
    "ThreatAssessment",
    "ThreatClassifier",
    "ThreatDecision",
]
