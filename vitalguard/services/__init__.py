"""
Core services for the vitals engine.

This package contains threshold evaluation, the alert lifecycle, risk scoring,
the repository contracts and the engine façade that ties them together.
"""

from .access import AccessPolicy
from .alert_lifecycle import AlertLifecycle
from .engine import VitalsEngine
from .repository import (
    AlertRepository,
    PatientRepository,
    Repositories,
    ThresholdRepository,
    VitalsRepository,
)
from .risk_scoring import RiskScorer, score_history
from .thresholds import ThresholdEvaluator, ThresholdStore

__all__ = [
    "AccessPolicy",
    "AlertLifecycle",
    "AlertRepository",
    "PatientRepository",
    "Repositories",
    "RiskScorer",
    "ThresholdEvaluator",
    "ThresholdRepository",
    "ThresholdStore",
    "VitalsEngine",
    "VitalsRepository",
    "score_history",
]
