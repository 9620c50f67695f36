"""Risk scoring and admission for RiskGate.

Leaves first: geo/network classification (geo.py) and client fingerprinting
(fingerprint.py) feed the scoring engine (engine.py), whose assessment the
admission controller (admission.py) turns into a decision.
"""

from __future__ import annotations

from app.risk.admission import AdmissionController, Decision, DecisionOutcome, DecisionReason
from app.risk.engine import RiskScoringEngine, build_request_context
from app.risk.fingerprint import ClientFingerprint, FingerprintAnalyzer
from app.risk.geo import GeoClassifier, OriginTrust
from app.risk.models import (
    RequestContext,
    RequestPolicy,
    RiskAssessment,
    RiskFactor,
    RiskWeights,
    Thresholds,
)

__all__ = [
    "AdmissionController",
    "ClientFingerprint",
    "Decision",
    "DecisionOutcome",
    "DecisionReason",
    "FingerprintAnalyzer",
    "GeoClassifier",
    "OriginTrust",
    "RequestContext",
    "RequestPolicy",
    "RiskAssessment",
    "RiskFactor",
    "RiskScoringEngine",
    "RiskWeights",
    "Thresholds",
    "build_request_context",
]
