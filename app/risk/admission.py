"""Admission decisions.

``AdmissionController.decide()`` is a pure function of (score, thresholds,
auth result):

  protected route, auth failed  → DENY   (AUTH_FAILED, score ignored)
  score >= thresholds.deny      → DENY   (HIGH_RISK)
  score >= thresholds.flag      → ALLOW_FLAGGED (ELEVATED_RISK)
  otherwise                     → ALLOW  (LOW_RISK)

Authentication is the harder gate: a failed credential is denied even when
the request scores 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.auth.authenticator import AuthFailure, AuthResult
from app.risk.models import RiskAssessment, Thresholds


class DecisionOutcome(str, Enum):
    ALLOW = "allow"
    ALLOW_FLAGGED = "allow_flagged"
    DENY = "deny"


class DecisionReason(str, Enum):
    LOW_RISK = "low_risk"
    ELEVATED_RISK = "elevated_risk"
    HIGH_RISK = "high_risk"
    AUTH_FAILED = "auth_failed"


@dataclass(frozen=True)
class Decision:
    outcome: DecisionOutcome
    score: int
    threshold: Optional[int]
    reason: DecisionReason
    auth_failure: Optional[AuthFailure] = None

    @property
    def admitted(self) -> bool:
        return self.outcome is not DecisionOutcome.DENY


class AdmissionController:
    def __init__(self, thresholds: Optional[Thresholds] = None) -> None:
        self._thresholds = thresholds or Thresholds()

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    def decide(self, assessment: RiskAssessment, auth: Optional[AuthResult] = None) -> Decision:
        """Apply thresholds to ``assessment``.

        Args:
            assessment: Scored request.
            auth:       Result for protected routes; None for public routes.
        """
        score = assessment.score

        if auth is not None and not auth.ok:
            return Decision(
                outcome=DecisionOutcome.DENY,
                score=score,
                threshold=None,
                reason=DecisionReason.AUTH_FAILED,
                auth_failure=auth.failure or AuthFailure.INVALID_SIGNATURE,
            )

        if score >= self._thresholds.deny:
            return Decision(DecisionOutcome.DENY, score, self._thresholds.deny, DecisionReason.HIGH_RISK)
        if score >= self._thresholds.flag:
            return Decision(
                DecisionOutcome.ALLOW_FLAGGED, score, self._thresholds.flag, DecisionReason.ELEVATED_RISK
            )
        return Decision(DecisionOutcome.ALLOW, score, None, DecisionReason.LOW_RISK)
