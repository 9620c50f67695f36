"""Unit tests for admission decisions (app/risk/admission.py)."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.auth.authenticator import AuthFailure, AuthResult, Identity
from app.risk.admission import AdmissionController, DecisionOutcome, DecisionReason
from app.risk.models import RiskAssessment, Thresholds

IDENTITY = Identity(
    user_id=1,
    email="ada@example.com",
    name="Ada",
    expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
)


def _assessment(score: int) -> RiskAssessment:
    return RiskAssessment(score=score, factors=(), origin="203.0.113.5")


class TestThresholds:
    @pytest.mark.parametrize(
        "score,outcome,reason,threshold",
        [
            (0, DecisionOutcome.ALLOW, DecisionReason.LOW_RISK, None),
            (29, DecisionOutcome.ALLOW, DecisionReason.LOW_RISK, None),
            (30, DecisionOutcome.ALLOW_FLAGGED, DecisionReason.ELEVATED_RISK, 30),
            (59, DecisionOutcome.ALLOW_FLAGGED, DecisionReason.ELEVATED_RISK, 30),
            (60, DecisionOutcome.DENY, DecisionReason.HIGH_RISK, 60),
            (100, DecisionOutcome.DENY, DecisionReason.HIGH_RISK, 60),
        ],
    )
    def test_default_policy(self, score, outcome, reason, threshold) -> None:
        decision = AdmissionController().decide(_assessment(score))
        assert decision.outcome is outcome
        assert decision.reason is reason
        assert decision.threshold == threshold
        assert decision.score == score

    def test_configured_thresholds(self) -> None:
        controller = AdmissionController(Thresholds(deny=80, flag=50))
        assert controller.decide(_assessment(60)).outcome is DecisionOutcome.ALLOW_FLAGGED
        assert controller.decide(_assessment(45)).outcome is DecisionOutcome.ALLOW
        assert controller.decide(_assessment(80)).outcome is DecisionOutcome.DENY

    def test_admitted_property(self) -> None:
        controller = AdmissionController()
        assert controller.decide(_assessment(10)).admitted is True
        assert controller.decide(_assessment(45)).admitted is True
        assert controller.decide(_assessment(75)).admitted is False

    def test_decision_is_pure(self) -> None:
        controller = AdmissionController()
        assert controller.decide(_assessment(42)) == controller.decide(_assessment(42))


class TestAuthenticationPrecedence:
    @pytest.mark.parametrize("failure", list(AuthFailure))
    def test_failed_auth_denies_even_at_score_zero(self, failure: AuthFailure) -> None:
        decision = AdmissionController().decide(_assessment(0), AuthResult.failed(failure))
        assert decision.outcome is DecisionOutcome.DENY
        assert decision.reason is DecisionReason.AUTH_FAILED
        assert decision.auth_failure is failure
        assert decision.threshold is None

    def test_expired_token_score_zero_is_denied(self) -> None:
        decision = AdmissionController().decide(
            _assessment(0), AuthResult.failed(AuthFailure.EXPIRED)
        )
        assert decision.outcome is DecisionOutcome.DENY

    def test_auth_failure_keeps_score(self) -> None:
        decision = AdmissionController().decide(
            _assessment(70), AuthResult.failed(AuthFailure.NO_TOKEN)
        )
        assert decision.score == 70
        assert decision.reason is DecisionReason.AUTH_FAILED

    def test_valid_auth_falls_through_to_score(self) -> None:
        controller = AdmissionController()
        ok = AuthResult.success(IDENTITY)
        assert controller.decide(_assessment(10), ok).outcome is DecisionOutcome.ALLOW
        assert controller.decide(_assessment(65), ok).outcome is DecisionOutcome.DENY

    def test_public_route_without_auth(self) -> None:
        assert AdmissionController().decide(_assessment(0), None).outcome is DecisionOutcome.ALLOW
