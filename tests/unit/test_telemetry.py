"""Unit tests for the telemetry recorder (app/telemetry/recorder.py)."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, generate_latest

from app.auth.authenticator import AuthFailure
from app.risk.admission import Decision, DecisionOutcome, DecisionReason
from app.telemetry.recorder import MetricSnapshot, NullObserver, PrometheusRecorder


def _recorder() -> PrometheusRecorder:
    return PrometheusRecorder(process_metrics=False)


def _decision(outcome: DecisionOutcome, reason: DecisionReason, score: int = 0) -> Decision:
    return Decision(outcome=outcome, score=score, threshold=None, reason=reason)


class TestCounters:
    def test_fresh_snapshot_is_zero(self) -> None:
        snapshot = _recorder().snapshot()
        assert isinstance(snapshot, MetricSnapshot)
        assert snapshot.counters["requests"] == 0
        assert snapshot.counters["high_risk"] == 0
        assert snapshot.last_score_by_origin == {}

    def test_requests_counted(self) -> None:
        recorder = _recorder()
        recorder.request_received("GET", "/profile")
        recorder.request_received("POST", "/login")
        assert recorder.snapshot().counters["requests"] == 2

    def test_decisions_bucketed_by_outcome(self) -> None:
        recorder = _recorder()
        recorder.decision_made(_decision(DecisionOutcome.ALLOW, DecisionReason.LOW_RISK))
        recorder.decision_made(_decision(DecisionOutcome.ALLOW_FLAGGED, DecisionReason.ELEVATED_RISK))
        recorder.decision_made(_decision(DecisionOutcome.ALLOW_FLAGGED, DecisionReason.ELEVATED_RISK))
        recorder.decision_made(_decision(DecisionOutcome.DENY, DecisionReason.HIGH_RISK))
        counters = recorder.snapshot().counters
        assert counters["low_risk"] == 1
        assert counters["medium_risk"] == 2
        assert counters["high_risk"] == 1

    def test_auth_denials_not_counted_as_high_risk(self) -> None:
        recorder = _recorder()
        recorder.decision_made(_decision(DecisionOutcome.DENY, DecisionReason.AUTH_FAILED))
        recorder.auth_failed(AuthFailure.EXPIRED)
        counters = recorder.snapshot().counters
        assert counters["high_risk"] == 0
        assert counters["auth_failures_total:expired"] == 1

    def test_labelled_counters(self) -> None:
        recorder = _recorder()
        recorder.upstream_failed("connect")
        recorder.upstream_failed("connect")
        recorder.request_rejected("validation")
        counters = recorder.snapshot().counters
        assert counters["upstream_errors_total:connect"] == 2
        assert counters["rejected_requests_total:validation"] == 1


class TestLastScore:
    def test_last_score_per_origin(self) -> None:
        recorder = _recorder()
        recorder.score_recorded("203.0.113.5", 80)
        recorder.score_recorded("192.168.1.10", 0)
        recorder.score_recorded("203.0.113.5", 45)
        assert recorder.snapshot().last_score_by_origin == {"203.0.113.5": 45, "192.168.1.10": 0}

    def test_empty_origin_labelled_unknown(self) -> None:
        recorder = _recorder()
        recorder.score_recorded("", 30)
        assert recorder.snapshot().last_score_by_origin == {"unknown": 30}


class TestExposition:
    def test_metric_names_exposed(self) -> None:
        recorder = _recorder()
        recorder.request_received("GET", "/data")
        recorder.score_recorded("203.0.113.5", 20)
        text = generate_latest(recorder.registry).decode()
        assert "http_requests_total 1.0" in text
        assert 'risk_score{ip="203.0.113.5"} 20.0' in text
        assert "high_risk_requests_total" in text
        assert "medium_risk_requests_total" in text
        assert "low_risk_requests_total" in text

    def test_registries_are_isolated(self) -> None:
        first, second = _recorder(), _recorder()
        first.request_received("GET", "/")
        assert second.snapshot().counters["requests"] == 0

    def test_explicit_registry(self) -> None:
        registry = CollectorRegistry()
        recorder = PrometheusRecorder(registry=registry, process_metrics=False)
        assert recorder.registry is registry

    def test_process_metrics_registered(self) -> None:
        text = generate_latest(PrometheusRecorder().registry).decode()
        assert "python_info" in text


class TestNullObserver:
    def test_accepts_every_event(self) -> None:
        observer = NullObserver()
        observer.request_received("GET", "/")
        observer.score_recorded("203.0.113.5", 10)
        observer.decision_made(_decision(DecisionOutcome.ALLOW, DecisionReason.LOW_RISK))
        observer.auth_failed(AuthFailure.NO_TOKEN)
        observer.upstream_failed("timeout")
        observer.request_rejected("rate_limited")
