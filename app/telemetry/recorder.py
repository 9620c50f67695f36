"""Telemetry recorder for the gateway pipeline.

The pipeline talks to an injected ``PipelineObserver``; it never touches
metric objects directly, so the core can be exercised without a registry
(``NullObserver``). ``PrometheusRecorder`` is the production observer. It owns
a private ``CollectorRegistry`` per application instance; nothing is
registered on the prometheus_client global default registry.

Metric names:
  http_requests_total                 every request entering /api/*
  risk_score{ip}                      last score computed for an origin
  high_risk_requests_total            DENY by score
  medium_risk_requests_total          ALLOW_FLAGGED
  low_risk_requests_total             ALLOW
  auth_failures_total{reason}         no_token / invalid_signature / expired
  upstream_errors_total{reason}       connect / timeout / protocol / config
  rejected_requests_total{reason}     validation / body_too_large / rate_limited

Plus process, platform and GC collectors.

Observers never influence decisions; counter increments are thread-safe
inside prometheus_client and take no request-level locks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
)

from app.auth.authenticator import AuthFailure
from app.risk.admission import Decision, DecisionOutcome, DecisionReason


class PipelineObserver(Protocol):
    def request_received(self, method: str, path: str) -> None: ...

    def score_recorded(self, origin: str, score: int) -> None: ...

    def decision_made(self, decision: Decision) -> None: ...

    def auth_failed(self, failure: AuthFailure) -> None: ...

    def upstream_failed(self, reason: str) -> None: ...

    def request_rejected(self, reason: str) -> None: ...


class NullObserver:
    """Observer that records nothing."""

    def request_received(self, method: str, path: str) -> None:
        pass

    def score_recorded(self, origin: str, score: int) -> None:
        pass

    def decision_made(self, decision: Decision) -> None:
        pass

    def auth_failed(self, failure: AuthFailure) -> None:
        pass

    def upstream_failed(self, reason: str) -> None:
        pass

    def request_rejected(self, reason: str) -> None:
        pass


@dataclass(frozen=True)
class MetricSnapshot:
    """Point-in-time read of the recorder's counters."""

    counters: dict[str, float] = field(default_factory=dict)
    last_score_by_origin: dict[str, float] = field(default_factory=dict)


class PrometheusRecorder:
    def __init__(self, registry: Optional[CollectorRegistry] = None, process_metrics: bool = True) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        if process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

        self._requests = Counter(
            "http_requests_total", "Total HTTP requests received", registry=self.registry
        )
        self._risk_score = Gauge(
            "risk_score", "Last calculated risk score", ["ip"], registry=self.registry
        )
        self._high_risk = Counter(
            "high_risk_requests_total", "Number of high-risk requests blocked", registry=self.registry
        )
        self._medium_risk = Counter(
            "medium_risk_requests_total",
            "Number of medium-risk requests forwarded with caution",
            registry=self.registry,
        )
        self._low_risk = Counter(
            "low_risk_requests_total", "Number of low-risk requests accepted normally", registry=self.registry
        )
        self._auth_failures = Counter(
            "auth_failures_total", "Bearer credential failures", ["reason"], registry=self.registry
        )
        self._upstream_errors = Counter(
            "upstream_errors_total", "Backend calls that failed", ["reason"], registry=self.registry
        )
        self._rejected = Counter(
            "rejected_requests_total", "Requests rejected before scoring", ["reason"], registry=self.registry
        )

    # ── PipelineObserver ──────────────────────────────────────────────────

    def request_received(self, method: str, path: str) -> None:
        self._requests.inc()

    def score_recorded(self, origin: str, score: int) -> None:
        self._risk_score.labels(ip=origin or "unknown").set(score)

    def decision_made(self, decision: Decision) -> None:
        if decision.reason is DecisionReason.AUTH_FAILED:
            return
        if decision.outcome is DecisionOutcome.DENY:
            self._high_risk.inc()
        elif decision.outcome is DecisionOutcome.ALLOW_FLAGGED:
            self._medium_risk.inc()
        else:
            self._low_risk.inc()

    def auth_failed(self, failure: AuthFailure) -> None:
        self._auth_failures.labels(reason=failure.value).inc()

    def upstream_failed(self, reason: str) -> None:
        self._upstream_errors.labels(reason=reason).inc()

    def request_rejected(self, reason: str) -> None:
        self._rejected.labels(reason=reason).inc()

    # ── Read-back ─────────────────────────────────────────────────────────

    def snapshot(self) -> MetricSnapshot:
        def value(name: str) -> float:
            return self.registry.get_sample_value(name) or 0.0

        counters = {
            "requests": value("http_requests_total"),
            "high_risk": value("high_risk_requests_total"),
            "medium_risk": value("medium_risk_requests_total"),
            "low_risk": value("low_risk_requests_total"),
        }
        for metric in (self._auth_failures, self._upstream_errors, self._rejected):
            for family in metric.collect():
                for sample in family.samples:
                    if sample.name.endswith("_total"):
                        key = f"{sample.name}:{sample.labels['reason']}"
                        counters[key] = sample.value

        last_scores: dict[str, float] = {}
        for family in self._risk_score.collect():
            for sample in family.samples:
                last_scores[sample.labels["ip"]] = sample.value

        return MetricSnapshot(counters=counters, last_score_by_origin=last_scores)
