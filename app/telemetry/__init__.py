"""Telemetry for RiskGate: pipeline observers and the /metrics endpoint."""

from __future__ import annotations

from app.telemetry.recorder import MetricSnapshot, NullObserver, PipelineObserver, PrometheusRecorder

__all__ = ["MetricSnapshot", "NullObserver", "PipelineObserver", "PrometheusRecorder"]
