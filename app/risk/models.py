"""Data contracts for the risk pipeline.

  - RequestContext  immutable per-request snapshot fed to the scoring engine
  - RiskFactor      one named, weighted contribution to a score
  - RiskAssessment  clamped score + the ordered factors that produced it
  - RiskWeights     the weight table (configuration data, not code)
  - Thresholds      admission thresholds (configuration data, not code)

All types are frozen dataclasses: once computed for a request they are never
mutated, and nothing here is retained after the request completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional

from app.constants import (
    DEFAULT_ANOMALOUS_SEGMENTS,
    DEFAULT_BUSINESS_HOURS_END,
    DEFAULT_BUSINESS_HOURS_START,
    DEFAULT_DENY_THRESHOLD,
    DEFAULT_FLAG_THRESHOLD,
    DEFAULT_SENSITIVE_METHODS,
    DEFAULT_SENSITIVE_SEGMENTS,
    RISK_SCORE_MAX,
    RISK_SCORE_MIN,
    WEIGHT_ANOMALOUS_PATH,
    WEIGHT_EXTERNAL_ADDRESS,
    WEIGHT_MISSING_DESCRIPTOR,
    WEIGHT_NON_BROWSER_CLIENT,
    WEIGHT_NON_STANDARD_DEVICE,
    WEIGHT_OUTSIDE_BUSINESS_HOURS,
    WEIGHT_RISKY_REGION,
    WEIGHT_SCRIPTED_CLIENT,
    WEIGHT_SENSITIVE_OPERATION,
    WEIGHT_UNKNOWN_GEO,
)


@dataclass(frozen=True)
class RequestContext:
    """Snapshot of the signals the scoring engine reads.

    Attributes:
        origin:     Client address, already stripped of the ``::ffff:`` prefix.
        descriptor: Raw User-Agent value, or None when the header was absent.
        method:     Upper-case HTTP method.
        path:       Backend-relative path (public prefix already removed).
        timestamp:  Wall-clock time of request entry (timezone-aware).
    """

    origin: str
    descriptor: Optional[str]
    method: str
    path: str
    timestamp: datetime


@dataclass(frozen=True)
class RiskFactor:
    """A single named contribution to a risk score."""

    name: str
    weight: int
    rationale: str


@dataclass(frozen=True)
class RiskAssessment:
    """Result of scoring one request.

    ``score`` is always within [RISK_SCORE_MIN, RISK_SCORE_MAX] regardless of
    how many factors fired; ``factors`` keeps evaluation order for diagnostics.
    """

    score: int
    factors: tuple[RiskFactor, ...]
    origin: str

    @property
    def factor_names(self) -> list[str]:
        return [factor.name for factor in self.factors]

    @property
    def raw_total(self) -> int:
        """Unclamped sum of triggered weights."""
        return sum(factor.weight for factor in self.factors)


def clamp_score(total: int) -> int:
    """Clamp a summed weight into the valid score range."""
    return max(RISK_SCORE_MIN, min(total, RISK_SCORE_MAX))


@dataclass(frozen=True)
class RiskWeights:
    """Weight table for every risk factor.

    Field names match the factor names emitted by the scoring engine.
    """

    risky_region: int = WEIGHT_RISKY_REGION
    unknown_geo: int = WEIGHT_UNKNOWN_GEO
    external_address: int = WEIGHT_EXTERNAL_ADDRESS
    sensitive_operation: int = WEIGHT_SENSITIVE_OPERATION
    anomalous_path: int = WEIGHT_ANOMALOUS_PATH
    scripted_client: int = WEIGHT_SCRIPTED_CLIENT
    non_browser_client: int = WEIGHT_NON_BROWSER_CLIENT
    missing_descriptor: int = WEIGHT_MISSING_DESCRIPTOR
    outside_business_hours: int = WEIGHT_OUTSIDE_BUSINESS_HOURS
    non_standard_device: int = WEIGHT_NON_STANDARD_DEVICE

    @classmethod
    def factor_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in self.factor_names()}


@dataclass(frozen=True)
class Thresholds:
    """Admission thresholds: ``flag <= score < deny`` is ALLOW_FLAGGED."""

    deny: int = DEFAULT_DENY_THRESHOLD
    flag: int = DEFAULT_FLAG_THRESHOLD


@dataclass(frozen=True)
class BusinessHours:
    """Inclusive local-hour window considered normal access time.

    ``timezone`` is an IANA zone name; None means the host's local zone.
    """

    start: int = DEFAULT_BUSINESS_HOURS_START
    end: int = DEFAULT_BUSINESS_HOURS_END
    timezone: Optional[str] = None

    def is_outside(self, hour: int) -> bool:
        return hour < self.start or hour > self.end


@dataclass(frozen=True)
class RequestPolicy:
    """Path/method rules used by the operation checks."""

    sensitive_segments: tuple[str, ...] = DEFAULT_SENSITIVE_SEGMENTS
    sensitive_methods: tuple[str, ...] = DEFAULT_SENSITIVE_METHODS
    anomalous_segments: tuple[str, ...] = DEFAULT_ANOMALOUS_SEGMENTS
    business_hours: BusinessHours = field(default_factory=BusinessHours)
