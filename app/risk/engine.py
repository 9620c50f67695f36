"""Risk scoring engine.

``RiskScoringEngine.score()`` combines the geo/network trust tuple, the client
fingerprint and the request metadata (path, method, local hour) into a
``RiskAssessment``. The engine is synchronous and pure given its collaborators:
it never awaits, never logs, and keeps no state between requests. Callers
format and emit the returned factors.

Factor evaluation order (kept in ``RiskAssessment.factors``):

  risky_region, unknown_geo, external_address,
  sensitive_operation, anomalous_path,
  scripted_client | non_browser_client | missing_descriptor,
  outside_business_hours, non_standard_device
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from app.risk.fingerprint import DEVICE_DESKTOP, DEVICE_MOBILE, FingerprintAnalyzer
from app.risk.geo import GeoClassifier, normalize_address
from app.risk.models import (
    RequestContext,
    RequestPolicy,
    RiskAssessment,
    RiskFactor,
    RiskWeights,
    clamp_score,
)

_STANDARD_DEVICES: frozenset[str] = frozenset({DEVICE_DESKTOP, DEVICE_MOBILE})


def build_request_context(
    origin: Optional[str],
    descriptor: Optional[str],
    method: str,
    path: str,
    timestamp: datetime,
) -> RequestContext:
    """Normalise raw request attributes into a ``RequestContext``."""
    return RequestContext(
        origin=normalize_address(origin),
        descriptor=descriptor,
        method=method.upper(),
        path=path,
        timestamp=timestamp,
    )


class RiskScoringEngine:
    def __init__(
        self,
        geo_classifier: GeoClassifier,
        fingerprint_analyzer: FingerprintAnalyzer,
        weights: Optional[RiskWeights] = None,
        policy: Optional[RequestPolicy] = None,
    ) -> None:
        self._geo = geo_classifier
        self._fingerprints = fingerprint_analyzer
        self._weights = weights or RiskWeights()
        self._policy = policy or RequestPolicy()
        timezone = self._policy.business_hours.timezone
        self._tz: Optional[tzinfo] = ZoneInfo(timezone) if timezone else None

    @property
    def weights(self) -> RiskWeights:
        return self._weights

    @property
    def policy(self) -> RequestPolicy:
        return self._policy

    def local_hour(self, timestamp: datetime) -> int:
        """Hour of ``timestamp`` in the configured zone (host zone when unset)."""
        return timestamp.astimezone(self._tz).hour

    def score(self, ctx: RequestContext) -> RiskAssessment:
        w = self._weights
        policy = self._policy
        factors: list[RiskFactor] = []

        def fire(name: str, rationale: str) -> None:
            factors.append(RiskFactor(name=name, weight=getattr(w, name), rationale=rationale))

        # Location trust
        trust = self._geo.classify_origin(ctx.origin)
        if trust.high_risk_region:
            fire("risky_region", f"origin resolves to high-risk region {trust.country}")
        if not trust.known_location:
            fire("unknown_geo", "origin not resolvable in geo database")
        if not trust.is_private_range:
            fire("external_address", "origin outside private address ranges")

        # Requested operation
        if (
            any(segment in ctx.path for segment in policy.sensitive_segments)
            or ctx.method in policy.sensitive_methods
        ):
            fire("sensitive_operation", f"destructive operation {ctx.method} {ctx.path}")
        if any(segment in ctx.path for segment in policy.anomalous_segments):
            fire("anomalous_path", f"administrative/secure path {ctx.path}")

        # Client descriptor
        fingerprint = self._fingerprints.analyze_descriptor(ctx.descriptor)
        if not fingerprint.present:
            fire("missing_descriptor", "no client descriptor supplied")
        elif fingerprint.is_scripted:
            fire("scripted_client", "descriptor matches automation signature")
        elif not fingerprint.is_browser:
            fire("non_browser_client", "descriptor does not identify a browser engine")

        # Time of access
        hour = self.local_hour(ctx.timestamp)
        if policy.business_hours.is_outside(hour):
            fire("outside_business_hours", f"access at local hour {hour}")

        if fingerprint.present and fingerprint.device_class not in _STANDARD_DEVICES:
            fire("non_standard_device", f"device class {fingerprint.device_class}")

        total = sum(factor.weight for factor in factors)
        return RiskAssessment(score=clamp_score(total), factors=tuple(factors), origin=ctx.origin)
