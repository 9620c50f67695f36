"""Config loading for RiskGate.

Reads `.riskgate/config.yaml` (or `~/.riskgate/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field or invalid values.
If no config file is found, defaults are used, but a verification key must
still be supplied (``RISKGATE_JWT_SECRET``); there is no compiled-in secret.

Config search order:
  1. `config_path` argument (if provided, for testing or explicit override)
  2. RISKGATE_CONFIG environment variable (if set)
  3. `.riskgate/config.yaml` (working directory, for development)
  4. `~/.riskgate/config.yaml` (home directory, for production deployments)

Environment variable overrides (applied after the file):
  RISKGATE_PORT        -> proxy.port
  RISKGATE_BACKEND_URL -> backend.url
  RISKGATE_JWT_SECRET  -> auth.secret
  RISKGATE_GEOIP_DB    -> geo.database

Example::

    version: 1
    proxy:
      host: 0.0.0.0
      port: 8080
      trust_forwarded_for: true
    backend:
      url: http://service1:5000
    auth:
      key_file: /run/secrets/jwt.pem
      algorithm: RS256
    risk:
      thresholds: {deny: 60, flag: 30}
      weights: {non_browser_client: 10}
      business_hours: {start: 6, end: 22, timezone: Europe/Berlin}
    geo:
      database: /var/lib/GeoIP/GeoLite2-Country.mmdb
      static:
        10.20.0.0/16: DE
        # Without a static entry or database hit, private origins also score
        # unknown_geo (+20). Map internal ranges to a home country:
        # 10.0.0.0/8: US
        # 172.16.0.0/12: US
        # 192.168.0.0/16: US
"""

from __future__ import annotations

import ipaddress
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Any, NoReturn, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from app.auth.authenticator import DEFAULT_ALGORITHM
from app.constants import (
    DEFAULT_BACKEND_URL,
    DEFAULT_HIGH_RISK_REGIONS,
    DEFAULT_PUBLIC_PREFIX,
    DEFAULT_SCRIPTED_SIGNATURES,
    RISK_SCORE_MAX,
    RISK_SCORE_MIN,
)
from app.risk.models import BusinessHours, RequestPolicy, RiskWeights, Thresholds
from app.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# Default config search paths (RISKGATE_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".riskgate/config.yaml",
    os.path.expanduser("~/.riskgate/config.yaml"),
]


def _config_error(msg: str) -> NoReturn:
    print(f"CONFIG ERROR: {msg}", file=sys.stderr)
    raise SystemExit(1)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ProxyConfig:
    """Gateway binding configuration.

    trust_forwarded_for: take the client address from the first
                         ``X-Forwarded-For`` entry instead of the socket peer.
                         Enable only behind a load balancer that sets it.
    """

    host: str = "127.0.0.1"
    port: int = 8080
    trust_forwarded_for: bool = False


@dataclass
class BackendConfig:
    """Protected backend the gateway dispatches to."""

    url: str = DEFAULT_BACKEND_URL
    public_prefix: str = DEFAULT_PUBLIC_PREFIX
    timeout_s: float = 30.0


@dataclass
class AuthConfig:
    """Bearer token verification material.

    Exactly one of ``secret`` (HMAC) or ``key_file`` (PEM public key) is used;
    ``secret`` wins when both are present.
    """

    secret: Optional[str] = None
    key_file: Optional[str] = None
    algorithm: str = DEFAULT_ALGORITHM
    leeway_s: float = 0.0

    def verification_key(self) -> str:
        """Return the key material, reading ``key_file`` if no secret is set."""
        if self.secret:
            return self.secret
        if not self.key_file:
            _config_error("No token verification key configured.")
        try:
            with open(os.path.expanduser(self.key_file)) as fh:
                return fh.read()
        except OSError as exc:
            _config_error(f"Could not read auth.key_file {self.key_file}: {exc}")


@dataclass
class RiskConfig:
    weights: RiskWeights = field(default_factory=RiskWeights)
    thresholds: Thresholds = field(default_factory=Thresholds)
    high_risk_regions: list[str] = field(default_factory=lambda: list(DEFAULT_HIGH_RISK_REGIONS))
    policy: RequestPolicy = field(default_factory=RequestPolicy)


@dataclass
class GeoConfig:
    """Geo lookup sources.

    database: path to a GeoLite2/GeoIP2 Country or City mmdb file.
    static:   CIDR → ISO country code overrides, consulted before the database.
    """

    database: Optional[str] = None
    static: dict[str, str] = field(default_factory=dict)


@dataclass
class FingerprintConfig:
    scripted_signatures: list[str] = field(default_factory=lambda: list(DEFAULT_SCRIPTED_SIGNATURES))


@dataclass
class Config:
    """Root configuration object populated from .riskgate/config.yaml.

    Loaded once at startup and treated as immutable for the process lifetime.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    geo: GeoConfig = field(default_factory=GeoConfig)
    fingerprint: FingerprintConfig = field(default_factory=FingerprintConfig)
    path: Optional[str] = None

    @classmethod
    def defaults(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown top-level keys are
        ignored, unknown risk weight names are rejected.

        Raises:
            SystemExit(1): On any invalid value.
        """
        # ── Proxy ─────────────────────────────────────────────────────────────
        proxy_raw = _section(raw, "proxy")
        proxy = ProxyConfig(
            host=proxy_raw.get("host", "127.0.0.1"),
            port=_as_int(proxy_raw.get("port", 8080), "proxy.port"),
            trust_forwarded_for=bool(proxy_raw.get("trust_forwarded_for", False)),
        )

        # ── Backend ───────────────────────────────────────────────────────────
        backend_raw = _section(raw, "backend")
        public_prefix = str(backend_raw.get("public_prefix", DEFAULT_PUBLIC_PREFIX))
        if not public_prefix.startswith("/") or not public_prefix.strip("/"):
            _config_error(f"backend.public_prefix must be a non-root path such as '/api': '{public_prefix}'")
        backend = BackendConfig(
            url=str(backend_raw.get("url", DEFAULT_BACKEND_URL)).rstrip("/"),
            public_prefix=public_prefix.rstrip("/"),
            timeout_s=_as_float(backend_raw.get("timeout_s", 30.0), "backend.timeout_s"),
        )

        # ── Auth ──────────────────────────────────────────────────────────────
        auth_raw = _section(raw, "auth")
        auth = AuthConfig(
            secret=auth_raw.get("secret"),
            key_file=auth_raw.get("key_file"),
            algorithm=auth_raw.get("algorithm", DEFAULT_ALGORITHM),
            leeway_s=_as_float(auth_raw.get("leeway_s", 0.0), "auth.leeway_s", allow_zero=True),
        )

        # ── Risk ──────────────────────────────────────────────────────────────
        risk_raw = _section(raw, "risk")
        risk = RiskConfig(
            weights=_parse_weights(_section(risk_raw, "weights", "risk.weights")),
            thresholds=_parse_thresholds(_section(risk_raw, "thresholds", "risk.thresholds")),
            high_risk_regions=[
                code.upper()
                for code in _as_str_list(
                    risk_raw.get("high_risk_regions", DEFAULT_HIGH_RISK_REGIONS), "risk.high_risk_regions"
                )
            ],
            policy=_parse_policy(risk_raw),
        )

        # ── Geo ───────────────────────────────────────────────────────────────
        geo_raw = _section(raw, "geo")
        static = {str(k): str(v).upper() for k, v in _section(geo_raw, "static", "geo.static").items()}
        for cidr in static:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                _config_error(f"geo.static contains an invalid CIDR block: '{cidr}'")
        geo = GeoConfig(database=geo_raw.get("database"), static=static)

        # ── Fingerprint ───────────────────────────────────────────────────────
        fingerprint_raw = _section(raw, "fingerprint")
        fingerprint = FingerprintConfig(
            scripted_signatures=_as_str_list(
                fingerprint_raw.get("scripted_signatures", DEFAULT_SCRIPTED_SIGNATURES),
                "fingerprint.scripted_signatures",
            ),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            proxy=proxy,
            backend=backend,
            auth=auth,
            risk=risk,
            geo=geo,
            fingerprint=fingerprint,
            path=path,
        )


# ─── Section parsers ──────────────────────────────────────────────────────────


def _section(raw: dict, key: str, label: Optional[str] = None) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        _config_error(f"'{label or key}' must be a mapping.")
    return value


def _as_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _config_error(f"{label} must be an integer, got '{value}'.")
    return value


def _as_float(value: Any, label: str, allow_zero: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _config_error(f"{label} must be a number, got '{value}'.")
    if value < 0 or (value == 0 and not allow_zero):
        _config_error(f"{label} must be {'non-negative' if allow_zero else 'positive'}, got {value}.")
    return float(value)


def _as_str_list(value: Any, label: str) -> list[str]:
    """A YAML list of non-empty strings; a bare scalar is rejected, not split into characters."""
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        _config_error(f"{label} must be a list of strings, got '{value}'.")
    for item in value:
        if not isinstance(item, str) or not item:
            _config_error(f"{label} entries must be non-empty strings, got '{item}'.")
    return list(value)


def _parse_weights(raw: dict) -> RiskWeights:
    known = set(RiskWeights.factor_names())
    unknown = sorted(set(raw) - known)
    if unknown:
        _config_error(f"Unknown risk.weights entries: {unknown}. Known factors: {sorted(known)}.")
    for name, value in raw.items():
        if _as_int(value, f"risk.weights.{name}") < 0:
            _config_error(f"risk.weights.{name} must be non-negative, got {value}.")
    return replace(RiskWeights(), **raw)


def _parse_thresholds(raw: dict) -> Thresholds:
    defaults = Thresholds()
    deny = _as_int(raw.get("deny", defaults.deny), "risk.thresholds.deny")
    flag = _as_int(raw.get("flag", defaults.flag), "risk.thresholds.flag")
    if not RISK_SCORE_MIN <= flag < deny <= RISK_SCORE_MAX:
        _config_error(
            f"risk.thresholds must satisfy {RISK_SCORE_MIN} <= flag < deny <= {RISK_SCORE_MAX} "
            f"(got flag={flag}, deny={deny})."
        )
    return Thresholds(deny=deny, flag=flag)


def _policy_list(risk_raw: dict, key: str, default: tuple[str, ...]) -> list[str]:
    return _as_str_list(risk_raw.get(key, default), f"risk.{key}")


def _parse_policy(risk_raw: dict) -> RequestPolicy:
    defaults = RequestPolicy()
    hours_raw = _section(risk_raw, "business_hours", "risk.business_hours")
    start = _as_int(hours_raw.get("start", defaults.business_hours.start), "risk.business_hours.start")
    end = _as_int(hours_raw.get("end", defaults.business_hours.end), "risk.business_hours.end")
    if not (0 <= start <= 23 and 0 <= end <= 23 and start <= end):
        _config_error(f"risk.business_hours must satisfy 0 <= start <= end <= 23 (got {start}..{end}).")

    timezone = hours_raw.get("timezone")
    if timezone:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            _config_error(f"risk.business_hours.timezone is not a known IANA zone: '{timezone}'.")

    return RequestPolicy(
        sensitive_segments=tuple(_policy_list(risk_raw, "sensitive_segments", defaults.sensitive_segments)),
        sensitive_methods=tuple(
            m.upper() for m in _policy_list(risk_raw, "sensitive_methods", defaults.sensitive_methods)
        ),
        anomalous_segments=tuple(_policy_list(risk_raw, "anomalous_segments", defaults.anomalous_segments)),
        business_hours=BusinessHours(start=start, end=end, timezone=timezone),
    )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate RiskGate configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes the error to stderr and raises
    SystemExit(1). Environment overrides are applied in both cases, after which
    a verification key must be present.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid values, invalid ``RISKGATE_PORT``, or no
                       verification key.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("RISKGATE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found, using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        _require_verification_key(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "RiskGate refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)

    _apply_env_overrides(config)
    _require_verification_key(config)

    if _section(raw, "auth").get("secret") and not os.environ.get("RISKGATE_JWT_SECRET"):
        logger.warning(
            "auth.secret is set in the config file; prefer RISKGATE_JWT_SECRET or auth.key_file",
            path=found_path,
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        backend=config.backend.url,
        deny_threshold=config.risk.thresholds.deny,
        flag_threshold=config.risk.thresholds.flag,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If RISKGATE_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("RISKGATE_PORT")
    if env_port is not None:
        try:
            config.proxy.port = int(env_port)
        except ValueError:
            _config_error(f"RISKGATE_PORT environment variable is not a valid integer: '{env_port}'")

    env_backend = os.environ.get("RISKGATE_BACKEND_URL")
    if env_backend:
        config.backend.url = env_backend.rstrip("/")

    env_secret = os.environ.get("RISKGATE_JWT_SECRET")
    if env_secret:
        config.auth.secret = env_secret

    env_geoip = os.environ.get("RISKGATE_GEOIP_DB")
    if env_geoip:
        config.geo.database = env_geoip


def _require_verification_key(config: Config) -> None:
    if config.auth.secret:
        return
    if config.auth.key_file:
        if not os.path.isfile(os.path.expanduser(config.auth.key_file)):
            _config_error(f"auth.key_file does not exist: {config.auth.key_file}")
        return
    _config_error(
        "No token verification key configured. Set RISKGATE_JWT_SECRET, "
        "auth.secret or auth.key_file."
    )
