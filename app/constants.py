"""Shared constants for RiskGate.

Size limits, routing defaults and the default risk policy live here.
Other modules import from here rather than repeating literals.
"""

# ─── Request Size Limits ──────────────────────────────────────────────────────

# Maximum declared request body size.
# HTTP 413 is returned when Content-Length exceeds this value, BEFORE
# authentication, scoring or any backend connection.
MAX_REQUEST_BODY_BYTES: int = 10_485_760  # 10 MB

# Upper bound for bodies that are buffered for structural validation
# (login, register, task creation). Larger bodies on those routes get HTTP 413.
MAX_VALIDATED_BODY_BYTES: int = 65_536  # 64 KB

# ─── Default Risk Weights ─────────────────────────────────────────────────────
# Each weight is added once when its condition fires. The sum is clamped to
# RISK_SCORE_MAX.

WEIGHT_RISKY_REGION: int = 30
WEIGHT_UNKNOWN_GEO: int = 20
WEIGHT_EXTERNAL_ADDRESS: int = 10
WEIGHT_SENSITIVE_OPERATION: int = 20
WEIGHT_ANOMALOUS_PATH: int = 15
WEIGHT_SCRIPTED_CLIENT: int = 20
WEIGHT_NON_BROWSER_CLIENT: int = 20
WEIGHT_MISSING_DESCRIPTOR: int = 15
WEIGHT_OUTSIDE_BUSINESS_HOURS: int = 20
WEIGHT_NON_STANDARD_DEVICE: int = 10

RISK_SCORE_MIN: int = 0
RISK_SCORE_MAX: int = 100

# ─── Default Admission Thresholds ─────────────────────────────────────────────

# score >= DENY → DENY; FLAG <= score < DENY → ALLOW_FLAGGED; else ALLOW.
DEFAULT_DENY_THRESHOLD: int = 60
DEFAULT_FLAG_THRESHOLD: int = 30

# ─── Default Request Policy ───────────────────────────────────────────────────

DEFAULT_HIGH_RISK_REGIONS: tuple[str, ...] = ("RU", "CN", "KP", "IR")
DEFAULT_SENSITIVE_SEGMENTS: tuple[str, ...] = ("/delete",)
DEFAULT_SENSITIVE_METHODS: tuple[str, ...] = ("DELETE",)
DEFAULT_ANOMALOUS_SEGMENTS: tuple[str, ...] = ("/admin", "/secure")

# Business hours are inclusive: hours 6..22 are in-hours, 0..5 and 23 are not.
DEFAULT_BUSINESS_HOURS_START: int = 6
DEFAULT_BUSINESS_HOURS_END: int = 22

# Case-insensitive substrings identifying scripted / automated clients.
DEFAULT_SCRIPTED_SIGNATURES: tuple[str, ...] = (
    "curl",
    "wget",
    "httpie",
    "postman",
    "insomnia",
    "axios",
    "node-fetch",
    "undici",
    "python",
    "aiohttp",
    "httpclient",
    "go-http-client",
    "okhttp",
    "java/",
    "libwww-perl",
    "headlesschrome",
    "phantomjs",
    "selenium",
    "puppeteer",
    "playwright",
)

# ─── Gateway Routing ──────────────────────────────────────────────────────────

DEFAULT_PUBLIC_PREFIX: str = "/api"
DEFAULT_BACKEND_URL: str = "http://localhost:5000"

# Backend-relative paths that bypass authentication and risk gating.
PUBLIC_BACKEND_PATHS: frozenset[str] = frozenset({"/login", "/register"})

# Response header carrying the computed score on every gated response.
RISK_SCORE_HEADER: str = "x-risk-score"
REQUEST_ID_HEADER: str = "X-Request-ID"
