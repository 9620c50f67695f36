"""Root test configuration for RiskGate.

Sets RISKGATE_JWT_SECRET for the entire test suite so that load_config()
finds a verification key without a config file. Tests that verify the
missing-key path delete it with their own monkeypatch.
"""

import pytest

TEST_JWT_SECRET = "test-secret-do-not-use-in-production-0123456789"


@pytest.fixture(autouse=True)
def provide_verification_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Supply a token verification key and isolate tests from local config files."""
    monkeypatch.setenv("RISKGATE_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.delenv("RISKGATE_CONFIG", raising=False)
    monkeypatch.delenv("RISKGATE_BACKEND_URL", raising=False)
    monkeypatch.delenv("RISKGATE_PORT", raising=False)
    monkeypatch.delenv("RISKGATE_GEOIP_DB", raising=False)


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Reset the in-memory rate limiter storage between tests.

    Prevents test-to-test rate limit bleed where multiple tests hitting the
    login route within the same minute would trigger a 429.
    """
    from app.auth.limiter import limiter

    limiter._storage.reset()
