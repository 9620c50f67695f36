"""Unit tests for config loading and validation (app/config.py).

Covers:
  - Missing config file → defaults (key still required)
  - version field validation (missing / unsupported)
  - Invalid YAML → SystemExit(1)
  - Weight table and threshold validation
  - Business hours + timezone validation
  - Environment overrides (RISKGATE_PORT, RISKGATE_BACKEND_URL,
    RISKGATE_JWT_SECRET, RISKGATE_GEOIP_DB)
  - Verification key: secret, key_file, none at all
"""

from __future__ import annotations

import textwrap
from typing import Any

import pytest

from app.config import SUPPORTED_VERSIONS, Config, load_config
from app.risk.models import RiskWeights, Thresholds


@pytest.fixture(autouse=True)
def no_default_config_paths(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ignore any .riskgate/config.yaml on the machine running the tests."""
    monkeypatch.setattr("app.config.DEFAULT_CONFIG_PATHS", [])


def _write(tmp_path: Any, body: str) -> str:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(textwrap.dedent(body))
    return str(config_file)


def _expect_config_error(path: str, capsys: pytest.CaptureFixture, *fragments: str) -> None:
    with pytest.raises(SystemExit) as exc_info:
        load_config(config_path=path)
    assert exc_info.value.code == 1
    err = capsys.readouterr().err
    assert "CONFIG ERROR" in err
    for fragment in fragments:
        assert fragment in err


# ─── Defaults ─────────────────────────────────────────────────────────────────


class TestDefaults:
    def test_missing_file_returns_defaults(self) -> None:
        config = load_config(config_path="/nonexistent/path/config.yaml")
        assert config.path is None
        assert config.proxy.host == "127.0.0.1"
        assert config.proxy.port == 8080
        assert config.proxy.trust_forwarded_for is False
        assert config.backend.url == "http://localhost:5000"
        assert config.backend.public_prefix == "/api"
        assert config.risk.weights == RiskWeights()
        assert config.risk.thresholds == Thresholds(deny=60, flag=30)
        assert config.risk.high_risk_regions == ["RU", "CN", "KP", "IR"]
        assert config.geo.database is None

    def test_secret_comes_from_environment(self) -> None:
        config = load_config(config_path="/nonexistent/path/config.yaml")
        assert config.auth.secret
        assert config.auth.verification_key() == config.auth.secret

    def test_no_key_anywhere_refuses_to_start(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.delenv("RISKGATE_JWT_SECRET")
        with pytest.raises(SystemExit) as exc_info:
            load_config(config_path="/nonexistent/path/config.yaml")
        assert exc_info.value.code == 1
        assert "verification key" in capsys.readouterr().err

    def test_version_only_file(self, tmp_path: Any) -> None:
        config = load_config(config_path=_write(tmp_path, "version: 1\n"))
        assert config.path is not None
        assert config.risk.thresholds.deny == 60

    def test_supported_versions_constant(self) -> None:
        assert SUPPORTED_VERSIONS == frozenset({1})


# ─── File structure ───────────────────────────────────────────────────────────


class TestFileStructure:
    def test_missing_version(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        _expect_config_error(_write(tmp_path, "backend:\n  url: http://x\n"), capsys, "version")

    def test_empty_file(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        _expect_config_error(_write(tmp_path, ""), capsys, "version")

    def test_unsupported_version(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        _expect_config_error(_write(tmp_path, "version: 2\n"), capsys, "2")

    def test_invalid_yaml(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        _expect_config_error(_write(tmp_path, "version: 1\nbackend: [unclosed\n"), capsys, "parse")

    def test_top_level_list(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        _expect_config_error(_write(tmp_path, "- version\n- 1\n"), capsys, "mapping")

    def test_section_must_be_mapping(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        _expect_config_error(_write(tmp_path, "version: 1\nrisk: 5\n"), capsys, "risk")

    def test_env_config_path(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\nbackend:\n  url: http://service1:5000/\n")
        monkeypatch.setenv("RISKGATE_CONFIG", path)
        config = load_config()
        assert config.backend.url == "http://service1:5000"


# ─── Risk policy ──────────────────────────────────────────────────────────────


class TestRiskPolicy:
    def test_full_policy(self, tmp_path: Any) -> None:
        config = load_config(
            config_path=_write(
                tmp_path,
                """
                version: 1
                risk:
                  thresholds: {deny: 70, flag: 40}
                  weights: {non_browser_client: 10, risky_region: 50}
                  high_risk_regions: [ru, kp]
                  anomalous_segments: [/admin]
                  sensitive_methods: [delete, patch]
                  business_hours: {start: 8, end: 18, timezone: Europe/Berlin}
                """,
            )
        )
        assert config.risk.thresholds == Thresholds(deny=70, flag=40)
        assert config.risk.weights.non_browser_client == 10
        assert config.risk.weights.risky_region == 50
        assert config.risk.weights.unknown_geo == 20
        assert config.risk.high_risk_regions == ["RU", "KP"]
        assert config.risk.policy.anomalous_segments == ("/admin",)
        assert config.risk.policy.sensitive_methods == ("DELETE", "PATCH")
        hours = config.risk.policy.business_hours
        assert (hours.start, hours.end, hours.timezone) == (8, 18, "Europe/Berlin")

    def test_unknown_weight_name(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  weights: {risky_country: 30}\n")
        _expect_config_error(path, capsys, "risky_country")

    def test_negative_weight(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  weights: {unknown_geo: -5}\n")
        _expect_config_error(path, capsys, "non-negative")

    def test_non_integer_weight(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  weights: {unknown_geo: high}\n")
        _expect_config_error(path, capsys, "integer")

    @pytest.mark.parametrize(
        "thresholds",
        ["{deny: 30, flag: 60}", "{deny: 50, flag: 50}", "{deny: 101, flag: 30}", "{deny: 60, flag: -1}"],
    )
    def test_threshold_ordering(
        self, tmp_path: Any, capsys: pytest.CaptureFixture, thresholds: str
    ) -> None:
        path = _write(tmp_path, f"version: 1\nrisk:\n  thresholds: {thresholds}\n")
        _expect_config_error(path, capsys, "flag < deny")

    def test_bad_business_hours(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  business_hours: {start: 20, end: 6}\n")
        _expect_config_error(path, capsys, "business_hours")

    def test_unknown_timezone(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  business_hours: {timezone: Mars/Olympus}\n")
        _expect_config_error(path, capsys, "Mars/Olympus")

    @pytest.mark.parametrize(
        "entry",
        [
            "sensitive_segments: /delete",
            "sensitive_methods: DELETE",
            "anomalous_segments: /admin",
            "high_risk_regions: RU",
        ],
    )
    def test_scalar_list_field_rejected(
        self, tmp_path: Any, capsys: pytest.CaptureFixture, entry: str
    ) -> None:
        path = _write(tmp_path, f"version: 1\nrisk:\n  {entry}\n")
        _expect_config_error(path, capsys, entry.split(":")[0], "list of strings")

    def test_non_string_list_entry_rejected(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  sensitive_segments: [/delete, 42]\n")
        _expect_config_error(path, capsys, "risk.sensitive_segments", "42")

    def test_empty_string_entry_rejected(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nrisk:\n  anomalous_segments: ['/admin', '']\n")
        _expect_config_error(path, capsys, "risk.anomalous_segments")

    def test_scripted_signatures_scalar_rejected(
        self, tmp_path: Any, capsys: pytest.CaptureFixture
    ) -> None:
        path = _write(tmp_path, "version: 1\nfingerprint:\n  scripted_signatures: curl\n")
        _expect_config_error(path, capsys, "fingerprint.scripted_signatures")

    def test_scripted_signatures_list(self, tmp_path: Any) -> None:
        config = load_config(
            config_path=_write(tmp_path, "version: 1\nfingerprint:\n  scripted_signatures: [curl, wget]\n")
        )
        assert config.fingerprint.scripted_signatures == ["curl", "wget"]


# ─── Backend / geo ────────────────────────────────────────────────────────────


class TestBackendAndGeo:
    def test_prefix_normalised(self, tmp_path: Any) -> None:
        config = load_config(
            config_path=_write(tmp_path, "version: 1\nbackend:\n  public_prefix: /gateway/\n")
        )
        assert config.backend.public_prefix == "/gateway"

    @pytest.mark.parametrize("prefix", ["/", "api"])
    def test_invalid_prefix(self, tmp_path: Any, capsys: pytest.CaptureFixture, prefix: str) -> None:
        path = _write(tmp_path, f"version: 1\nbackend:\n  public_prefix: '{prefix}'\n")
        _expect_config_error(path, capsys, "public_prefix")

    def test_static_geo_table(self, tmp_path: Any) -> None:
        config = load_config(
            config_path=_write(tmp_path, "version: 1\ngeo:\n  static:\n    10.20.0.0/16: de\n")
        )
        assert config.geo.static == {"10.20.0.0/16": "DE"}

    def test_invalid_static_cidr(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\ngeo:\n  static:\n    not-a-cidr: DE\n")
        _expect_config_error(path, capsys, "not-a-cidr")

    @pytest.mark.parametrize(
        "entry",
        ["backend:\n  timeout_s: abc", "backend:\n  timeout_s: 0", "auth:\n  leeway_s: soon", "auth:\n  leeway_s: -1"],
    )
    def test_invalid_durations(self, tmp_path: Any, capsys: pytest.CaptureFixture, entry: str) -> None:
        path = _write(tmp_path, f"version: 1\n{entry}\n")
        _expect_config_error(path, capsys, entry.split(":\n  ")[1].split(":")[0])

    def test_durations_accept_integers(self, tmp_path: Any) -> None:
        config = load_config(
            config_path=_write(tmp_path, "version: 1\nbackend:\n  timeout_s: 5\nauth:\n  leeway_s: 0\n")
        )
        assert config.backend.timeout_s == 5.0
        assert config.auth.leeway_s == 0.0


# ─── Environment overrides and key material ───────────────────────────────────


class TestEnvironmentOverrides:
    def test_overrides_apply(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RISKGATE_PORT", "9090")
        monkeypatch.setenv("RISKGATE_BACKEND_URL", "http://service2:5000/")
        monkeypatch.setenv("RISKGATE_GEOIP_DB", "/data/GeoLite2-Country.mmdb")
        config = load_config(config_path="/nonexistent/path/config.yaml")
        assert config.proxy.port == 9090
        assert config.backend.url == "http://service2:5000"
        assert config.geo.database == "/data/GeoLite2-Country.mmdb"

    def test_invalid_port(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
        monkeypatch.setenv("RISKGATE_PORT", "eighty")
        with pytest.raises(SystemExit):
            load_config(config_path="/nonexistent/path/config.yaml")
        assert "RISKGATE_PORT" in capsys.readouterr().err

    def test_env_secret_wins_over_file(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RISKGATE_JWT_SECRET", "from-env")
        config = load_config(config_path=_write(tmp_path, "version: 1\nauth:\n  secret: from-file\n"))
        assert config.auth.secret == "from-env"

    def test_key_file(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("RISKGATE_JWT_SECRET")
        key_file = tmp_path / "jwt.pem"
        key_file.write_text("-----BEGIN PUBLIC KEY-----\nabc\n-----END PUBLIC KEY-----\n")
        config = load_config(
            config_path=_write(
                tmp_path,
                f"version: 1\nauth:\n  key_file: {key_file}\n  algorithm: RS256\n",
            )
        )
        assert config.auth.algorithm == "RS256"
        assert "BEGIN PUBLIC KEY" in config.auth.verification_key()

    def test_missing_key_file(
        self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.delenv("RISKGATE_JWT_SECRET")
        path = _write(tmp_path, "version: 1\nauth:\n  key_file: /nonexistent/jwt.pem\n")
        _expect_config_error(path, capsys, "key_file")


class TestFromDict:
    def test_unknown_sections_ignored(self) -> None:
        config = Config.from_dict({"version": 1, "tracing": {"enabled": True}})
        assert config.backend.url == "http://localhost:5000"

    def test_proxy_port_must_be_integer(self, capsys: pytest.CaptureFixture) -> None:
        with pytest.raises(SystemExit):
            Config.from_dict({"version": 1, "proxy": {"port": "8080"}})
        assert "proxy.port" in capsys.readouterr().err
