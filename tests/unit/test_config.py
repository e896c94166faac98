"""
Settings: fail-closed YAML loading and environment secrets.
"""

from pathlib import Path

import pytest

from cryptosage.config import ConfigError, Credentials, EngineConfig, Settings
from cryptosage.risk import RiskConfigError

REPO_CONFIG = Path(__file__).parent.parent.parent / "config.yaml"

MINIMAL = """
risk:
  risk_per_trade_pct: 5
engine:
  tradable_pairs: ["XRP/USDT"]
advisory:
  retries: 2
"""


def write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


class TestSettings:
    def test_repository_config_loads(self):
        settings = Settings.load_from_yaml(str(REPO_CONFIG))
        assert settings.engine.execution_mode == "paper"
        assert settings.risk.daily_loss_limit_pct == 2.0

    def test_minimal_config_fills_defaults(self, tmp_path):
        settings = Settings.load_from_yaml(write(tmp_path, MINIMAL))
        assert settings.risk.risk_per_trade_pct == 5
        assert settings.engine.base_assets == ["XRP"]
        assert settings.advisory.retries == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Settings.load_from_yaml(str(tmp_path / "nope.yaml"))

    def test_empty_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Settings.load_from_yaml(write(tmp_path, ""))

    def test_missing_section(self, tmp_path):
        with pytest.raises(ConfigError) as exc:
            Settings.load_from_yaml(write(tmp_path, MINIMAL.replace("advisory:\n  retries: 2\n", "")))
        assert "advisory" in str(exc.value)

    def test_unknown_key(self, tmp_path):
        with pytest.raises(ConfigError):
            Settings.load_from_yaml(write(tmp_path, MINIMAL + "  leverage: 3\n"))

    def test_unknown_risk_key_is_risk_error(self, tmp_path):
        text = MINIMAL.replace("risk_per_trade_pct: 5", "risk_per_trade_pct: 5\n  max_positions: 3")
        with pytest.raises(RiskConfigError):
            Settings.load_from_yaml(write(tmp_path, text))


class TestEngineConfig:
    def test_pairs_must_share_quote(self):
        with pytest.raises(ConfigError):
            EngineConfig(tradable_pairs=["XRP/USDT", "ETH/BTC"])

    def test_execution_mode_validated(self):
        with pytest.raises(ConfigError):
            EngineConfig(execution_mode="margin")

    def test_duplicates_rejected(self):
        with pytest.raises(ConfigError):
            EngineConfig(tradable_pairs=["XRP/USDT", "XRP/USDT"])


class TestCredentials:
    def test_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEXC_API_KEY", "k")
        monkeypatch.setenv("MEXC_SECRET_KEY", "s")
        monkeypatch.setenv("OPENAI_API_KEY", "")
        monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)

        creds = Credentials.from_env(str(tmp_path / ".env"))

        assert creds.has_exchange_keys
        assert creds.openai_api_key is None
        assert creds.discord_webhook_url is None

    def test_keys_missing(self):
        assert not Credentials(mexc_api_key="k").has_exchange_keys
