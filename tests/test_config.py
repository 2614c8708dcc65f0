"""Tests for supportbot.config, supportbot.config_provider and trading configuration."""

import json

import pytest

from supportbot.config import load_config
from supportbot.config_provider import JsonConfigProvider
from supportbot.errors import ConfigError
from supportbot.models.trading_config import TradingConfiguration


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure Bybit env vars are cleared between tests."""
    for var in [
        "BYBIT_API_KEY",
        "BYBIT_API_SECRET",
        "BYBIT_ENVIRONMENT",
        "BYBIT_RECV_WINDOW_MS",
        "DB_PATH",
        "ACCOUNTS_PATH",
        "LOG_LEVEL",
        "HEALTH_PORT",
    ]:
        monkeypatch.delenv(var, raising=False)


def _set_required(monkeypatch):
    monkeypatch.setenv("BYBIT_API_KEY", "test-key")
    monkeypatch.setenv("BYBIT_API_SECRET", "test-secret")


# ── Process configuration ────────────────────────────────────────────────


class TestLoadConfig:
    def test_loads_required_vars(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.bybit_api_key == "test-key"
        assert cfg.bybit_api_secret == "test-secret"

    def test_defaults(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.bybit_environment == "testnet"
        assert cfg.recv_window_ms == 5000
        assert cfg.db_path == "data/supportbot.db"
        assert cfg.accounts_path == "accounts.json"
        assert cfg.log_level == "INFO"
        assert cfg.health_port == 8080

    def test_config_missing_var(self, monkeypatch, tmp_path):
        monkeypatch.setenv("BYBIT_API_KEY", "test-key")
        with pytest.raises(ValueError, match="BYBIT_API_SECRET"):
            load_config(env_path=str(tmp_path / "nonexistent.env"))

    def test_env_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "BYBIT_API_KEY=file-key\nBYBIT_API_SECRET=file-secret\nHEALTH_PORT=9090\n",
            encoding="utf-8",
        )
        cfg = load_config(env_path=str(env_file))
        assert cfg.bybit_api_key == "file-key"
        assert cfg.health_port == 9090

    def test_environment_switching_live(self, monkeypatch, tmp_path):
        _set_required(monkeypatch)
        monkeypatch.setenv("BYBIT_ENVIRONMENT", "live")
        cfg = load_config(env_path=str(tmp_path / "nonexistent.env"))
        assert cfg.bybit_base_url == "https://api.bybit.com"


# ── TradingConfiguration ─────────────────────────────────────────────────


class TestTradingConfiguration:
    def test_defaults_are_valid(self):
        config = TradingConfiguration()
        assert config.is_active is False
        assert config.uses_resting_take_profit is True
        assert config.eod_close_time.hour == 23

    @pytest.mark.parametrize("field_name", [
        "entry_offset_percent",
        "take_profit_percent",
        "max_order_amount_usd",
        "eod_close_premium_percent",
    ])
    def test_non_positive_rejected(self, field_name):
        with pytest.raises(ConfigError, match=field_name):
            TradingConfiguration(**{field_name: 0})

    def test_non_positive_int_rejected(self):
        with pytest.raises(ConfigError):
            TradingConfiguration(max_positions_per_pair=0)

    @pytest.mark.parametrize("field_name", ["max_active_pairs", "support_candle_count", "take_profit_percent"])
    def test_boolean_rejected(self, field_name):
        with pytest.raises(ConfigError, match=field_name):
            TradingConfiguration(**{field_name: True})

    def test_boolean_in_accounts_file_rejected(self):
        with pytest.raises(ConfigError):
            TradingConfiguration.from_dict({"max_active_pairs": True})

    def test_unknown_mode_rejected(self):
        with pytest.raises(ConfigError):
            TradingConfiguration(take_profit_mode="oco")
        with pytest.raises(ConfigError):
            TradingConfiguration(eod_close_mode="yolo")

    def test_bad_close_time_rejected(self):
        with pytest.raises(ConfigError):
            TradingConfiguration(eod_close_time_utc="late")

    def test_from_dict_ignores_unknown_keys(self):
        config = TradingConfiguration.from_dict({
            "symbols": ["btcusdt"], "is_active": True, "dashboard_theme": "dark",
        })
        assert config.symbols == ["BTCUSDT"]
        assert config.is_active is True


# ── JsonConfigProvider ───────────────────────────────────────────────────


class TestJsonConfigProvider:
    def _write(self, tmp_path, payload) -> JsonConfigProvider:
        path = tmp_path / "accounts.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return JsonConfigProvider(path)

    def test_load_account(self, tmp_path):
        provider = self._write(tmp_path, {"accounts": {"main": {"is_active": True, "take_profit_percent": 3}}})
        config = provider.load_config("main")
        assert config.is_active is True
        assert config.take_profit_percent == 3
        assert provider.account_ids() == ["main"]

    def test_edits_visible_on_next_load(self, tmp_path):
        provider = self._write(tmp_path, {"accounts": {"main": {"is_active": True}}})
        assert provider.load_config("main").is_active is True
        self._write(tmp_path, {"accounts": {"main": {"is_active": False}}})
        assert provider.load_config("main").is_active is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            JsonConfigProvider(tmp_path / "missing.json").load_config("main")

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "accounts.json"
        path.write_text("{oops", encoding="utf-8")
        with pytest.raises(ConfigError):
            JsonConfigProvider(path).load_config("main")

    def test_missing_accounts_key(self, tmp_path):
        with pytest.raises(ConfigError):
            self._write(tmp_path, {"main": {}}).load_config("main")

    def test_unknown_account(self, tmp_path):
        with pytest.raises(ConfigError, match="Unknown account"):
            self._write(tmp_path, {"accounts": {}}).load_config("main")

    def test_account_not_an_object(self, tmp_path):
        with pytest.raises(ConfigError):
            self._write(tmp_path, {"accounts": {"main": ["BTCUSDT"]}}).load_config("main")

    def test_invalid_value(self, tmp_path):
        with pytest.raises(ConfigError):
            self._write(tmp_path, {"accounts": {"main": {"take_profit_percent": -1}}}).load_config("main")
