import pytest
import yaml
from pydantic import ValidationError

from tradeintel.config.settings import IndicatorConfig, Settings, create_default_config, load_settings


def test_load_settings_from_yaml(workspace_tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ALPHA_VANTAGE_API_KEY", raising=False)
    config_path = workspace_tmp_path / "config.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "user_id": "desk-1",
                "rules": {"min_score_threshold": 65, "max_daily_trades": 4},
                "market_data": {"symbols": ["TCS"], "pacing_delay_ms": 0},
            }
        )
    )
    settings = load_settings(config_path)
    assert settings.user_id == "desk-1"
    assert settings.rules.min_score_threshold == 65.0
    assert settings.rules.max_daily_trades == 4
    assert settings.rules.consecutive_loss_limit == 3
    assert settings.market_data.symbols == ["TCS"]
    assert settings.session.timezone == "Asia/Kolkata"


def test_api_key_comes_from_environment(workspace_tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ALPHA_VANTAGE_API_KEY", "from-env")
    settings = load_settings(workspace_tmp_path / "missing.yaml")
    assert settings.alpha_vantage_api_key == "from-env"
    assert settings.validate_for_cycle() == []


def test_validate_for_cycle_reports_problems(workspace_tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ALPHA_VANTAGE_API_KEY", raising=False)
    settings = load_settings(workspace_tmp_path / "missing.yaml")
    settings.market_data.symbols = []
    settings.regime.volatility_high_pct = 5.0
    errors = settings.validate_for_cycle()
    assert "ALPHA_VANTAGE_API_KEY not set" in errors
    assert "market_data.symbols is empty" in errors
    assert "regime.volatility_high_pct exceeds volatility_extreme_pct" in errors


def test_create_default_config_round_trips(workspace_tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ALPHA_VANTAGE_API_KEY", raising=False)
    path = workspace_tmp_path / "config.yaml"
    create_default_config(path)
    settings = load_settings(path)
    defaults = Settings()
    assert settings.rules == defaults.rules
    assert settings.learning == defaults.learning
    assert settings.market_data.symbols == defaults.market_data.symbols


def test_macd_periods_are_validated() -> None:
    with pytest.raises(ValidationError):
        IndicatorConfig(macd_fast=26, macd_slow=12)
