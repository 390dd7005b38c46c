import dataclasses

import pytest

from bot_config import StrategyConfig, env_override


def test_defaults():
    cfg = StrategyConfig()
    assert cfg.symbol == "BTCUSDT"
    assert cfg.interval == "1m"
    assert cfg.leverage == 50
    assert cfg.confluence_threshold == 4
    assert cfg.max_consecutive_errors == 5
    assert cfg.mtf_required == ("5m", "15m")


def test_config_is_immutable():
    cfg = StrategyConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.leverage = 10


def test_from_env(monkeypatch):
    monkeypatch.setenv("SMC_SYMBOL", "ethusdt ")
    monkeypatch.setenv("SMC_LEVERAGE", "20")
    monkeypatch.setenv("SMC_TP_PERCENT", "0.01")
    monkeypatch.setenv("SMC_USE_ZLEMA", "yes")
    monkeypatch.setenv("SMC_SENTIMENT_TIMEFRAMES", "1m,15m")
    monkeypatch.setenv("SMC_MAX_DAILY_LOSS", "")
    cfg = StrategyConfig.from_env()
    assert cfg.symbol == "ethusdt"
    assert cfg.leverage == 20
    assert cfg.tp_percent == 0.01
    assert cfg.use_zlema is True
    assert cfg.sentiment_timeframes == ("1m", "15m")
    assert cfg.max_daily_loss == 100.0


def test_env_override_keeps_object_when_unchanged(monkeypatch):
    cfg = StrategyConfig()
    assert env_override(cfg, "NOPE_") is cfg


def test_manual_mode_from_env(monkeypatch):
    assert StrategyConfig().auto_trade is True
    monkeypatch.setenv("SMC_AUTO_TRADE", "0")
    assert StrategyConfig.from_env().auto_trade is False
