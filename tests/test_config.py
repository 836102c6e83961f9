"""
Unit tests for config.py.
"""

import pytest
from pydantic import ValidationError

from config import Config, load_config, registry_config
from scanner.errors import ConfigurationError


class TestConfig:
    def test_defaults(self):
        """Threshold defaults match the documented ArbitrageConfig values."""
        cfg = Config(_env_file=None)
        assert cfg.min_equivalence_score == 0.80
        assert cfg.min_title_similarity == 0.70
        assert cfg.max_date_drift_days == 7
        assert cfg.min_net_profit_pct == 0.02
        assert cfg.min_gross_profit_pct == 0.03
        assert cfg.max_risk_score == 60
        assert cfg.max_execution_risk == 50
        assert cfg.min_liquidity_usd == 500
        assert cfg.min_volume_usd == 1000
        assert cfg.max_position_pct == 0.05
        assert cfg.default_position_usd == 100
        assert cfg.max_position_usd == 1000
        assert cfg.max_execution_time_ms == 5000
        assert cfg.max_price_deviation == 0.02

    def test_ambient_defaults(self):
        cfg = Config(_env_file=None)
        assert cfg.scan_platforms == ["polymarket", "kalshi", "manifold"]
        assert cfg.registry_refresh_sec == 300
        assert cfg.registry_min_equivalence_score == 0.30
        assert cfg.registry_min_title_similarity == 0.20
        assert cfg.monitor_fee_adjustment == 0.02
        assert cfg.alert_cooldown_sec == 1800
        assert cfg.alert_realert_delta_pp == 5
        assert cfg.alert_prune_age_sec == 7200
        assert cfg.state_db_path == ""

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MIN_NET_PROFIT_PCT", "0.025")
        monkeypatch.setenv("SCAN_PLATFORMS", '["polymarket","kalshi"]')
        cfg = Config(_env_file=None)
        assert cfg.min_net_profit_pct == 0.025
        assert cfg.scan_platforms == ["polymarket", "kalshi"]

    def test_frozen(self):
        cfg = Config(_env_file=None)
        with pytest.raises(ValidationError):
            cfg.min_net_profit_pct = 0.5

    def test_net_above_gross_rejected(self):
        """Contradictory profit thresholds fail at construction."""
        with pytest.raises(ValidationError):
            Config(_env_file=None, min_net_profit_pct=0.05, min_gross_profit_pct=0.03)

    def test_default_position_above_max_rejected(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, default_position_usd=2000, max_position_usd=1000)

    def test_registry_stricter_than_live_rejected(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, registry_min_equivalence_score=0.9)
        with pytest.raises(ValidationError):
            Config(_env_file=None, registry_min_title_similarity=0.8)

    def test_soft_drift_above_hard_cap_rejected(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, max_date_drift_days=45)

    def test_out_of_range_values_rejected(self):
        with pytest.raises(ValidationError):
            Config(_env_file=None, min_equivalence_score=1.5)
        with pytest.raises(ValidationError):
            Config(_env_file=None, max_position_pct=0)
        with pytest.raises(ValidationError):
            Config(_env_file=None, min_confidence_grade="E")


class TestLoadConfig:
    def test_wraps_validation_error(self, monkeypatch):
        """load_config reports bad settings as ConfigurationError."""
        monkeypatch.setenv("MIN_NET_PROFIT_PCT", "0.10")
        monkeypatch.setenv("MIN_GROSS_PROFIT_PCT", "0.03")
        with pytest.raises(ConfigurationError):
            load_config(_env_file=None)

    def test_overrides(self):
        cfg = load_config(_env_file=None, max_opportunities=3)
        assert cfg.max_opportunities == 3


class TestRegistryConfig:
    def test_swaps_in_discovery_thresholds(self):
        cfg = Config(_env_file=None)
        loose = registry_config(cfg)
        assert loose.min_equivalence_score == 0.30
        assert loose.min_title_similarity == 0.20
        # Base config untouched
        assert cfg.min_equivalence_score == 0.80
        assert loose.min_net_profit_pct == cfg.min_net_profit_pct
