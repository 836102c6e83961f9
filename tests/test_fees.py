"""
Unit tests for scanner/fees.py -- per-platform fee schedules.
"""

import pytest

from scanner.fees import PLATFORM_FEES, FeeSchedule, fee_model_for
from scanner.models import FeeStructure, Platform, VolumeDiscount
from scanner.platform_fees import PlatformFeeModel


class TestPlatformSchedules:
    def test_every_platform_listed(self):
        assert set(PLATFORM_FEES) == {p.value for p in Platform}

    def test_zero_fee_platforms(self):
        for name in ("polymarket", "manifold", "metaculus"):
            model = fee_model_for(name)
            assert model.trading_fee_rate() == 0.0
            assert model.settlement_fee_rate() == 0.0

    def test_limitless_flat_rate(self):
        assert fee_model_for("limitless").trading_fee_rate(1_000_000) == 0.005


class TestVolumeTiers:
    def test_kalshi_base_rate(self):
        assert fee_model_for("kalshi").trading_fee_rate(0) == 0.01

    def test_kalshi_tiers(self):
        kalshi = fee_model_for("kalshi")
        assert kalshi.trading_fee_rate(9_999) == 0.01
        assert kalshi.trading_fee_rate(10_000) == 0.007
        assert kalshi.trading_fee_rate(99_999) == 0.007
        assert kalshi.trading_fee_rate(100_000) == 0.005

    def test_tier_order_independent(self):
        """The deepest qualifying tier wins even when declared first."""
        schedule = FeeSchedule("x", FeeStructure(
            trading_fee=0.02,
            volume_discounts=(
                VolumeDiscount(min_volume=50_000, fee_rate=0.005),
                VolumeDiscount(min_volume=1_000, fee_rate=0.01),
            ),
        ))
        assert schedule.trading_fee_rate(60_000) == 0.005
        assert schedule.trading_fee_rate(5_000) == 0.01
        assert schedule.trading_fee_rate(500) == 0.02


class TestFeeModelFor:
    def test_case_insensitive(self):
        assert fee_model_for("Kalshi").platform_name == "kalshi"

    def test_unknown_platform_is_zero_fee(self):
        model = fee_model_for("predictit")
        assert model.platform_name == "predictit"
        assert model.trading_fee_rate() == 0.0

    def test_satisfies_protocol(self):
        assert isinstance(fee_model_for("kalshi"), PlatformFeeModel)

    def test_structure_exposed(self):
        assert fee_model_for("kalshi").structure.trading_fee == pytest.approx(0.01)
