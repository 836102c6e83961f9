"""
Unit tests for monitor/dedup.py -- cooldown, re-alert delta, pruning and persistence.
"""

from __future__ import annotations

from config import Config
from monitor.dedup import AlertDeduplicator, generate_alert_key


class FakeClock:
    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _dedup(clock, **kwargs):
    return AlertDeduplicator(clock=clock, **kwargs)


class TestGenerateAlertKey:
    def test_strips_punctuation_and_case(self):
        assert generate_alert_key("Kalshi-Polymarket:Will BTC hit $100k?") == "kalshipolymarketwillbtchit100k"

    def test_truncated(self):
        assert len(generate_alert_key("x" * 200)) == 60


class TestCooldown:
    def test_duplicate_within_window_suppressed(self):
        clock = FakeClock()
        dedup = _dedup(clock)
        first = dedup.check_and_record_alert("arbitrage", "pair-1", 4.0)
        clock.now += 60
        second = dedup.check_and_record_alert("arbitrage", "pair-1", 4.0)
        assert (first, second) == (True, False)

    def test_allowed_after_cooldown(self):
        clock = FakeClock()
        dedup = _dedup(clock)
        assert dedup.check_and_record_alert("arbitrage", "pair-1", 4.0)
        clock.now += 35 * 60
        assert dedup.check_and_record_alert("arbitrage", "pair-1", 4.0)

    def test_profit_jump_realerts(self):
        clock = FakeClock()
        dedup = _dedup(clock)
        assert dedup.check_and_record_alert("arbitrage", "pair-1", 4.0)
        clock.now += 60
        assert not dedup.check_and_record_alert("arbitrage", "pair-1", 8.0)
        assert dedup.check_and_record_alert("arbitrage", "pair-1", 10.0)
        # Baseline is now the 10.0 that was sent
        assert not dedup.check_and_record_alert("arbitrage", "pair-1", 14.0)

    def test_sources_are_independent(self):
        dedup = _dedup(FakeClock())
        assert dedup.check_and_record_alert("arbitrage", "pair-1")
        assert dedup.check_and_record_alert("spike", "pair-1")

    def test_cosmetic_variants_collapse(self):
        dedup = _dedup(FakeClock())
        assert dedup.check_and_record_alert("arbitrage", "Pair 1!")
        assert not dedup.check_and_record_alert("arbitrage", "pair-1")

    def test_should_send_does_not_record(self):
        dedup = _dedup(FakeClock())
        assert dedup.should_send("arbitrage", "pair-1", 3.0)
        assert dedup.should_send("arbitrage", "pair-1", 3.0)
        assert len(dedup) == 0
        dedup.record("arbitrage", "pair-1", 3.0)
        assert not dedup.should_send("arbitrage", "pair-1", 3.0)


class TestBounds:
    def test_prune_old_entries(self):
        clock = FakeClock()
        dedup = _dedup(clock)
        dedup.check_and_record_alert("arbitrage", "old")
        clock.now += 2 * 3600 + 1
        dedup.check_and_record_alert("arbitrage", "new")
        assert len(dedup) == 1

    def test_record_prunes_old_entries(self):
        clock = FakeClock()
        dedup = _dedup(clock)
        assert dedup.should_send("arbitrage", "pair-one", 4.0)
        dedup.record("arbitrage", "pair-one", 4.0)
        clock.now += 3 * 3600
        for name in ("b", "c", "d"):
            if dedup.should_send("arbitrage", name, 4.0):
                dedup.record("arbitrage", name, 4.0)
        assert len(dedup) == 3
        assert "arbitrage:pairone" not in dedup.to_dict()["records"]

    def test_max_entries_evicts_oldest(self):
        clock = FakeClock()
        dedup = _dedup(clock, max_entries=2)
        for name in ("a", "b", "c"):
            clock.now += 1
            dedup.check_and_record_alert("arbitrage", name)
        assert len(dedup) == 2
        assert dedup.should_send("arbitrage", "a")
        assert not dedup.should_send("arbitrage", "c")

    def test_expire(self):
        dedup = _dedup(FakeClock())
        dedup.check_and_record_alert("arbitrage", "pair-1")
        assert dedup.expire("arbitrage", "pair-1")
        assert not dedup.expire("arbitrage", "pair-1")
        assert dedup.check_and_record_alert("arbitrage", "pair-1")

    def test_clear(self):
        dedup = _dedup(FakeClock())
        dedup.check_and_record_alert("arbitrage", "pair-1")
        dedup.clear()
        assert len(dedup) == 0

    def test_stats(self):
        dedup = _dedup(FakeClock())
        dedup.check_and_record_alert("arbitrage", "pair-1")
        dedup.check_and_record_alert("arbitrage", "pair-1")
        assert dedup.stats() == {"entries": 1, "checked": 2, "allowed": 1, "suppressed": 1}


class TestPersistence:
    def test_from_config(self):
        cfg = Config(_env_file=None, alert_cooldown_sec=60.0, alert_realert_delta_pp=2.0)
        clock = FakeClock()
        dedup = AlertDeduplicator.from_config(cfg, clock=clock)
        dedup.check_and_record_alert("arbitrage", "pair-1", 1.0)
        clock.now += 30
        assert dedup.should_send("arbitrage", "pair-1", 3.0)
        clock.now += 31
        assert dedup.should_send("arbitrage", "pair-1", 1.0)

    def test_dict_round_trip_keeps_suppression(self):
        clock = FakeClock()
        dedup = _dedup(clock, cooldown_sec=600.0)
        dedup.check_and_record_alert("arbitrage", "pair-1", 4.0)
        restored = AlertDeduplicator.from_dict(dedup.to_dict())
        assert len(restored) == 1
        assert restored.to_dict() == dedup.to_dict()

    def test_restore_from_uses_own_clock(self):
        clock = FakeClock()
        original = _dedup(clock)
        original.check_and_record_alert("arbitrage", "pair-1", 4.0)
        fresh = _dedup(clock)
        fresh.restore_from(AlertDeduplicator.from_dict(original.to_dict()))
        assert not fresh.should_send("arbitrage", "pair-1", 4.0)
        clock.now += 1800
        assert fresh.should_send("arbitrage", "pair-1", 4.0)

    def test_restore_from_drops_expired_records(self):
        clock = FakeClock()
        original = _dedup(clock)
        original.record("arbitrage", "old", 4.0)
        clock.now += 3 * 3600
        original.record("arbitrage", "recent", 4.0)
        saved = original.to_dict()
        saved["records"]["arbitrage:old"] = {"last_sent": clock.now - 3 * 3600, "last_profit": 4.0}

        fresh = _dedup(clock)
        fresh.restore_from(AlertDeduplicator.from_dict(saved))
        assert len(fresh) == 1
        assert fresh.should_send("arbitrage", "old", 4.0)
        assert not fresh.should_send("arbitrage", "recent", 4.0)
