"""
Alert deduplication shared by every alert-producing source.

A (source, alert id) pair alerts once per cooldown window (30 min default).
Inside the window a repeat is allowed only when profit has risen by at least
the re-alert delta (5 percentage points) since the last alert actually sent;
that alert restarts the window. Entries untouched for the prune age (2 h)
are dropped, and the map is bounded at max_entries (oldest evicted).

Profits are passed in percentage points (4.2 = 4.2%).
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable

from config import Config

logger = logging.getLogger(__name__)

_KEY_MAX_LEN = 60
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def generate_alert_key(alert_id: str) -> str:
    """Lowercase alphanumerics of alert_id, truncated, so cosmetic variants collapse."""
    return _NON_ALNUM.sub("", alert_id.lower())[:_KEY_MAX_LEN]


@dataclass
class _AlertRecord:
    last_sent: float
    last_profit: float | None


class AlertDeduplicator:
    def __init__(
        self,
        cooldown_sec: float = 1800.0,
        realert_delta_pp: float = 5.0,
        prune_age_sec: float = 7200.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cooldown = cooldown_sec
        self._delta = realert_delta_pp
        self._prune_age = prune_age_sec
        self._max_entries = max_entries
        self._clock = clock
        self._records: dict[str, _AlertRecord] = {}
        self._checked = 0
        self._allowed = 0
        self._suppressed = 0

    @classmethod
    def from_config(cls, config: Config, clock: Callable[[], float] = time.time) -> AlertDeduplicator:
        return cls(
            cooldown_sec=config.alert_cooldown_sec,
            realert_delta_pp=config.alert_realert_delta_pp,
            prune_age_sec=config.alert_prune_age_sec,
            max_entries=config.alert_max_entries,
            clock=clock,
        )

    @staticmethod
    def _key(source_tag: str, alert_id: str) -> str:
        return f"{source_tag}:{generate_alert_key(alert_id)}"

    def __len__(self) -> int:
        return len(self._records)

    def _prune(self, now: float) -> None:
        cutoff = now - self._prune_age
        stale = [k for k, r in self._records.items() if r.last_sent < cutoff]
        for k in stale:
            del self._records[k]
        if stale:
            logger.debug("Pruned %d stale alert records", len(stale))

    def _evict_overflow(self) -> None:
        # Dicts keep insertion order: the first keys are the oldest sends
        while len(self._records) > self._max_entries:
            del self._records[next(iter(self._records))]

    def should_send(self, source_tag: str, alert_id: str, current_profit: float | None = None) -> bool:
        """Decision only; nothing is recorded."""
        now = self._clock()
        record = self._records.get(self._key(source_tag, alert_id))
        if record is None:
            return True
        if now - record.last_sent >= self._cooldown:
            return True
        if current_profit is not None and record.last_profit is not None:
            return current_profit - record.last_profit >= self._delta
        return False

    def record(self, source_tag: str, alert_id: str, current_profit: float | None = None) -> None:
        """Mark an alert as sent now, restarting its cooldown."""
        now = self._clock()
        self._prune(now)
        key = self._key(source_tag, alert_id)
        self._records.pop(key, None)
        self._records[key] = _AlertRecord(last_sent=now, last_profit=current_profit)
        self._evict_overflow()

    def check_and_record_alert(self, source_tag: str, alert_id: str, current_profit: float | None = None) -> bool:
        """
        True if the alert should go out (and records it as sent);
        False if it's a suppressed duplicate.
        """
        self._prune(self._clock())
        self._checked += 1
        if not self.should_send(source_tag, alert_id, current_profit):
            self._suppressed += 1
            logger.debug("Suppressed duplicate alert %s:%s", source_tag, alert_id)
            return False
        self.record(source_tag, alert_id, current_profit)
        self._allowed += 1
        return True

    def expire(self, source_tag: str, alert_id: str) -> bool:
        """Forget one alert so the next occurrence sends immediately."""
        return self._records.pop(self._key(source_tag, alert_id), None) is not None

    def clear(self) -> None:
        self._records.clear()

    def stats(self) -> dict:
        return {
            "entries": len(self._records),
            "checked": self._checked,
            "allowed": self._allowed,
            "suppressed": self._suppressed,
        }

    def to_dict(self) -> dict:
        return {
            "cooldown_sec": self._cooldown,
            "realert_delta_pp": self._delta,
            "prune_age_sec": self._prune_age,
            "max_entries": self._max_entries,
            "records": {
                k: {"last_sent": r.last_sent, "last_profit": r.last_profit}
                for k, r in self._records.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> AlertDeduplicator:
        dedup = cls(
            cooldown_sec=data.get("cooldown_sec", 1800.0),
            realert_delta_pp=data.get("realert_delta_pp", 5.0),
            prune_age_sec=data.get("prune_age_sec", 7200.0),
            max_entries=data.get("max_entries", 10_000),
        )
        records = sorted(data.get("records", {}).items(), key=lambda kv: kv[1]["last_sent"])
        for key, raw in records:
            dedup._records[key] = _AlertRecord(last_sent=float(raw["last_sent"]), last_profit=raw.get("last_profit"))
        return dedup

    def restore_from(self, other: AlertDeduplicator) -> None:
        """Adopt another instance's records (e.g. one loaded from a checkpoint), keeping this clock and limits."""
        self._records = dict(other._records)
        self._prune(self._clock())
        self._evict_overflow()
