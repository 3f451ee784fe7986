"""Trust score, tiers, benefits and tier transitions."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import add_incidents, add_sales, add_store
from models import IncidentType, StoreTrustState, TrustEvent, TrustTier
from services.signals import StoreSignals
from services.trust_engine import (
    TRUST_BENEFITS,
    UPGRADE_STABLE_DAYS,
    chargeback_penalty_30d,
    clean_bonus,
    recompute_store_trust,
    refund_penalty_7d,
    score_trust_signals,
    tier_from_score,
)


@pytest.mark.parametrize("score,tier", [
    (100, TrustTier.ELITE),
    (90, TrustTier.ELITE),
    (89, TrustTier.TRUSTED),
    (75, TrustTier.TRUSTED),
    (74, TrustTier.STANDARD),
    (50, TrustTier.STANDARD),
    (49, TrustTier.WATCH),
    (30, TrustTier.WATCH),
    (29, TrustTier.RESTRICTED),
    (0, TrustTier.RESTRICTED),
])
def test_tier_thresholds(score, tier):
    assert tier_from_score(score) == tier


def test_benefits_by_tier():
    assert TRUST_BENEFITS[TrustTier.ELITE] == {"payout_delay_hours": 24, "listing_boost_factor": 1.2}
    assert TRUST_BENEFITS[TrustTier.RESTRICTED] == {"payout_delay_hours": 120, "listing_boost_factor": 0.8}


def test_refund_penalty_bands():
    assert refund_penalty_7d(0.04) == 0
    assert refund_penalty_7d(0.075) == pytest.approx(6)
    assert refund_penalty_7d(0.20) == pytest.approx(30)


def test_chargeback_penalty_steps():
    assert [chargeback_penalty_30d(n) for n in range(5)] == [0, 12, 25, 40, 40]


def test_clean_bonus_requires_volume():
    assert clean_bonus(StoreSignals(orders_30d=19), 0.0) == (0, [])
    total, bonuses = clean_bonus(StoreSignals(orders_30d=20, orders_90d=20), 0.0)
    assert total == 20
    assert [b["key"] for b in bonuses] == ["clean_30d", "clean_90d"]


def test_rates_are_ignored_below_minimum_volume(now):
    score, summary = score_trust_signals(StoreSignals(orders_7d=5, refunds_7d=5, orders_30d=5, refunds_30d=5), now)
    assert score == 100
    assert summary["penalties"] == []


def test_summary_explains_score(now):
    signals = StoreSignals(orders_7d=20, refunds_7d=4, orders_30d=20, refunds_30d=4, chargebacks_30d=1)
    score, summary = score_trust_signals(signals, now)

    assert score == 100 - 30 - 12
    assert {p["key"] for p in summary["penalties"]} == {"refund_rate_7d", "chargebacks_30d"}
    assert summary["score"] == {"base": 100, "penalty": 42, "bonus": 0, "final": 58}


class TestRecompute:

    def test_first_recompute_creates_state_from_default(self, db, now):
        add_store(db, "S1")

        outcome = recompute_store_trust(db, "S1", now=now)

        assert outcome["prevScore"] == 60
        assert outcome["prevTier"] == "STANDARD"
        assert outcome["nextScore"] == 100
        assert outcome["candidateTier"] == "ELITE"
        assert outcome["nextTier"] == "STANDARD"
        assert outcome["pendingUpgradeTo"] == "ELITE"
        state = db.get(StoreTrustState, "S1")
        assert state.payout_delay_hours == 72
        assert state.listing_boost_factor == 1.0
        event = db.scalar(select(TrustEvent).where(TrustEvent.store_id == "S1"))
        assert event.kind == "SCORE_CHANGE"

    def test_upgrade_waits_for_stable_recomputes(self, db, now):
        add_store(db, "S1")

        for day in range(UPGRADE_STABLE_DAYS - 1):
            outcome = recompute_store_trust(db, "S1", now=now + timedelta(days=day))
            assert outcome["nextTier"] == "STANDARD"

        outcome = recompute_store_trust(db, "S1", now=now + timedelta(days=UPGRADE_STABLE_DAYS))

        assert outcome["upgraded"] is True
        assert outcome["nextTier"] == "ELITE"
        state = db.get(StoreTrustState, "S1")
        assert state.trust_tier == TrustTier.ELITE
        assert state.payout_delay_hours == 24
        assert state.score_stable_days == 0
        kinds = db.scalars(select(TrustEvent.kind).where(TrustEvent.store_id == "S1").order_by(TrustEvent.id)).all()
        assert kinds == ["SCORE_CHANGE", "TIER_CHANGE"]

    def test_downgrade_applies_immediately(self, db, now, days_ago):
        store = add_store(db, "S1")
        add_incidents(db, store, IncidentType.CHARGEBACK, 3, days_ago(3))
        add_incidents(db, store, IncidentType.DISPUTE, 5, days_ago(3))

        outcome = recompute_store_trust(db, "S1", now=now)

        assert outcome["nextScore"] == 100 - 40 - 25
        assert outcome["downgraded"] is True
        assert outcome["nextTier"] == "WATCH"
        state = db.get(StoreTrustState, "S1")
        assert state.payout_delay_hours == 96
        assert state.listing_boost_factor == 0.9
        assert state.last_tier_change_at == now

    def test_pending_upgrade_follows_latest_candidate(self, db, now, days_ago):
        store = add_store(db, "S1")
        recompute_store_trust(db, "S1", now=now)
        recompute_store_trust(db, "S1", now=now + timedelta(days=1))
        add_incidents(db, store, IncidentType.CHARGEBACK, 1, now + timedelta(days=1))

        outcome = recompute_store_trust(db, "S1", now=now + timedelta(days=2))

        assert outcome["nextScore"] == 88
        assert outcome["candidateTier"] == "TRUSTED"
        assert outcome["pendingUpgradeTo"] == "TRUSTED"
        assert outcome["stableDays"] == 3

    def test_dry_run_persists_nothing(self, db, now):
        add_store(db, "S1")

        outcome = recompute_store_trust(db, "S1", dry_run=True, now=now)

        assert outcome["dryRun"] is True
        assert db.get(StoreTrustState, "S1") is None

    def test_unchanged_recompute_writes_no_event(self, db, now, days_ago):
        store = add_store(db, "S1")
        add_sales(db, store, 5, days_ago(40))
        recompute_store_trust(db, "S1", now=now)
        recompute_store_trust(db, "S1", now=now + timedelta(days=1))

        events = db.scalars(select(TrustEvent).where(TrustEvent.store_id == "S1")).all()
        assert len(events) == 1
