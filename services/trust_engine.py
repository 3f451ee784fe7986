# services/trust_engine.py
"""
Trust Engine - store reputation score, tier and tier-derived benefits.

The score starts from 100, loses points for refunds, chargebacks, disputes
and critical risk events, and earns a bonus for clean streaks. The tier is
a discretization of the score; payout delay and listing boost are pure
functions of the tier.

Downgrades apply immediately. Upgrades only apply after the score held up
for UPGRADE_STABLE_DAYS consecutive recomputes.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from models import StoreTrustState, TrustEvent, TrustTier
from services.risk_engine import get_store_or_raise
from services.signals import StoreSignals, collect_store_signals
from utils.clock import utcnow

logger = logging.getLogger(__name__)


TRUST_BENEFITS = {
     TrustTier.ELITE: {"payout_delay_hours": 24, "listing_boost_factor": 1.2},
     TrustTier.TRUSTED: {"payout_delay_hours": 48, "listing_boost_factor": 1.1},
     TrustTier.STANDARD: {"payout_delay_hours": 72, "listing_boost_factor": 1.0},
     TrustTier.WATCH: {"payout_delay_hours": 96, "listing_boost_factor": 0.9},
     TrustTier.RESTRICTED: {"payout_delay_hours": 120, "listing_boost_factor": 0.8},
}

TIER_RANK = {
     TrustTier.RESTRICTED: 1,
     TrustTier.WATCH: 2,
     TrustTier.STANDARD: 3,
     TrustTier.TRUSTED: 4,
     TrustTier.ELITE: 5,
}

DEFAULT_TIER = TrustTier.STANDARD
DEFAULT_SCORE = 60
UPGRADE_STABLE_DAYS = 7
MIN_ORDERS_FOR_RATES = 10
MIN_ORDERS_FOR_BONUS = 20
SCORING_VERSION = "v1"

EVENT_TIER_CHANGE = "TIER_CHANGE"
EVENT_SCORE_CHANGE = "SCORE_CHANGE"


def tier_from_score(score: int) -> TrustTier:
     if score >= 90:
          return TrustTier.ELITE
     if score >= 75:
          return TrustTier.TRUSTED
     if score >= 50:
          return TrustTier.STANDARD
     if score >= 30:
          return TrustTier.WATCH
     return TrustTier.RESTRICTED


def benefits_for(tier: TrustTier) -> dict:
     return dict(TRUST_BENEFITS[TrustTier(tier)])


def _round_half_up(value: float) -> int:
     return int(math.floor(value + 0.5))


def refund_penalty_7d(rate: float) -> float:
     pct = rate * 100
     if pct <= 5:
          return 0
     if pct <= 10:
          return pct * 0.8
     return pct * 1.5


def refund_after_release_penalty_30d(rate: float) -> float:
     return min(40, rate * 100 * 2.5)


def chargeback_penalty_30d(count: int) -> float:
     if count <= 0:
          return 0
     if count == 1:
          return 12
     if count == 2:
          return 25
     return 40


def dispute_penalty_30d(count: int) -> float:
     return min(25, count * 5)


def critical_events_penalty_30d(count: int) -> float:
     return min(30, count * 10)


def clean_bonus(signals: StoreSignals, refund_rate_30d: float) -> tuple[int, list[dict]]:
     """Bonus for stores with enough volume and no refunds, chargebacks or critical events."""
     bonuses = []
     if signals.orders_30d < MIN_ORDERS_FOR_BONUS:
          return 0, bonuses
     eligible = refund_rate_30d < 0.03 and signals.chargebacks_30d == 0 and signals.critical_risk_events_30d == 0
     if not eligible:
          return 0, bonuses

     total = 0
     if signals.refunds_30d == 0:
          total += 8
          bonuses.append({"key": "clean_30d", "points": 8})
     if signals.refunds_90d == 0 and signals.chargebacks_90d == 0 and signals.critical_risk_events_90d == 0:
          total += 15
          bonuses.append({"key": "clean_90d", "points": 15})
     return min(20, total), bonuses


@dataclass
class TrustComputation:
     store_id: str
     prev_tier: TrustTier
     prev_score: int
     score: int
     tier: TrustTier
     summary: dict = field(default_factory=dict)


def score_trust_signals(signals: StoreSignals, now: datetime) -> tuple[int, dict]:
     """
     Compute the trust score from a store's signals.

     Returns:
          (score, summary) where summary lists the signals, each penalty and
          bonus, and the arithmetic behind the final score.
     """
     # Rates are noise below a minimal order volume
     refund_rate_7d = signals.refund_rate_7d if signals.orders_7d >= MIN_ORDERS_FOR_RATES else 0.0
     refund_rate_30d = signals.refund_rate_30d if signals.orders_30d >= MIN_ORDERS_FOR_RATES else 0.0
     after_release_rate = signals.refund_after_release_rate_30d if signals.orders_30d >= MIN_ORDERS_FOR_RATES else 0.0

     penalties = []
     candidates = (
          ("refund_rate_7d", refund_penalty_7d(refund_rate_7d), {"refundRate7d": round(refund_rate_7d, 4)}),
          ("refund_after_release_30d", refund_after_release_penalty_30d(after_release_rate), {"refundAfterReleaseRate30d": round(after_release_rate, 4)}),
          ("chargebacks_30d", chargeback_penalty_30d(signals.chargebacks_30d), {"chargebacks30d": signals.chargebacks_30d}),
          ("disputes_30d", dispute_penalty_30d(signals.disputes_30d), {"disputes30d": signals.disputes_30d}),
          ("critical_risk_events_30d", critical_events_penalty_30d(signals.critical_risk_events_30d), {"criticalRiskEvents30d": signals.critical_risk_events_30d}),
     )
     for key, points, details in candidates:
          if points > 0:
               penalties.append({"key": key, "points": points, "details": details})

     total_penalty = sum(p["points"] for p in penalties)
     total_bonus, bonuses = clean_bonus(signals, refund_rate_30d)
     score = max(0, min(100, _round_half_up(100 - total_penalty + total_bonus)))

     summary = {
          "version": SCORING_VERSION,
          "signals": signals.to_dict(),
          "penalties": [dict(p, points=_round_half_up(p["points"])) for p in penalties],
          "bonuses": bonuses,
          "score": {
               "base": 100,
               "penalty": _round_half_up(total_penalty),
               "bonus": total_bonus,
               "final": score,
          },
          "computedAt": now.isoformat(),
     }
     return score, summary


def compute_store_trust(db: Session, store_id: str, now: Optional[datetime] = None) -> TrustComputation:
     now = now or utcnow()
     store = get_store_or_raise(db, store_id)
     state = db.get(StoreTrustState, store_id)

     signals = collect_store_signals(db, store, now)
     score, summary = score_trust_signals(signals, now)
     return TrustComputation(
          store_id=store_id,
          prev_tier=state.trust_tier if state else DEFAULT_TIER,
          prev_score=state.trust_score if state else DEFAULT_SCORE,
          score=score,
          tier=tier_from_score(score),
          summary=summary,
     )


def _append_trust_event(
     db: Session,
     store_id: str,
     kind: str,
     prev_tier: TrustTier,
     next_tier: TrustTier,
     prev_score: int,
     next_score: int,
     details: dict,
     now: datetime
) -> TrustEvent:
     event = TrustEvent(
          store_id=store_id,
          kind=kind,
          prev_tier=prev_tier,
          next_tier=next_tier,
          prev_score=prev_score,
          next_score=next_score,
          details=details,
          created_at=now,
     )
     db.add(event)
     return event


def recompute_store_trust(
     db: Session,
     store_id: str,
     dry_run: bool = False,
     actor_id: Optional[str] = None,
     reason: Optional[str] = None,
     now: Optional[datetime] = None
) -> dict:
     """
     Recompute a store's trust score and apply the tier transition.

     Args:
          db: Database session
          store_id: Store to recompute
          dry_run: Compute and return the outcome without persisting
          actor_id: Admin who triggered the recompute, if any
          reason: Audit reason recorded on the event
          now: Evaluation time (UTC)

     Returns:
          dict with prev/next score and tier, whether the tier changed and
          any pending upgrade
     """
     now = now or utcnow()
     computation = compute_store_trust(db, store_id, now)
     state = db.get(StoreTrustState, store_id)

     prev_tier = computation.prev_tier
     prev_score = computation.prev_score
     candidate_tier = computation.tier
     stable_days = state.score_stable_days if state else 0

     pending_upgrade = None
     if candidate_tier == prev_tier:
          applied_tier = prev_tier
          next_stable_days = stable_days + 1 if computation.score >= prev_score else 0
     elif TIER_RANK[candidate_tier] < TIER_RANK[prev_tier]:
          applied_tier = candidate_tier
          next_stable_days = 0
     elif stable_days + 1 < UPGRADE_STABLE_DAYS:
          applied_tier = prev_tier
          pending_upgrade = candidate_tier
          next_stable_days = stable_days + 1
     else:
          applied_tier = candidate_tier
          next_stable_days = 0

     tier_changed = applied_tier != prev_tier
     score_changed = computation.score != prev_score
     outcome = {
          "storeId": store_id,
          "prevScore": prev_score,
          "nextScore": computation.score,
          "prevTier": prev_tier.value,
          "nextTier": applied_tier.value,
          "candidateTier": candidate_tier.value,
          "tierChanged": tier_changed,
          "scoreChanged": score_changed,
          "upgraded": tier_changed and TIER_RANK[applied_tier] > TIER_RANK[prev_tier],
          "downgraded": tier_changed and TIER_RANK[applied_tier] < TIER_RANK[prev_tier],
          "pendingUpgradeTo": pending_upgrade.value if pending_upgrade else None,
          "stableDays": next_stable_days,
          "summary": computation.summary,
          "dryRun": dry_run,
     }
     if dry_run:
          return outcome

     created = state is None
     if created:
          state = StoreTrustState(store_id=store_id)
          db.add(state)

     state.trust_score = computation.score
     state.trust_tier = applied_tier
     state.trust_reason_summary = computation.summary
     state.score_stable_days = next_stable_days
     state.trust_updated_at = now
     state.payout_delay_hours = TRUST_BENEFITS[applied_tier]["payout_delay_hours"]
     state.listing_boost_factor = TRUST_BENEFITS[applied_tier]["listing_boost_factor"]
     if tier_changed:
          state.last_tier_change_at = now

     if tier_changed or score_changed or created:
          details = {"summary": computation.summary, "actorId": actor_id, "reason": reason}
          if tier_changed and outcome["upgraded"]:
               details["stableDaysRequired"] = UPGRADE_STABLE_DAYS
          if pending_upgrade:
               details["pendingUpgradeTo"] = pending_upgrade.value
          _append_trust_event(
               db,
               store_id=store_id,
               kind=EVENT_TIER_CHANGE if tier_changed else EVENT_SCORE_CHANGE,
               prev_tier=prev_tier,
               next_tier=applied_tier,
               prev_score=prev_score,
               next_score=computation.score,
               details=details,
               now=now,
          )
     db.commit()

     if tier_changed:
          logger.info(
               "Trust tier for store %s changed %s -> %s (score %d -> %d)",
               store_id, prev_tier.value, applied_tier.value, prev_score, computation.score,
          )
     return outcome
