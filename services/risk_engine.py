# services/risk_engine.py
"""
Risk Engine - per-store enforcement state machine.

Levels NORMAL -> WATCH -> HIGH -> FROZEN move either automatically, from the
signal score computed by `evaluate_store_risk`, or manually through admin
actions that always carry a reason. Every level or payout-freeze change is
written together with a RiskEvent in the same transaction.

Payout freezing:
- FROZEN always implies payouts_frozen
- automatic evaluation freezes payouts at HIGH and FROZEN (source AUTO)
- an admin may force a freeze at any level (source MANUAL); automatic
  evaluation never lifts a manual freeze nor lowers its level
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import FreezeSource, RiskEvent, RiskLevel, RiskSeverity, Store, StoreRiskState
from services.exceptions import InvalidReason, InvalidRiskAction, StoreNotFound, SuperAdminRequired
from services.signals import StoreSignals, collect_store_signals
from utils.clock import utcnow

logger = logging.getLogger(__name__)


LEVEL_RANK = {
     RiskLevel.NORMAL: 0,
     RiskLevel.WATCH: 1,
     RiskLevel.HIGH: 2,
     RiskLevel.FROZEN: 3,
}
FREEZING_LEVELS = (RiskLevel.HIGH, RiskLevel.FROZEN)

REASON_MIN_LENGTH = 5
REASON_MAX_LENGTH = 500
NOTE_MAX_LENGTH = 2000


@dataclass
class RiskRules:
     """Thresholds for the automatic evaluation."""
     refund_rate_7d_watch: float = 0.08
     refund_rate_7d_high: float = 0.15
     refund_after_release_rate_30d: float = 0.05
     chargebacks_30d: int = 2
     chargeback_rate_30d: float = 0.02
     disputes_30d: int = 3
     volume_spike_multiplier: float = 3.0
     payment_velocity_1h: int = 10


DEFAULT_RISK_RULES = RiskRules()


@dataclass
class RiskDecision:
     store_id: str
     prev_level: RiskLevel
     next_level: RiskLevel
     prev_frozen: bool
     payouts_frozen: bool
     score: int
     reasons: list = field(default_factory=list)
     aggregates: dict = field(default_factory=dict)
     dry_run: bool = False

     @property
     def changed(self) -> bool:
          return self.next_level != self.prev_level or self.payouts_frozen != self.prev_frozen

     def to_dict(self) -> dict:
          return {
               "storeId": self.store_id,
               "prevLevel": self.prev_level.value,
               "nextLevel": self.next_level.value,
               "prevFrozen": self.prev_frozen,
               "payoutsFrozen": self.payouts_frozen,
               "score": self.score,
               "reasons": self.reasons,
               "aggregates": self.aggregates,
               "changed": self.changed,
               "dryRun": self.dry_run,
          }


def level_from_score(score: int) -> RiskLevel:
     if score >= 80:
          return RiskLevel.FROZEN
     if score >= 50:
          return RiskLevel.HIGH
     if score >= 20:
          return RiskLevel.WATCH
     return RiskLevel.NORMAL


def score_signals(signals: StoreSignals, rules: RiskRules = DEFAULT_RISK_RULES) -> tuple[int, list[dict]]:
     """
     Apply the threshold rules to a store's signals.

     Returns:
          (score, reasons) where each reason names the rule, its severity,
          the observed value and the threshold it crossed.
     """
     score = 0
     reasons = []

     refund_rate = signals.refund_rate_7d
     if refund_rate > rules.refund_rate_7d_high:
          score += 40
          reasons.append({"type": "REFUND_SPIKE", "severity": "CRITICAL", "value": refund_rate, "threshold": rules.refund_rate_7d_high, "windowDays": 7})
     elif refund_rate > rules.refund_rate_7d_watch:
          score += 20
          reasons.append({"type": "REFUND_SPIKE", "severity": "WARNING", "value": refund_rate, "threshold": rules.refund_rate_7d_watch, "windowDays": 7})

     after_release = signals.refund_after_release_rate_30d
     if after_release > rules.refund_after_release_rate_30d:
          score += 35
          reasons.append({"type": "REFUND_AFTER_RELEASE_SPIKE", "severity": "CRITICAL", "value": after_release, "threshold": rules.refund_after_release_rate_30d, "windowDays": 30})

     if signals.chargebacks_30d >= rules.chargebacks_30d or signals.chargeback_rate_30d > rules.chargeback_rate_30d:
          score += 30
          reasons.append({
               "type": "CHARGEBACK_SPIKE",
               "severity": "CRITICAL",
               "value": signals.chargebacks_30d,
               "rate": round(signals.chargeback_rate_30d, 4),
               "threshold": rules.chargebacks_30d,
               "windowDays": 30,
          })

     if signals.disputes_30d >= rules.disputes_30d:
          score += 15
          reasons.append({"type": "DISPUTE_COUNT", "severity": "WARNING", "value": signals.disputes_30d, "threshold": rules.disputes_30d, "windowDays": 30})

     if signals.orders_24h > 0 and signals.volume_spike >= rules.volume_spike_multiplier:
          score += 15
          reasons.append({"type": "VOLUME_SPIKE", "severity": "WARNING", "value": round(signals.volume_spike, 2), "threshold": rules.volume_spike_multiplier})

     if signals.orders_1h > rules.payment_velocity_1h:
          score += 10
          reasons.append({"type": "PAYMENT_VELOCITY", "severity": "WARNING", "value": signals.orders_1h, "threshold": rules.payment_velocity_1h})

     if signals.manual_flag:
          score += 20
          reasons.append({"type": "MANUAL_FLAG", "severity": "WARNING", "value": True})

     if any(r["severity"] == "CRITICAL" for r in reasons) and score < 50:
          score = 50

     return score, reasons


def pick_primary(reasons: list[dict]) -> Optional[dict]:
     for severity in ("CRITICAL", "WARNING"):
          for reason in reasons:
               if reason["severity"] == severity:
                    return reason
     return reasons[0] if reasons else None


def validate_reason(reason: Optional[str]) -> str:
     cleaned = (reason or "").strip()
     if len(cleaned) < REASON_MIN_LENGTH or len(cleaned) > REASON_MAX_LENGTH:
          raise InvalidReason(f"reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters")
     return cleaned


def validate_note(note: Optional[str]) -> Optional[str]:
     if note is not None and len(note) > NOTE_MAX_LENGTH:
          raise InvalidReason(f"note must be at most {NOTE_MAX_LENGTH} characters")
     return note


def get_store_or_raise(db: Session, store_id: str) -> Store:
     store = db.get(Store, store_id)
     if store is None:
          raise StoreNotFound(store_id)
     return store


def get_or_create_risk_state(db: Session, store_id: str) -> StoreRiskState:
     state = db.get(StoreRiskState, store_id)
     if state is None:
          state = StoreRiskState(
               store_id=store_id,
               risk_level=RiskLevel.NORMAL,
               payouts_frozen=False,
               manual_flag=False,
               last_score=0,
               updated_at=utcnow(),
          )
          db.add(state)
          db.flush()
     return state


def append_risk_event(
     db: Session,
     store_id: str,
     event_type: str,
     severity: RiskSeverity,
     prev_level: RiskLevel,
     next_level: RiskLevel,
     prev_frozen: bool,
     next_frozen: bool,
     score: int = 0,
     details: Optional[dict] = None,
     now: Optional[datetime] = None
) -> RiskEvent:
     event = RiskEvent(
          store_id=store_id,
          type=event_type,
          severity=severity,
          prev_level=prev_level,
          next_level=next_level,
          prev_frozen=prev_frozen,
          next_frozen=next_frozen,
          score=score,
          details=details or {},
          created_at=now or utcnow(),
     )
     db.add(event)
     db.flush()
     return event


def evaluate_store_risk(
     db: Session,
     store_id: str,
     dry_run: bool = False,
     actor_id: Optional[str] = None,
     reason: Optional[str] = None,
     now: Optional[datetime] = None,
     rules: RiskRules = DEFAULT_RISK_RULES
) -> RiskDecision:
     """
     Compute the store's risk level from its signals and, unless dry_run,
     persist the transition.

     On a level or freeze change the state and a RiskEvent (typed after the
     primary reason) are committed together; otherwise only
     `last_risk_evaluated` is refreshed.
     """
     now = now or utcnow()
     store = get_store_or_raise(db, store_id)
     state = db.get(StoreRiskState, store_id)

     prev_level = state.risk_level if state else RiskLevel.NORMAL
     prev_frozen = state.payouts_frozen if state else False
     manual_hold = bool(state and state.payouts_frozen and state.freeze_source == FreezeSource.MANUAL)

     signals = collect_store_signals(db, store, now)
     score, reasons = score_signals(signals, rules)
     next_level = level_from_score(score)

     if manual_hold:
          if LEVEL_RANK[next_level] < LEVEL_RANK[prev_level]:
               next_level = prev_level
          next_frozen = True
     else:
          next_frozen = next_level in FREEZING_LEVELS

     decision = RiskDecision(
          store_id=store_id,
          prev_level=prev_level,
          next_level=next_level,
          prev_frozen=prev_frozen,
          payouts_frozen=next_frozen,
          score=score,
          reasons=reasons,
          aggregates=signals.to_dict(),
          dry_run=dry_run,
     )
     if dry_run:
          return decision

     state = state or get_or_create_risk_state(db, store_id)
     if decision.changed:
          primary = pick_primary(reasons) or {"type": "AUTO_EVAL", "severity": "INFO"}
          state.risk_level = next_level
          state.payouts_frozen = next_frozen
          if next_frozen:
               state.freeze_source = FreezeSource.MANUAL if manual_hold else FreezeSource.AUTO
          else:
               state.freeze_source = None
               state.freeze_expires_at = None
          state.reason = primary["type"]
          append_risk_event(
               db,
               store_id=store_id,
               event_type=primary["type"],
               severity=RiskSeverity(primary["severity"]),
               prev_level=prev_level,
               next_level=next_level,
               prev_frozen=prev_frozen,
               next_frozen=next_frozen,
               score=score,
               details={"reasons": reasons, "aggregates": decision.aggregates, "actorId": actor_id, "reason": reason},
               now=now,
          )
          logger.info(
               "Risk level for store %s changed %s -> %s (score=%d, frozen=%s)",
               store_id, prev_level.value, next_level.value, score, next_frozen,
          )
     state.last_score = score
     state.last_risk_evaluated = now
     state.updated_at = now
     db.commit()
     return decision


def _apply_manual_change(
     db: Session,
     state: StoreRiskState,
     event_type: str,
     severity: RiskSeverity,
     next_level: RiskLevel,
     next_frozen: bool,
     reason: str,
     note: Optional[str],
     actor_id: Optional[str],
     expires_at: Optional[datetime],
     now: datetime
) -> dict:
     prev_level = state.risk_level
     prev_frozen = state.payouts_frozen

     state.risk_level = next_level
     state.payouts_frozen = next_frozen
     state.freeze_source = FreezeSource.MANUAL if next_frozen else None
     state.freeze_expires_at = expires_at if next_frozen else None
     state.reason = reason
     state.note = note
     state.last_risk_evaluated = now
     state.updated_at = now

     event = append_risk_event(
          db,
          store_id=state.store_id,
          event_type=event_type,
          severity=severity,
          prev_level=prev_level,
          next_level=next_level,
          prev_frozen=prev_frozen,
          next_frozen=next_frozen,
          details={
               "reason": reason,
               "note": note,
               "adminId": actor_id,
               "expiresAt": expires_at.isoformat() if expires_at else None,
          },
          now=now,
     )
     db.commit()

     logger.info(
          "Manual risk action %s on store %s by %s: %s -> %s (frozen %s -> %s)",
          event_type, state.store_id, actor_id, prev_level.value, next_level.value, prev_frozen, next_frozen,
     )
     return {
          "storeId": state.store_id,
          "prevLevel": prev_level.value,
          "nextLevel": next_level.value,
          "prevFrozen": prev_frozen,
          "payoutsFrozen": next_frozen,
          "eventId": event.id,
          "updatedAt": now.isoformat(),
     }


def set_risk_level(
     db: Session,
     store_id: str,
     level: RiskLevel,
     reason: str,
     note: Optional[str] = None,
     force_payouts_frozen: Optional[bool] = None,
     expires_at: Optional[datetime] = None,
     actor_id: Optional[str] = None,
     is_super_admin: bool = False,
     now: Optional[datetime] = None
) -> dict:
     """
     Manually set a store's risk level.

     Payouts follow the level (frozen at HIGH/FROZEN) unless
     `force_payouts_frozen` says otherwise; FROZEN cannot be combined with
     unfrozen payouts. Moving a FROZEN store straight to NORMAL requires a
     super admin.
     """
     reason = validate_reason(reason)
     note = validate_note(note)
     level = RiskLevel(level)
     get_store_or_raise(db, store_id)
     state = get_or_create_risk_state(db, store_id)

     if state.risk_level == RiskLevel.FROZEN and level == RiskLevel.NORMAL and not is_super_admin:
          raise SuperAdminRequired("super admin required to move a FROZEN store to NORMAL")

     next_frozen = force_payouts_frozen if force_payouts_frozen is not None else level in FREEZING_LEVELS
     if level == RiskLevel.FROZEN and not next_frozen:
          raise InvalidRiskAction("payouts must stay frozen while a store is FROZEN")

     return _apply_manual_change(
          db,
          state,
          event_type="MANUAL_SET",
          severity=RiskSeverity.CRITICAL if level == RiskLevel.FROZEN else RiskSeverity.WARNING,
          next_level=level,
          next_frozen=next_frozen,
          reason=reason,
          note=note,
          actor_id=actor_id,
          expires_at=expires_at,
          now=now or utcnow(),
     )


def freeze_store(
     db: Session,
     store_id: str,
     reason: str,
     level: RiskLevel = RiskLevel.FROZEN,
     note: Optional[str] = None,
     expires_at: Optional[datetime] = None,
     actor_id: Optional[str] = None,
     now: Optional[datetime] = None
) -> dict:
     reason = validate_reason(reason)
     note = validate_note(note)
     level = RiskLevel(level)
     if level not in FREEZING_LEVELS:
          raise InvalidRiskAction("freeze level must be HIGH or FROZEN")
     get_store_or_raise(db, store_id)
     state = get_or_create_risk_state(db, store_id)
     return _apply_manual_change(
          db,
          state,
          event_type="MANUAL_FREEZE",
          severity=RiskSeverity.CRITICAL if level == RiskLevel.FROZEN else RiskSeverity.WARNING,
          next_level=level,
          next_frozen=True,
          reason=reason,
          note=note,
          actor_id=actor_id,
          expires_at=expires_at,
          now=now or utcnow(),
     )


def unfreeze_store(
     db: Session,
     store_id: str,
     reason: str,
     note: Optional[str] = None,
     actor_id: Optional[str] = None,
     is_super_admin: bool = False,
     now: Optional[datetime] = None
) -> dict:
     """
     Lift a payout freeze.

     A FROZEN store can only be unfrozen by a super admin and drops to WATCH
     so the level never claims FROZEN with payouts flowing.
     """
     reason = validate_reason(reason)
     note = validate_note(note)
     get_store_or_raise(db, store_id)
     state = get_or_create_risk_state(db, store_id)

     if state.risk_level == RiskLevel.FROZEN and not is_super_admin:
          raise SuperAdminRequired("super admin required to unfreeze a FROZEN store")

     next_level = RiskLevel.WATCH if state.risk_level == RiskLevel.FROZEN else state.risk_level
     return _apply_manual_change(
          db,
          state,
          event_type="MANUAL_UNFREEZE",
          severity=RiskSeverity.WARNING,
          next_level=next_level,
          next_frozen=False,
          reason=reason,
          note=note,
          actor_id=actor_id,
          expires_at=None,
          now=now or utcnow(),
     )


def set_manual_flag(
     db: Session,
     store_id: str,
     flagged: bool,
     reason: str,
     note: Optional[str] = None,
     actor_id: Optional[str] = None,
     now: Optional[datetime] = None
) -> dict:
     """Raise or clear the manual review flag used as a risk signal."""
     reason = validate_reason(reason)
     note = validate_note(note)
     now = now or utcnow()
     get_store_or_raise(db, store_id)
     state = get_or_create_risk_state(db, store_id)

     prev_flag = state.manual_flag
     state.manual_flag = flagged
     state.updated_at = now
     event = append_risk_event(
          db,
          store_id=store_id,
          event_type="MANUAL_FLAG",
          severity=RiskSeverity.WARNING if flagged else RiskSeverity.INFO,
          prev_level=state.risk_level,
          next_level=state.risk_level,
          prev_frozen=state.payouts_frozen,
          next_frozen=state.payouts_frozen,
          details={"reason": reason, "note": note, "adminId": actor_id, "prevFlag": prev_flag, "nextFlag": flagged},
          now=now,
     )
     db.commit()
     return {"storeId": store_id, "prevFlag": prev_flag, "manualFlag": flagged, "eventId": event.id}


def auto_unfreeze_expired(db: Session, now: Optional[datetime] = None, job_id: Optional[str] = None) -> int:
     """
     Lift timed freezes whose `freeze_expires_at` has passed.

     Stores drop to WATCH with payouts released and an AUTO_UNFREEZE event.

     Returns:
          Number of stores unfrozen
     """
     now = now or utcnow()
     states = db.scalars(
          select(StoreRiskState)
          .where(StoreRiskState.payouts_frozen.is_(True))
          .where(StoreRiskState.freeze_expires_at.is_not(None))
          .where(StoreRiskState.freeze_expires_at <= now)
     ).all()

     for state in states:
          prev_level = state.risk_level
          previous_expiry = state.freeze_expires_at
          state.risk_level = RiskLevel.WATCH
          state.payouts_frozen = False
          state.freeze_source = None
          state.freeze_expires_at = None
          state.last_risk_evaluated = now
          state.updated_at = now
          append_risk_event(
               db,
               store_id=state.store_id,
               event_type="AUTO_UNFREEZE",
               severity=RiskSeverity.INFO,
               prev_level=prev_level,
               next_level=RiskLevel.WATCH,
               prev_frozen=True,
               next_frozen=False,
               details={"reason": "freeze expired", "previousExpiresAt": previous_expiry.isoformat(), "jobId": job_id},
               now=now,
          )
     db.commit()
     if states:
          logger.info("Auto-unfroze %d stores with expired freezes", len(states))
     return len(states)
