# services/governance_service.py
"""
Read side of the governance API: store listings, event timelines and
windowed summaries over risk and trust state.

Listings use keyset pagination: `cursor` is the last id of the previous
page and `nextCursor` is None on the last page.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from models import RiskEvent, RiskLevel, Store, StoreRiskState, StoreTrustState, TrustEvent, TrustTier
from services.job_lock import DAILY_RISK_EVAL, DAILY_TRUST_RECOMPUTE, get_job_status
from services.risk_engine import get_store_or_raise
from services.trust_engine import DEFAULT_SCORE, DEFAULT_TIER, EVENT_TIER_CHANGE, TIER_RANK, benefits_for
from utils.clock import utcnow

WINDOWS = {
     "24h": timedelta(hours=24),
     "7d": timedelta(days=7),
     "30d": timedelta(days=30),
}
MAX_PAGE_SIZE = 100


def parse_window(window: str) -> timedelta:
     try:
          return WINDOWS[window]
     except KeyError:
          raise ValueError(f"window must be one of {', '.join(WINDOWS)}")


def _page_size(limit: int) -> int:
     return max(1, min(MAX_PAGE_SIZE, int(limit)))


def _iso(value: Optional[datetime]) -> Optional[str]:
     return value.isoformat() if value else None


def _risk_state_dict(store: Store, state: Optional[StoreRiskState]) -> dict:
     return {
          "storeId": store.id,
          "name": store.name,
          "vendorId": store.vendor_id,
          "riskLevel": (state.risk_level if state else RiskLevel.NORMAL).value,
          "payoutsFrozen": bool(state and state.payouts_frozen),
          "freezeSource": state.freeze_source.value if state and state.freeze_source else None,
          "freezeExpiresAt": _iso(state.freeze_expires_at) if state else None,
          "manualFlag": bool(state and state.manual_flag),
          "lastScore": state.last_score if state else 0,
          "lastRiskEvaluated": _iso(state.last_risk_evaluated) if state else None,
          "reason": state.reason if state else None,
          "note": state.note if state else None,
     }


def _risk_event_dict(event: RiskEvent) -> dict:
     return {
          "id": event.id,
          "storeId": event.store_id,
          "type": event.type,
          "severity": event.severity.value,
          "prevLevel": event.prev_level.value,
          "nextLevel": event.next_level.value,
          "prevFrozen": event.prev_frozen,
          "nextFrozen": event.next_frozen,
          "score": event.score,
          "details": event.details,
          "createdAt": _iso(event.created_at),
     }


def _trust_state_dict(store: Store, state: Optional[StoreTrustState]) -> dict:
     tier = state.trust_tier if state else DEFAULT_TIER
     benefits = benefits_for(tier)
     return {
          "storeId": store.id,
          "name": store.name,
          "vendorId": store.vendor_id,
          "trustScore": state.trust_score if state else DEFAULT_SCORE,
          "trustTier": tier.value,
          "payoutDelayHours": state.payout_delay_hours if state else benefits["payout_delay_hours"],
          "listingBoostFactor": state.listing_boost_factor if state else benefits["listing_boost_factor"],
          "trustReasonSummary": state.trust_reason_summary if state else None,
          "scoreStableDays": state.score_stable_days if state else 0,
          "trustUpdatedAt": _iso(state.trust_updated_at) if state else None,
          "lastTierChangeAt": _iso(state.last_tier_change_at) if state else None,
     }


def _trust_event_dict(event: TrustEvent) -> dict:
     return {
          "id": event.id,
          "storeId": event.store_id,
          "kind": event.kind,
          "prevTier": event.prev_tier.value,
          "nextTier": event.next_tier.value,
          "prevScore": event.prev_score,
          "nextScore": event.next_score,
          "details": event.details,
          "createdAt": _iso(event.created_at),
     }


def list_risk_stores(
     db: Session,
     levels: Optional[Iterable[RiskLevel]] = None,
     frozen: Optional[bool] = None,
     limit: int = 50,
     cursor: Optional[str] = None
) -> dict:
     """Stores with their risk state, filtered by level set and frozen flag."""
     limit = _page_size(limit)
     stmt = (
          select(Store, StoreRiskState)
          .outerjoin(StoreRiskState, StoreRiskState.store_id == Store.id)
          .order_by(Store.id)
          .limit(limit + 1)
     )
     if levels:
          levels = [RiskLevel(level) for level in levels]
          condition = StoreRiskState.risk_level.in_(levels)
          if RiskLevel.NORMAL in levels:
               condition = or_(condition, StoreRiskState.store_id.is_(None))
          stmt = stmt.where(condition)
     if frozen is True:
          stmt = stmt.where(StoreRiskState.payouts_frozen.is_(True))
     elif frozen is False:
          stmt = stmt.where(or_(StoreRiskState.payouts_frozen.is_(False), StoreRiskState.store_id.is_(None)))
     if cursor:
          stmt = stmt.where(Store.id > cursor)

     rows = db.execute(stmt).all()
     next_cursor = rows[limit - 1][0].id if len(rows) > limit else None

     items = []
     for store, state in rows[:limit]:
          item = _risk_state_dict(store, state)
          last_event = db.scalar(
               select(RiskEvent)
               .where(RiskEvent.store_id == store.id)
               .order_by(RiskEvent.id.desc())
               .limit(1)
          )
          item["lastEvent"] = {
               "type": last_event.type,
               "severity": last_event.severity.value,
               "createdAt": _iso(last_event.created_at),
          } if last_event else None
          items.append(item)
     return {"items": items, "nextCursor": next_cursor}


def get_store_risk(db: Session, store_id: str) -> dict:
     store = get_store_or_raise(db, store_id)
     return _risk_state_dict(store, db.get(StoreRiskState, store_id))


def list_risk_events(db: Session, store_id: str, limit: int = 100, cursor: Optional[int] = None) -> dict:
     """Newest-first risk event timeline for one store."""
     get_store_or_raise(db, store_id)
     limit = _page_size(limit)
     stmt = (
          select(RiskEvent)
          .where(RiskEvent.store_id == store_id)
          .order_by(RiskEvent.id.desc())
          .limit(limit + 1)
     )
     if cursor is not None:
          stmt = stmt.where(RiskEvent.id < cursor)
     events = db.scalars(stmt).all()
     next_cursor = events[limit - 1].id if len(events) > limit else None
     return {"items": [_risk_event_dict(e) for e in events[:limit]], "nextCursor": next_cursor}


def risk_summary(db: Session, window: str = "24h", now: Optional[datetime] = None) -> dict:
     """Counts by level, frozen stores, events in the window and the job's last report."""
     now = now or utcnow()
     since = now - parse_window(window)

     by_level = {level.value: 0 for level in RiskLevel}
     for level, count in db.execute(
          select(StoreRiskState.risk_level, func.count()).group_by(StoreRiskState.risk_level)
     ).all():
          by_level[level.value] = count
     total_stores = db.scalar(select(func.count(Store.id))) or 0
     # Stores never evaluated count as NORMAL
     by_level[RiskLevel.NORMAL.value] += max(0, total_stores - sum(by_level.values()))

     frozen = db.scalar(select(func.count()).select_from(StoreRiskState).where(StoreRiskState.payouts_frozen.is_(True))) or 0

     by_severity = {
          severity.value: count
          for severity, count in db.execute(
               select(RiskEvent.severity, func.count())
               .where(RiskEvent.created_at >= since)
               .group_by(RiskEvent.severity)
          ).all()
     }
     top_types = db.execute(
          select(RiskEvent.type, func.count().label("n"))
          .where(RiskEvent.created_at >= since)
          .group_by(RiskEvent.type)
          .order_by(func.count().desc(), RiskEvent.type)
          .limit(5)
     ).all()

     return {
          "window": window,
          "since": since.isoformat(),
          "totalStores": total_stores,
          "byLevel": by_level,
          "frozen": frozen,
          "eventsBySeverity": by_severity,
          "topReasons": [{"type": t, "count": n} for t, n in top_types],
          "job": get_job_status(db, DAILY_RISK_EVAL, now=now),
     }


def list_trust_stores(
     db: Session,
     tiers: Optional[Iterable[TrustTier]] = None,
     limit: int = 50,
     cursor: Optional[str] = None
) -> dict:
     limit = _page_size(limit)
     stmt = (
          select(Store, StoreTrustState)
          .outerjoin(StoreTrustState, StoreTrustState.store_id == Store.id)
          .order_by(Store.id)
          .limit(limit + 1)
     )
     if tiers:
          tiers = [TrustTier(tier) for tier in tiers]
          condition = StoreTrustState.trust_tier.in_(tiers)
          if DEFAULT_TIER in tiers:
               condition = or_(condition, StoreTrustState.store_id.is_(None))
          stmt = stmt.where(condition)
     if cursor:
          stmt = stmt.where(Store.id > cursor)

     rows = db.execute(stmt).all()
     next_cursor = rows[limit - 1][0].id if len(rows) > limit else None
     return {
          "items": [_trust_state_dict(store, state) for store, state in rows[:limit]],
          "nextCursor": next_cursor,
     }


def get_store_trust(db: Session, store_id: str) -> dict:
     store = get_store_or_raise(db, store_id)
     return _trust_state_dict(store, db.get(StoreTrustState, store_id))


def list_trust_events(db: Session, store_id: str, limit: int = 100, cursor: Optional[int] = None) -> dict:
     get_store_or_raise(db, store_id)
     limit = _page_size(limit)
     stmt = (
          select(TrustEvent)
          .where(TrustEvent.store_id == store_id)
          .order_by(TrustEvent.id.desc())
          .limit(limit + 1)
     )
     if cursor is not None:
          stmt = stmt.where(TrustEvent.id < cursor)
     events = db.scalars(stmt).all()
     next_cursor = events[limit - 1].id if len(events) > limit else None
     return {"items": [_trust_event_dict(e) for e in events[:limit]], "nextCursor": next_cursor}


def trust_summary(db: Session, window: str = "7d", now: Optional[datetime] = None) -> dict:
     """Counts by tier, average score, tier changes in the window and top penalty reasons."""
     now = now or utcnow()
     since = now - parse_window(window)

     states = db.scalars(select(StoreTrustState)).all()
     by_tier = {tier.value: 0 for tier in TrustTier}
     penalties = Counter()
     for state in states:
          by_tier[state.trust_tier.value] += 1
          for penalty in (state.trust_reason_summary or {}).get("penalties", []):
               penalties[penalty["key"]] += 1
     avg_score = round(sum(s.trust_score for s in states) / len(states), 1) if states else None

     changes = db.scalars(
          select(TrustEvent)
          .where(and_(TrustEvent.kind == EVENT_TIER_CHANGE, TrustEvent.created_at >= since))
     ).all()
     upgrades = sum(1 for e in changes if TIER_RANK[e.next_tier] > TIER_RANK[e.prev_tier])

     return {
          "window": window,
          "since": since.isoformat(),
          "byTier": by_tier,
          "avgScore": avg_score,
          "tierChanges": len(changes),
          "upgrades": upgrades,
          "downgrades": len(changes) - upgrades,
          "topPenalties": [{"key": key, "count": count} for key, count in penalties.most_common(5)],
          "job": get_job_status(db, DAILY_TRUST_RECOMPUTE, now=now),
     }
