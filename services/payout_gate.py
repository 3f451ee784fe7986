# services/payout_gate.py
"""
Payout eligibility for a store: the risk freeze decides whether payouts may
be released at all, the trust tier decides how long they are held.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from models import RiskLevel, StoreRiskState, StoreTrustState
from services.risk_engine import get_store_or_raise
from services.trust_engine import DEFAULT_TIER, benefits_for
from utils.clock import utcnow


def get_payout_eligibility(db: Session, store_id: str, now: Optional[datetime] = None) -> dict:
     now = now or utcnow()
     store = get_store_or_raise(db, store_id)
     risk = db.get(StoreRiskState, store_id)
     trust = db.get(StoreTrustState, store_id)

     tier = trust.trust_tier if trust else DEFAULT_TIER
     delay_hours = trust.payout_delay_hours if trust else benefits_for(tier)["payout_delay_hours"]
     frozen = bool(risk and risk.payouts_frozen)

     return {
          "storeId": store.id,
          "vendorId": store.vendor_id,
          "eligible": not frozen,
          "payoutsFrozen": frozen,
          "riskLevel": (risk.risk_level if risk else RiskLevel.NORMAL).value,
          "freezeExpiresAt": risk.freeze_expires_at.isoformat() if risk and risk.freeze_expires_at else None,
          "trustTier": tier.value,
          "payoutDelayHours": delay_hours,
          # Sales settled before this instant have cleared the hold period
          "releasableBefore": (now - timedelta(hours=delay_hours)).isoformat(),
     }
