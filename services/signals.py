# services/signals.py
"""
Store activity signals shared by the risk and trust engines.

Sales come from the settlement ledger (one `sale` TransactionRecord per
settled order and vendor); refunds, chargebacks and disputes come from
`store_incidents`, which the refund and dispute subsystems maintain.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models import (
     IncidentType,
     RiskEvent,
     RiskSeverity,
     Store,
     StoreIncident,
     StoreRiskState,
     TransactionRecord,
)
from models.ledger import TRANSACTION_TYPE_SALE


@dataclass
class StoreSignals:
     orders_1h: int = 0
     orders_24h: int = 0
     orders_7d: int = 0
     orders_30d: int = 0
     orders_90d: int = 0
     refunds_7d: int = 0
     refunds_30d: int = 0
     refunds_90d: int = 0
     refunds_after_release_30d: int = 0
     chargebacks_30d: int = 0
     chargebacks_90d: int = 0
     disputes_30d: int = 0
     critical_risk_events_30d: int = 0
     critical_risk_events_90d: int = 0
     manual_flag: bool = False

     @property
     def refund_rate_7d(self) -> float:
          return self.refunds_7d / self.orders_7d if self.orders_7d > 0 else 0.0

     @property
     def refund_rate_30d(self) -> float:
          return self.refunds_30d / self.orders_30d if self.orders_30d > 0 else 0.0

     @property
     def refund_after_release_rate_30d(self) -> float:
          return self.refunds_after_release_30d / self.orders_30d if self.orders_30d > 0 else 0.0

     @property
     def chargeback_rate_30d(self) -> float:
          return self.chargebacks_30d / self.orders_30d if self.orders_30d > 0 else 0.0

     @property
     def volume_spike(self) -> float:
          """Sales in the last 24h relative to the 30-day daily average."""
          daily_avg = self.orders_30d / 30
          return self.orders_24h / daily_avg if daily_avg > 0 else 0.0

     def to_dict(self) -> dict:
          data = asdict(self)
          data.update(
               refund_rate_7d=round(self.refund_rate_7d, 4),
               refund_rate_30d=round(self.refund_rate_30d, 4),
               refund_after_release_rate_30d=round(self.refund_after_release_rate_30d, 4),
               chargeback_rate_30d=round(self.chargeback_rate_30d, 4),
               volume_spike=round(self.volume_spike, 2),
          )
          return data


def count_sales(db: Session, vendor_id: str, since: datetime) -> int:
     return db.scalar(
          select(func.count(TransactionRecord.id))
          .where(TransactionRecord.vendor_id == vendor_id)
          .where(TransactionRecord.type == TRANSACTION_TYPE_SALE)
          .where(TransactionRecord.created_at >= since)
     ) or 0


def count_incidents(db: Session, store_id: str, types: Iterable[IncidentType], since: datetime) -> int:
     return db.scalar(
          select(func.count(StoreIncident.id))
          .where(StoreIncident.store_id == store_id)
          .where(StoreIncident.type.in_(list(types)))
          .where(StoreIncident.created_at >= since)
     ) or 0


def count_critical_risk_events(db: Session, store_id: str, since: datetime) -> int:
     return db.scalar(
          select(func.count(RiskEvent.id))
          .where(RiskEvent.store_id == store_id)
          .where(RiskEvent.severity == RiskSeverity.CRITICAL)
          .where(RiskEvent.created_at >= since)
     ) or 0


def collect_store_signals(db: Session, store: Store, now: datetime) -> StoreSignals:
     """Aggregate every signal the engines use for one store at `now`."""
     since_1h = now - timedelta(hours=1)
     since_24h = now - timedelta(hours=24)
     since_7d = now - timedelta(days=7)
     since_30d = now - timedelta(days=30)
     since_90d = now - timedelta(days=90)

     # A refund after escrow release is still a refund
     refund_types = (IncidentType.REFUND, IncidentType.REFUND_AFTER_RELEASE)
     state: Optional[StoreRiskState] = db.get(StoreRiskState, store.id)

     return StoreSignals(
          orders_1h=count_sales(db, store.vendor_id, since_1h),
          orders_24h=count_sales(db, store.vendor_id, since_24h),
          orders_7d=count_sales(db, store.vendor_id, since_7d),
          orders_30d=count_sales(db, store.vendor_id, since_30d),
          orders_90d=count_sales(db, store.vendor_id, since_90d),
          refunds_7d=count_incidents(db, store.id, refund_types, since_7d),
          refunds_30d=count_incidents(db, store.id, refund_types, since_30d),
          refunds_90d=count_incidents(db, store.id, refund_types, since_90d),
          refunds_after_release_30d=count_incidents(db, store.id, (IncidentType.REFUND_AFTER_RELEASE,), since_30d),
          chargebacks_30d=count_incidents(db, store.id, (IncidentType.CHARGEBACK,), since_30d),
          chargebacks_90d=count_incidents(db, store.id, (IncidentType.CHARGEBACK,), since_90d),
          disputes_30d=count_incidents(db, store.id, (IncidentType.DISPUTE,), since_30d),
          critical_risk_events_30d=count_critical_risk_events(db, store.id, since_30d),
          critical_risk_events_90d=count_critical_risk_events(db, store.id, since_90d),
          manual_flag=bool(state and state.manual_flag),
     )
