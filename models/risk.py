# models/risk.py
import enum
from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, Enum, JSON, ForeignKey, func
from .base import Base


class RiskLevel(str, enum.Enum):
     """Store enforcement levels, ordered from least to most restrictive."""
     NORMAL = "NORMAL"
     WATCH = "WATCH"
     HIGH = "HIGH"
     FROZEN = "FROZEN"


class RiskSeverity(str, enum.Enum):
     INFO = "INFO"
     WARNING = "WARNING"
     CRITICAL = "CRITICAL"


class FreezeSource(str, enum.Enum):
     """Who froze payouts: the daily evaluator or an administrator."""
     AUTO = "AUTO"
     MANUAL = "MANUAL"


class StoreRiskState(Base):
     """
     Current risk state of a store.

     `payouts_frozen` may be forced independently of `risk_level`, but
     FROZEN always implies frozen payouts.
     """
     __tablename__ = "store_risk_state"

     store_id = Column(String(64), ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True)
     risk_level = Column(
          Enum(RiskLevel, name="risk_level", create_constraint=True),
          default=RiskLevel.NORMAL,
          nullable=False,
          index=True
     )
     payouts_frozen = Column(Boolean, default=False, nullable=False, index=True)
     freeze_source = Column(Enum(FreezeSource, name="freeze_source", create_constraint=True), nullable=True)
     freeze_expires_at = Column(DateTime, nullable=True, index=True)
     manual_flag = Column(Boolean, default=False, nullable=False)
     last_score = Column(Integer, default=0, nullable=False)
     last_risk_evaluated = Column(DateTime, nullable=True)
     reason = Column(String(500), nullable=True)
     note = Column(Text, nullable=True)
     updated_at = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<StoreRiskState(store_id='{self.store_id}', level='{self.risk_level.value}', frozen={self.payouts_frozen})>"


class RiskEvent(Base):
     """Append-only audit record for every risk transition or admin action."""
     __tablename__ = "risk_events"

     id = Column(Integer, primary_key=True, autoincrement=True)
     store_id = Column(String(64), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
     type = Column(String(64), nullable=False, index=True)
     severity = Column(Enum(RiskSeverity, name="risk_severity", create_constraint=True), nullable=False)
     prev_level = Column(Enum(RiskLevel, name="risk_level"), nullable=False)
     next_level = Column(Enum(RiskLevel, name="risk_level"), nullable=False)
     prev_frozen = Column(Boolean, nullable=False)
     next_frozen = Column(Boolean, nullable=False)
     score = Column(Integer, default=0, nullable=False)
     details = Column(JSON, nullable=True)
     created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

     def __repr__(self):
          return f"<RiskEvent(store_id='{self.store_id}', type='{self.type}', {self.prev_level.value}->{self.next_level.value})>"
