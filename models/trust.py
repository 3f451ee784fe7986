# models/trust.py
import enum
from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, JSON, ForeignKey, func
from .base import Base


class TrustTier(str, enum.Enum):
     RESTRICTED = "RESTRICTED"
     WATCH = "WATCH"
     STANDARD = "STANDARD"
     TRUSTED = "TRUSTED"
     ELITE = "ELITE"


class StoreTrustState(Base):
     """
     Trust score and tier of a store, with the benefits derived from the tier.
     Recomputed from signals, never edited by hand.
     """
     __tablename__ = "store_trust_state"

     store_id = Column(String(64), ForeignKey("stores.id", ondelete="CASCADE"), primary_key=True)
     trust_score = Column(Integer, nullable=False)
     trust_tier = Column(
          Enum(TrustTier, name="trust_tier", create_constraint=True),
          default=TrustTier.STANDARD,
          nullable=False,
          index=True
     )
     listing_boost_factor = Column(Float, nullable=False)
     payout_delay_hours = Column(Integer, nullable=False)
     trust_reason_summary = Column(JSON, nullable=True)
     score_stable_days = Column(Integer, default=0, nullable=False)
     trust_updated_at = Column(DateTime, nullable=True)
     last_tier_change_at = Column(DateTime, nullable=True)

     def __repr__(self):
          return f"<StoreTrustState(store_id='{self.store_id}', score={self.trust_score}, tier='{self.trust_tier.value}')>"


class TrustEvent(Base):
     """Append-only record of a trust score or tier change."""
     __tablename__ = "trust_events"

     id = Column(Integer, primary_key=True, autoincrement=True)
     store_id = Column(String(64), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
     kind = Column(String(32), nullable=False, index=True)  # TIER_CHANGE, SCORE_CHANGE
     prev_tier = Column(Enum(TrustTier, name="trust_tier"), nullable=False)
     next_tier = Column(Enum(TrustTier, name="trust_tier"), nullable=False)
     prev_score = Column(Integer, nullable=False)
     next_score = Column(Integer, nullable=False)
     details = Column(JSON, nullable=True)
     created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

     def __repr__(self):
          return f"<TrustEvent(store_id='{self.store_id}', {self.prev_tier.value}->{self.next_tier.value})>"
