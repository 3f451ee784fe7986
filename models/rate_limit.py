# models/rate_limit.py
from sqlalchemy import Column, Integer, String, DateTime
from .base import Base


class RateLimitHit(Base):
     """One accepted request in a sliding rate-limit window."""
     __tablename__ = "rate_limit_hits"

     id = Column(Integer, primary_key=True, autoincrement=True)
     key = Column(String(255), nullable=False, index=True)  # ratelimit:{action}:{identifier}
     created_at = Column(DateTime, nullable=False, index=True)
