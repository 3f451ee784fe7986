# services/rate_limit.py
"""
Sliding-window rate limiting backed by the `rate_limit_hits` table.

When the limiter store itself fails, critical actions are denied (fail
closed) and low-risk actions are allowed (fail open), as listed in
FAILURE_POLICY.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import RateLimitHit
from utils.clock import utcnow

logger = logging.getLogger(__name__)


class FailurePolicy(str, enum.Enum):
     FAIL_OPEN = "FAIL_OPEN"
     FAIL_CLOSED = "FAIL_CLOSED"


@dataclass(frozen=True)
class RateLimitConfig:
     window_seconds: int
     max_requests: int


RATE_LIMITS = {
     "login": RateLimitConfig(window_seconds=60, max_requests=5),
     "signup": RateLimitConfig(window_seconds=3600, max_requests=3),
     "order": RateLimitConfig(window_seconds=60, max_requests=10),
     "settlement": RateLimitConfig(window_seconds=60, max_requests=30),
     "job_run": RateLimitConfig(window_seconds=300, max_requests=5),
     "review": RateLimitConfig(window_seconds=3600, max_requests=5),
     "message": RateLimitConfig(window_seconds=60, max_requests=30),
     "search": RateLimitConfig(window_seconds=60, max_requests=100),
     "risk_evaluate": RateLimitConfig(window_seconds=60, max_requests=30),
     "trust_recompute": RateLimitConfig(window_seconds=60, max_requests=30),
     "api": RateLimitConfig(window_seconds=60, max_requests=60),
}

FAILURE_POLICY = {
     "login": FailurePolicy.FAIL_CLOSED,
     "signup": FailurePolicy.FAIL_CLOSED,
     "order": FailurePolicy.FAIL_CLOSED,
     "settlement": FailurePolicy.FAIL_CLOSED,
     "job_run": FailurePolicy.FAIL_CLOSED,
     "review": FailurePolicy.FAIL_OPEN,
     "message": FailurePolicy.FAIL_OPEN,
     "search": FailurePolicy.FAIL_OPEN,
     "risk_evaluate": FailurePolicy.FAIL_OPEN,
     "trust_recompute": FailurePolicy.FAIL_OPEN,
     "api": FailurePolicy.FAIL_OPEN,
}


@dataclass
class RateLimitResult:
     allowed: bool
     remaining: int
     reset_at: datetime


def check_rate_limit(
     db: Session,
     identifier: str,
     action: str = "api",
     now: Optional[datetime] = None
) -> RateLimitResult:
     """
     Count the caller's hits in the current window and record this one if
     it is allowed. Unknown actions use the `api` limits.
     """
     now = now or utcnow()
     limits = RATE_LIMITS.get(action, RATE_LIMITS["api"])
     window = timedelta(seconds=limits.window_seconds)
     key = f"ratelimit:{action}:{identifier}"

     try:
          count, oldest = db.execute(
               select(func.count(RateLimitHit.id), func.min(RateLimitHit.created_at))
               .where(RateLimitHit.key == key)
               .where(RateLimitHit.created_at > now - window)
          ).one()
          if count >= limits.max_requests:
               return RateLimitResult(allowed=False, remaining=0, reset_at=oldest + window)

          db.add(RateLimitHit(key=key, created_at=now))
          db.commit()
          return RateLimitResult(allowed=True, remaining=limits.max_requests - count - 1, reset_at=now + window)
     except SQLAlchemyError as e:
          db.rollback()
          policy = FAILURE_POLICY.get(action, FailurePolicy.FAIL_OPEN)
          if policy == FailurePolicy.FAIL_CLOSED:
               logger.warning("Rate limiting failed for critical action %s, denying request: %s", action, e)
               return RateLimitResult(allowed=False, remaining=0, reset_at=now + window)
          logger.warning("Rate limiting failed for action %s, allowing request: %s", action, e)
          return RateLimitResult(allowed=True, remaining=limits.max_requests, reset_at=now + window)


def purge_rate_limit_hits(db: Session, now: Optional[datetime] = None, older_than_seconds: int = 3600) -> int:
     """Delete hits older than the longest window."""
     now = now or utcnow()
     hits = db.scalars(
          select(RateLimitHit).where(RateLimitHit.created_at < now - timedelta(seconds=older_than_seconds))
     ).all()
     for hit in hits:
          db.delete(hit)
     db.commit()
     return len(hits)
