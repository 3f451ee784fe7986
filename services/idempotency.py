# services/idempotency.py
"""
Settlement locks (per-buyer duplicate-payment markers).

A lock is written after a successful settlement and expires after a fixed
TTL. It is a coarse throttle for rapid repeat payments by the same buyer,
not the primary duplicate-settlement defense: that is the order-status
compare-and-swap in the settlement service.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

import config
from models import TransactionLock
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def get_active_settlement_lock(
     db: Session,
     user_id: str,
     now: Optional[datetime] = None
) -> Optional[TransactionLock]:
     """Return the buyer's lock if it has not expired yet."""
     now = now or utcnow()
     lock = db.get(TransactionLock, user_id)
     if lock is None or lock.expires_at <= now:
          return None
     return lock


def has_active_settlement_lock(db: Session, user_id: str, now: Optional[datetime] = None) -> bool:
     return get_active_settlement_lock(db, user_id, now) is not None


def write_settlement_lock(
     db: Session,
     user_id: str,
     order_id: str,
     ttl_seconds: Optional[int] = None,
     now: Optional[datetime] = None
) -> TransactionLock:
     """
     Create or refresh the buyer's settlement lock.

     The caller owns the transaction; the row is flushed, not committed.
     """
     now = now or utcnow()
     ttl = config.SETTLEMENT_LOCK_TTL_SECONDS if ttl_seconds is None else ttl_seconds
     lock = db.get(TransactionLock, user_id)
     if lock is None:
          lock = TransactionLock(key=user_id)
          db.add(lock)
     lock.order_id = order_id
     lock.created_at = now
     lock.expires_at = now + timedelta(seconds=ttl)
     db.flush()
     return lock


def cleanup_expired_locks(db: Session, now: Optional[datetime] = None, limit: int = 100) -> int:
     """
     Delete up to `limit` expired settlement locks.

     Returns:
          Number of locks removed
     """
     now = now or utcnow()
     keys = db.scalars(
          select(TransactionLock.key)
          .where(TransactionLock.expires_at < now)
          .order_by(TransactionLock.expires_at)
          .limit(limit)
     ).all()
     if not keys:
          return 0
     db.execute(delete(TransactionLock).where(TransactionLock.key.in_(keys)))
     logger.info("Cleaned up %d expired transaction locks", len(keys))
     return len(keys)
