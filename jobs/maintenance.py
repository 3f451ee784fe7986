# jobs/maintenance.py
"""Periodic cleanup of short-lived rows."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import sessionmaker

from database import get_session_context
from services.idempotency import cleanup_expired_locks
from services.rate_limit import purge_rate_limit_hits
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def cleanup_expired_records(session_factory: Optional[sessionmaker] = None, now: Optional[datetime] = None) -> dict:
     now = now or utcnow()
     with get_session_context(session_factory) as db:
          locks = cleanup_expired_locks(db, now=now)
     with get_session_context(session_factory) as db:
          hits = purge_rate_limit_hits(db, now=now)
     if locks or hits:
          logger.info("Cleanup removed %d transaction locks and %d rate limit hits", locks, hits)
     return {"transactionLocks": locks, "rateLimitHits": hits}
