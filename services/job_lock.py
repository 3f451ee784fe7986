# services/job_lock.py
"""
Single-flight locks for scheduled batch jobs.

One JobRunState row exists per job name. A run acquires the lock with an
atomic conditional write that only succeeds when the row is absent or its
`expires_at` has passed, so a crashed runner blocks the job for at most
one TTL. Every function here commits its own transaction; pass a session
that is not shared with business writes.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import config
from models import JobRunState
from utils.clock import utcnow

logger = logging.getLogger(__name__)


DAILY_RISK_EVAL = "dailyRiskEval"
DAILY_TRUST_RECOMPUTE = "dailyTrustRecompute"


def acquire_job_lock(
     db: Session,
     name: str,
     owner: str,
     ttl_seconds: Optional[int] = None,
     now: Optional[datetime] = None
) -> Optional[JobRunState]:
     """
     Take the job lock for `owner`.

     Returns:
          The locked JobRunState, or None when another run holds an
          unexpired lock.
     """
     now = now or utcnow()
     ttl = config.JOB_LOCK_TTL_SECONDS if ttl_seconds is None else ttl_seconds
     expires_at = now + timedelta(seconds=ttl)

     if db.get(JobRunState, name) is None:
          db.add(JobRunState(name=name, locked_by=owner, locked_at=now, expires_at=expires_at))
          try:
               db.commit()
               return db.get(JobRunState, name, populate_existing=True)
          except IntegrityError:
               # Another instance created the row first; compete on the update below
               db.rollback()

     result = db.execute(
          update(JobRunState)
          .where(JobRunState.name == name)
          .where(or_(JobRunState.expires_at.is_(None), JobRunState.expires_at <= now))
          .values(locked_by=owner, locked_at=now, expires_at=expires_at)
          .execution_options(synchronize_session=False)
     )
     db.commit()
     if result.rowcount != 1:
          logger.info("Job %s is locked; %s did not acquire it", name, owner)
          return None
     return db.get(JobRunState, name, populate_existing=True)


def release_job_lock(
     db: Session,
     name: str,
     owner: str,
     report: Optional[dict] = None
) -> bool:
     """
     Release the lock held by `owner` and optionally store the run report.

     A lock that was taken over after expiry is left to its new holder.
     """
     values = {"locked_by": None, "locked_at": None, "expires_at": None}
     if report is not None:
          values["last_report"] = report
     result = db.execute(
          update(JobRunState)
          .where(JobRunState.name == name)
          .where(JobRunState.locked_by == owner)
          .values(**values)
          .execution_options(synchronize_session=False)
     )
     db.commit()
     if result.rowcount != 1:
          logger.warning("Job %s lock was no longer held by %s at release", name, owner)
          return False
     return True


def get_job_status(db: Session, name: str, now: Optional[datetime] = None) -> dict:
     now = now or utcnow()
     state = db.get(JobRunState, name, populate_existing=True)
     if state is None:
          return {"job": name, "locked": False, "lockedBy": None, "lockedAt": None, "expiresAt": None, "lastReport": None}
     return {
          "job": name,
          "locked": bool(state.expires_at and state.expires_at > now),
          "lockedBy": state.locked_by,
          "lockedAt": state.locked_at.isoformat() if state.locked_at else None,
          "expiresAt": state.expires_at.isoformat() if state.expires_at else None,
          "lastReport": state.last_report,
     }
