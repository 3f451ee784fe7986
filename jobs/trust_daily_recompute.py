# jobs/trust_daily_recompute.py
"""
Daily trust recompute over every active store.

Same lock / paginate / skip-recent / report pattern as the risk evaluation,
under the `dailyTrustRecompute` job lock.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import sessionmaker

import config
from database import get_session_context
from jobs.batch import iter_store_pages, map_with_concurrency
from models import StoreTrustState
from services.job_lock import DAILY_TRUST_RECOMPUTE, acquire_job_lock, release_job_lock
from services.trust_engine import recompute_store_trust
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def run_daily_trust_recompute(
     session_factory: Optional[sessionmaker] = None,
     dry_run: bool = False,
     now: Optional[datetime] = None,
     batch_size: Optional[int] = None,
     concurrency: Optional[int] = None,
     triggered_by: Optional[str] = None
) -> dict:
     job_id = uuid.uuid4().hex
     now = now or utcnow()
     batch_size = batch_size or config.TRUST_CRON_BATCH_SIZE
     concurrency = config.BATCH_CONCURRENCY if concurrency is None else concurrency

     with get_session_context(session_factory) as db:
          lock = acquire_job_lock(db, DAILY_TRUST_RECOMPUTE, job_id, now=now)
     if lock is None:
          logger.info("Daily trust recompute skipped, lock held")
          return {"job": DAILY_TRUST_RECOMPUTE, "jobId": job_id, "skipped": True, "reason": "LOCKED"}

     report = {
          "job": DAILY_TRUST_RECOMPUTE,
          "jobId": job_id,
          "dryRun": dry_run,
          "triggeredBy": triggered_by,
          "startedAt": utcnow().isoformat(),
          "finishedAt": None,
          "evaluated": 0,
          "skippedRecent": 0,
          "changedTier": 0,
          "changedScore": 0,
          "upgraded": 0,
          "downgraded": 0,
          "errors": 0,
          "avgScore": None,
     }
     scores = []
     recent_threshold = now - timedelta(hours=config.RECENT_EVAL_HOURS)

     def recompute(row) -> dict:
          store_id, last_updated = row
          if last_updated is not None and last_updated > recent_threshold:
               return {"skipped": True}
          try:
               with get_session_context(session_factory) as db:
                    return {"outcome": recompute_store_trust(db, store_id, dry_run=dry_run, now=now)}
          except Exception as e:
               logger.exception("Trust recompute failed for store %s", store_id)
               return {"error": str(e)}

     try:
          for page in iter_store_pages(session_factory, batch_size, StoreTrustState.trust_updated_at):
               for result in map_with_concurrency(page, concurrency, recompute):
                    if result.get("skipped"):
                         report["skippedRecent"] += 1
                         continue
                    if "error" in result:
                         report["errors"] += 1
                         continue
                    outcome = result["outcome"]
                    report["evaluated"] += 1
                    scores.append(outcome["nextScore"])
                    if outcome["tierChanged"]:
                         report["changedTier"] += 1
                    elif outcome["scoreChanged"]:
                         report["changedScore"] += 1
                    if outcome["upgraded"]:
                         report["upgraded"] += 1
                    if outcome["downgraded"]:
                         report["downgraded"] += 1
     finally:
          report["avgScore"] = round(sum(scores) / len(scores), 1) if scores else None
          report["finishedAt"] = utcnow().isoformat()
          with get_session_context(session_factory) as db:
               release_job_lock(db, DAILY_TRUST_RECOMPUTE, job_id, report=None if dry_run else report)

     logger.info(json.dumps(report))
     logger.info(json.dumps({"event": "metric", "name": "trust_daily_recompute_tier_changes", "value": report["changedTier"]}))
     return report
