# jobs/risk_daily_eval.py
"""
Daily risk evaluation over every active store.

Single-flight through the `dailyRiskEval` job lock. Each store is evaluated
in its own session; a failing store is counted and logged, never aborts the
batch. The report is stored on the job row unless the run is a dry run.
"""
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import sessionmaker

import config
from database import get_session_context
from jobs.batch import iter_store_pages, map_with_concurrency
from models import StoreRiskState
from services.job_lock import DAILY_RISK_EVAL, acquire_job_lock, release_job_lock
from services.risk_engine import auto_unfreeze_expired, evaluate_store_risk, pick_primary
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def run_daily_risk_eval(
     session_factory: Optional[sessionmaker] = None,
     dry_run: bool = False,
     now: Optional[datetime] = None,
     batch_size: Optional[int] = None,
     concurrency: Optional[int] = None,
     triggered_by: Optional[str] = None
) -> dict:
     """
     Run the daily risk evaluation.

     Returns:
          The run report, or {"skipped": True, "reason": "LOCKED"} when
          another run holds the lock
     """
     job_id = uuid.uuid4().hex
     now = now or utcnow()
     batch_size = batch_size or config.RISK_CRON_BATCH_SIZE
     concurrency = config.BATCH_CONCURRENCY if concurrency is None else concurrency

     with get_session_context(session_factory) as db:
          lock = acquire_job_lock(db, DAILY_RISK_EVAL, job_id, now=now)
     if lock is None:
          logger.info("Daily risk evaluation skipped, lock held")
          return {"job": DAILY_RISK_EVAL, "jobId": job_id, "skipped": True, "reason": "LOCKED"}

     report = {
          "job": DAILY_RISK_EVAL,
          "jobId": job_id,
          "dryRun": dry_run,
          "triggeredBy": triggered_by,
          "startedAt": utcnow().isoformat(),
          "finishedAt": None,
          "evaluated": 0,
          "skippedRecent": 0,
          "changed": 0,
          "frozen": 0,
          "unfrozen": 0,
          "errors": 0,
          "topReasons": {},
     }
     top_reasons = Counter()
     recent_threshold = now - timedelta(hours=config.RECENT_EVAL_HOURS)

     def evaluate(row) -> dict:
          store_id, last_evaluated = row
          if last_evaluated is not None and last_evaluated > recent_threshold:
               return {"skipped": True}
          try:
               with get_session_context(session_factory) as db:
                    return {"decision": evaluate_store_risk(db, store_id, dry_run=dry_run, now=now)}
          except Exception as e:
               logger.exception("Risk evaluation failed for store %s", store_id)
               return {"error": str(e)}

     try:
          if not dry_run:
               with get_session_context(session_factory) as db:
                    report["unfrozen"] = auto_unfreeze_expired(db, now=now, job_id=job_id)

          for page in iter_store_pages(session_factory, batch_size, StoreRiskState.last_risk_evaluated):
               for outcome in map_with_concurrency(page, concurrency, evaluate):
                    if outcome.get("skipped"):
                         report["skippedRecent"] += 1
                         continue
                    if "error" in outcome:
                         report["errors"] += 1
                         continue
                    decision = outcome["decision"]
                    report["evaluated"] += 1
                    if decision.changed:
                         report["changed"] += 1
                         if decision.payouts_frozen and not decision.prev_frozen:
                              report["frozen"] += 1
                         elif decision.prev_frozen and not decision.payouts_frozen:
                              report["unfrozen"] += 1
                    primary = pick_primary(decision.reasons)
                    if primary:
                         top_reasons[primary["type"]] += 1
     finally:
          report["topReasons"] = dict(top_reasons.most_common())
          report["finishedAt"] = utcnow().isoformat()
          with get_session_context(session_factory) as db:
               release_job_lock(db, DAILY_RISK_EVAL, job_id, report=None if dry_run else report)

     logger.info(json.dumps(report))
     logger.info(json.dumps({"event": "metric", "name": "risk_daily_eval_changed_count", "value": report["changed"]}))
     logger.info(json.dumps({"event": "metric", "name": "risk_daily_eval_errors_count", "value": report["errors"]}))
     return report
