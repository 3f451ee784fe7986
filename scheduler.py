# scheduler.py
"""
Background scheduler for the governance batch jobs.

The jobs themselves are single-flight through their database locks, so
running the scheduler in several instances is safe; `max_instances=1`
only prevents overlapping runs inside one process.
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from jobs.maintenance import cleanup_expired_records
from jobs.risk_daily_eval import run_daily_risk_eval
from jobs.trust_daily_recompute import run_daily_trust_recompute

logger = logging.getLogger(__name__)

_scheduler: Optional[BackgroundScheduler] = None


def build_scheduler() -> BackgroundScheduler:
     scheduler = BackgroundScheduler(
          job_defaults={
               "coalesce": True,
               "max_instances": 1,
               "misfire_grace_time": 600,
          },
          timezone="UTC",
     )
     scheduler.add_job(
          run_daily_risk_eval,
          trigger=CronTrigger(hour=2, minute=0),
          id="daily_risk_eval",
          name="Daily Risk Evaluation",
          kwargs={"triggered_by": "scheduler"},
     )
     scheduler.add_job(
          run_daily_trust_recompute,
          trigger=CronTrigger(hour=2, minute=30),
          id="daily_trust_recompute",
          name="Daily Trust Recompute",
          kwargs={"triggered_by": "scheduler"},
     )
     scheduler.add_job(
          cleanup_expired_records,
          trigger=IntervalTrigger(minutes=10),
          id="cleanup_expired_records",
          name="Cleanup Expired Locks",
     )
     return scheduler


def start_scheduler() -> BackgroundScheduler:
     global _scheduler
     if _scheduler is None:
          _scheduler = build_scheduler()
          _scheduler.start()
          logger.info("Scheduler started with %d jobs", len(_scheduler.get_jobs()))
     return _scheduler


def stop_scheduler() -> None:
     global _scheduler
     if _scheduler is not None:
          _scheduler.shutdown(wait=False)
          _scheduler = None
          logger.info("Scheduler stopped")
