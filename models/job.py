# models/job.py
from sqlalchemy import Column, String, DateTime, JSON
from .base import Base


class JobRunState(Base):
     """
     Single-flight lock and last report for a scheduled batch job.

     A run holds the lock while `expires_at` is in the future; an expired
     lock may be taken over by the next run.
     """
     __tablename__ = "job_run_state"

     name = Column(String(64), primary_key=True)  # dailyRiskEval, dailyTrustRecompute
     locked_by = Column(String(64), nullable=True)
     locked_at = Column(DateTime, nullable=True)
     expires_at = Column(DateTime, nullable=True)
     last_report = Column(JSON, nullable=True)

     def __repr__(self):
          return f"<JobRunState(name='{self.name}', locked_by='{self.locked_by}', expires_at={self.expires_at})>"
