# jobs/__init__.py
from .risk_daily_eval import run_daily_risk_eval
from .trust_daily_recompute import run_daily_trust_recompute
from .maintenance import cleanup_expired_records

__all__ = [
     "run_daily_risk_eval",
     "run_daily_trust_recompute",
     "cleanup_expired_records",
]
