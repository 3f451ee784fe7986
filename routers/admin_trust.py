# routers/admin_trust.py
"""
Admin trust API.

Trust state is derived from signals; the only write is a recompute, per
store or as the daily batch. All routes require an admin token.
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from database import get_session, get_session_factory
from dependencies import actor_id, rate_limited, require_admin
from jobs.trust_daily_recompute import run_daily_trust_recompute
from models import TrustTier
from routers.admin_risk import governance_http_error
from schemas.risk import EvaluateRequest
from services import governance_service
from services.exceptions import GovernanceError
from services.job_lock import DAILY_TRUST_RECOMPUTE, get_job_status
from services.risk_engine import validate_reason
from services.trust_engine import recompute_store_trust

router = APIRouter(prefix="/admin", tags=["admin-trust"])


def _parse_tiers(tier: Optional[str]) -> Optional[list[TrustTier]]:
     if not tier:
          return None
     try:
          return [TrustTier(value.strip().upper()) for value in tier.split(",") if value.strip()]
     except ValueError:
          raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid trust tier filter: {tier}")


@router.get("/trust/stores", summary="List stores by trust tier")
def list_trust_stores(
     tier: Optional[str] = Query(None, description="Comma-separated tiers, e.g. WATCH,RESTRICTED"),
     limit: int = Query(50, ge=1, le=100),
     cursor: Optional[str] = Query(None),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     return governance_service.list_trust_stores(db, tiers=_parse_tiers(tier), limit=limit, cursor=cursor)


@router.get("/trust/summary", summary="Trust KPIs over a time window")
def trust_summary(
     window: str = Query("7d", description="24h, 7d or 30d"),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return governance_service.trust_summary(db, window=window)
     except ValueError as e:
          raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/trust/jobs/daily-recompute/status", summary="Daily trust recompute lock and last report")
def daily_recompute_status(
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     return get_job_status(db, DAILY_TRUST_RECOMPUTE)


@router.post("/trust/jobs/daily-recompute/run", summary="Run the daily trust recompute now")
def run_daily_recompute(
     dry_run: bool = Query(False, alias="dryRun"),
     session_factory: sessionmaker = Depends(get_session_factory),
     token: dict = Depends(rate_limited("job_run")),
):
     report = run_daily_trust_recompute(session_factory=session_factory, dry_run=dry_run, triggered_by=actor_id(token))
     if report.get("skipped"):
          return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=report)
     return report


@router.get("/stores/{store_id}/trust", summary="Current trust state of a store")
def get_store_trust(
     store_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return governance_service.get_store_trust(db, store_id)
     except GovernanceError as e:
          raise governance_http_error(e)


@router.get("/stores/{store_id}/trust-events", summary="Trust event timeline of a store")
def list_trust_events(
     store_id: str,
     limit: int = Query(100, ge=1, le=100),
     cursor: Optional[int] = Query(None),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return governance_service.list_trust_events(db, store_id, limit=limit, cursor=cursor)
     except GovernanceError as e:
          raise governance_http_error(e)


@router.post("/stores/{store_id}/trust-recompute", summary="Recompute one store's trust now")
def recompute(
     store_id: str,
     dry_run: bool = Query(False, alias="dryRun"),
     body: Optional[EvaluateRequest] = Body(None),
     db: Session = Depends(get_session),
     token: dict = Depends(rate_limited("trust_recompute")),
):
     try:
          reason = None
          if not dry_run:
               reason = validate_reason(body.reason if body else None)
          outcome = recompute_store_trust(db, store_id, dry_run=dry_run, actor_id=actor_id(token), reason=reason)
     except GovernanceError as e:
          raise governance_http_error(e)
     return outcome
