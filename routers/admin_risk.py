# routers/admin_risk.py
"""
Admin risk API.

Read: flagged-store listing, per-store state and event timeline, summary.
Write: manual level changes, freeze / unfreeze, review flag, on-demand
evaluation and the daily batch. Every state-changing call carries a reason
and is recorded as a RiskEvent.

All routes require an admin token.
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from database import get_session, get_session_factory
from dependencies import actor_id, is_super_admin, rate_limited, require_admin
from jobs.risk_daily_eval import run_daily_risk_eval
from models import RiskLevel
from schemas.risk import EvaluateRequest, FreezeRequest, RiskFlagRequest, RiskLevelUpdate, UnfreezeRequest
from services import governance_service
from services.exceptions import GovernanceError, StoreNotFound, SuperAdminRequired
from services.job_lock import DAILY_RISK_EVAL, get_job_status
from services.payout_gate import get_payout_eligibility
from services.risk_engine import (
     evaluate_store_risk,
     freeze_store,
     set_manual_flag,
     set_risk_level,
     unfreeze_store,
     validate_reason,
)

router = APIRouter(prefix="/admin", tags=["admin-risk"])


def governance_http_error(e: GovernanceError) -> HTTPException:
     """Map a rejected governance action to its HTTP status."""
     if isinstance(e, StoreNotFound):
          return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
     if isinstance(e, SuperAdminRequired):
          return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
     return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _parse_levels(level: Optional[str]) -> Optional[list[RiskLevel]]:
     if not level:
          return None
     try:
          return [RiskLevel(value.strip().upper()) for value in level.split(",") if value.strip()]
     except ValueError:
          raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid risk level filter: {level}")


@router.get("/risk/stores", summary="List stores by risk level")
def list_risk_stores(
     level: Optional[str] = Query(None, description="Comma-separated levels, e.g. HIGH,FROZEN"),
     frozen: Optional[bool] = Query(None),
     limit: int = Query(50, ge=1, le=100),
     cursor: Optional[str] = Query(None),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     return governance_service.list_risk_stores(db, levels=_parse_levels(level), frozen=frozen, limit=limit, cursor=cursor)


@router.get("/risk/summary", summary="Risk KPIs over a time window")
def risk_summary(
     window: str = Query("24h", description="24h, 7d or 30d"),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return governance_service.risk_summary(db, window=window)
     except ValueError as e:
          raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/risk/jobs/daily-eval/status", summary="Daily risk evaluation lock and last report")
def daily_eval_status(
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     return get_job_status(db, DAILY_RISK_EVAL)


@router.post("/risk/jobs/daily-eval/run", summary="Run the daily risk evaluation now")
def run_daily_eval(
     dry_run: bool = Query(False, alias="dryRun"),
     session_factory: sessionmaker = Depends(get_session_factory),
     token: dict = Depends(rate_limited("job_run")),
):
     report = run_daily_risk_eval(session_factory=session_factory, dry_run=dry_run, triggered_by=actor_id(token))
     if report.get("skipped"):
          return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=report)
     return report


@router.get("/stores/{store_id}/risk", summary="Current risk state of a store")
def get_store_risk(
     store_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return governance_service.get_store_risk(db, store_id)
     except GovernanceError as e:
          raise governance_http_error(e)


@router.get("/stores/{store_id}/risk-events", summary="Risk event timeline of a store")
def list_risk_events(
     store_id: str,
     limit: int = Query(100, ge=1, le=100),
     cursor: Optional[int] = Query(None),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return governance_service.list_risk_events(db, store_id, limit=limit, cursor=cursor)
     except GovernanceError as e:
          raise governance_http_error(e)


@router.patch("/stores/{store_id}/risk-level", summary="Manually set a store's risk level")
def update_risk_level(
     store_id: str,
     body: RiskLevelUpdate,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return set_risk_level(
               db,
               store_id,
               level=body.risk_level,
               reason=body.reason,
               note=body.note,
               force_payouts_frozen=body.payouts_frozen,
               expires_at=body.expires_at,
               actor_id=actor_id(token),
               is_super_admin=is_super_admin(token),
          )
     except GovernanceError as e:
          raise governance_http_error(e)


@router.post("/stores/{store_id}/freeze", summary="Freeze a store's payouts")
def freeze(
     store_id: str,
     body: FreezeRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return freeze_store(
               db,
               store_id,
               reason=body.reason,
               level=body.level,
               note=body.note,
               expires_at=body.expires_at,
               actor_id=actor_id(token),
          )
     except GovernanceError as e:
          raise governance_http_error(e)


@router.post("/stores/{store_id}/unfreeze", summary="Release a store's payouts")
def unfreeze(
     store_id: str,
     body: UnfreezeRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return unfreeze_store(
               db,
               store_id,
               reason=body.reason,
               note=body.note,
               actor_id=actor_id(token),
               is_super_admin=is_super_admin(token),
          )
     except GovernanceError as e:
          raise governance_http_error(e)


@router.post("/stores/{store_id}/risk-flag", summary="Raise or clear the manual review flag")
def flag(
     store_id: str,
     body: RiskFlagRequest,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return set_manual_flag(db, store_id, flagged=body.flagged, reason=body.reason, note=body.note, actor_id=actor_id(token))
     except GovernanceError as e:
          raise governance_http_error(e)


@router.post("/stores/{store_id}/risk-evaluate", summary="Evaluate one store now")
def evaluate(
     store_id: str,
     dry_run: bool = Query(False, alias="dryRun"),
     body: Optional[EvaluateRequest] = Body(None),
     db: Session = Depends(get_session),
     token: dict = Depends(rate_limited("risk_evaluate")),
):
     try:
          reason = None
          if not dry_run:
               reason = validate_reason(body.reason if body else None)
          decision = evaluate_store_risk(db, store_id, dry_run=dry_run, actor_id=actor_id(token), reason=reason)
     except GovernanceError as e:
          raise governance_http_error(e)
     return {"decision": decision.to_dict(), "dryRun": dry_run}


@router.get("/stores/{store_id}/payout-eligibility", summary="Whether and when a store's payouts may be released")
def payout_eligibility(
     store_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          return get_payout_eligibility(db, store_id)
     except GovernanceError as e:
          raise governance_http_error(e)
