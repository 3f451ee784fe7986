# routers/admin_webhooks.py
"""
Reconciliation API: webhook error log, replay, and settlement verification.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from database import get_session
from dependencies import require_admin
from services.exceptions import SettlementError, WebhookErrorNotFound
from services.settlement_service import verify_order_settlement
from services.webhook_service import list_webhook_errors, replay_webhook_error

router = APIRouter(prefix="/admin", tags=["admin-reconciliation"])


def _error_dict(entry) -> dict:
     data = entry.to_dict()
     data.pop("stack", None)
     return data


@router.get("/webhook-errors", summary="List logged webhook failures")
def get_webhook_errors(
     resolved: Optional[bool] = Query(None),
     provider: Optional[str] = Query(None),
     limit: int = Query(50, ge=1, le=200),
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     return {"items": [_error_dict(e) for e in list_webhook_errors(db, resolved=resolved, provider=provider, limit=limit)]}


@router.post("/webhook-errors/{error_id}/replay", summary="Replay a logged webhook delivery")
def replay(
     error_id: int,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     try:
          result = replay_webhook_error(db, error_id)
     except WebhookErrorNotFound as e:
          raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
     except (ValueError, SettlementError) as e:
          raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
     return {"errorId": error_id, "resolved": True, "settlement": result.to_dict()}


@router.get("/settlements/{order_id}/verify", summary="Verify an order's ledger entries")
def verify_settlement(
     order_id: str,
     db: Session = Depends(get_session),
     token: dict = Depends(require_admin),
):
     """
     Recompute the vendor split from the order items and compare with the
     stored transactions and platform revenue.
     """
     ok, message = verify_order_settlement(db, order_id)
     return {"orderId": order_id, "verified": ok, "message": message}
