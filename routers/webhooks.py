# routers/webhooks.py
"""
Payment-provider webhook endpoint.

POST /webhooks/{provider}: signature-verified event intake. Authenticated
deliveries are always acknowledged with 200 so the provider stops retrying;
failures are kept in the webhook error log for replay.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_session
from schemas.webhook import WebhookAck
from services.exceptions import InvalidSignature
from services.webhook_service import handle_webhook, signature_header

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
     "/{provider}",
     response_model=WebhookAck,
     response_model_exclude_none=True,
     summary="Receive payment provider webhook",
)
async def receive_webhook(
     provider: str,
     request: Request,
     db: Session = Depends(get_session),
):
     raw_body = await request.body()
     signature = request.headers.get(signature_header(provider))
     try:
          return handle_webhook(db, provider.lower(), raw_body, signature)
     except InvalidSignature as e:
          logger.warning("Rejected %s webhook: %s", provider, e)
          raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
