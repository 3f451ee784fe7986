# services/webhook_service.py
"""
Webhook intake for payment providers.

1. Verify the HMAC-SHA256 signature of the raw body (no side effects on failure)
2. Validate the envelope and the event payload with Pydantic
3. Settle payment.success events; acknowledge everything else

Once a delivery is authenticated it is always acknowledged. Malformed
payloads and settlement failures are written to `webhook_errors` with the
raw body so they can be replayed after investigation.
"""
import hashlib
import hmac
import json
import logging
import traceback
from datetime import datetime
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

import config
from models import WebhookError
from models.webhook import WEBHOOK_ERROR_MALFORMED, WEBHOOK_ERROR_PROCESSING
from schemas.webhook import EVENT_PAYMENT_SUCCESS, PaymentSuccessData, WebhookEnvelope
from services.exceptions import InvalidSignature, WebhookErrorNotFound
from services.settlement_service import SettlementResult, settle_payment
from utils.clock import utcnow

logger = logging.getLogger(__name__)

INVESTIGATION_MESSAGE = "Logged for investigation"


def signature_header(provider: str) -> str:
     """Header carrying the signature, e.g. X-Moncash-Signature."""
     return f"X-{provider.strip().capitalize()}-Signature"


def compute_signature(secret: str, raw_body: bytes) -> str:
     return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(provider: str, raw_body: bytes, signature: Optional[str]) -> None:
     """
     Raises:
          InvalidSignature: If the provider has no secret, the header is
          missing or the HMAC does not match
     """
     secret = config.webhook_secret(provider)
     if not secret:
          raise InvalidSignature(f"No webhook secret configured for provider {provider}")
     if not signature:
          raise InvalidSignature("Missing signature")
     expected = compute_signature(secret, raw_body)
     if not hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8")):
          raise InvalidSignature("Signature mismatch")


def parse_envelope(raw_body: bytes) -> WebhookEnvelope:
     """
     Raises:
          ValueError: If the body is not JSON or does not match the envelope
     """
     try:
          payload = json.loads(raw_body.decode("utf-8"))
     except (UnicodeDecodeError, json.JSONDecodeError) as e:
          raise ValueError(f"Invalid JSON body: {e}")
     try:
          return WebhookEnvelope.model_validate(payload)
     except ValidationError as e:
          raise ValueError(f"Invalid webhook envelope: {e.errors(include_url=False)}")


def parse_payment(envelope: WebhookEnvelope) -> PaymentSuccessData:
     try:
          return PaymentSuccessData.model_validate(envelope.data)
     except ValidationError as e:
          raise ValueError(f"Invalid payment payload: {e.errors(include_url=False)}")


def record_webhook_error(
     db: Session,
     provider: str,
     kind: str,
     raw_body: bytes,
     error: Exception,
     event_type: Optional[str] = None,
     now: Optional[datetime] = None
) -> Optional[WebhookError]:
     """
     Persist a failed delivery. Never raises; a failure to record is logged.
     """
     db.rollback()
     entry = WebhookError(
          provider=provider,
          kind=kind,
          event_type=event_type,
          error_message=str(error),
          stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
          payload=raw_body.decode("utf-8", errors="replace"),
          resolved=False,
          created_at=now or utcnow(),
     )
     try:
          db.add(entry)
          db.commit()
          return entry
     except Exception:
          db.rollback()
          logger.exception("Failed to record webhook error for provider %s", provider)
          return None


def handle_webhook(
     db: Session,
     provider: str,
     raw_body: bytes,
     signature: Optional[str],
     now: Optional[datetime] = None
) -> dict:
     """
     Process one webhook delivery.

     Returns:
          Acknowledgement body: {"received": True} plus "error" when the
          delivery was quarantined or failed

     Raises:
          InvalidSignature: Before any side effect when authentication fails
     """
     verify_signature(provider, raw_body, signature)

     try:
          envelope = parse_envelope(raw_body)
     except ValueError as e:
          logger.warning("Malformed %s webhook: %s", provider, e)
          record_webhook_error(db, provider, WEBHOOK_ERROR_MALFORMED, raw_body, e, now=now)
          return {"received": True, "error": "Malformed payload"}

     if envelope.type != EVENT_PAYMENT_SUCCESS:
          logger.info("Ignoring %s webhook event type %s", provider, envelope.type)
          return {"received": True}

     try:
          payment = parse_payment(envelope)
     except ValueError as e:
          logger.warning("Malformed %s payment payload: %s", provider, e)
          record_webhook_error(db, provider, WEBHOOK_ERROR_MALFORMED, raw_body, e, event_type=envelope.type, now=now)
          return {"received": True, "error": "Malformed payload"}

     try:
          result = settle_payment(db, payment, provider=provider, now=now)
     except Exception as e:
          logger.exception("Webhook processing failed for order %s", payment.order_id)
          record_webhook_error(db, provider, WEBHOOK_ERROR_PROCESSING, raw_body, e, event_type=envelope.type, now=now)
          return {"received": True, "error": INVESTIGATION_MESSAGE}

     logger.info(json.dumps({
          "event": "webhook_settled",
          "provider": provider,
          "orderId": result.order_id,
          "alreadySettled": result.already_settled,
     }))
     return {"received": True}


def list_webhook_errors(
     db: Session,
     resolved: Optional[bool] = None,
     provider: Optional[str] = None,
     limit: int = 50
) -> list[WebhookError]:
     stmt = select(WebhookError).order_by(WebhookError.id.desc()).limit(limit)
     if resolved is not None:
          stmt = stmt.where(WebhookError.resolved.is_(resolved))
     if provider:
          stmt = stmt.where(WebhookError.provider == provider)
     return list(db.scalars(stmt).all())


def replay_webhook_error(db: Session, error_id: int, now: Optional[datetime] = None) -> SettlementResult:
     """
     Re-run settlement for a logged delivery and mark it resolved.

     The stored payload is validated again; settlement stays idempotent, so
     replaying an already settled order only resolves the entry.

     Raises:
          WebhookErrorNotFound: If no such entry exists
          ValueError: If the stored payload is not a valid payment.success event
          SettlementError: If settlement fails again
     """
     entry = db.get(WebhookError, error_id)
     if entry is None:
          raise WebhookErrorNotFound(error_id)

     envelope = parse_envelope(entry.payload.encode("utf-8"))
     if envelope.type != EVENT_PAYMENT_SUCCESS:
          raise ValueError(f"Cannot replay event type {envelope.type}")
     payment = parse_payment(envelope)

     now = now or utcnow()
     result = settle_payment(db, payment, provider=entry.provider, now=now)

     entry = db.get(WebhookError, error_id)
     entry.resolved = True
     entry.resolved_at = now
     db.commit()
     logger.info("Replayed webhook error %s for order %s", error_id, result.order_id)
     return result
