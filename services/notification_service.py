# services/notification_service.py
"""Buyer notifications sent after a payment has been settled."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

import config
from models import Notification, User
from utils.clock import utcnow
from utils.email import send_payment_confirmation_email

logger = logging.getLogger(__name__)

NOTIFICATION_PAYMENT_SUCCESS = "payment_success"


def notify_buyer_payment(
     db: Session,
     user_id: str,
     order_id: str,
     amount: Decimal,
     currency: str,
     now: Optional[datetime] = None
) -> Notification:
     """
     Store an in-app notification for the buyer and, when email delivery is
     configured, send a confirmation email.

     Email failures are logged and never raised; the notification row is
     committed by this function.
     """
     notification = Notification(
          user_id=user_id,
          type=NOTIFICATION_PAYMENT_SUCCESS,
          title="Payment confirmed",
          message=f"Your payment of {amount} {currency} for order {order_id} was received.",
          order_id=order_id,
          read=False,
          created_at=now or utcnow(),
     )
     db.add(notification)
     db.commit()

     if config.BREVO_API_KEY:
          user = db.get(User, user_id)
          if user is not None and user.email:
               try:
                    send_payment_confirmation_email(user.email, order_id, amount, currency)
               except Exception as e:
                    logger.warning("Payment confirmation email for order %s failed: %s", order_id, e)
     return notification
